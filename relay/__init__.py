from relay.orchestrator import OrchestrationOutcome, PollingOrchestrator, PollState
from relay.session_manager import ConversationManager, build_manager

__all__ = [
    "ConversationManager",
    "OrchestrationOutcome",
    "PollState",
    "PollingOrchestrator",
    "build_manager",
]
