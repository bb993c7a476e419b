from pkghub.orchestration.extractor import PackageExtractor
from pkghub.orchestration.fetcher import ArtifactFetcher, EgressPolicy
from pkghub.orchestration.orchestrator import OrchestrationResult, Orchestrator
from pkghub.orchestration.state import OrchestrationState, OrchestrationStateMachine
from pkghub.orchestration.worker import OrchestrationWorker, backoff_delay

__all__ = [
    "ArtifactFetcher",
    "EgressPolicy",
    "OrchestrationResult",
    "OrchestrationState",
    "OrchestrationStateMachine",
    "OrchestrationWorker",
    "Orchestrator",
    "PackageExtractor",
    "backoff_delay",
]
