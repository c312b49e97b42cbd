"""
Pipeline Orchestrator - bounded retry state machine and end-to-end query flow
"""

from vkg.orchestrator.state import Phase, RetryState


# Lazy imports to avoid circular dependencies
def create_retry_graph():
    from vkg.orchestrator.graph import create_retry_graph as _create
    return _create()


def create_pipeline(store, directory=None):
    from vkg.orchestrator.processor import VKGQueryPipeline
    return VKGQueryPipeline.from_settings(store, directory)


__all__ = [
    "Phase",
    "RetryState",
    "create_pipeline",
    "create_retry_graph",
]
