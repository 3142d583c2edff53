"""
Job handler registry initialization.

Registers one handler per job kind, all sharing the configured collaborator.
"""

from worker.config.logging import get_logger
from worker.core.registries import JobHandlerRegistry
from worker.jobs.collaborators import GenerationCollaborator
from worker.jobs.handlers import HANDLER_CLASSES
from worker.jobs.models import JobKind

logger = get_logger(__name__)


def build_handler_registry(collaborator: GenerationCollaborator) -> JobHandlerRegistry:
    """Register a handler for every job kind and freeze the registry."""
    registry = JobHandlerRegistry()

    for handler_class in HANDLER_CLASSES:
        registry.register(handler_class.kind.value, handler_class(collaborator))

    missing = {kind.value for kind in JobKind} - set(registry.list())
    if missing:
        raise RuntimeError(f"No job handler registered for kinds: {sorted(missing)}")

    registry.freeze()
    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry
