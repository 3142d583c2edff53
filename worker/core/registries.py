from typing import Any, Generic, Protocol, TypeVar

T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


class JobHandler(Protocol):
    """Protocol for kind-specific job handlers driven by the processor."""

    collaborator_name: str

    async def handle(self, job: Any, reporter: Any) -> Any:
        """
        Run one job through its generation collaborator.

        Args:
            job: The unified job record (JobView)
            reporter: ProgressReporter used to push progress for this job

        Returns:
            The kind-specific result model to persist on completion
        """
        ...


class JobHandlerRegistry(Registry[JobHandler]):
    """Registry of job handlers keyed by job kind."""

    def __init__(self):
        super().__init__("JobHandler")
