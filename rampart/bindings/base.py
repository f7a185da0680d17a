"""
Binding Contracts.

A binding connects a source component to a capability published by a
target component. Strategies implement the wiring for particular
``(source type, capability)`` pairs; the registry only dispatches.

Contracts:
    - CompatibilityEntry: one (source type, capability) pair a strategy serves
    - BindingContext: everything a strategy may look at while binding
    - BindingResult: immutable record of one applied binding
    - BindingStrategy: base class for strategies
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rampart.config.resolver import freeze, thaw
from rampart.errors import CapabilityNotFoundError
from rampart.schemas import ACCESS_LEVELS

if TYPE_CHECKING:
    from rampart.components.base import ComponentInstance
    from rampart.schemas import BindingDirective


@dataclass(frozen=True)
class CompatibilityEntry:
    """
    A (source type, capability) pair a strategy can bind.

    Attributes:
        source_type: Component type on the binding's source side
        capability: Capability key on the target
        target_type: Component type usually publishing the capability
        access: Access levels the strategy supports for this pair
        description: Human-readable description
    """

    source_type: str
    capability: str
    target_type: str | None = None
    access: tuple[str, ...] = ACCESS_LEVELS
    description: str = ""

    def matches(self, source_type: str, capability: str) -> bool:
        return self.source_type == source_type and self.capability == capability

    def describe(self) -> str:
        if self.target_type:
            return f"{self.capability} ({self.target_type})"
        return self.capability


@dataclass(frozen=True)
class BindingContext:
    """
    Input to ``BindingStrategy.bind``.

    Strategies may mutate the source instance (inject environment, append
    derived capabilities) but never the target's published capabilities.

    Attributes:
        source: Instance declaring the directive
        target: Resolved target instance
        directive: The binding directive
        environment: Active environment name
        framework: Active compliance framework
        run_id: Orchestration run identifier
    """

    source: ComponentInstance
    target: ComponentInstance
    directive: BindingDirective
    environment: str
    framework: str
    run_id: str = ""

    @property
    def capability(self) -> str:
        return self.directive.capability

    @property
    def access(self) -> str:
        return self.directive.access

    @property
    def capability_data(self) -> Any:
        """The target's published data for the requested capability."""
        capabilities = self.target.capabilities
        if capabilities is None or self.capability not in capabilities:
            raise CapabilityNotFoundError(
                f"'{self.target.name}' has not published capability '{self.capability}'",
                component=self.source.name,
            )
        return capabilities[self.capability]


@dataclass(frozen=True)
class BindingResult:
    """
    Record of one applied binding. Append-only within a run.

    Attributes:
        source: Source component name
        target: Target component name
        capability: Capability key
        access: Granted access level
        strategy: Name of the strategy that applied the binding
        outcome: Strategy-specific outcome (frozen)
    """

    source: str
    target: str
    capability: str
    access: str
    strategy: str
    outcome: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "outcome", freeze(dict(self.outcome)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "capability": self.capability,
            "access": self.access,
            "strategy": self.strategy,
            "outcome": thaw(self.outcome),
        }


class BindingStrategy(ABC):
    """
    Base class for binding strategies.

    A strategy declares the pairs it serves through its compatibility
    matrix. ``can_handle`` consults the matrix by default; override it for
    rules the matrix cannot express (and keep the matrix accurate for
    error messages).

    Example:
        class WorkerToQueue(BindingStrategy):
            name = "worker-to-queue"

            def get_compatibility_matrix(self):
                return [CompatibilityEntry("worker", "queue:read", "queue")]

            def bind(self, context):
                url = context.capability_data["url"]
                context.source.inject_env("QUEUE_URL", url)
                return {"environment": {"QUEUE_URL": url}}
    """

    name: str = ""

    def __init__(self) -> None:
        if not self.name:
            self.name = type(self).__name__

    @abstractmethod
    def get_compatibility_matrix(self) -> list[CompatibilityEntry]:
        """List every (source type, capability) pair this strategy serves."""
        ...

    def can_handle(self, source_type: str, capability: str) -> bool:
        return any(entry.matches(source_type, capability) for entry in self.get_compatibility_matrix())

    @abstractmethod
    def bind(self, context: BindingContext) -> Mapping[str, Any] | Awaitable[Mapping[str, Any]]:
        """Apply the binding. Returns a strategy-specific outcome mapping."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name}>"
