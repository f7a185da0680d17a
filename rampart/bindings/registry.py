"""
Binding Strategy Registry.

Holds an ordered list of binding strategies and dispatches each binding
request to exactly one of them.

Design Principle:
    Lookup is first match in registration order. There is no priority
    system: if two strategies can handle the same (source type,
    capability) pair, the one registered first always wins. Keep
    registration order stable.

Usage:
    registry = BindingStrategyRegistry()
    registry.register(WorkerToQueueStrategy())
    registry.register(ApiToDatabaseStrategy())

    strategy = registry.find_strategy("worker", "queue:read")
    result = await registry.bind(context)

    registry.get_supported_bindings("worker")   # what a worker can bind to
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from rampart.bindings.base import BindingContext, BindingResult, BindingStrategy, CompatibilityEntry
from rampart.components.base import maybe_await
from rampart.errors import BindingResolutionError, NoStrategyError, RampartError

logger = logging.getLogger(__name__)


class BindingRegistryError(Exception):
    """Error in binding registry operations."""

    pass


class BindingStrategyRegistry:
    """
    Ordered registry of binding strategies.

    Read-mostly after startup; safe to share across concurrent runs.
    """

    def __init__(self, strategies: Iterable[BindingStrategy] = ()):
        self._strategies: list[BindingStrategy] = []
        for strategy in strategies:
            self.register(strategy)

    def register(self, strategy: BindingStrategy) -> None:
        """
        Register a strategy at the end of the lookup order.

        Raises:
            BindingRegistryError: Invalid strategy or duplicate name
        """
        if not callable(getattr(strategy, "can_handle", None)) or not callable(getattr(strategy, "bind", None)):
            raise BindingRegistryError(f"Strategy must implement can_handle() and bind(): {strategy!r}")

        name = getattr(strategy, "name", "") or type(strategy).__name__
        if name in self.list_names():
            raise BindingRegistryError(f"Strategy '{name}' already registered. Use a unique name.")

        self._strategies.append(strategy)

        if not strategy.get_compatibility_matrix():
            logger.warning(f"[binding_registry] Strategy {name} declares an empty compatibility matrix")
        logger.info(f"[binding_registry] Registered strategy: {name}")

    def unregister(self, name: str) -> bool:
        for i, strategy in enumerate(self._strategies):
            if strategy.name == name:
                del self._strategies[i]
                logger.info(f"[binding_registry] Unregistered strategy: {name}")
                return True
        return False

    def find_strategy(self, source_type: str, capability: str) -> BindingStrategy | None:
        """
        Find the first registered strategy that handles the pair.

        Returns:
            Strategy or None
        """
        for strategy in self._strategies:
            if strategy.can_handle(source_type, capability):
                return strategy
        return None

    def has_source_type(self, source_type: str) -> bool:
        """Check whether any strategy serves the source type at all."""
        return any(entry.source_type == source_type for entry in self.compatibility_matrix())

    def get_supported_bindings(self, source_type: str) -> list[CompatibilityEntry]:
        """Entries for a source type, in registration order, without duplicates."""
        seen: set[tuple[str, str | None]] = set()
        entries = []
        for entry in self.compatibility_matrix():
            key = (entry.capability, entry.target_type)
            if entry.source_type == source_type and key not in seen:
                seen.add(key)
                entries.append(entry)
        return entries

    def compatibility_matrix(self) -> list[CompatibilityEntry]:
        """Every strategy's entries, in registration order."""
        matrix: list[CompatibilityEntry] = []
        for strategy in self._strategies:
            matrix.extend(strategy.get_compatibility_matrix())
        return matrix

    def source_types(self) -> list[str]:
        return sorted({entry.source_type for entry in self.compatibility_matrix()})

    def no_strategy_error(self, source_type: str, capability: str) -> NoStrategyError:
        """Build the error for an unhandled pair, naming the alternatives."""
        if not self.has_source_type(source_type):
            known = self.source_types()
            return NoStrategyError(
                f"No binding strategies registered for source type '{source_type}' "
                f"(requested capability '{capability}'). Source types with strategies: {known}",
                alternatives=[],
                details={"reason": "unknown_source_type", "source_types": known},
            )

        alternatives = [entry.describe() for entry in self.get_supported_bindings(source_type)]
        return NoStrategyError(
            f"No binding strategy for '{source_type}' -> '{capability}'. "
            f"'{source_type}' can bind to: {alternatives}",
            alternatives=alternatives,
            details={"reason": "unsupported_capability"},
        )

    async def bind(self, context: BindingContext) -> BindingResult:
        """
        Dispatch a binding to its strategy.

        Raises:
            NoStrategyError: No strategy handles (source type, capability)
            BindingResolutionError: The strategy failed
        """
        source_type = context.source.type
        capability = context.capability

        strategy = self.find_strategy(source_type, capability)
        if strategy is None:
            raise self.no_strategy_error(source_type, capability)

        try:
            outcome = await maybe_await(strategy.bind(context))
        except RampartError:
            raise
        except Exception as e:
            raise BindingResolutionError(
                f"Strategy {strategy.name} failed binding '{context.source.name}' -> "
                f"'{context.target.name}' ({capability}): {e}",
                component=context.source.name,
                details={"strategy": strategy.name},
            ) from e

        logger.debug(
            f"[binding_registry] {context.source.name} -> {context.target.name} "
            f"({capability}, {context.access}) via {strategy.name}"
        )
        return BindingResult(
            source=context.source.name,
            target=context.target.name,
            capability=capability,
            access=context.access,
            strategy=strategy.name,
            outcome=dict(outcome or {}),
        )

    @property
    def strategies(self) -> list[BindingStrategy]:
        return list(self._strategies)

    def list_names(self) -> list[str]:
        return [getattr(s, "name", "") or type(s).__name__ for s in self._strategies]

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, name: str) -> bool:
        return name in self.list_names()

    def __repr__(self) -> str:
        return f"<BindingStrategyRegistry strategies={self.list_names()}>"
