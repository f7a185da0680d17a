"""
Component Factory Provider.

Framework-scoped registries of component creators.

Design Principle:
    Each compliance framework gets its own set of creators. A framework
    may extend another, exclude component types it does not permit, or
    swap in a hardened creator for a type name it inherits. Asking for a
    framework nobody registered is an error; there is no silent fallback
    to a baseline framework.

Architecture:
    ComponentFactoryProvider --create_factory(framework)--> ComponentFactory
    ComponentFactory --create_registry()--> ComponentRegistry (fresh per run)
    ComponentRegistry --create_component(spec, context)--> ComponentInstance

Usage:
    provider = ComponentFactoryProvider()
    provider.register_framework("baseline", creators={
        "queue": ProvisionerCreator(QueueProvisioner, fallbacks={...}),
        "worker": ProvisionerCreator(WorkerProvisioner),
    })
    provider.register_framework(
        "maximum",
        extends="baseline",
        creators={"queue": ProvisionerCreator(HardenedQueueProvisioner)},
        exclude=["public-bucket"],
    )

    registry = provider.create_factory("maximum").create_registry()
    instance = registry.create_component(spec, context, config=config)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from rampart.components.base import (
    ComponentContext,
    ComponentCreator,
    ComponentInstance,
    Provisioner,
    ProvisionerCreator,
)
from rampart.config.merge import Provenance, merge_layers
from rampart.config.resolver import ConfigLayer, EffectiveConfig
from rampart.errors import InstantiationError, RampartError, UnsupportedFrameworkError
from rampart.schemas import ComponentSpec

logger = logging.getLogger(__name__)


class ComponentRegistryError(Exception):
    """Error in component registry operations."""

    pass


CreatorLike = ComponentCreator | Callable[..., Any]


def as_creator(creator: CreatorLike) -> ComponentCreator:
    """Wrap a provisioner class or factory callable in a ProvisionerCreator."""
    if isinstance(creator, ComponentCreator):
        return creator
    if creator is None or not callable(creator):
        raise ComponentRegistryError("Creator must be a ComponentCreator or a provisioner class")
    return ProvisionerCreator(creator)


# =============================================================================
# Registry
# =============================================================================


class ComponentRegistry:
    """
    Component type -> creator, scoped to one compliance framework.

    Example:
        registry = ComponentRegistry("baseline")
        registry.register("queue", QueueProvisioner)

        registry.has_type("queue")          # True
        registry.get_supported_types()      # ["queue"]
        instance = registry.create_component(spec, context)
    """

    def __init__(self, framework: str, excluded_types: Iterable[str] = ()):
        self.framework = framework
        self._excluded = frozenset(excluded_types)
        self._creators: dict[str, ComponentCreator] = {}

    def register(self, component_type: str, creator: CreatorLike, *, replace: bool = False) -> None:
        """
        Register a creator for a component type.

        Args:
            component_type: Type name used in manifests
            creator: ComponentCreator, or a provisioner class/callable
            replace: Allow replacing an existing registration

        Raises:
            ComponentRegistryError: Invalid type name, invalid creator,
                type excluded by the framework, or duplicate registration
        """
        if not component_type or not isinstance(component_type, str):
            raise ComponentRegistryError("Component type must be a non-empty string")

        if component_type in self._excluded:
            raise ComponentRegistryError(
                f"Component type '{component_type}' is not permitted under framework '{self.framework}'"
            )

        if component_type in self._creators and not replace:
            raise ComponentRegistryError(
                f"Component type '{component_type}' already registered. Use replace=True or unregister first."
            )

        self._creators[component_type] = as_creator(creator)
        logger.debug(f"[component_registry] Registered '{component_type}' for {self.framework}")

    def unregister(self, component_type: str) -> bool:
        """
        Unregister a component type.

        Returns:
            True if it was registered, False otherwise
        """
        if component_type in self._creators:
            del self._creators[component_type]
            return True
        return False

    def get_creator(self, component_type: str) -> ComponentCreator | None:
        return self._creators.get(component_type)

    def get_required_creator(self, spec: ComponentSpec) -> ComponentCreator:
        """
        Get the creator for a spec's type, raising if none exists.

        Raises:
            InstantiationError: Unknown or excluded type (lists known types)
        """
        creator = self._creators.get(spec.type)
        if creator is not None:
            return creator

        known = self.get_supported_types()
        if spec.type in self._excluded:
            message = (
                f"Component '{spec.name}' has type '{spec.type}', which framework "
                f"'{self.framework}' does not permit. Permitted types: {known}"
            )
        else:
            message = (
                f"No creator registered for type '{spec.type}' (component '{spec.name}'). "
                f"Known types: {known}"
            )
        raise InstantiationError(
            message,
            component=spec.name,
            details={"component_type": spec.type, "framework": self.framework, "known_types": known},
        )

    def has_type(self, component_type: str) -> bool:
        return component_type in self._creators

    def is_excluded(self, component_type: str) -> bool:
        return component_type in self._excluded

    def get_supported_types(self) -> list[str]:
        return sorted(self._creators)

    def clear(self) -> None:
        self._creators.clear()

    def create_component(
        self,
        spec: ComponentSpec,
        context: ComponentContext,
        *,
        config: EffectiveConfig | None = None,
    ) -> ComponentInstance:
        """
        Build a ComponentInstance for a spec.

        When ``config`` is omitted, the spec's own config is merged over
        the creator's fallbacks (no framework or environment layers).

        Raises:
            InstantiationError: Unknown type, creator failure, or a result
                that does not implement the Provisioner protocol
        """
        creator = self.get_required_creator(spec)
        if config is None:
            config = _fallback_only_config(spec, creator, context)

        try:
            provisioner = creator.create(spec, config, context)
        except RampartError:
            raise
        except Exception as e:
            raise InstantiationError(
                f"Creator {creator.name} failed for component '{spec.name}': {e}",
                component=spec.name,
                details={"component_type": spec.type, "creator": creator.name},
            ) from e

        if not isinstance(provisioner, Provisioner):
            raise InstantiationError(
                f"Component '{spec.name}' ({spec.type}): {type(provisioner).__name__} "
                f"does not implement the Provisioner interface",
                component=spec.name,
                details={"component_type": spec.type, "creator": creator.name},
            )

        instance = ComponentInstance(
            spec=spec,
            config=config,
            provisioner=provisioner,
            context=context,
            creator=creator.name,
        )
        if creator.deprecated:
            message = f"component type '{spec.type}' (component '{spec.name}') is deprecated"
            if creator.deprecation_message:
                message = f"{message}: {creator.deprecation_message}"
            instance.warnings.append(message)
            logger.warning(f"[component_registry] {message}")

        return instance

    def __len__(self) -> int:
        return len(self._creators)

    def __contains__(self, component_type: str) -> bool:
        return component_type in self._creators

    def __repr__(self) -> str:
        return f"<ComponentRegistry framework={self.framework} types={self.get_supported_types()}>"


def _fallback_only_config(
    spec: ComponentSpec, creator: ComponentCreator, context: ComponentContext
) -> EffectiveConfig:
    provenance = Provenance()
    values = merge_layers(
        [
            (ConfigLayer.FALLBACK.value, creator.fallback_config()),
            (ConfigLayer.MANIFEST.value, spec.config),
        ],
        provenance,
    )
    return EffectiveConfig(
        component=spec.name,
        component_type=spec.type,
        framework=context.framework,
        environment=context.environment,
        values=values,
        provenance=provenance.winners,
        history=provenance.history,
    )


# =============================================================================
# Factory & Provider
# =============================================================================


@dataclass
class FrameworkDefinition:
    """
    Registration for one compliance framework.

    Attributes:
        name: Framework name
        extends: Parent framework whose creators are inherited
        creators: Creators added or swapped in by this framework
        excluded_types: Types this framework does not permit
        description: Human-readable description
    """

    name: str
    extends: str | None = None
    creators: dict[str, ComponentCreator] = field(default_factory=dict)
    excluded_types: frozenset[str] = frozenset()
    description: str = ""


class ComponentFactory:
    """
    Creator set for one framework, with inheritance already applied.

    Each call to ``create_registry()`` returns a fresh registry so runs
    never share mutable registry state.
    """

    def __init__(
        self,
        framework: str,
        creators: Mapping[str, ComponentCreator],
        excluded_types: Iterable[str] = (),
    ):
        self.framework = framework
        self._creators = dict(creators)
        self._excluded = frozenset(excluded_types)

    def create_registry(self) -> ComponentRegistry:
        registry = ComponentRegistry(self.framework, self._excluded)
        for component_type, creator in self._creators.items():
            registry.register(component_type, creator)
        return registry

    def get_supported_types(self) -> list[str]:
        return sorted(self._creators)

    def is_supported(self, component_type: str) -> bool:
        return component_type in self._creators

    def __repr__(self) -> str:
        return f"<ComponentFactory framework={self.framework} types={self.get_supported_types()}>"


class ComponentFactoryProvider:
    """
    Knows every registered framework and builds factories for them.

    The provider is read-mostly after startup and can be shared across
    concurrent runs.
    """

    def __init__(self) -> None:
        self._frameworks: dict[str, FrameworkDefinition] = {}

    def register_framework(
        self,
        name: str,
        *,
        creators: Mapping[str, CreatorLike] | None = None,
        extends: str | None = None,
        exclude: Iterable[str] = (),
        description: str = "",
    ) -> FrameworkDefinition:
        """
        Register a compliance framework.

        Args:
            name: Framework name
            creators: Type -> creator added (or swapped) by this framework
            extends: Existing framework to inherit creators from
            exclude: Types removed from the inherited set
            description: Human-readable description

        Raises:
            ComponentRegistryError: Duplicate name or unknown parent
        """
        if not name or not isinstance(name, str):
            raise ComponentRegistryError("Framework name must be a non-empty string")
        if name in self._frameworks:
            raise ComponentRegistryError(f"Framework '{name}' already registered")
        if extends is not None and extends not in self._frameworks:
            raise ComponentRegistryError(
                f"Framework '{name}' extends unknown framework '{extends}'. "
                f"Known frameworks: {self.list_frameworks()}"
            )

        definition = FrameworkDefinition(
            name=name,
            extends=extends,
            creators={k: as_creator(v) for k, v in (creators or {}).items()},
            excluded_types=frozenset(exclude),
            description=description,
        )
        self._frameworks[name] = definition
        logger.info(
            f"[factory_provider] Registered framework: {name}"
            + (f" (extends {extends})" if extends else "")
        )
        return definition

    def has_framework(self, name: str) -> bool:
        return name in self._frameworks

    def list_frameworks(self) -> list[str]:
        return sorted(self._frameworks)

    def create_factory(self, framework: str) -> ComponentFactory:
        """
        Build the factory for a framework.

        Raises:
            UnsupportedFrameworkError: Framework not registered (lists known)
        """
        if framework not in self._frameworks:
            known = self.list_frameworks()
            raise UnsupportedFrameworkError(
                f"Unsupported compliance framework '{framework}'. Known frameworks: {known}",
                details={"framework": framework, "known": known},
            )

        chain: list[FrameworkDefinition] = []
        current: str | None = framework
        while current is not None:
            definition = self._frameworks[current]
            chain.append(definition)
            current = definition.extends

        creators: dict[str, ComponentCreator] = {}
        excluded: set[str] = set()
        for definition in reversed(chain):
            for component_type, creator in definition.creators.items():
                creators[component_type] = creator
                excluded.discard(component_type)
            for component_type in definition.excluded_types:
                creators.pop(component_type, None)
                excluded.add(component_type)

        logger.debug(
            f"[factory_provider] Factory for {framework}: types={sorted(creators)} excluded={sorted(excluded)}"
        )
        return ComponentFactory(framework, creators, excluded)

    def __len__(self) -> int:
        return len(self._frameworks)

    def __contains__(self, name: str) -> bool:
        return name in self._frameworks

    def __repr__(self) -> str:
        return f"<ComponentFactoryProvider frameworks={self.list_frameworks()}>"
