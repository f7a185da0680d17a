"""
Rampart Components.

Provisioner contracts and framework-scoped component factories.
"""

from .base import (
    MAIN_HANDLE,
    BaseProvisioner,
    CapabilityMap,
    ComponentContext,
    ComponentCreator,
    ComponentInstance,
    Provisioner,
    ProvisionerCreator,
    ValidationResult,
    is_capability_key,
    maybe_await,
)
from .factory import (
    ComponentFactory,
    ComponentFactoryProvider,
    ComponentRegistry,
    ComponentRegistryError,
    FrameworkDefinition,
)

__all__ = [
    "MAIN_HANDLE",
    "BaseProvisioner",
    "CapabilityMap",
    "ComponentContext",
    "ComponentCreator",
    "ComponentFactory",
    "ComponentFactoryProvider",
    "ComponentInstance",
    "ComponentRegistry",
    "ComponentRegistryError",
    "FrameworkDefinition",
    "Provisioner",
    "ProvisionerCreator",
    "ValidationResult",
    "is_capability_key",
    "maybe_await",
]
