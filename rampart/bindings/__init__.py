"""
Rampart Bindings.

Capability-based wiring between components:

- BindingStrategy: wiring for (source type, capability) pairs
- BindingStrategyRegistry: first-match dispatch
- CapabilityGrantStrategy: data-driven reference strategy
"""

from .base import BindingContext, BindingResult, BindingStrategy, CompatibilityEntry
from .registry import BindingRegistryError, BindingStrategyRegistry
from .strategies import CapabilityGrant, CapabilityGrantStrategy

__all__ = [
    "BindingContext",
    "BindingRegistryError",
    "BindingResult",
    "BindingStrategy",
    "BindingStrategyRegistry",
    "CapabilityGrant",
    "CapabilityGrantStrategy",
    "CompatibilityEntry",
]
