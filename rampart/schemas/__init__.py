"""
Rampart Schemas.

JSON-serializable models for everything the core consumes:

- Manifest / ComponentSpec / BindingDirective: what the service declares
- EnvironmentProfile: the active environment layer
- ComplianceFrameworkProfile: framework-scoped defaults
"""

from .manifest import (
    ACCESS_LEVELS,
    DEFAULT_PROTECTED_ENVIRONMENTS,
    AccessLevel,
    BindingDirective,
    ComponentSpec,
    EnvironmentBlock,
    EnvironmentProfile,
    Manifest,
    PolicyBlock,
    Selector,
)
from .profile import ComplianceFrameworkProfile

__all__ = [
    "ACCESS_LEVELS",
    "DEFAULT_PROTECTED_ENVIRONMENTS",
    "AccessLevel",
    "BindingDirective",
    "ComplianceFrameworkProfile",
    "ComponentSpec",
    "EnvironmentBlock",
    "EnvironmentProfile",
    "Manifest",
    "PolicyBlock",
    "Selector",
]
