"""
Error taxonomy for Rampart.

Every failure that aborts an orchestration run is a RampartError. Errors
carry enough context (component, phase, directive) to be actionable
without re-running the synthesis in a debugger.

Hierarchy:
    RampartError
    ├── ManifestError
    ├── ConfigurationError
    │   ├── UnknownFrameworkError
    │   ├── MissingProfileSectionError
    │   ├── MalformedProfileError
    │   └── PolicyViolationError
    ├── UnsupportedFrameworkError
    ├── InstantiationError
    ├── SynthesisError
    ├── BindingResolutionError
    │   ├── TargetNotFoundError
    │   ├── AmbiguousSelectorError
    │   ├── CapabilityNotFoundError
    │   └── NoStrategyError
    └── PatchError
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable, enumerable classification of Rampart errors."""

    MANIFEST = "manifest"

    # Configuration resolution
    CONFIGURATION = "configuration"
    UNKNOWN_FRAMEWORK = "unknown_framework"
    MISSING_PROFILE_SECTION = "missing_profile_section"
    MALFORMED_PROFILE = "malformed_profile"
    POLICY_VIOLATION = "policy_violation"

    # Factories
    UNSUPPORTED_FRAMEWORK = "unsupported_framework"
    INSTANTIATION = "instantiation"

    # Synthesis
    SYNTHESIS = "synthesis"

    # Binding resolution
    BINDING = "binding"
    TARGET_NOT_FOUND = "target_not_found"
    AMBIGUOUS_SELECTOR = "ambiguous_selector"
    CAPABILITY_NOT_FOUND = "capability_not_found"
    NO_STRATEGY = "no_strategy"

    # Patching
    PATCH = "patch"

    UNKNOWN = "unknown"


class RampartError(Exception):
    """
    Base class for all Rampart errors.

    Attributes:
        kind: Stable error classification
        component: Name of the offending component (if any)
        phase: Orchestration phase in which the error surfaced (if any)
        directive: Binding directive involved (if any), as a dict
        details: Additional structured context
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        component: str | None = None,
        phase: str | None = None,
        directive: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.component = component
        self.phase = phase
        self.directive = directive
        self.details = dict(details or {})

    def with_phase(self, phase: str) -> RampartError:
        """Attach the phase if it is not already set. Returns self."""
        if self.phase is None:
            self.phase = phase
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serializable view for reports and API responses."""
        return {
            "kind": self.kind.value,
            "error": type(self).__name__,
            "message": self.message,
            "component": self.component,
            "phase": self.phase,
            "directive": self.directive,
            "details": self.details,
        }

    def __str__(self) -> str:
        context = []
        if self.phase:
            context.append(f"phase={self.phase}")
        if self.component:
            context.append(f"component={self.component}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"


class ManifestError(RampartError):
    """A manifest or profile file could not be read or parsed."""

    kind = ErrorKind.MANIFEST


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(RampartError):
    """A configuration layer could not be loaded, parsed or applied."""

    kind = ErrorKind.CONFIGURATION


class UnknownFrameworkError(ConfigurationError):
    """The manifest names a compliance framework with no profile."""

    kind = ErrorKind.UNKNOWN_FRAMEWORK


class MissingProfileSectionError(ConfigurationError):
    """The framework profile has no section for the component type."""

    kind = ErrorKind.MISSING_PROFILE_SECTION


class MalformedProfileError(ConfigurationError):
    """The framework profile (or one of its sections) is structurally invalid."""

    kind = ErrorKind.MALFORMED_PROFILE


class PolicyViolationError(ConfigurationError):
    """A governance override was declared for a protected environment (strict mode)."""

    kind = ErrorKind.POLICY_VIOLATION


# =============================================================================
# Factories & synthesis
# =============================================================================


class UnsupportedFrameworkError(RampartError):
    """No component factory exists for the requested compliance framework."""

    kind = ErrorKind.UNSUPPORTED_FRAMEWORK


class InstantiationError(RampartError):
    """A component could not be instantiated (no creator, invalid spec)."""

    kind = ErrorKind.INSTANTIATION


class SynthesisError(RampartError):
    """A provisioner failed while synthesizing or publishing capabilities."""

    kind = ErrorKind.SYNTHESIS


# =============================================================================
# Binding
# =============================================================================


class BindingResolutionError(RampartError):
    """A binding directive could not be resolved or applied."""

    kind = ErrorKind.BINDING


class TargetNotFoundError(BindingResolutionError):
    """The directive's target (by name or selector) does not exist."""

    kind = ErrorKind.TARGET_NOT_FOUND


class AmbiguousSelectorError(BindingResolutionError):
    """A selector matched more than one component."""

    kind = ErrorKind.AMBIGUOUS_SELECTOR

    def __init__(self, message: str, *, candidates: list[str], **kwargs: Any):
        super().__init__(message, **kwargs)
        self.candidates = list(candidates)
        self.details.setdefault("candidates", self.candidates)


class CapabilityNotFoundError(BindingResolutionError):
    """The resolved target does not publish the requested capability."""

    kind = ErrorKind.CAPABILITY_NOT_FOUND


class NoStrategyError(BindingResolutionError):
    """No registered strategy handles (source type, capability)."""

    kind = ErrorKind.NO_STRATEGY

    def __init__(self, message: str, *, alternatives: list[str], **kwargs: Any):
        super().__init__(message, **kwargs)
        self.alternatives = list(alternatives)
        self.details.setdefault("alternatives", self.alternatives)


# =============================================================================
# Patching
# =============================================================================


class PatchError(RampartError):
    """The post-synthesis patch hook raised."""

    kind = ErrorKind.PATCH


__all__ = [
    "ErrorKind",
    "RampartError",
    "ManifestError",
    "ConfigurationError",
    "UnknownFrameworkError",
    "MissingProfileSectionError",
    "MalformedProfileError",
    "PolicyViolationError",
    "UnsupportedFrameworkError",
    "InstantiationError",
    "SynthesisError",
    "BindingResolutionError",
    "TargetNotFoundError",
    "AmbiguousSelectorError",
    "CapabilityNotFoundError",
    "NoStrategyError",
    "PatchError",
]
