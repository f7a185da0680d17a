"""
Component Contracts.

Protocols and base classes for the component layer. Concrete provisioners
(the code that turns an effective configuration into a deployable
artifact) live outside the core; these define what the orchestrator
requires of them.

Design Principle:
    Protocols define WHAT, provisioners define HOW.
    The orchestrator only ever talks to a provisioner through
    validate_spec / synthesize / get_capabilities / get_construct_handle.
    Any of those may be synchronous or return an awaitable.

Contracts:
    - Provisioner: the external resource provisioner
    - ComponentCreator: knows how to build a provisioner for one type
    - ComponentInstance: runtime pairing of spec, config and provisioner
    - CapabilityMap: read-only, namespaced capability publication
"""

from __future__ import annotations

import inspect
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from rampart.config.resolver import freeze, thaw
from rampart.errors import SynthesisError

if TYPE_CHECKING:
    from rampart.config.resolver import EffectiveConfig
    from rampart.schemas import ComponentSpec

CAPABILITY_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*:[A-Za-z0-9][A-Za-z0-9_.\-]*$")

MAIN_HANDLE = "main"


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it as-is."""
    if inspect.isawaitable(value):
        return await value
    return value


def is_capability_key(key: Any) -> bool:
    """Check a key has the ``"<domain>:<kind>"`` form."""
    return isinstance(key, str) and CAPABILITY_KEY_PATTERN.match(key) is not None


# =============================================================================
# Validation & Context
# =============================================================================


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of ``Provisioner.validate_spec``."""

    valid: bool
    errors: tuple[str, ...] = ()

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def failed(cls, *errors: str) -> ValidationResult:
        return cls(valid=False, errors=tuple(errors))

    @classmethod
    def coerce(cls, value: Any) -> ValidationResult:
        """
        Normalize what a provisioner returned.

        Accepts a ValidationResult, a ``{"valid": ..., "errors": [...]}``
        mapping, or a bare bool.
        """
        if isinstance(value, ValidationResult):
            return value
        if isinstance(value, Mapping):
            return cls(valid=bool(value.get("valid")), errors=tuple(value.get("errors") or ()))
        if isinstance(value, bool):
            return cls(valid=value)
        raise TypeError(f"validate_spec returned unsupported type {type(value).__name__}")


@dataclass(frozen=True)
class ComponentContext:
    """
    Run-scoped context handed to creators and provisioners.

    Attributes:
        service: Service name from the manifest
        environment: Active environment name
        framework: Active compliance framework
        run_id: Orchestration run identifier
        owner: Owning team
        tags: Manifest tags

    Note:
        This is frozen (immutable); one context is shared by every
        component of a run.
    """

    service: str
    environment: str
    framework: str
    run_id: str = ""
    owner: str = ""
    tags: Mapping[str, str] = field(default_factory=dict)


# =============================================================================
# Provisioner Protocol
# =============================================================================


@runtime_checkable
class Provisioner(Protocol):
    """
    Protocol for external resource provisioners.

    Each method may return its value directly or an awaitable.

    Example:
        class QueueProvisioner:
            def __init__(self, spec, config, context):
                self.config = config

            def validate_spec(self, spec):
                return ValidationResult.ok()

            async def synthesize(self, context):
                self._handle = await render_queue(self.config)
                return self._handle

            def get_capabilities(self):
                return {"queue:read": {"url": ...}, "queue:write": {"url": ...}}

            def get_construct_handle(self, name):
                return self._handle if name == "main" else None
    """

    def validate_spec(self, spec: ComponentSpec) -> ValidationResult | Awaitable[ValidationResult]:
        """Validate the spec this provisioner was built for."""
        ...

    def synthesize(self, context: ComponentContext) -> Any:
        """Produce the deployable artifact; returns an artifact handle."""
        ...

    def get_capabilities(self) -> Mapping[str, Any]:
        """Capabilities published after synthesis, keyed "<domain>:<kind>"."""
        ...

    def get_construct_handle(self, name: str) -> Any:
        """Return a named construct handle ("main" by convention)."""
        ...


class BaseProvisioner(ABC):
    """
    Convenience base for provisioners.

    Stores the spec, config and context, keeps construct handles in a
    dict and validates nothing by default.
    """

    def __init__(self, spec: ComponentSpec, config: EffectiveConfig, context: ComponentContext):
        self.spec = spec
        self.config = config
        self.context = context
        self._handles: dict[str, Any] = {}

    def validate_spec(self, spec: ComponentSpec) -> ValidationResult:
        return ValidationResult.ok()

    @abstractmethod
    def synthesize(self, context: ComponentContext) -> Any:
        ...

    @abstractmethod
    def get_capabilities(self) -> Mapping[str, Any]:
        ...

    def register_handle(self, name: str, handle: Any) -> None:
        self._handles[name] = handle

    def get_construct_handle(self, name: str) -> Any:
        return self._handles.get(name)


# =============================================================================
# Component Creators
# =============================================================================


class ComponentCreator(ABC):
    """
    Builds provisioners for one component type.

    Subclasses supply the hardcoded fallback configuration (layer 1 of
    resolution), which must be the safest baseline for the type.

    Attributes:
        deprecated: Emit a warning when a component of this type is used
        deprecation_message: Extra guidance for the warning
    """

    deprecated: bool = False
    deprecation_message: str = ""

    @property
    def name(self) -> str:
        return type(self).__name__

    def fallback_config(self) -> dict[str, Any]:
        """Hardcoded safe defaults. Empty by default."""
        return {}

    @abstractmethod
    def create(self, spec: ComponentSpec, config: EffectiveConfig, context: ComponentContext) -> Provisioner:
        """Build a provisioner for ``spec``."""
        ...


class ProvisionerCreator(ComponentCreator):
    """
    Creator that instantiates a provisioner class (or calls a factory).

    The target is called as ``provisioner_cls(spec, config, context)``.

    Example:
        registry.register("queue", ProvisionerCreator(
            QueueProvisioner,
            fallbacks={"encryption": {"enabled": True}, "public": False},
        ))
    """

    def __init__(
        self,
        provisioner_cls: Callable[..., Any],
        *,
        fallbacks: Mapping[str, Any] | None = None,
        deprecated: bool = False,
        deprecation_message: str = "",
    ):
        if not callable(provisioner_cls):
            raise TypeError("provisioner_cls must be a class or callable")
        self.provisioner_cls = provisioner_cls
        self._fallbacks = thaw(fallbacks or {})
        self.deprecated = deprecated
        self.deprecation_message = deprecation_message

    @property
    def name(self) -> str:
        return getattr(self.provisioner_cls, "__name__", type(self).__name__)

    def fallback_config(self) -> dict[str, Any]:
        return thaw(freeze(self._fallbacks))

    def create(self, spec: ComponentSpec, config: EffectiveConfig, context: ComponentContext) -> Provisioner:
        return self.provisioner_cls(spec, config, context)

    def __repr__(self) -> str:
        return f"<ProvisionerCreator {self.name}>"


# =============================================================================
# Capabilities
# =============================================================================


class CapabilityMap(Mapping[str, Any]):
    """
    Capabilities published by one synthesized component.

    Published entries are frozen at construction. Derived entries may be
    appended (never overwritten) until ``finalize()`` is called at the end
    of the binding phase.

    Raises:
        SynthesisError: On a non-namespaced key, an overwrite, or an
            append after finalization
    """

    def __init__(self, component: str, published: Mapping[str, Any]):
        if not isinstance(published, Mapping):
            raise SynthesisError(
                f"Component '{component}' published capabilities as "
                f"{type(published).__name__}, expected a mapping",
                component=component,
            )
        bad = sorted(str(k) for k in published if not is_capability_key(k))
        if bad:
            raise SynthesisError(
                f"Component '{component}' published non-namespaced capability keys {bad}; "
                f"keys must look like '<domain>:<kind>'",
                component=component,
                details={"keys": bad},
            )
        self.component = component
        self._entries: dict[str, Any] = {k: freeze(v) for k, v in published.items()}
        self._published = tuple(self._entries)
        self._finalized = False

    def __getitem__(self, key: str) -> Any:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"<CapabilityMap {self.component} keys={list(self._entries)}>"

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def published_keys(self) -> list[str]:
        return list(self._published)

    @property
    def derived_keys(self) -> list[str]:
        return [k for k in self._entries if k not in self._published]

    def append(self, key: str, value: Any) -> None:
        """Add a derived capability."""
        if self._finalized:
            raise SynthesisError(
                f"Capability map of '{self.component}' is final; cannot add '{key}'",
                component=self.component,
            )
        if not is_capability_key(key):
            raise SynthesisError(
                f"Derived capability key '{key}' on '{self.component}' is not namespaced",
                component=self.component,
            )
        if key in self._entries:
            raise SynthesisError(
                f"Capability '{key}' already published by '{self.component}'",
                component=self.component,
            )
        self._entries[key] = freeze(value)

    def finalize(self) -> None:
        self._finalized = True

    def to_dict(self) -> dict[str, Any]:
        return {k: thaw(v) for k, v in self._entries.items()}


# =============================================================================
# Component Instance
# =============================================================================


@dataclass
class ComponentInstance:
    """
    A component during one orchestration run.

    Lifecycle:
        created (instantiation) -> synthesized once -> capabilities
        published once -> bindings applied -> discarded with the run.

    Attributes:
        spec: Component as declared
        config: Resolved effective configuration
        provisioner: Provisioner built by the creator
        context: Run context
        creator: Name of the creator that built the provisioner
        artifact: Handle returned by ``synthesize``
        capabilities: Published capabilities (None until published)
        environment: Variables injected by binding strategies
        warnings: Non-fatal issues attached to this component
    """

    spec: ComponentSpec
    config: EffectiveConfig
    provisioner: Provisioner
    context: ComponentContext
    creator: str = ""
    artifact: Any = None
    capabilities: CapabilityMap | None = None
    environment: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    _synthesized: bool = field(default=False, repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def type(self) -> str:
        return self.spec.type

    @property
    def labels(self) -> Mapping[str, str]:
        return self.spec.labels

    @property
    def synthesized(self) -> bool:
        return self._synthesized

    def mark_synthesized(self, artifact: Any) -> None:
        if self._synthesized:
            raise SynthesisError(f"Component '{self.name}' was already synthesized", component=self.name)
        self.artifact = artifact
        self._synthesized = True

    def publish_capabilities(self, published: Mapping[str, Any]) -> CapabilityMap:
        """Publish the capability map. Allowed exactly once, after synthesis."""
        if not self._synthesized:
            raise SynthesisError(
                f"Component '{self.name}' cannot publish capabilities before synthesis",
                component=self.name,
            )
        if self.capabilities is not None:
            raise SynthesisError(
                f"Component '{self.name}' already published its capabilities",
                component=self.name,
            )
        self.capabilities = CapabilityMap(self.name, published)
        return self.capabilities

    def has_capability(self, key: str) -> bool:
        return self.capabilities is not None and key in self.capabilities

    def inject_env(self, name: str, value: Any) -> None:
        """Record an environment variable for the component's runtime."""
        existing = self.environment.get(name)
        if existing is not None and existing != str(value):
            raise ValueError(f"Environment variable '{name}' on '{self.name}' is already set to a different value")
        self.environment[name] = str(value)

    def construct_handle(self, name: str = MAIN_HANDLE) -> Any:
        return self.provisioner.get_construct_handle(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "creator": self.creator,
            "labels": dict(self.labels),
            "config": self.config.to_dict(),
            "config_fingerprint": self.config.fingerprint(),
            "capabilities": self.capabilities.to_dict() if self.capabilities is not None else {},
            "environment": dict(self.environment),
            "warnings": list(self.warnings),
        }
