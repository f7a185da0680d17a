"""
Configuration Resolver.

Produces one immutable EffectiveConfig per component by merging five
precedence layers, lowest first (later layers win):

    1. fallback     hardcoded safe defaults from the component's creator
    2. framework    the compliance framework profile's section for the type
    3. environment  environments.<env>.components.<name> from the manifest
    4. manifest     the component's own ``config`` block
    5. policy       ``policy.overrides``, only outside protected environments

After merging, ``${env:<key>}`` and ``${envIs:<env>}`` tokens are resolved
against the active environment.

Design Principle:
    Hard failures in layers 2-5 (unknown framework, missing or malformed
    profile section, policy violation in strict mode) always abort. Only
    layer 1 may be empty.

Usage:
    resolver = ConfigurationResolver(profiles=MemoryProfileStore([baseline]))

    config = resolver.resolve(
        spec,
        "baseline",
        manifest.environment_profile("dev"),
        fallbacks=creator.fallback_config(),
    )

    config["storage"]["size"]        # 50
    config.explain("storage.size")   # "manifest"
    config.fingerprint()             # stable SHA-256
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

from rampart.config.interpolation import Interpolator, UnresolvedToken, find_unresolved
from rampart.config.merge import Provenance, get_path, merge_layers
from rampart.errors import (
    ConfigurationError,
    MalformedProfileError,
    MissingProfileSectionError,
    PolicyViolationError,
    UnknownFrameworkError,
)
from rampart.schemas import ComplianceFrameworkProfile, ComponentSpec, EnvironmentProfile

logger = logging.getLogger(__name__)


class ConfigLayer(str, Enum):
    """Configuration layers in precedence order (lowest first)."""

    FALLBACK = "fallback"
    FRAMEWORK = "framework"
    ENVIRONMENT = "environment"
    MANIFEST = "manifest"
    POLICY = "policy"


LAYER_ORDER: tuple[str, ...] = tuple(layer.value for layer in ConfigLayer)


class ProfileStore(Protocol):
    """
    Source of compliance framework profiles.

    Lookups are synchronous; the store is read-only during a run.
    """

    def get(self, name: str) -> ComplianceFrameworkProfile | None:
        """Get a profile by framework name, or None if unknown."""
        ...

    def has_section(self, name: str, component_type: str) -> bool:
        """Check whether the framework has defaults for a component type."""
        ...

    def list_names(self) -> list[str]:
        """List known framework names."""
        ...


# =============================================================================
# Freezing
# =============================================================================


def freeze(value: Any) -> Any:
    """Deep-freeze: mappings become read-only proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze: plain, mutable dicts and lists."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, UnresolvedToken):
        return value.to_dict()
    return str(value)


def canonical_json(value: Any) -> str:
    """Canonical JSON: sorted keys, compact separators, UTF-8."""
    return json.dumps(
        thaw(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


# =============================================================================
# Effective configuration
# =============================================================================


@dataclass(frozen=True)
class ConfigConflict:
    """A leaf written by more than one layer."""

    path: str
    layers: tuple[str, ...]
    winner: str


class EffectiveConfig(Mapping[str, Any]):
    """
    Merged, deeply frozen configuration for one component.

    Behaves as a read-only mapping. Nested mappings are read-only proxies
    and lists are tuples; use ``to_dict()`` for a mutable copy.

    Attributes:
        component: Component name
        component_type: Component type
        framework: Compliance framework the config was resolved against
        environment: Active environment name
        provenance: Dotted leaf path -> contributing layer
        layers: Layers that contributed at least one leaf, in precedence order
        warnings: Non-fatal issues found during resolution
    """

    def __init__(
        self,
        *,
        component: str,
        component_type: str,
        framework: str,
        environment: str,
        values: dict[str, Any],
        provenance: dict[str, str],
        history: dict[str, list[str]] | None = None,
        warnings: list[str] | None = None,
    ):
        self._values = freeze(values)
        self.component = component
        self.component_type = component_type
        self.framework = framework
        self.environment = environment
        self.provenance: Mapping[str, str] = MappingProxyType(dict(provenance))
        self._history = {k: tuple(v) for k, v in (history or {}).items()}
        owners = set(self.provenance.values())
        self.layers: tuple[str, ...] = tuple(name for name in LAYER_ORDER if name in owners)
        self.warnings: tuple[str, ...] = tuple(warnings or ())

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EffectiveConfig):
            return self.canonical_json() == other.canonical_json()
        if isinstance(other, Mapping):
            return self.to_dict() == thaw(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.fingerprint())

    def __repr__(self) -> str:
        return (
            f"EffectiveConfig(component={self.component!r}, "
            f"layers={list(self.layers)}, keys={list(self._values)})"
        )

    def get_path(self, path: str, default: Any = None) -> Any:
        """Read a dotted path, e.g. ``config.get_path("storage.size")``."""
        try:
            return get_path(self._values, path)
        except KeyError:
            return default

    def explain(self, path: str) -> str | None:
        """
        Name the layer that contributed a value.

        For a leaf, returns its layer. For a subtree, returns the highest
        layer among its leaves. Returns None for an unknown path.
        """
        if path in self.provenance:
            return self.provenance[path]
        prefix = path + "."
        owners = {layer for key, layer in self.provenance.items() if key.startswith(prefix)}
        if not owners:
            return None
        return max(owners, key=LAYER_ORDER.index)

    def conflicts(self) -> list[ConfigConflict]:
        """List leaves defined by more than one layer, with the winning layer."""
        result = []
        for path in sorted(self.provenance):
            layers = self._history.get(path, ())
            if len(layers) > 1:
                result.append(ConfigConflict(path=path, layers=layers, winner=self.provenance[path]))
        return result

    def unresolved_tokens(self) -> list[tuple[str, UnresolvedToken]]:
        return find_unresolved(self._values)

    def to_dict(self) -> dict[str, Any]:
        """Mutable deep copy of the values."""
        return thaw(self._values)

    def canonical_json(self) -> str:
        return canonical_json(self._values)

    def fingerprint(self) -> str:
        """SHA-256 of the canonical JSON of the values."""
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()


# =============================================================================
# Resolver
# =============================================================================


class ConfigurationResolver:
    """
    Merges the five configuration layers for a component.

    The resolver holds no per-run state and can be shared across
    concurrent runs.

    Args:
        profiles: Profile store used to look up frameworks by name
        strict_policy: Fail (instead of ignoring with a warning) when a
            policy override targets a protected environment
    """

    def __init__(self, profiles: ProfileStore | None = None, *, strict_policy: bool = False):
        self._profiles = profiles
        self.strict_policy = strict_policy

    def known_frameworks(self) -> list[str]:
        if self._profiles is None:
            return []
        return sorted(self._profiles.list_names())

    def load_framework(self, name: str) -> ComplianceFrameworkProfile:
        """
        Look up a compliance framework profile by name.

        Raises:
            UnknownFrameworkError: If no profile exists for the name
        """
        profile = self._profiles.get(name) if self._profiles is not None else None
        if profile is None:
            known = self.known_frameworks()
            raise UnknownFrameworkError(
                f"Unknown compliance framework '{name}'. Known frameworks: {known}",
                details={"framework": name, "known": known},
            )
        return profile

    def resolve(
        self,
        spec: ComponentSpec,
        framework_profile: ComplianceFrameworkProfile | str,
        environment_profile: EnvironmentProfile,
        *,
        fallbacks: Mapping[str, Any] | None = None,
    ) -> EffectiveConfig:
        """
        Resolve the effective configuration for one component.

        Args:
            spec: Component as declared in the manifest
            framework_profile: Loaded profile, or a framework name to look up
            environment_profile: Active environment
            fallbacks: Hardcoded safe defaults from the component's creator

        Returns:
            Frozen EffectiveConfig with provenance

        Raises:
            UnknownFrameworkError: Framework name not in the profile store
            MissingProfileSectionError: No section for the component type
            MalformedProfileError: Section is not a mapping
            PolicyViolationError: Policy override in a protected environment
                (strict mode only)
            ConfigurationError: A layer could not be merged
        """
        if isinstance(framework_profile, str):
            framework_profile = self.load_framework(framework_profile)

        framework = framework_profile.name
        warnings: list[str] = []

        if not framework_profile.has_section(spec.type):
            raise MissingProfileSectionError(
                f"Compliance framework '{framework}' has no section for component type "
                f"'{spec.type}' (component '{spec.name}')",
                component=spec.name,
                details={"framework": framework, "component_type": spec.type},
            )

        try:
            section = framework_profile.section_for(spec.type)
        except MalformedProfileError as e:
            raise MalformedProfileError(
                e.message, component=spec.name, details={**e.details, "framework": framework}
            ) from e

        layers: list[tuple[str, dict[str, Any]]] = [
            (ConfigLayer.FALLBACK.value, dict(fallbacks or {})),
            (ConfigLayer.FRAMEWORK.value, section),
            (ConfigLayer.ENVIRONMENT.value, environment_profile.config_for(spec.name)),
            (ConfigLayer.MANIFEST.value, spec.config),
        ]

        policy = self._policy_layer(spec, environment_profile, warnings)
        if policy is not None:
            layers.append((ConfigLayer.POLICY.value, policy))

        provenance = Provenance()
        try:
            merged = merge_layers(layers, provenance)
        except TypeError as e:
            raise ConfigurationError(
                f"Configuration for '{spec.name}' could not be merged: {e}",
                component=spec.name,
                details={"framework": framework, "environment": environment_profile.name},
            ) from e

        interpolator = Interpolator(
            environment=environment_profile.name,
            defaults=dict(environment_profile.defaults),
        )
        values = interpolator.resolve(merged)
        for message in interpolator.warnings:
            warnings.append(f"{spec.name}: {message}")
            logger.warning(f"[resolver] {spec.name}: {message}")

        config = EffectiveConfig(
            component=spec.name,
            component_type=spec.type,
            framework=framework,
            environment=environment_profile.name,
            values=values,
            provenance=provenance.winners,
            history=provenance.history,
            warnings=warnings,
        )
        logger.debug(
            f"[resolver] Resolved '{spec.name}' ({spec.type}) "
            f"layers={list(config.layers)} fingerprint={config.fingerprint()[:12]}"
        )
        return config

    def _policy_layer(
        self,
        spec: ComponentSpec,
        environment: EnvironmentProfile,
        warnings: list[str],
    ) -> dict[str, Any] | None:
        if spec.policy is None or not spec.policy.overrides:
            return None

        if environment.protected:
            message = (
                f"policy override on '{spec.name}' not applied: "
                f"environment '{environment.name}' is protected"
            )
            if self.strict_policy:
                raise PolicyViolationError(
                    message,
                    component=spec.name,
                    details={
                        "environment": environment.name,
                        "overrides": sorted(spec.policy.overrides),
                    },
                )
            warnings.append(message)
            logger.warning(f"[resolver] {message}")
            return None

        if not spec.policy.justification:
            message = f"policy override on '{spec.name}' has no justification"
            warnings.append(message)
            logger.warning(f"[resolver] {message}")

        return dict(spec.policy.overrides)
