"""
Manifest Schema.

Pydantic models for the parsed manifest: the components a service declares,
their binding directives, and the per-environment blocks that feed the
environment layer of configuration resolution.

Design Principle:
    The manifest is already schema-validated by the time it reaches the
    orchestrator. These models only enforce the structural invariants the
    core depends on (unique names, to/select exclusivity, access levels).

Usage:
    manifest = Manifest.model_validate({
        "service": "orders",
        "complianceFramework": "baseline",
        "components": [
            {"name": "api", "type": "worker", "binds": [
                {"to": "jobs", "capability": "queue:read", "access": "read"},
            ]},
            {"name": "jobs", "type": "queue"},
        ],
    })

    spec = manifest.get_component("api")
    env = manifest.environment_profile("dev")
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

AccessLevel = Literal["read", "write", "readwrite", "admin"]

ACCESS_LEVELS: tuple[str, ...] = ("read", "write", "readwrite", "admin")


class Selector(BaseModel):
    """
    Dynamic binding target selection.

    Matches every synthesized component of ``type`` whose labels contain
    every key/value pair of ``with_labels`` (exact match).
    """

    type: str = Field(..., description="Component type to match")
    with_labels: dict[str, str] | None = Field(
        default=None,
        alias="withLabels",
        description="Labels that must all match exactly",
    )

    class Config:
        populate_by_name = True
        frozen = True

    def describe(self) -> str:
        """Human-readable form used in error messages."""
        if not self.with_labels:
            return f"type={self.type}"
        labels = ", ".join(f"{k}={v}" for k, v in sorted(self.with_labels.items()))
        return f"type={self.type}, labels={{{labels}}}"


class BindingDirective(BaseModel):
    """
    Request for a component to connect to another component's capability.

    Exactly one of ``to`` (target by name) or ``select`` (target by
    selector) must be set.

    Attributes:
        to: Target component name
        select: Selector for dynamic resolution
        capability: Capability key the target must publish ("<domain>:<kind>")
        access: Requested access level
        env: Environment variable name overrides for the strategy
        options: Strategy-specific options
    """

    to: str | None = Field(default=None, description="Target component name")
    select: Selector | None = Field(default=None, description="Target selector")
    capability: str = Field(..., description="Capability key on the target")
    access: AccessLevel = Field(..., description="Requested access level")
    env: dict[str, str] = Field(default_factory=dict, description="Env var name overrides")
    options: dict[str, Any] = Field(default_factory=dict, description="Strategy options")

    class Config:
        populate_by_name = True
        frozen = True

    @model_validator(mode="after")
    def _exactly_one_target(self) -> BindingDirective:
        if (self.to is None) == (self.select is None):
            raise ValueError("binding directive must set exactly one of 'to' or 'select'")
        return self

    def describe_target(self) -> str:
        if self.to is not None:
            return self.to
        return f"selector({self.select.describe()})"  # type: ignore[union-attr]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PolicyBlock(BaseModel):
    """Governance escape hatch: overrides applied last, outside protected environments."""

    overrides: dict[str, Any] = Field(default_factory=dict)
    justification: str | None = Field(default=None, description="Why the override exists")

    class Config:
        frozen = True


class ComponentSpec(BaseModel):
    """
    A component as declared in the manifest.

    Attributes:
        name: Unique name within the manifest
        type: Component type (maps to a registered creator)
        config: Partial configuration (manifest override layer)
        binds: Ordered binding directives
        labels: Labels used by selectors
        policy: Optional governance overrides
    """

    name: str = Field(..., min_length=1, description="Unique component name")
    type: str = Field(..., min_length=1, description="Registered component type")
    config: dict[str, Any] = Field(default_factory=dict)
    binds: list[BindingDirective] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    policy: PolicyBlock | None = None

    class Config:
        populate_by_name = True
        frozen = True

    def matches(self, selector: Selector) -> bool:
        """Check whether this component satisfies a selector."""
        if self.type != selector.type:
            return False
        for key, value in (selector.with_labels or {}).items():
            if self.labels.get(key) != value:
                return False
        return True


class EnvironmentBlock(BaseModel):
    """
    Manifest block for one deployment environment.

    Attributes:
        defaults: Values that ``${env:<key>}`` tokens resolve against
        components: Per-component configuration for this environment
        protected: Force (or clear) protection; None defers to settings
    """

    defaults: dict[str, Any] = Field(default_factory=dict)
    components: dict[str, dict[str, Any]] = Field(default_factory=dict)
    protected: bool | None = None

    class Config:
        frozen = True


class EnvironmentProfile(BaseModel):
    """The active environment as seen by the configuration resolver."""

    name: str
    defaults: dict[str, Any] = Field(default_factory=dict)
    components: dict[str, dict[str, Any]] = Field(default_factory=dict)
    protected: bool = False

    class Config:
        frozen = True

    def config_for(self, component_name: str) -> dict[str, Any]:
        return self.components.get(component_name, {})


DEFAULT_PROTECTED_ENVIRONMENTS: frozenset[str] = frozenset({"prod", "production"})


class Manifest(BaseModel):
    """
    A parsed, schema-validated manifest.

    Attributes:
        service: Service name
        owner: Owning team
        compliance_framework: Compliance framework profile name
        components: Declared components in declaration order
        environments: Per-environment blocks
        tags: Free-form tags propagated to run metadata
    """

    service: str = Field(..., min_length=1)
    owner: str = Field(default="")
    compliance_framework: str = Field(..., alias="complianceFramework")
    components: list[ComponentSpec] = Field(default_factory=list)
    environments: dict[str, EnvironmentBlock] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)

    class Config:
        populate_by_name = True
        frozen = True

    @model_validator(mode="after")
    def _unique_component_names(self) -> Manifest:
        seen: set[str] = set()
        duplicates: list[str] = []
        for spec in self.components:
            if spec.name in seen and spec.name not in duplicates:
                duplicates.append(spec.name)
            seen.add(spec.name)
        if duplicates:
            raise ValueError(f"duplicate component names: {duplicates}")
        return self

    @property
    def component_names(self) -> list[str]:
        return [spec.name for spec in self.components]

    def get_component(self, name: str) -> ComponentSpec | None:
        for spec in self.components:
            if spec.name == name:
                return spec
        return None

    def environment_profile(
        self,
        name: str,
        protected_environments: frozenset[str] | set[str] = DEFAULT_PROTECTED_ENVIRONMENTS,
    ) -> EnvironmentProfile:
        """
        Build the environment profile for the active environment.

        An environment absent from the manifest yields an empty profile.
        An explicit ``protected`` flag on the block wins over the
        platform-wide list of protected environments.
        """
        block = self.environments.get(name)
        if block is None:
            return EnvironmentProfile(name=name, protected=name in protected_environments)

        protected = block.protected
        if protected is None:
            protected = name in protected_environments

        return EnvironmentProfile(
            name=name,
            defaults=block.defaults,
            components=block.components,
            protected=protected,
        )
