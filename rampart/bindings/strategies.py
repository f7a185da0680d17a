"""
Reference Binding Strategy.

CapabilityGrantStrategy wires a source to a target capability from data
alone: which access levels map to which actions, which capability fields
become environment variables on the source, and which field names the
resource being granted.

Example:
    strategy = CapabilityGrantStrategy(
        "worker-to-queue",
        source_types=["worker", "api"],
        grants={
            "queue:read": CapabilityGrant(
                target_type="queue",
                actions={
                    "read": ("queue:Receive", "queue:Delete"),
                    "readwrite": ("queue:Receive", "queue:Delete", "queue:Send"),
                    "admin": ("queue:*",),
                },
                env={"url": "QUEUE_URL", "arn": "QUEUE_ARN"},
                resource_field="arn",
            ),
        },
    )

    # A directive may rename injected variables by capability field:
    #   binds: [{to: jobs, capability: "queue:read", access: read,
    #            env: {url: JOBS_QUEUE_URL}}]
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from rampart.bindings.base import BindingContext, BindingStrategy, CompatibilityEntry
from rampart.errors import BindingResolutionError

logger = logging.getLogger(__name__)

BASELINE_FRAMEWORK = "baseline"


@dataclass(frozen=True)
class CapabilityGrant:
    """
    How to bind one capability.

    Attributes:
        actions: Access level -> actions granted; levels absent here are rejected
        env: Capability field -> default environment variable name
        resource_field: Capability field naming the granted resource
        target_type: Component type that usually publishes the capability
        description: Human-readable description
    """

    actions: Mapping[str, tuple[str, ...]]
    env: Mapping[str, str] = field(default_factory=dict)
    resource_field: str | None = None
    target_type: str | None = None
    description: str = ""


class CapabilityGrantStrategy(BindingStrategy):
    """
    Data-driven strategy granting access to target capabilities.

    Conditions on every grant:
        - secure transport is always required
        - outside the baseline framework, the grant is pinned to a region
          (``options.region`` on the directive, else the capability's
          ``region`` field); a missing region is a binding error
    """

    def __init__(
        self,
        name: str,
        *,
        source_types: Iterable[str],
        grants: Mapping[str, CapabilityGrant],
    ):
        self.name = name
        super().__init__()
        self.source_types = tuple(source_types)
        self.grants = dict(grants)

    def get_compatibility_matrix(self) -> list[CompatibilityEntry]:
        return [
            CompatibilityEntry(
                source_type=source_type,
                capability=capability,
                target_type=grant.target_type,
                access=tuple(grant.actions),
                description=grant.description,
            )
            for source_type in self.source_types
            for capability, grant in self.grants.items()
        ]

    def bind(self, context: BindingContext) -> dict[str, Any]:
        grant = self.grants[context.capability]
        directive = context.directive

        actions = grant.actions.get(context.access)
        if actions is None:
            raise BindingResolutionError(
                f"Access '{context.access}' is not supported for '{context.capability}'. "
                f"Supported: {list(grant.actions)}",
                component=context.source.name,
                directive=directive.to_dict(),
            )

        data = context.capability_data
        if not isinstance(data, Mapping):
            data = {}

        environment: dict[str, str] = {}
        for capability_field, default_name in grant.env.items():
            if capability_field not in data:
                raise BindingResolutionError(
                    f"Capability '{context.capability}' on '{context.target.name}' "
                    f"has no field '{capability_field}'",
                    component=context.source.name,
                    directive=directive.to_dict(),
                )
            env_name = directive.env.get(capability_field, default_name)
            context.source.inject_env(env_name, data[capability_field])
            environment[env_name] = str(data[capability_field])

        resources = []
        if grant.resource_field is not None and grant.resource_field in data:
            resources.append(data[grant.resource_field])

        return {
            "actions": list(actions),
            "resources": resources,
            "environment": environment,
            "conditions": self._conditions(context, data),
        }

    def _conditions(self, context: BindingContext, data: Mapping[str, Any]) -> dict[str, Any]:
        conditions: dict[str, Any] = {"secure_transport": True}
        if context.framework == BASELINE_FRAMEWORK:
            return conditions

        region = context.directive.options.get("region", data.get("region"))
        if not region:
            raise BindingResolutionError(
                f"Framework '{context.framework}' requires a region for "
                f"'{context.source.name}' -> '{context.target.name}'; set options.region "
                f"or publish a region on '{context.capability}'",
                component=context.source.name,
                directive=context.directive.to_dict(),
            )
        conditions["region"] = region
        logger.debug(f"[grant_strategy] {self.name}: region pinned to {region} ({context.framework})")
        return conditions
