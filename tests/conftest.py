"""
Pytest configuration and fixtures for Rampart tests.

Fake provisioners stand in for real resource provisioners: they record
their effective configuration, expose a mutable construct as the "main"
handle and publish capabilities derived from their name.
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Add the repository root to path for imports
# This allows `from rampart.config import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from rampart.bindings import BindingStrategyRegistry, CapabilityGrant, CapabilityGrantStrategy  # noqa: E402
from rampart.components import (  # noqa: E402
    MAIN_HANDLE,
    BaseProvisioner,
    ComponentFactoryProvider,
    ProvisionerCreator,
    ValidationResult,
)
from rampart.config import ConfigurationResolver  # noqa: E402
from rampart.observability import InMemoryAuditRepository, SynthesisMetrics  # noqa: E402
from rampart.runtime import MemoryProfileStore  # noqa: E402
from rampart.schemas import ComplianceFrameworkProfile, Manifest  # noqa: E402
from rampart.synthesis import SynthesisOrchestrator  # noqa: E402

# =============================================================================
# Fake provisioners
# =============================================================================


class Construct:
    """Mutable stand-in for a deployable construct."""

    def __init__(self, name: str, props: dict[str, Any]):
        self.name = name
        self.props = props


class FakeProvisioner(BaseProvisioner):
    """Synthesizes a Construct from the effective config."""

    def synthesize(self, context):
        construct = Construct(self.spec.name, self.config.to_dict())
        self.register_handle(MAIN_HANDLE, construct)
        return construct

    def get_capabilities(self):
        return {}


class QueueProvisioner(FakeProvisioner):
    def get_capabilities(self):
        name = self.spec.name
        data = {
            "url": f"https://queue.local/{name}",
            "arn": f"arn:queue:{name}",
            "region": self.config.get("region", "us-east-1"),
        }
        return {"queue:read": data}


class BucketProvisioner(FakeProvisioner):
    """Rejects public buckets."""

    def validate_spec(self, spec):
        if self.config.get("public"):
            return ValidationResult.failed("public access is not allowed")
        return ValidationResult.ok()

    def get_capabilities(self):
        name = self.spec.name
        data = {"bucket": name, "arn": f"arn:bucket:{name}", "region": "eu-west-1"}
        return {"storage:read": data, "storage:write": data}


class WorkerProvisioner(FakeProvisioner):
    def get_capabilities(self):
        return {"compute:invoke": {"name": self.spec.name}}


QUEUE_FALLBACKS = {
    "encryption": {"enabled": True, "keyType": "managed"},
    "retentionDays": 4,
    "public": False,
}

BUCKET_FALLBACKS = {
    "encryption": {"enabled": True},
    "public": False,
    "storage": {"size": 20, "type": "standard"},
}

WORKER_FALLBACKS = {
    "memory": 512,
    "tracing": False,
}


# =============================================================================
# Profiles
# =============================================================================


@pytest.fixture
def baseline_profile() -> ComplianceFrameworkProfile:
    return ComplianceFrameworkProfile(
        name="baseline",
        version="2024.1",
        sections={
            "queue": {"retentionDays": 7},
            "bucket": {"versioning": False},
            "worker": {"timeout": 30},
        },
    )


@pytest.fixture
def enhanced_profile() -> ComplianceFrameworkProfile:
    return ComplianceFrameworkProfile(
        name="enhanced",
        version="2024.1",
        sections={
            "queue": {"retentionDays": 14, "encryption": {"keyType": "customer"}},
            "bucket": {"versioning": True},
            "worker": {"timeout": 30, "tracing": True},
        },
    )


@pytest.fixture
def profile_store(baseline_profile, enhanced_profile) -> MemoryProfileStore:
    return MemoryProfileStore([baseline_profile, enhanced_profile])


@pytest.fixture
def resolver(profile_store) -> ConfigurationResolver:
    return ConfigurationResolver(profile_store)


# =============================================================================
# Factories & bindings
# =============================================================================


@pytest.fixture
def factory_provider() -> ComponentFactoryProvider:
    provider = ComponentFactoryProvider()
    provider.register_framework(
        "baseline",
        creators={
            "queue": ProvisionerCreator(QueueProvisioner, fallbacks=QUEUE_FALLBACKS),
            "bucket": ProvisionerCreator(BucketProvisioner, fallbacks=BUCKET_FALLBACKS),
            "worker": ProvisionerCreator(WorkerProvisioner, fallbacks=WORKER_FALLBACKS),
        },
    )
    provider.register_framework("enhanced", extends="baseline")
    return provider


@pytest.fixture
def queue_strategy() -> CapabilityGrantStrategy:
    return CapabilityGrantStrategy(
        "worker-to-queue",
        source_types=["worker"],
        grants={
            "queue:read": CapabilityGrant(
                target_type="queue",
                actions={
                    "read": ("queue:Receive", "queue:Delete"),
                    "admin": ("queue:*",),
                },
                env={"url": "QUEUE_URL"},
                resource_field="arn",
            ),
        },
    )


@pytest.fixture
def storage_strategy() -> CapabilityGrantStrategy:
    return CapabilityGrantStrategy(
        "worker-to-storage",
        source_types=["worker"],
        grants={
            "storage:read": CapabilityGrant(
                target_type="bucket",
                actions={"read": ("storage:Get", "storage:List")},
                env={"bucket": "BUCKET_NAME"},
                resource_field="arn",
            ),
            "storage:write": CapabilityGrant(
                target_type="bucket",
                actions={"write": ("storage:Put",), "readwrite": ("storage:Get", "storage:Put")},
                env={"bucket": "BUCKET_NAME"},
                resource_field="arn",
            ),
        },
    )


@pytest.fixture
def binding_registry(queue_strategy, storage_strategy) -> BindingStrategyRegistry:
    return BindingStrategyRegistry([queue_strategy, storage_strategy])


@pytest.fixture
def metrics() -> SynthesisMetrics:
    return SynthesisMetrics()


@pytest.fixture
def audit() -> InMemoryAuditRepository:
    return InMemoryAuditRepository()


@pytest.fixture
def orchestrator(resolver, factory_provider, binding_registry, metrics, audit) -> SynthesisOrchestrator:
    return SynthesisOrchestrator(
        resolver=resolver,
        factory_provider=factory_provider,
        binding_registry=binding_registry,
        metrics=metrics,
        audit=audit,
    )


# =============================================================================
# Manifests
# =============================================================================


@pytest.fixture
def manifest_data() -> dict[str, Any]:
    """A small service: a worker reading a queue and writing a bucket."""
    return {
        "service": "orders",
        "owner": "team-orders",
        "complianceFramework": "baseline",
        "tags": {"cost-center": "42"},
        "components": [
            {"name": "jobs", "type": "queue"},
            {"name": "assets", "type": "bucket", "config": {"storage": {"size": 50}}},
            {
                "name": "processor",
                "type": "worker",
                "binds": [
                    {"to": "jobs", "capability": "queue:read", "access": "read"},
                    {
                        "select": {"type": "bucket"},
                        "capability": "storage:write",
                        "access": "write",
                    },
                ],
            },
        ],
        "environments": {
            "dev": {
                "defaults": {"replicas": 1, "logLevel": "debug"},
                "components": {"processor": {"memory": 1024}},
            },
            "prod": {
                "defaults": {"replicas": 3, "logLevel": "info"},
            },
        },
    }


@pytest.fixture
def manifest(manifest_data) -> Manifest:
    return Manifest.model_validate(manifest_data)
