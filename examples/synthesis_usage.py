"""
Rampart Usage Examples.

Shows how to register a compliance framework, a binding strategy and a
profile, then plan a manifest end to end.

Architecture:
    ┌─────────────────┐      ┌────────────────────────┐      ┌─────────────────┐
    │   Manifest      │ ──▶  │ SynthesisOrchestrator  │ ──▶  │ SynthesisResult │
    │   (service.yml) │      │ (Resolve + Synthesize) │      │ (Plan/Report)   │
    └─────────────────┘      └────────────────────────┘      └─────────────────┘
                                        │
                      ┌─────────────────┼──────────────────┐
                      ▼                 ▼                  ▼
           ┌──────────────────┐ ┌────────────────┐ ┌──────────────────┐
           │ Configuration    │ │ Component      │ │ BindingStrategy  │
           │ Resolver         │ │ FactoryProvider│ │ Registry         │
           └──────────────────┘ └────────────────┘ └──────────────────┘

Provisioners here build plain dicts. A real deployment would build
infrastructure constructs instead.
"""

import asyncio

from rampart.bindings import BindingStrategyRegistry, CapabilityGrant, CapabilityGrantStrategy
from rampart.components import MAIN_HANDLE, BaseProvisioner, ComponentFactoryProvider, ProvisionerCreator
from rampart.config import ConfigurationResolver
from rampart.runtime import MemoryProfileStore, parse_manifest
from rampart.schemas import ComplianceFrameworkProfile
from rampart.synthesis import SynthesisOrchestrator

# =============================================================================
# Provisioners
# =============================================================================


class QueueProvisioner(BaseProvisioner):
    def synthesize(self, context):
        queue = {"name": self.spec.name, **self.config.to_dict()}
        self.register_handle(MAIN_HANDLE, queue)
        return queue

    def get_capabilities(self):
        return {
            "queue:read": {
                "url": f"https://queue.example.com/{self.spec.name}",
                "arn": f"arn:example:queue:{self.spec.name}",
                "region": self.config.get("region", "eu-west-1"),
            }
        }


class WorkerProvisioner(BaseProvisioner):
    def synthesize(self, context):
        worker = {"name": self.spec.name, **self.config.to_dict()}
        self.register_handle(MAIN_HANDLE, worker)
        return worker

    def get_capabilities(self):
        return {"compute:invoke": {"name": self.spec.name}}


MANIFEST = {
    "service": "orders",
    "owner": "team-orders",
    "complianceFramework": "enhanced",
    "components": [
        {"name": "jobs", "type": "queue"},
        {
            "name": "processor",
            "type": "worker",
            "binds": [{"to": "jobs", "capability": "queue:read", "access": "read"}],
        },
    ],
    "environments": {
        "dev": {"defaults": {"replicas": 1}},
        "prod": {"defaults": {"replicas": 3}},
    },
}


def build_orchestrator():
    """Wire the three registries into an orchestrator."""
    # 1. Profiles hold the framework-mandated defaults per component type
    profiles = MemoryProfileStore(
        [
            ComplianceFrameworkProfile(name="baseline", sections={"queue": {}, "worker": {}}),
            ComplianceFrameworkProfile(
                name="enhanced",
                sections={
                    "queue": {"encryption": {"enabled": True, "keyType": "customer"}},
                    "worker": {"tracing": True},
                },
            ),
        ]
    )

    # 2. Frameworks decide which provisioner builds each component type
    factories = ComponentFactoryProvider()
    factories.register_framework(
        "baseline",
        creators={
            "queue": ProvisionerCreator(QueueProvisioner, fallbacks={"retentionDays": 4}),
            "worker": ProvisionerCreator(WorkerProvisioner, fallbacks={"memory": 512}),
        },
    )
    factories.register_framework("enhanced", extends="baseline")

    # 3. Strategies turn a binding directive into grants and env vars
    bindings = BindingStrategyRegistry(
        [
            CapabilityGrantStrategy(
                "worker-to-queue",
                source_types=["worker"],
                grants={
                    "queue:read": CapabilityGrant(
                        target_type="queue",
                        actions={"read": ("queue:Receive", "queue:Delete")},
                        env={"url": "QUEUE_URL"},
                        resource_field="arn",
                    )
                },
            )
        ]
    )

    return SynthesisOrchestrator(
        resolver=ConfigurationResolver(profiles),
        factory_provider=factories,
        binding_registry=bindings,
    )


# =============================================================================
# Example 1: Plan a manifest
# =============================================================================


async def example_plan():
    orchestrator = build_orchestrator()
    manifest = parse_manifest(MANIFEST)

    result = await orchestrator.run(manifest, "dev")

    print(result.render_report())
    print(f"processor env: {dict(result.get_component('processor').environment)}")

    return result


# =============================================================================
# Example 2: Explain where a value came from
# =============================================================================


async def example_explain():
    orchestrator = build_orchestrator()
    result = await orchestrator.run(parse_manifest(MANIFEST), "prod")

    config = result.get_component("jobs").config
    for path in ("retentionDays", "encryption.keyType", "replicas"):
        print(f"{path} = {config.get_path(path)!r} (from {config.explain(path)})")


# =============================================================================
# Example 3: Patch constructs after binding
# =============================================================================


async def example_patch_hook():
    def apply_patches(context):
        context.handle("jobs")["deadLetter"] = True

    orchestrator = build_orchestrator()
    result = await orchestrator.run(parse_manifest(MANIFEST), "dev", patch_hook=apply_patches)

    print(f"patches applied: {result.patches_applied}")
    print(f"jobs construct: {result.get_component('jobs').construct_handle()}")


# =============================================================================
# Main: Run Examples
# =============================================================================


async def main():
    """Run examples."""
    print("=" * 60)
    print("Example 1: Plan a manifest")
    print("=" * 60)
    await example_plan()

    print("\n" + "=" * 60)
    print("Example 2: Explain configuration")
    print("=" * 60)
    await example_explain()

    print("\n" + "=" * 60)
    print("Example 3: Patch hook")
    print("=" * 60)
    await example_patch_hook()


if __name__ == "__main__":
    asyncio.run(main())
