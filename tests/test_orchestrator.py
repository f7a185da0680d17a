"""
Tests for the SynthesisOrchestrator.

End-to-end runs over fake provisioners: phase ordering, binding
resolution, patching, failure annotation and cancellation.
"""

import asyncio
import json

import pytest

from rampart.components import ProvisionerCreator
from rampart.errors import (
    AmbiguousSelectorError,
    CapabilityNotFoundError,
    ConfigurationError,
    ErrorKind,
    InstantiationError,
    NoStrategyError,
    PatchError,
    SynthesisError,
    TargetNotFoundError,
    UnknownFrameworkError,
    UnsupportedFrameworkError,
)
from rampart.schemas import ComplianceFrameworkProfile, Manifest
from rampart.synthesis import RunState

from conftest import Construct, FakeProvisioner, QueueProvisioner


def build(data, **changes) -> Manifest:
    return Manifest.model_validate({**data, **changes})


class ExplodingProvisioner(FakeProvisioner):
    def synthesize(self, context):
        raise RuntimeError("stack limit reached")


class BadCapabilityProvisioner(FakeProvisioner):
    def get_capabilities(self):
        return {"url": "https://example"}


class SlowProvisioner(FakeProvisioner):
    async def synthesize(self, context):
        await asyncio.sleep(10)


class CancellingProvisioner(FakeProvisioner):
    def synthesize(self, context):
        raise asyncio.CancelledError()


class AsyncQueueProvisioner(QueueProvisioner):
    """Every provisioner entry point is a coroutine."""

    async def validate_spec(self, spec):
        return {"valid": True, "errors": []}

    async def synthesize(self, context):
        await asyncio.sleep(0)
        return super().synthesize(context)

    async def get_capabilities(self):
        return super().get_capabilities()


class AsyncHandleProvisioner(QueueProvisioner):
    """Hands out construct handles through a coroutine."""

    async def get_construct_handle(self, name):
        await asyncio.sleep(0)
        return self._handles.get(name)


class UnkeyedCapabilityProvisioner(FakeProvisioner):
    def get_capabilities(self):
        raise ConfigurationError("encryption key alias is not configured", details={"setting": "kmsAlias"})


class CountingProvisioner(FakeProvisioner):
    created = 0

    def __init__(self, spec, config, context):
        super().__init__(spec, config, context)
        CountingProvisioner.created += 1


@pytest.fixture
def add_framework(factory_provider, profile_store, baseline_profile):
    """Register a framework extending baseline with extra component types."""

    def add(name, **creators):
        factory_provider.register_framework(name, extends="baseline", creators=creators)
        sections = {**baseline_profile.sections, **{t: {} for t in creators}}
        profile_store.add(ComplianceFrameworkProfile(name=name, sections=sections))

    return add


# =============================================================================
# Successful Runs
# =============================================================================


class TestSuccessfulRun:
    """A manifest runs through every phase to an assembled result."""

    @pytest.mark.asyncio
    async def test_full_run(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")

        assert result.success
        assert result.component_names == ["jobs", "assets", "processor"]
        assert result.framework == "baseline"
        assert [(b.source, b.target, b.capability) for b in result.bindings] == [
            ("processor", "jobs", "queue:read"),
            ("processor", "assets", "storage:write"),
        ]
        assert [b.strategy for b in result.bindings] == ["worker-to-queue", "worker-to-storage"]

    @pytest.mark.asyncio
    async def test_layers_reach_provisioners(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")

        processor = result.get_component("processor")
        assert processor.config["memory"] == 1024
        assert processor.config.explain("memory") == "environment"
        assert result.get_component("assets").config["storage"] == {"size": 50, "type": "standard"}

    @pytest.mark.asyncio
    async def test_binding_injects_environment(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")

        assert result.get_component("processor").environment == {
            "QUEUE_URL": "https://queue.local/jobs",
            "BUCKET_NAME": "assets",
        }

    @pytest.mark.asyncio
    async def test_no_patch_hook_is_a_no_op(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")

        assert result.patches_applied is False
        assert result.to_dict()["patches_applied"] is False

    @pytest.mark.asyncio
    async def test_phases_timed_in_order(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")

        assert list(result.timing.phases) == ["instantiating", "synthesizing", "binding", "patching"]
        assert result.timing.total_ms >= sum(result.timing.phases.values())

    @pytest.mark.asyncio
    async def test_capability_maps_finalized(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")

        assert all(c.capabilities.finalized for c in result.components)

    @pytest.mark.asyncio
    async def test_explicit_run_id(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev", run_id="run-42")
        assert result.run_id == "run-42"

    @pytest.mark.asyncio
    async def test_async_provisioner(self, orchestrator, manifest_data, add_framework):
        add_framework("async", stream=AsyncQueueProvisioner)
        manifest = build(
            manifest_data,
            complianceFramework="async",
            components=[{"name": "events", "type": "stream"}],
        )

        result = await orchestrator.run(manifest, "dev")

        assert result.get_component("events").has_capability("queue:read")

    @pytest.mark.asyncio
    async def test_result_serializes(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")

        payload = json.loads(json.dumps(result.to_dict()))
        assert payload["service"] == "orders"
        assert payload["bindings"][0]["outcome"]["actions"] == ["queue:Receive", "queue:Delete"]

    @pytest.mark.asyncio
    async def test_report(self, orchestrator, manifest):
        result = await orchestrator.run(manifest, "dev")
        report = result.render_report()

        assert "Synthesis report: orders (dev, framework=baseline)" in report
        assert "processor -> jobs queue:read [read] via worker-to-queue" in report
        assert "Patches applied: no" in report

    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_share_state(self, orchestrator, manifest):
        dev, prod = await asyncio.gather(orchestrator.run(manifest, "dev"), orchestrator.run(manifest, "prod"))

        assert dev.run_id != prod.run_id
        assert dev.get_component("processor").config["memory"] == 1024
        assert prod.get_component("processor").config["memory"] == 512
        assert dev.get_component("processor") is not prod.get_component("processor")

    @pytest.mark.asyncio
    async def test_metrics_and_audit(self, orchestrator, manifest, metrics, audit):
        result = await orchestrator.run(manifest, "dev")

        stats = metrics.get_stats()
        assert stats["runs"]["success"] == 1
        assert stats["components_synthesized"] == 3
        assert stats["bindings_applied"] == 2
        assert set(stats["phases_ms"]) == {"instantiating", "synthesizing", "binding", "patching"}

        entry = await audit.find_by_run_id(result.run_id)
        assert entry.status == "completed"
        assert set(entry.config_fingerprints) == {"jobs", "assets", "processor"}


# =============================================================================
# Warnings
# =============================================================================


class TestWarnings:
    """Non-fatal issues are attached to the result."""

    @pytest.mark.asyncio
    async def test_deprecated_type(self, orchestrator, manifest_data, add_framework):
        add_framework(
            "legacy",
            topic=ProvisionerCreator(QueueProvisioner, deprecated=True, deprecation_message="use 'queue'"),
        )
        manifest = build(manifest_data, complianceFramework="legacy", components=[{"name": "t", "type": "topic"}])

        result = await orchestrator.run(manifest, "dev")

        assert result.warnings == ("component type 'topic' (component 't') is deprecated: use 'queue'",)

    @pytest.mark.asyncio
    async def test_unresolved_token(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[{"name": "jobs", "type": "queue", "config": {"dlq": "${env:deadLetterQueue}"}}],
        )

        result = await orchestrator.run(manifest, "dev")

        assert len(result.warnings) == 1
        assert "deadLetterQueue" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_policy_override_ignored_in_prod(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {
                    "name": "jobs",
                    "type": "queue",
                    "policy": {"overrides": {"retentionDays": 1}, "justification": "cost"},
                }
            ],
        )

        prod = await orchestrator.run(manifest, "prod")
        dev = await orchestrator.run(manifest, "dev")

        assert prod.get_component("jobs").config["retentionDays"] == 7
        assert any("protected" in w for w in prod.warnings)
        assert dev.get_component("jobs").config["retentionDays"] == 1


# =============================================================================
# Instantiation Failures
# =============================================================================


class TestInstantiationFailures:
    """Phase 1 failures abort before anything is synthesized."""

    @pytest.mark.asyncio
    async def test_unknown_framework_before_any_component(
        self, orchestrator, factory_provider, manifest_data, audit
    ):
        CountingProvisioner.created = 0
        factory_provider.register_framework("unknown-framework", creators={"queue": CountingProvisioner})
        manifest = build(manifest_data, complianceFramework="unknown-framework")

        with pytest.raises(UnknownFrameworkError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert exc_info.value.phase == "instantiating"
        assert CountingProvisioner.created == 0
        assert audit.entries[-1].failed_phase == "instantiating"

    @pytest.mark.asyncio
    async def test_unsupported_framework(self, orchestrator, profile_store, manifest_data):
        profile_store.add(ComplianceFrameworkProfile(name="maximum", sections={"queue": {}}))
        manifest = build(manifest_data, complianceFramework="maximum")

        with pytest.raises(UnsupportedFrameworkError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert exc_info.value.details["known"] == ["baseline", "enhanced"]

    @pytest.mark.asyncio
    async def test_unknown_component_type(self, orchestrator, manifest_data):
        manifest = build(manifest_data, components=[{"name": "db", "type": "database"}])

        with pytest.raises(InstantiationError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert exc_info.value.component == "db"
        assert exc_info.value.details["known_types"] == ["bucket", "queue", "worker"]

    @pytest.mark.asyncio
    async def test_validation_failure(self, orchestrator, manifest_data):
        manifest = build(manifest_data, components=[{"name": "site", "type": "bucket", "config": {"public": True}}])

        with pytest.raises(InstantiationError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert exc_info.value.component == "site"
        assert exc_info.value.details["errors"] == ["public access is not allowed"]


# =============================================================================
# Synthesis Failures
# =============================================================================


class TestSynthesisFailures:
    """Phase 2 failures carry the component and the underlying cause."""

    @pytest.mark.asyncio
    async def test_provisioner_error_wrapped(self, orchestrator, manifest_data, add_framework, metrics):
        add_framework("fragile", cluster=ExplodingProvisioner)
        manifest = build(
            manifest_data,
            complianceFramework="fragile",
            components=[{"name": "jobs", "type": "queue"}, {"name": "k8s", "type": "cluster"}],
        )

        with pytest.raises(SynthesisError) as exc_info:
            await orchestrator.run(manifest, "dev")

        error = exc_info.value
        assert error.component == "k8s"
        assert error.phase == "synthesizing"
        assert "stack limit reached" in error.message
        assert isinstance(error.__cause__, RuntimeError)
        assert metrics.get_stats()["failures_by_kind"] == {"synthesis": 1}

    @pytest.mark.asyncio
    async def test_non_namespaced_capability(self, orchestrator, manifest_data, add_framework):
        add_framework("sloppy", api=BadCapabilityProvisioner)
        manifest = build(manifest_data, complianceFramework="sloppy", components=[{"name": "web", "type": "api"}])

        with pytest.raises(SynthesisError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert exc_info.value.details["keys"] == ["url"]

    @pytest.mark.asyncio
    async def test_capability_error_keeps_its_kind(self, orchestrator, manifest_data, add_framework):
        add_framework("keyed", vault=UnkeyedCapabilityProvisioner)
        manifest = build(manifest_data, complianceFramework="keyed", components=[{"name": "secrets", "type": "vault"}])

        with pytest.raises(ConfigurationError) as exc_info:
            await orchestrator.run(manifest, "dev")

        error = exc_info.value
        assert error.kind is ErrorKind.CONFIGURATION
        assert error.component == "secrets"
        assert error.phase == "synthesizing"
        assert error.details == {"setting": "kmsAlias"}


# =============================================================================
# Binding Failures
# =============================================================================


class TestBindingFailures:
    """Phase 3 failures name the source, the directive and the candidates."""

    @pytest.mark.asyncio
    async def test_ambiguous_selector_names_every_candidate(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {"name": "svc-a", "type": "worker", "labels": {"tier": "background"}},
                {"name": "svc-b", "type": "worker", "labels": {"tier": "background"}},
                {
                    "name": "dispatcher",
                    "type": "worker",
                    "binds": [
                        {
                            "select": {"type": "worker", "withLabels": {"tier": "background"}},
                            "capability": "compute:invoke",
                            "access": "read",
                        }
                    ],
                },
            ],
        )

        with pytest.raises(AmbiguousSelectorError) as exc_info:
            await orchestrator.run(manifest, "dev")

        error = exc_info.value
        assert error.candidates == ["svc-a", "svc-b"]
        assert "svc-a" in error.message and "svc-b" in error.message
        assert error.component == "dispatcher"
        assert error.phase == "binding"
        assert error.directive["select"]["withLabels"] == {"tier": "background"}

    @pytest.mark.asyncio
    async def test_selector_counts_the_source_as_a_candidate(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {
                    "name": "svc-a",
                    "type": "worker",
                    "labels": {"tier": "background"},
                    "binds": [
                        {
                            "select": {"type": "worker", "withLabels": {"tier": "background"}},
                            "capability": "compute:invoke",
                            "access": "read",
                        }
                    ],
                },
                {"name": "svc-b", "type": "worker", "labels": {"tier": "background"}},
            ],
        )

        with pytest.raises(AmbiguousSelectorError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert exc_info.value.candidates == ["svc-a", "svc-b"]
        assert exc_info.value.component == "svc-a"

    @pytest.mark.asyncio
    async def test_selector_matching_only_the_source(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {
                    "name": "svc-a",
                    "type": "worker",
                    "binds": [{"select": {"type": "worker"}, "capability": "compute:invoke", "access": "read"}],
                },
                {"name": "jobs", "type": "queue"},
            ],
        )

        with pytest.raises(TargetNotFoundError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert "itself" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_selector_with_single_match(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {"name": "svc-a", "type": "worker", "labels": {"tier": "background"}},
                {"name": "svc-b", "type": "worker", "labels": {"tier": "web"}},
                {"name": "jobs", "type": "queue"},
                {
                    "name": "dispatcher",
                    "type": "worker",
                    "labels": {"tier": "background"},
                    "binds": [
                        {"select": {"type": "queue"}, "capability": "queue:read", "access": "read"},
                    ],
                },
            ],
        )

        result = await orchestrator.run(manifest, "dev")

        assert result.bindings[0].target == "jobs"

    @pytest.mark.asyncio
    async def test_selector_without_match(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {
                    "name": "dispatcher",
                    "type": "worker",
                    "binds": [{"select": {"type": "queue"}, "capability": "queue:read", "access": "read"}],
                },
            ],
        )

        with pytest.raises(TargetNotFoundError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert "type=queue" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_capability(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {"name": "jobs", "type": "queue"},
                {
                    "name": "processor",
                    "type": "worker",
                    "binds": [{"to": "jobs", "capability": "queue:write", "access": "write"}],
                },
            ],
        )

        with pytest.raises(CapabilityNotFoundError) as exc_info:
            await orchestrator.run(manifest, "dev")

        error = exc_info.value
        assert error.details["published"] == ["queue:read"]
        assert error.component == "processor"
        assert error.directive == {"to": "jobs", "capability": "queue:write", "access": "write", "env": {}, "options": {}}

    @pytest.mark.asyncio
    async def test_unknown_target(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {
                    "name": "processor",
                    "type": "worker",
                    "binds": [{"to": "ghost", "capability": "queue:read", "access": "read"}],
                },
            ],
        )

        with pytest.raises(TargetNotFoundError) as exc_info:
            await orchestrator.run(manifest, "dev")

        assert "ghost" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_self_binding(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {
                    "name": "processor",
                    "type": "worker",
                    "binds": [{"to": "processor", "capability": "compute:invoke", "access": "read"}],
                },
            ],
        )

        with pytest.raises(TargetNotFoundError):
            await orchestrator.run(manifest, "dev")

    @pytest.mark.asyncio
    async def test_no_strategy_lists_alternatives(self, orchestrator, manifest_data):
        manifest = build(
            manifest_data,
            components=[
                {"name": "other", "type": "worker"},
                {
                    "name": "processor",
                    "type": "worker",
                    "binds": [{"to": "other", "capability": "compute:invoke", "access": "read"}],
                },
            ],
        )

        with pytest.raises(NoStrategyError) as exc_info:
            await orchestrator.run(manifest, "dev")

        error = exc_info.value
        assert error.alternatives == ["queue:read (queue)", "storage:read (bucket)", "storage:write (bucket)"]
        assert error.component == "processor"

    @pytest.mark.asyncio
    async def test_region_required_outside_baseline(self, orchestrator, manifest_data):
        manifest = build(manifest_data, complianceFramework="enhanced")

        result = await orchestrator.run(manifest, "dev")

        assert result.bindings[0].outcome["conditions"]["region"] == "us-east-1"
        assert result.bindings[1].outcome["conditions"]["region"] == "eu-west-1"


# =============================================================================
# Patching
# =============================================================================


class TestPatching:
    """The patch phase is optional and all-or-nothing."""

    @pytest.mark.asyncio
    async def test_injected_hook(self, orchestrator, manifest):
        seen = {}

        def apply_patches(context):
            context.handle("assets").props["versioning"] = True
            seen["instances"] = sorted(context.instances)
            seen["metadata"] = dict(context.run_metadata)

        result = await orchestrator.run(manifest, "dev", patch_hook=apply_patches)

        assert result.patches_applied is True
        assert result.get_component("assets").artifact.props["versioning"] is True
        assert seen["instances"] == ["assets", "jobs", "processor"]
        assert seen["metadata"]["service"] == "orders"
        assert seen["metadata"]["run_id"] == result.run_id

    @pytest.mark.asyncio
    async def test_async_hook(self, orchestrator, manifest):
        async def apply_patches(context):
            await asyncio.sleep(0)

        result = await orchestrator.run(manifest, "dev", patch_hook=apply_patches)
        assert result.patches_applied is True

    @pytest.mark.asyncio
    async def test_async_construct_handles_awaited(self, orchestrator, manifest_data, add_framework):
        add_framework("streaming", stream=AsyncHandleProvisioner)
        manifest = build(manifest_data, complianceFramework="streaming", components=[{"name": "events", "type": "stream"}])
        seen = {}

        def apply_patches(context):
            seen["events"] = context.handle("events")
            context.handle("events").props["fifo"] = True

        result = await orchestrator.run(manifest, "dev", patch_hook=apply_patches)

        assert isinstance(seen["events"], Construct)
        assert result.get_component("events").artifact.props["fifo"] is True

    @pytest.mark.asyncio
    async def test_hook_from_file_beside_manifest(self, orchestrator, manifest, tmp_path):
        (tmp_path / "patches.py").write_text(
            "def apply_patches(context):\n"
            "    context.construct_handles['jobs'].props['fifo'] = True\n"
        )

        result = await orchestrator.run(manifest, "dev", manifest_path=tmp_path / "service.yml")

        assert result.patches_applied is True
        assert result.get_component("jobs").artifact.props["fifo"] is True

    @pytest.mark.asyncio
    async def test_missing_file_is_a_no_op(self, orchestrator, manifest, tmp_path):
        result = await orchestrator.run(manifest, "dev", manifest_path=tmp_path / "service.yml")
        assert result.patches_applied is False

    @pytest.mark.asyncio
    async def test_hook_error_aborts(self, orchestrator, manifest, audit):
        def apply_patches(context):
            raise KeyError("assets")

        with pytest.raises(PatchError) as exc_info:
            await orchestrator.run(manifest, "dev", patch_hook=apply_patches)

        assert exc_info.value.phase == "patching"
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert audit.entries[-1].status == "failed"

    @pytest.mark.asyncio
    async def test_broken_patch_file(self, orchestrator, manifest, tmp_path):
        (tmp_path / "patches.py").write_text("import does_not_exist_anywhere\n")

        with pytest.raises(PatchError) as exc_info:
            await orchestrator.run(manifest, "dev", manifest_path=tmp_path / "service.yml")

        assert exc_info.value.phase == "patching"


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Cancellation fails the run and propagates; no result is produced."""

    @pytest.mark.asyncio
    async def test_cancelled_during_synthesis(self, orchestrator, manifest_data, add_framework, metrics, audit):
        add_framework("cancel", cluster=CancellingProvisioner)
        manifest = build(manifest_data, complianceFramework="cancel", components=[{"name": "k8s", "type": "cluster"}])

        with pytest.raises(asyncio.CancelledError):
            await orchestrator.run(manifest, "dev")

        assert metrics.runs_cancelled == 1
        assert audit.entries[-1].status == "cancelled"
        assert audit.entries[-1].failed_phase == RunState.SYNTHESIZING.value
        assert audit.entries[-1].success is False

    @pytest.mark.asyncio
    async def test_caller_timeout(self, orchestrator, manifest_data, add_framework, audit):
        add_framework("slow", cluster=SlowProvisioner)
        manifest = build(manifest_data, complianceFramework="slow", components=[{"name": "k8s", "type": "cluster"}])

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(orchestrator.run(manifest, "dev"), timeout=0.05)

        assert audit.entries[-1].status == "cancelled"


# =============================================================================
# Introspection
# =============================================================================


class TestDescribe:
    def test_describe(self, orchestrator):
        description = orchestrator.describe()

        assert description["frameworks"] == ["baseline", "enhanced"]
        assert description["profiles"] == ["baseline", "enhanced"]
        assert description["binding_strategies"] == ["worker-to-queue", "worker-to-storage"]
        assert description["binding_source_types"] == ["worker"]

