"""
Synthesis Orchestrator.

Runs one manifest through five strictly sequential phases:

    1. instantiating  resolve config, build a provisioner, validate the spec
    2. synthesizing   synthesize, then publish capabilities
    3. binding        resolve targets, check capabilities, dispatch strategies
    4. patching       run the optional patch hook
    5. assembled      build the SynthesisResult

Each phase completes for every component before the next begins. Within
phases 2 and 3, components and directives are processed in manifest
declaration order.

Design Principle:
    No retries and no partial results. The first failure aborts the run,
    moves it to ``failed`` and is re-raised carrying the component, phase
    and directive involved. Cancellation does the same and propagates.

Usage:
    orchestrator = SynthesisOrchestrator(
        resolver=ConfigurationResolver(profiles=FileProfileStore("profiles/")),
        factory_provider=provider,
        binding_registry=bindings,
    )

    result = await orchestrator.run(manifest, "dev", manifest_path="service.yml")
    print(result.render_report())
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from rampart.bindings.base import BindingContext
from rampart.components.base import MAIN_HANDLE, ComponentContext, ValidationResult, maybe_await
from rampart.errors import (
    AmbiguousSelectorError,
    CapabilityNotFoundError,
    InstantiationError,
    PatchError,
    RampartError,
    SynthesisError,
    TargetNotFoundError,
)
from rampart.observability import RunLogger, create_audit_entry
from rampart.schemas import DEFAULT_PROTECTED_ENVIRONMENTS
from rampart.synthesis.context import RunContext, RunState
from rampart.synthesis.patches import DEFAULT_PATCH_FILE, PatchContext, PatchHook, discover_patch_hook
from rampart.synthesis.result import SynthesisResult

if TYPE_CHECKING:
    from rampart.bindings.registry import BindingStrategyRegistry
    from rampart.components.base import ComponentInstance
    from rampart.components.factory import ComponentFactoryProvider
    from rampart.config.resolver import ConfigurationResolver
    from rampart.observability import AuditRepository, SynthesisMetrics
    from rampart.schemas import BindingDirective, Manifest

logger = logging.getLogger(__name__)


class SynthesisOrchestrator:
    """
    Top-level pipeline for orchestration runs.

    Collaborators are injected and only read during a run, so one
    orchestrator can serve concurrent runs; all per-run state lives in a
    RunContext created by ``run``.

    Args:
        resolver: Configuration resolver (owns the profile store)
        factory_provider: Framework-scoped component factories
        binding_registry: Binding strategies
        patch_hook: Hook used for every run unless one is passed to ``run``
        protected_environments: Environments where policy overrides never apply
        patch_file: Patch file name looked up beside the manifest
        metrics: Optional metrics collector
        audit: Optional audit repository
    """

    def __init__(
        self,
        *,
        resolver: ConfigurationResolver,
        factory_provider: ComponentFactoryProvider,
        binding_registry: BindingStrategyRegistry,
        patch_hook: PatchHook | None = None,
        protected_environments: Iterable[str] = DEFAULT_PROTECTED_ENVIRONMENTS,
        patch_file: str = DEFAULT_PATCH_FILE,
        metrics: SynthesisMetrics | None = None,
        audit: AuditRepository | None = None,
    ):
        self._resolver = resolver
        self._factory_provider = factory_provider
        self._bindings = binding_registry
        self._patch_hook = patch_hook
        self.protected_environments = frozenset(protected_environments)
        self.patch_file = patch_file
        self._metrics = metrics
        self._audit = audit

    async def run(
        self,
        manifest: Manifest,
        environment: str,
        *,
        patch_hook: PatchHook | None = None,
        manifest_path: str | Path | None = None,
        run_id: str | None = None,
    ) -> SynthesisResult:
        """
        Execute one orchestration run.

        The patch hook is, in order: ``patch_hook``, the orchestrator's
        default hook, or ``apply_patches`` from the patch file beside
        ``manifest_path``. No hook means the patch phase is a no-op.

        Args:
            manifest: Parsed manifest
            environment: Active environment name
            patch_hook: Hook for this run only
            manifest_path: Manifest location, used to find the patch file
            run_id: Explicit run id (generated when omitted)

        Returns:
            SynthesisResult of the assembled run

        Raises:
            RampartError: Any phase failure, annotated with phase and component
            asyncio.CancelledError: The run was cancelled
        """
        ctx = RunContext(manifest=manifest, environment=environment)
        if run_id is not None:
            ctx.run_id = run_id
        run_log = RunLogger(run_id=ctx.run_id, service=manifest.service)

        logger.info(
            f"[orchestrator] Run {ctx.run_id[:8]} starting: service={manifest.service}, "
            f"environment={environment}, framework={manifest.compliance_framework}, "
            f"components={manifest.component_names}"
        )
        run_log.run_started(environment, manifest.compliance_framework, manifest.component_names)

        try:
            await self._phase(ctx, run_log, RunState.INSTANTIATING, self._instantiate)
            await self._phase(ctx, run_log, RunState.SYNTHESIZING, self._synthesize)
            await self._phase(ctx, run_log, RunState.BINDING, self._bind)
            for binding in ctx.bindings:
                run_log.binding_applied(binding.source, binding.target, binding.capability, binding.strategy)

            await self._phase(
                ctx, run_log, RunState.PATCHING, lambda c: self._patch(c, patch_hook, manifest_path)
            )

            ctx.transition(RunState.ASSEMBLED)
            result = SynthesisResult.from_context(ctx)

        except asyncio.CancelledError as e:
            ctx.fail(e)
            logger.warning(f"[orchestrator] Run {ctx.run_id[:8]} cancelled during {ctx.failed_phase}")
            run_log.run_failed(ctx.elapsed_ms, ctx.failed_phase, "cancelled", "CancelledError")
            await self._record_failure(ctx, "cancelled", e)
            raise

        except RampartError as e:
            e.with_phase(ctx.state.value)
            ctx.fail(e)
            logger.error(f"[orchestrator] Run {ctx.run_id[:8]} failed: {e}")
            run_log.run_failed(ctx.elapsed_ms, ctx.failed_phase, e.message, type(e).__name__, e.component)
            await self._record_failure(ctx, "failed", e)
            raise

        except Exception as e:
            ctx.fail(e)
            logger.error(f"[orchestrator] Run {ctx.run_id[:8]} crashed in {ctx.failed_phase}: {e}", exc_info=True)
            run_log.run_failed(ctx.elapsed_ms, ctx.failed_phase, str(e), type(e).__name__)
            await self._record_failure(ctx, "failed", e)
            raise

        for warning in result.warnings:
            run_log.warning(warning)
        run_log.run_completed(
            result.timing.total_ms,
            components=len(result.components),
            bindings=len(result.bindings),
            patches_applied=result.patches_applied,
            warnings=len(result.warnings),
        )
        logger.info(
            f"[orchestrator] Run {ctx.run_id[:8]} assembled: components={len(result.components)}, "
            f"bindings={len(result.bindings)}, patches_applied={result.patches_applied}, "
            f"duration={result.timing.total_ms:.1f}ms"
        )
        await self._record_success(ctx, result)
        return result

    # =========================================================================
    # Phases
    # =========================================================================

    async def _phase(
        self,
        ctx: RunContext,
        run_log: RunLogger,
        state: RunState,
        body: Callable[[RunContext], Awaitable[None]],
    ) -> None:
        ctx.transition(state)
        run_log.phase_started(state.value)
        start_time = time.perf_counter()

        await body(ctx)

        duration_ms = (time.perf_counter() - start_time) * 1000
        ctx.record_timing(state.value, duration_ms)
        run_log.phase_completed(state.value, duration_ms)
        if self._metrics is not None:
            self._metrics.record_phase(state.value, duration_ms)

    async def _instantiate(self, ctx: RunContext) -> None:
        manifest = ctx.manifest
        framework = manifest.compliance_framework

        # Both lookups fail before any component is touched.
        framework_profile = self._resolver.load_framework(framework)
        registry = self._factory_provider.create_factory(framework).create_registry()

        environment = manifest.environment_profile(ctx.environment, self.protected_environments)
        ctx.component_context = ComponentContext(
            service=manifest.service,
            environment=ctx.environment,
            framework=framework,
            run_id=ctx.run_id,
            owner=manifest.owner,
            tags=MappingProxyType(dict(manifest.tags)),
        )

        for spec in manifest.components:
            creator = registry.get_required_creator(spec)
            config = self._resolver.resolve(
                spec,
                framework_profile,
                environment,
                fallbacks=creator.fallback_config(),
            )
            instance = registry.create_component(spec, ctx.component_context, config=config)

            try:
                validation = ValidationResult.coerce(await maybe_await(instance.provisioner.validate_spec(spec)))
            except RampartError:
                raise
            except Exception as e:
                raise InstantiationError(
                    f"Validation of '{spec.name}' raised: {e}",
                    component=spec.name,
                ) from e

            if not validation.valid:
                raise InstantiationError(
                    f"Component '{spec.name}' ({spec.type}) failed validation: {list(validation.errors)}",
                    component=spec.name,
                    details={"errors": list(validation.errors)},
                )

            ctx.add_instance(instance)
            ctx.add_warnings(config.warnings)
            ctx.add_warnings(instance.warnings)

    async def _synthesize(self, ctx: RunContext) -> None:
        for instance in ctx.instances.values():
            name = instance.name
            try:
                artifact = await maybe_await(instance.provisioner.synthesize(ctx.component_context))
            except RampartError as e:
                if e.component is None:
                    e.component = name
                raise
            except Exception as e:
                raise SynthesisError(
                    f"Synthesis of '{name}' ({instance.type}) failed: {e}",
                    component=name,
                    details={"cause": type(e).__name__},
                ) from e
            instance.mark_synthesized(artifact)

            try:
                published = await maybe_await(instance.provisioner.get_capabilities())
            except RampartError as e:
                if e.component is None:
                    e.component = name
                raise
            except Exception as e:
                raise SynthesisError(
                    f"Reading capabilities of '{name}' failed: {e}",
                    component=name,
                    details={"cause": type(e).__name__},
                ) from e
            capabilities = instance.publish_capabilities(published)
            logger.debug(f"[orchestrator] {name} published {list(capabilities)}")

    async def _bind(self, ctx: RunContext) -> None:
        for source in ctx.instances.values():
            for directive in source.spec.binds:
                try:
                    target = self._resolve_target(ctx, source, directive)
                    self._check_capability(source, target, directive)
                    result = await self._bindings.bind(
                        BindingContext(
                            source=source,
                            target=target,
                            directive=directive,
                            environment=ctx.environment,
                            framework=ctx.framework,
                            run_id=ctx.run_id,
                        )
                    )
                except RampartError as e:
                    if e.component is None:
                        e.component = source.name
                    if e.directive is None:
                        e.directive = directive.to_dict()
                    raise
                ctx.bindings.append(result)

        for instance in ctx.instances.values():
            if instance.capabilities is not None:
                instance.capabilities.finalize()

    def _resolve_target(
        self,
        ctx: RunContext,
        source: ComponentInstance,
        directive: BindingDirective,
    ) -> ComponentInstance:
        if directive.to is not None:
            target = ctx.instances.get(directive.to)
            if target is None:
                raise TargetNotFoundError(
                    f"Binding target '{directive.to}' of '{source.name}' does not exist. "
                    f"Known components: {list(ctx.instances)}"
                )
        else:
            target = self._select_target(ctx, source, directive)

        if target is source:
            raise TargetNotFoundError(f"Component '{source.name}' cannot bind to itself")
        return target

    @staticmethod
    def _select_target(
        ctx: RunContext,
        source: ComponentInstance,
        directive: BindingDirective,
    ) -> ComponentInstance:
        selector = directive.select
        if selector is None:
            raise TargetNotFoundError(f"Binding of '{source.name}' names neither 'to' nor 'select'")

        # The source itself counts as a candidate
        matches = [instance for instance in ctx.instances.values() if instance.spec.matches(selector)]
        if not matches:
            raise TargetNotFoundError(
                f"No component matches selector ({selector.describe()}) of '{source.name}'",
                details={"selector": selector.model_dump(by_alias=True, exclude_none=True)},
            )
        if len(matches) > 1:
            names = [m.name for m in matches]
            raise AmbiguousSelectorError(
                f"Selector ({selector.describe()}) of '{source.name}' is ambiguous: "
                f"matches {', '.join(names)}. Bind by name or add labels to narrow it",
                candidates=names,
            )
        return matches[0]

    @staticmethod
    def _check_capability(
        source: ComponentInstance,
        target: ComponentInstance,
        directive: BindingDirective,
    ) -> None:
        if target.has_capability(directive.capability):
            return
        published = sorted(target.capabilities or {})
        raise CapabilityNotFoundError(
            f"'{target.name}' does not publish capability '{directive.capability}' "
            f"(requested by '{source.name}'). Published: {published}",
            details={"target": target.name, "published": published},
        )

    def _select_patch_hook(
        self,
        patch_hook: PatchHook | None,
        manifest_path: str | Path | None,
    ) -> PatchHook | None:
        if patch_hook is not None:
            return patch_hook
        if self._patch_hook is not None:
            return self._patch_hook
        if manifest_path is not None:
            return discover_patch_hook(manifest_path, self.patch_file)
        return None

    async def _patch(
        self,
        ctx: RunContext,
        patch_hook: PatchHook | None,
        manifest_path: str | Path | None,
    ) -> None:
        hook = self._select_patch_hook(patch_hook, manifest_path)
        if hook is None:
            logger.debug(f"[orchestrator] Run {ctx.run_id[:8]}: no patch hook")
            return

        try:
            handles = {}
            for name, instance in ctx.instances.items():
                handles[name] = await maybe_await(instance.construct_handle(MAIN_HANDLE))
            context = PatchContext(
                instances=MappingProxyType(dict(ctx.instances)),
                construct_handles=MappingProxyType(handles),
                run_metadata=MappingProxyType(ctx.run_metadata()),
            )
            await maybe_await(hook(context))
        except PatchError:
            raise
        except Exception as e:
            raise PatchError(f"Patch hook failed: {e}", details={"cause": type(e).__name__}) from e

        ctx.patches_applied = True
        logger.info(f"[orchestrator] Run {ctx.run_id[:8]}: patches applied")

    # =========================================================================
    # Metrics & audit
    # =========================================================================

    async def _record_success(self, ctx: RunContext, result: SynthesisResult) -> None:
        if self._metrics is not None:
            self._metrics.record_run(
                True,
                result.timing.total_ms,
                components=len(result.components),
                bindings=len(result.bindings),
            )
        if self._audit is not None:
            await self._audit.save(create_audit_entry(ctx, "completed", result=result))

    async def _record_failure(self, ctx: RunContext, status: str, error: BaseException) -> None:
        if self._metrics is not None:
            kind = getattr(error, "kind", None)
            self._metrics.record_run(
                False,
                ctx.elapsed_ms,
                cancelled=status == "cancelled",
                error_kind=kind.value if kind is not None else type(error).__name__,
            )
        if self._audit is not None:
            await self._audit.save(create_audit_entry(ctx, status, error=error))

    def describe(self) -> dict[str, Any]:
        """Registered frameworks and binding source types, for diagnostics."""
        return {
            "frameworks": self._factory_provider.list_frameworks(),
            "profiles": self._resolver.known_frameworks(),
            "binding_strategies": self._bindings.list_names(),
            "binding_source_types": self._bindings.source_types(),
        }
