"""
Dependency Injection for Rampart.

Provides process-wide singletons for the HTTP surface: settings, profile
store, registries, metrics and the orchestrator built from them.

Embedding applications register their frameworks and binding strategies on
the shared instances before the first request:

    get_factory_provider().register_framework("baseline", creators={...})
    get_binding_registry().register(MyStrategy())
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from rampart.bindings import BindingStrategyRegistry
from rampart.components import ComponentFactoryProvider
from rampart.config import ConfigurationResolver, ProfileStore
from rampart.config.schemas import AppSettings
from rampart.observability import InMemoryAuditRepository, SynthesisMetrics
from rampart.runtime import FileProfileStore, MemoryProfileStore
from rampart.synthesis import SynthesisOrchestrator

logger = logging.getLogger(__name__)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get application settings from environment.

    Uses lru_cache for singleton pattern.
    """
    return AppSettings(
        # Service
        service_name=os.getenv("RAMPART_SERVICE_NAME", "rampart"),
        environment=os.getenv("RAMPART_ENVIRONMENT", "dev"),
        debug=os.getenv("RAMPART_DEBUG", "false").lower() == "true",
        # Profiles
        profiles_dir=os.getenv("RAMPART_PROFILES_DIR") or None,
        # Governance
        protected_environments=os.getenv("RAMPART_PROTECTED_ENVIRONMENTS", "prod,production"),
        strict_policy=os.getenv("RAMPART_STRICT_POLICY", "false").lower() == "true",
        # Patching
        patch_file=os.getenv("RAMPART_PATCH_FILE", "patches.py"),
        # Logging
        log_level=os.getenv("RAMPART_LOG_LEVEL", "INFO"),
    )


# Global instances (initialized on first access)
_profiles: ProfileStore | None = None
_factory_provider: ComponentFactoryProvider | None = None
_binding_registry: BindingStrategyRegistry | None = None
_metrics: SynthesisMetrics | None = None
_audit: InMemoryAuditRepository | None = None
_orchestrator: SynthesisOrchestrator | None = None


def get_profile_store() -> ProfileStore:
    """
    Get the profile store.

    Reads profiles from RAMPART_PROFILES_DIR when set, otherwise starts
    with an empty in-memory store.
    """
    global _profiles
    if _profiles is None:
        settings = get_settings()
        if settings.profiles_dir is not None:
            logger.info(f"[dependencies] Using FileProfileStore: {settings.profiles_dir}")
            _profiles = FileProfileStore(settings.profiles_dir)
        else:
            logger.info("[dependencies] Using MemoryProfileStore (no profiles dir configured)")
            _profiles = MemoryProfileStore()
    return _profiles


def get_factory_provider() -> ComponentFactoryProvider:
    global _factory_provider
    if _factory_provider is None:
        _factory_provider = ComponentFactoryProvider()
    return _factory_provider


def get_binding_registry() -> BindingStrategyRegistry:
    global _binding_registry
    if _binding_registry is None:
        _binding_registry = BindingStrategyRegistry()
    return _binding_registry


def get_metrics() -> SynthesisMetrics:
    global _metrics
    if _metrics is None:
        _metrics = SynthesisMetrics()
    return _metrics


def get_audit_repository() -> InMemoryAuditRepository:
    global _audit
    if _audit is None:
        _audit = InMemoryAuditRepository()
    return _audit


def get_orchestrator() -> SynthesisOrchestrator:
    """
    Get the orchestrator wired to the shared registries.

    Creates the orchestrator on first call.
    """
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        _orchestrator = SynthesisOrchestrator(
            resolver=ConfigurationResolver(get_profile_store(), strict_policy=settings.strict_policy),
            factory_provider=get_factory_provider(),
            binding_registry=get_binding_registry(),
            protected_environments=settings.protected_environments,
            patch_file=settings.patch_file,
            metrics=get_metrics(),
            audit=get_audit_repository(),
        )
        logger.info("[dependencies] SynthesisOrchestrator initialized")
    return _orchestrator


def reset_dependencies() -> None:
    """Drop all singletons (tests and reconfiguration)."""
    global _profiles, _factory_provider, _binding_registry, _metrics, _audit, _orchestrator
    _profiles = None
    _factory_provider = None
    _binding_registry = None
    _metrics = None
    _audit = None
    _orchestrator = None
    get_settings.cache_clear()
