"""
Rampart - Compliance-aware infrastructure synthesis.

Rampart turns a declarative service manifest into a fully configured,
bound and patched set of infrastructure components:

- **Layered Configuration**: fallback < framework < environment < manifest < policy
- **Framework-Scoped Factories**: each compliance framework supplies its own component creators
- **Capability Bindings**: directives resolved through a registry of binding strategies
- **Phased Orchestration**: instantiate -> synthesize -> bind -> patch -> assemble

Quick Start:
    >>> from rampart import SynthesisOrchestrator, ConfigurationResolver
    >>> from rampart.runtime import FileProfileStore, load_manifest
    >>>
    >>> orchestrator = SynthesisOrchestrator(
    ...     resolver=ConfigurationResolver(FileProfileStore("profiles/")),
    ...     factory_provider=provider,
    ...     binding_registry=bindings,
    ... )
    >>> result = await orchestrator.run(load_manifest("service.yml"), "prod")
    >>> print(result.render_report())
"""

__version__ = "0.1.0"
__license__ = "MIT"

from rampart.bindings import BindingStrategy, BindingStrategyRegistry
from rampart.components import ComponentFactoryProvider, ComponentRegistry
from rampart.config import ConfigurationResolver, EffectiveConfig
from rampart.errors import RampartError
from rampart.schemas import Manifest
from rampart.synthesis import SynthesisOrchestrator, SynthesisResult

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Core
    "BindingStrategy",
    "BindingStrategyRegistry",
    "ComponentFactoryProvider",
    "ComponentRegistry",
    "ConfigurationResolver",
    "EffectiveConfig",
    "Manifest",
    "RampartError",
    "SynthesisOrchestrator",
    "SynthesisResult",
]
