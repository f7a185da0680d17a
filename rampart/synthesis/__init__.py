"""
Rampart Synthesis.

The phased orchestration pipeline:
instantiate -> synthesize -> bind -> patch -> assemble.
"""

from .context import InvalidTransitionError, RunContext, RunState
from .orchestrator import SynthesisOrchestrator
from .patches import PatchContext, PatchHook, discover_patch_hook, load_patch_hook
from .result import SynthesisResult, SynthesisTiming

__all__ = [
    "InvalidTransitionError",
    "PatchContext",
    "PatchHook",
    "RunContext",
    "RunState",
    "SynthesisOrchestrator",
    "SynthesisResult",
    "SynthesisTiming",
    "discover_patch_hook",
    "load_patch_hook",
]
