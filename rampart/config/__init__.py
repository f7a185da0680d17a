"""
Configuration for Rampart.

- Resolution engine: five-layer merge into an immutable EffectiveConfig
- Application settings (AppSettings)
"""

from .interpolation import Interpolator, UnresolvedToken
from .merge import APPEND_KEY, Provenance, deep_merge, merge_layer, merge_layers
from .resolver import (
    LAYER_ORDER,
    ConfigConflict,
    ConfigLayer,
    ConfigurationResolver,
    EffectiveConfig,
    ProfileStore,
    canonical_json,
    freeze,
    thaw,
)
from .schemas import AppSettings

__all__ = [
    "APPEND_KEY",
    "LAYER_ORDER",
    "AppSettings",
    "ConfigConflict",
    "ConfigLayer",
    "ConfigurationResolver",
    "EffectiveConfig",
    "Interpolator",
    "ProfileStore",
    "Provenance",
    "UnresolvedToken",
    "canonical_json",
    "deep_merge",
    "freeze",
    "merge_layer",
    "merge_layers",
    "thaw",
]
