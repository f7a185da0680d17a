"""
Rampart Runtime.

Loaders for manifests and compliance framework profiles.
"""

from .loaders import (
    FileProfileStore,
    MemoryProfileStore,
    load_document,
    load_manifest,
    parse_manifest,
)

__all__ = [
    "FileProfileStore",
    "MemoryProfileStore",
    "load_document",
    "load_manifest",
    "parse_manifest",
]
