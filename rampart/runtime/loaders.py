"""
Manifest & Profile Loaders.

File and memory backends for the inputs of an orchestration run.

Design Principle:
    Start simple, scale as needed.
    - Development: FileProfileStore (one YAML/JSON file per framework)
    - Testing: MemoryProfileStore (in-memory)
    - Production: implement the ProfileStore protocol over your own store

Layout:
    profiles/
    ├── baseline.yaml
    ├── enhanced.yaml
    └── maximum.json

Usage:
    manifest = load_manifest("service.yml")

    profiles = FileProfileStore("profiles/")
    profiles.get("baseline")                 # ComplianceFrameworkProfile
    profiles.has_section("baseline", "queue")
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rampart.errors import ManifestError, MalformedProfileError
from rampart.schemas import ComplianceFrameworkProfile, Manifest

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")
PROFILE_SUFFIXES = (".yaml", ".yml", ".json")


def load_document(path: str | Path) -> dict[str, Any]:
    """
    Load a YAML or JSON document whose root must be a mapping.

    Raises:
        ManifestError: Unreadable file, parse error, or non-mapping root
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot read {path}: {e}", details={"path": str(path)}) from e

    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ManifestError(f"Cannot parse {path}: {e}", details={"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ManifestError(
            f"Root of {path} must be a mapping, got {type(data).__name__}",
            details={"path": str(path)},
        )
    return data


def parse_manifest(data: dict[str, Any], *, source: str = "<memory>") -> Manifest:
    """
    Validate raw manifest data.

    Raises:
        ManifestError: If the data does not satisfy the manifest schema
    """
    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(
            f"Manifest {source} is invalid: {e.error_count()} error(s)",
            details={"source": source, "errors": e.errors(include_url=False, include_context=False)},
        ) from e


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest file (YAML or JSON)."""
    data = load_document(path)
    manifest = parse_manifest(data, source=str(path))
    logger.info(f"[loader] Loaded manifest {path}: service={manifest.service}, components={len(manifest.components)}")
    return manifest


class MemoryProfileStore:
    """
    In-memory profile store for testing and embedding.

    Usage:
        store = MemoryProfileStore([
            ComplianceFrameworkProfile(name="baseline", sections={"queue": {...}}),
        ])
        resolver = ConfigurationResolver(profiles=store)
    """

    def __init__(self, profiles: Iterable[ComplianceFrameworkProfile] = ()):
        self._profiles: dict[str, ComplianceFrameworkProfile] = {}
        for profile in profiles:
            self.add(profile)

    def add(self, profile: ComplianceFrameworkProfile) -> None:
        self._profiles[profile.name] = profile

    def get(self, name: str) -> ComplianceFrameworkProfile | None:
        return self._profiles.get(name)

    def has_section(self, name: str, component_type: str) -> bool:
        profile = self._profiles.get(name)
        return profile is not None and profile.has_section(component_type)

    def list_names(self) -> list[str]:
        return sorted(self._profiles)

    def clear(self) -> None:
        self._profiles.clear()

    def __len__(self) -> int:
        return len(self._profiles)


class FileProfileStore:
    """
    Loads framework profiles from a directory, one file per framework.

    Each profile is read at most once per store; later lookups are served
    from memory. A file whose ``name`` disagrees with its file name is
    rejected as malformed.
    """

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)
        self._cache: dict[str, ComplianceFrameworkProfile] = {}

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _path_for(self, name: str) -> Path | None:
        for suffix in PROFILE_SUFFIXES:
            candidate = self._base_dir / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def get(self, name: str) -> ComplianceFrameworkProfile | None:
        """
        Get a profile by framework name.

        Returns:
            The profile, or None if no file exists for the name

        Raises:
            MalformedProfileError: If the file cannot be parsed or validated
        """
        if name in self._cache:
            return self._cache[name]

        path = self._path_for(name)
        if path is None:
            return None

        try:
            data = load_document(path)
        except ManifestError as e:
            raise MalformedProfileError(e.message, details={**e.details, "framework": name}) from e

        data.setdefault("name", name)
        profile = ComplianceFrameworkProfile.from_mapping(data, source=str(path))
        if profile.name != name:
            raise MalformedProfileError(
                f"Profile {path} declares name '{profile.name}', expected '{name}'",
                details={"source": str(path), "framework": name},
            )

        self._cache[name] = profile
        logger.info(f"[profile_store] Loaded profile {name} v{profile.version} ({len(profile.sections)} sections)")
        return profile

    def has_section(self, name: str, component_type: str) -> bool:
        profile = self.get(name)
        return profile is not None and profile.has_section(component_type)

    def list_names(self) -> list[str]:
        if not self._base_dir.is_dir():
            logger.warning(f"[profile_store] Profiles directory not found: {self._base_dir}")
            return []
        return sorted(
            {p.stem for p in self._base_dir.iterdir() if p.is_file() and p.suffix.lower() in PROFILE_SUFFIXES}
        )
