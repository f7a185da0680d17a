"""
Layered Deep Merge.

Merge policy:
    - mapping + mapping: recursive merge, key by key
    - list: replaced wholesale (never concatenated)
    - scalar: replaced
    - {"$append": [...]}: appended to the lower list (or starts a new one)
    - None: explicit null, replaces the lower value

Every merge is purely functional: neither input is mutated and the result
never shares containers with its inputs.

Provenance:
    Each merge step records, per dotted leaf path, the layer that last
    wrote it. When a higher layer replaces a whole subtree with a scalar
    (or a scalar with a mapping), the lower layer's entries under that
    path are dropped, so every surviving leaf traces to exactly one layer.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any

APPEND_KEY = "$append"


def is_append_marker(value: Any) -> bool:
    """Check whether a value is an ``{"$append": [...]}`` marker."""
    return isinstance(value, dict) and len(value) == 1 and APPEND_KEY in value


def join_path(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else str(key)


class Provenance:
    """
    Tracks which layer contributed each leaf of a merged configuration.

    Attributes:
        winners: Leaf path -> layer that currently owns it
        history: Leaf path -> every layer that wrote it, in merge order
    """

    def __init__(self) -> None:
        self.winners: dict[str, str] = {}
        self.history: dict[str, list[str]] = {}

    def record(self, path: str, layer: str) -> None:
        self.winners[path] = layer
        layers = self.history.setdefault(path, [])
        if layer not in layers:
            layers.append(layer)

    def drop(self, path: str) -> None:
        """Forget ``path`` and everything beneath it."""
        prefix = path + "."
        for key in [k for k in self.winners if k == path or k.startswith(prefix)]:
            del self.winners[key]

    def layers(self) -> list[str]:
        """Layers that still own at least one leaf."""
        return list(dict.fromkeys(self.winners.values()))


def _append_items(marker: dict[str, Any], path: str) -> list[Any]:
    items = marker[APPEND_KEY]
    if not isinstance(items, list):
        raise TypeError(f"'{APPEND_KEY}' at '{path}' must be a list, got {type(items).__name__}")
    return deepcopy(items)


def merge_layer(
    base: dict[str, Any],
    override: dict[str, Any],
    *,
    layer: str,
    provenance: Provenance | None = None,
    prefix: str = "",
) -> dict[str, Any]:
    """
    Merge one layer over an already merged base.

    Args:
        base: Configuration merged from lower layers
        override: The layer being applied
        layer: Layer name recorded in provenance
        provenance: Provenance tracker to update (optional)
        prefix: Dotted path of ``base`` within the full configuration

    Returns:
        New merged mapping

    Raises:
        TypeError: If either side is not a mapping, or an append marker
            does not hold a list
    """
    if not isinstance(base, dict) or not isinstance(override, dict):
        raise TypeError(
            f"merge requires mappings at '{prefix or '<root>'}', got "
            f"{type(base).__name__} and {type(override).__name__}"
        )

    result: dict[str, Any] = deepcopy(base)

    for key, value in override.items():
        path = join_path(prefix, key)
        current = result.get(key)

        if is_append_marker(value):
            items = _append_items(value, path)
            result[key] = list(current) + items if isinstance(current, list) else items
            if provenance is not None:
                provenance.drop(path)
                provenance.record(path, layer)
            continue

        if isinstance(value, dict):
            if key in result and not isinstance(current, dict) and provenance is not None:
                provenance.drop(path)
            lower = current if isinstance(current, dict) else {}
            result[key] = merge_layer(lower, value, layer=layer, provenance=provenance, prefix=path)
            if not value and provenance is not None and not lower:
                provenance.record(path, layer)
            continue

        result[key] = deepcopy(value)
        if provenance is not None:
            provenance.drop(path)
            provenance.record(path, layer)

    return result


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge two mappings without provenance tracking."""
    return merge_layer(base, override, layer="override")


def merge_layers(
    layers: list[tuple[str, dict[str, Any]]],
    provenance: Provenance | None = None,
) -> dict[str, Any]:
    """
    Merge an ordered stack of ``(layer_name, mapping)`` pairs, lowest first.

    Example:
        merged = merge_layers([
            ("fallback", {"storage": {"size": 20, "type": "standard"}}),
            ("manifest", {"storage": {"size": 50}}),
        ])
        # {"storage": {"size": 50, "type": "standard"}}
    """
    result: dict[str, Any] = {}
    for name, data in layers:
        result = merge_layer(result, data, layer=name, provenance=provenance)
    return result


def get_path(data: Any, path: str) -> Any:
    """
    Read a dotted path from nested mappings.

    Raises:
        KeyError: If any segment is missing
    """
    current = data
    for part in path.split("."):
        try:
            current = current[part]
        except (KeyError, TypeError):
            raise KeyError(path) from None
    return current
