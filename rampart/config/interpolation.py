"""
Deferred Interpolation Tokens.

Two token forms are recognized in string values anywhere in a merged
configuration:

    ${env:<key>}    value of <key> in the active environment's defaults
    ${envIs:<env>}  true when the active environment is <env>

A token that makes up the whole string is replaced by the raw value, so
types survive (``"${env:replicas}"`` becomes ``3``, not ``"3"``). Tokens
embedded in longer strings are substituted textually.

An ``${env:}`` token whose key is absent is not an error: the value becomes
an UnresolvedToken carrying the original text, and a warning is recorded so
a later stage can resolve it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from rampart.config.merge import join_path

TOKEN_PATTERN = re.compile(r"\$\{(env|envIs):([^}]+)\}")


@dataclass(frozen=True)
class UnresolvedToken:
    """
    A configuration value whose interpolation is pending.

    Distinct from ``str`` so consumers can tell a literal value from a
    deferred one.

    Attributes:
        raw: The original string, tokens intact
        missing: Keys that could not be resolved
    """

    raw: str
    missing: tuple[str, ...] = ()

    def __str__(self) -> str:
        return self.raw

    def to_dict(self) -> dict[str, Any]:
        return {"$unresolved": self.raw}


@dataclass
class Interpolator:
    """
    Resolves tokens against one environment.

    Attributes:
        environment: Active environment name
        defaults: The environment's ``defaults`` mapping
        warnings: Messages for every unresolved token encountered
    """

    environment: str
    defaults: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def resolve(self, value: Any, path: str = "") -> Any:
        """Return a copy of ``value`` with every token resolved."""
        if isinstance(value, dict):
            return {k: self.resolve(v, join_path(path, k)) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v, f"{path}[{i}]") for i, v in enumerate(value)]
        if isinstance(value, str) and "${" in value:
            return self._resolve_string(value, path)
        return value

    def _resolve_string(self, text: str, path: str) -> Any:
        whole = TOKEN_PATTERN.fullmatch(text)
        if whole is not None:
            kind, arg = whole.group(1), whole.group(2).strip()
            if kind == "envIs":
                return self.environment == arg
            if arg in self.defaults:
                return deepcopy(self.defaults[arg])
            return self._unresolved(text, (arg,), path)

        missing: list[str] = []

        def substitute(match: re.Match[str]) -> str:
            kind, arg = match.group(1), match.group(2).strip()
            if kind == "envIs":
                return "true" if self.environment == arg else "false"
            if arg in self.defaults:
                return str(self.defaults[arg])
            missing.append(arg)
            return match.group(0)

        result = TOKEN_PATTERN.sub(substitute, text)
        if missing:
            return self._unresolved(text, tuple(missing), path)
        return result

    def _unresolved(self, text: str, missing: tuple[str, ...], path: str) -> UnresolvedToken:
        self.warnings.append(
            f"unresolved token(s) {', '.join(missing)} at '{path}' "
            f"(environment '{self.environment}' has no such default)"
        )
        return UnresolvedToken(raw=text, missing=missing)


def find_unresolved(value: Any, path: str = "") -> list[tuple[str, UnresolvedToken]]:
    """List ``(path, token)`` for every UnresolvedToken in a nested value."""
    found: list[tuple[str, UnresolvedToken]] = []
    if isinstance(value, UnresolvedToken):
        found.append((path, value))
    elif isinstance(value, Mapping):
        for k, v in value.items():
            found.extend(find_unresolved(v, join_path(path, k)))
    elif isinstance(value, (list, tuple)):
        for i, v in enumerate(value):
            found.extend(find_unresolved(v, f"{path}[{i}]"))
    return found
