"""
Patch Hook.

The patch phase is a controlled escape hatch: after every component is
synthesized and bound, an optional hook gets to adjust the constructs
directly.

The hook is either injected into the orchestrator or loaded from a
``patches.py`` file beside the manifest. The file must define:

    def apply_patches(context):
        bucket = context.construct_handles["assets"]
        bucket.versioned = True

``apply_patches`` may be a coroutine function.
"""

from __future__ import annotations

import importlib.util
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rampart.errors import PatchError

if TYPE_CHECKING:
    from rampart.components.base import ComponentInstance

logger = logging.getLogger(__name__)

PATCH_FUNCTION = "apply_patches"
DEFAULT_PATCH_FILE = "patches.py"

PatchHook = Callable[["PatchContext"], Any]


@dataclass(frozen=True)
class PatchContext:
    """
    What the patch hook can see.

    Attributes:
        instances: Component name -> ComponentInstance
        construct_handles: Component name -> "main" construct handle
        run_metadata: Run id, service, environment, framework, tags
    """

    instances: Mapping[str, ComponentInstance]
    construct_handles: Mapping[str, Any]
    run_metadata: Mapping[str, Any] = field(default_factory=dict)

    def handle(self, component: str) -> Any:
        """Get a component's main construct handle."""
        try:
            return self.construct_handles[component]
        except KeyError:
            raise KeyError(
                f"No component '{component}'. Known components: {sorted(self.construct_handles)}"
            ) from None


def load_patch_hook(path: str | Path) -> PatchHook | None:
    """
    Load ``apply_patches`` from a patch file.

    Args:
        path: Path to the patch file

    Returns:
        The hook, or None when the file does not exist or defines no
        callable ``apply_patches``

    Raises:
        PatchError: If the file exists but fails to import
    """
    path = Path(path)
    if not path.is_file():
        logger.debug(f"[patches] No patch file at {path}")
        return None

    module_name = f"rampart_patches_{abs(hash(str(path.resolve())))}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise PatchError(f"Cannot load patch file {path}", details={"path": str(path)})

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise PatchError(
            f"Patch file {path} failed to import: {e}",
            details={"path": str(path)},
        ) from e

    hook = getattr(module, PATCH_FUNCTION, None)
    if not callable(hook):
        logger.warning(f"[patches] {path} defines no callable {PATCH_FUNCTION}(); skipping patch phase")
        return None

    logger.info(f"[patches] Loaded patch hook from {path}")
    return hook


def discover_patch_hook(manifest_path: str | Path, file_name: str = DEFAULT_PATCH_FILE) -> PatchHook | None:
    """Load the patch hook that sits beside a manifest, if any."""
    return load_patch_hook(Path(manifest_path).parent / file_name)
