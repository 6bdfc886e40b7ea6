"""
qlpack.yml and Customizations.qll editing.

The manifest is kept as the raw YAML mapping so fields this module does not
know about survive a load/save cycle unchanged. A missing `dependencies` key
and an empty `dependencies: {}` block are different manifests and are kept
apart.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml

logger = structlog.get_logger(__name__)

MANIFEST_FILE = "qlpack.yml"


class PackManifest:
    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(data or {})

    @property
    def name(self) -> Optional[str]:
        return self.data.get("name")

    @property
    def version(self) -> Optional[str]:
        value = self.data.get("version")
        return None if value is None else str(value)

    @property
    def library(self) -> bool:
        return bool(self.data.get("library", False))

    @property
    def extractor(self) -> Optional[str]:
        return self.data.get("extractor") or None

    @property
    def dependencies(self) -> Optional[Dict[str, str]]:
        deps = self.data.get("dependencies")
        if deps is None:
            return None
        return {str(name): str(constraint) for name, constraint in deps.items()}

    def has_dependencies_block(self) -> bool:
        return "dependencies" in self.data and self.data["dependencies"] is not None

    def add_dependency(self, name: str, constraint: str) -> None:
        deps = self.data.get("dependencies") or {}
        deps[name] = constraint
        self.data["dependencies"] = deps

    def remove_dependency(self, name: str) -> bool:
        """Drop ``name``; an emptied block is removed entirely. Returns whether it was present."""
        deps = self.data.get("dependencies")
        if deps is None:
            return False
        present = name in deps
        if present:
            del deps[name]
        if len(deps) == 0:
            del self.data["dependencies"]
        return present

    def pin_dependency(self, name: str, constraint: str) -> bool:
        """Set ``name`` to ``constraint`` only when the manifest declares dependencies."""
        if not self.has_dependencies_block():
            return False
        self.data["dependencies"][name] = constraint
        return True

    def dump(self) -> str:
        return yaml.safe_dump(self.data, sort_keys=False, default_flow_style=False)


def load_manifest(path: Path) -> PackManifest:
    with Path(path).open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a YAML mapping")
    return PackManifest(data)


def save_manifest(path: Path, manifest: PackManifest) -> None:
    logger.debug("manifest.save", path=str(path))
    Path(path).write_text(manifest.dump(), encoding="utf-8")


def customization_module(pack_name: str) -> str:
    """QL module path of a pack's customizations, e.g. `acme/java-ext` -> `acme.java_ext`."""
    return pack_name.replace("-", "_").replace("/", ".")


def append_extension(extension_path: Path, pack_name: str) -> str:
    """Append an import of ``pack_name``'s Customizations module to ``extension_path``."""
    line = f"import {customization_module(pack_name)}.Customizations"
    path = Path(extension_path)
    current = path.read_text(encoding="utf-8")
    path.write_text(f"{current}\n{line}\n", encoding="utf-8")
    logger.debug("manifest.extension.appended", path=str(path), line=line)
    return line
