"""
Read-only view over the packs in a directory tree.

`codeql pack ls` finds the packs; each pack's qlpack.yml is then read directly
and wins over the CLI output for dependencies, library flag and extractor,
since the CLI may report cached values for manifests edited during the run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from qlbundle.core.config import get_settings
from qlbundle.core.errors import MissingDependencyError
from qlbundle.services.codeql_cli import CodeQLCli
from qlbundle.services.manifest_editor import load_manifest
from qlbundle.services.models import (
    CodeQLPack,
    PackDependency,
    PackRole,
    RepositorySnapshot,
)

logger = structlog.get_logger(__name__)


def extension_point_for(pack_path: Path, pack_name: str, file_name: str) -> Path:
    """Location of the Customizations file a customization pack ships."""
    return Path(pack_path).parent / pack_name.replace("-", "_") / file_name


def classify(pack: CodeQLPack, extension_file: Optional[str] = None) -> PackRole:
    extension_file = extension_file or get_settings().extension_point_file
    if extension_point_for(pack.path, pack.name, extension_file).exists():
        return PackRole.CUSTOMIZATION
    if pack.library:
        return PackRole.LIBRARY
    return PackRole.QUERY


class PackRepository:
    def __init__(self, codeql: CodeQLCli, extension_file: Optional[str] = None):
        self.codeql = codeql
        self.extension_file = extension_file or get_settings().extension_point_file

    async def list(self, root: Path) -> List[CodeQLPack]:
        packs = await self.codeql.list_packs(root)
        for pack in packs:
            self._apply_manifest(pack)
            pack.role = classify(pack, self.extension_file)
        logger.debug(
            "repository.listed",
            root=str(root),
            count=len(packs),
            roles={role.value: sum(p.role is role for p in packs) for role in PackRole},
        )
        return packs

    async def snapshot(self, root: Path) -> RepositorySnapshot:
        return RepositorySnapshot.of(root, await self.list(root))

    @staticmethod
    def _apply_manifest(pack: CodeQLPack) -> None:
        if not pack.path.exists():
            return
        manifest = load_manifest(pack.path)
        pack.library = manifest.library
        if manifest.extractor is not None:
            pack.extractor = manifest.extractor
        declared = manifest.dependencies or {}
        inclusive: Dict[str, bool] = {d.name: d.inclusive for d in pack.dependencies}
        pack.dependencies = [
            PackDependency(name=name, version=constraint, inclusive=inclusive.get(name, True))
            for name, constraint in declared.items()
        ]


def select(packs: Iterable[CodeQLPack], names: Sequence[str]) -> List[CodeQLPack]:
    """Return the packs named in ``names``; any name not found is an error."""
    packs = list(packs)
    available = {pack.name for pack in packs}
    missing = [name for name in names if name not in available]
    if missing:
        raise MissingDependencyError(missing)
    wanted = set(names)
    return [pack for pack in packs if pack.name in wanted]


def find_dependency_cycle(packs: Iterable[CodeQLPack]) -> Optional[List[str]]:
    """
    Return one dependency cycle among ``packs`` as a closed name path, or None.

    Only edges between packs present in ``packs`` are considered. Packs that
    can be ordered are peeled off Kahn-style; whatever remains sits on or
    behind a cycle, which is then walked to report a concrete path.
    """
    graph: Dict[str, List[str]] = {}
    for pack in packs:
        graph.setdefault(pack.name, [])
        graph[pack.name].extend(pack.dependency_names())
    for name in graph:
        graph[name] = sorted({dep for dep in graph[name] if dep in graph})

    remaining = set(graph)
    changed = True
    while remaining and changed:
        changed = False
        for name in sorted(remaining):
            if not any(dep in remaining for dep in graph[name]):
                remaining.remove(name)
                changed = True

    if not remaining:
        return None

    # Every remaining node has an edge into `remaining`, so the walk must repeat
    start = sorted(remaining)[0]
    path = [start]
    seen = {start: 0}
    current = start
    while True:
        current = next(dep for dep in graph[current] if dep in remaining)
        if current in seen:
            return path[seen[current]:] + [current]
        seen[current] = len(path)
        path.append(current)
