"""
CodeQL bundle customization pipeline.

Stages run strictly one after another; each stage that reads the bundle works
from a fresh enumeration taken after the previous stage's promotions:

    bundle library packs -> snapshot -> weave customizations -> snapshot
    (cycle check) -> create query packs -> snapshot -> recompile dependents

Scratch space for a run lives under `<temp root>/qlbundle-<run id>` and is
removed when the run ends, whether or not it succeeded.
"""

from __future__ import annotations

import asyncio
import tarfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import structlog

from qlbundle.core.concurrency import unbounded_map
from qlbundle.core.config import Settings, get_settings
from qlbundle.core.errors import DependencyCycleError
from qlbundle.services.cascade_rebuilder import CascadeRebuilder
from qlbundle.services.codeql_cli import CodeQLCli
from qlbundle.services.customization_weaver import CustomizationWeaver
from qlbundle.services.models import CodeQLPack, PackRole, RepositorySnapshot
from qlbundle.services.pack_repository import PackRepository, find_dependency_cycle
from qlbundle.services.release import ReleaseClient
from qlbundle.services.repository_mutator import RepositoryMutator

logger = structlog.get_logger(__name__)

ARCHIVE_NAME = "codeql-bundle.tar.gz"


@dataclass
class CustomizationResult:
    woven: List[CodeQLPack] = field(default_factory=list)
    recreated: List[CodeQLPack] = field(default_factory=list)


class Bundle:
    def __init__(
        self,
        bundle_path: Path,
        tag: str,
        tmp_dir: Optional[Path] = None,
        settings: Optional[Settings] = None,
        codeql: Optional[CodeQLCli] = None,
    ):
        self.settings = settings or get_settings()
        self.bundle_path = Path(bundle_path)
        self.tag = tag
        self.run_id = uuid.uuid4().hex[:12]
        self.tmp_dir = Path(tmp_dir or self.settings.temp_root)
        self.scratch_root = self.tmp_dir / f"qlbundle-{self.run_id}"
        self._codeql = codeql

    @classmethod
    async def get_bundle_by_tag(
        cls,
        repository: str,
        tag: str,
        tmp_dir: Optional[Path] = None,
        client: Optional[ReleaseClient] = None,
    ) -> "Bundle":
        settings = get_settings()
        tmp_dir = Path(tmp_dir or settings.temp_root)
        client = client or ReleaseClient()
        resolved_tag, bundle_path = await client.fetch_bundle(repository, tag, tmp_dir)
        return cls(bundle_path, resolved_tag, tmp_dir=tmp_dir, settings=settings)

    def get_tag(self) -> str:
        return self.tag

    def get_codeql(self) -> CodeQLCli:
        if self._codeql is None:
            self._codeql = CodeQLCli(
                self.bundle_path,
                scratch_root=self.scratch_root / "toolchain",
                qlx_min_version=self.settings.qlx_min_version,
                executable=self.settings.codeql_executable,
            )
        return self._codeql

    @staticmethod
    def group_packs(packs: Iterable[CodeQLPack]) -> Dict[PackRole, List[CodeQLPack]]:
        groups: Dict[PackRole, List[CodeQLPack]] = {role: [] for role in PackRole}
        for pack in packs:
            groups[pack.role].append(pack)
        return groups

    @staticmethod
    def check_cycles(snapshot: RepositorySnapshot) -> None:
        cycle = find_dependency_cycle(snapshot.packs)
        if cycle:
            raise DependencyCycleError(cycle)

    async def add_packs(self, workspace: Path, *packs: CodeQLPack) -> CustomizationResult:
        workspace = Path(workspace)
        codeql = self.get_codeql()
        repository = PackRepository(codeql, self.settings.extension_point_file)
        mutator = RepositoryMutator(self.bundle_path)
        limit = self.settings.concurrency_limit
        weaver = CustomizationWeaver(
            codeql,
            mutator,
            self.scratch_root,
            concurrency_limit=limit,
            standard_scope=self.settings.standard_pack_scope,
            extension_file=self.settings.extension_point_file,
        )
        rebuilder = CascadeRebuilder(
            codeql,
            mutator,
            self.scratch_root,
            concurrency_limit=limit,
            suite_helpers_pack=self.settings.suite_helpers_pack,
        )

        groups = self.group_packs(packs)
        logger.info(
            "bundle.add_packs",
            run_id=self.run_id,
            query=len(groups[PackRole.QUERY]),
            library=len(groups[PackRole.LIBRARY]),
            customization=len(groups[PackRole.CUSTOMIZATION]),
        )

        try:
            await unbounded_map(
                groups[PackRole.LIBRARY],
                lambda pack: codeql.bundle_pack(
                    pack.path, mutator.qlpacks_path, [workspace]
                ),
            )

            snapshot = await repository.snapshot(self.bundle_path)
            woven = await weaver.weave(groups[PackRole.CUSTOMIZATION], snapshot)

            snapshot = await repository.snapshot(self.bundle_path)
            self.check_cycles(snapshot)

            # TODO: verify that every dependency of the query packs is in the bundle
            await rebuilder.create_query_packs(groups[PackRole.QUERY])

            snapshot = await repository.snapshot(self.bundle_path)
            recreated = await rebuilder.rebuild(snapshot, woven)
        finally:
            await mutator.purge(self.scratch_root)

        return CustomizationResult(woven=woven, recreated=recreated)

    async def bundle(self, output_dir: Path) -> Path:
        """Archive the bundle directory as `<output_dir>/codeql-bundle.tar.gz`."""
        output_dir = Path(output_dir)
        output_path = output_dir / ARCHIVE_NAME
        logger.debug("bundle.archive", output=str(output_path))

        def create_archive() -> None:
            output_dir.mkdir(parents=True, exist_ok=True)
            with tarfile.open(output_path, "w:gz") as tar:
                tar.add(self.bundle_path, arcname=self.bundle_path.name)

        await asyncio.to_thread(create_archive)
        return output_path
