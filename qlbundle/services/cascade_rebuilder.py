"""
Cascade Rebuilder

Query packs compiled against a standard pack that has since been woven are
stale and must be recompiled against the new bundle contents.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

import structlog

from qlbundle.core.concurrency import bounded_map
from qlbundle.core.config import get_settings
from qlbundle.services.codeql_cli import CodeQLCli
from qlbundle.services.manifest_editor import load_manifest, save_manifest
from qlbundle.services.models import CodeQLPack, PackRole, RepositorySnapshot
from qlbundle.services.repository_mutator import RepositoryMutator

logger = structlog.get_logger(__name__)

RECREATED_PACKS_DIR = "recreated-packs"


class CascadeRebuilder:
    def __init__(
        self,
        codeql: CodeQLCli,
        mutator: RepositoryMutator,
        scratch_root: Path,
        concurrency_limit: Optional[int] = None,
        suite_helpers_pack: Optional[str] = None,
    ):
        settings = get_settings()
        self.codeql = codeql
        self.mutator = mutator
        self.recreated_root = Path(scratch_root) / RECREATED_PACKS_DIR
        self.concurrency_limit = concurrency_limit or settings.concurrency_limit
        self.suite_helpers_pack = suite_helpers_pack or settings.suite_helpers_pack

    async def create_query_packs(self, packs: Sequence[CodeQLPack]) -> None:
        """Compile workspace query packs into the bundle, whether or not they were packaged before."""
        bundle_root = self.mutator.bundle_root

        async def create(pack: CodeQLPack) -> None:
            logger.debug("cascade.create", pack=pack.name)
            await self.codeql.create_pack(
                pack.path, self.mutator.qlpacks_path, [bundle_root]
            )

        await bounded_map(packs, create, self.concurrency_limit)

    @staticmethod
    def is_affected(pack: CodeQLPack, woven: Sequence[CodeQLPack]) -> bool:
        return any(pack.depends_on(w.name) for w in woven)

    def affected_query_packs(
        self, snapshot: RepositorySnapshot, woven: Sequence[CodeQLPack]
    ) -> List[CodeQLPack]:
        return [
            pack
            for pack in snapshot.by_role(PackRole.QUERY)
            if self.is_affected(pack, woven)
        ]

    def patch_dependency_on_suite_helpers(self, pack: CodeQLPack) -> bool:
        """
        Accept whichever suite-helpers version the bundle provides.

        Some bundled query packs depend on a suite-helpers version that is not
        shipped in the bundle, so strict resolution fails on recompilation.
        The compiler is relied on for correctness.
        """
        manifest = load_manifest(pack.path)
        if not manifest.pin_dependency(self.suite_helpers_pack, "*"):
            return False
        logger.debug(
            "cascade.suite_helpers.patched", pack=pack.name, dependency=self.suite_helpers_pack
        )
        save_manifest(pack.path, manifest)
        return True

    async def rebuild(
        self, snapshot: RepositorySnapshot, woven: Sequence[CodeQLPack]
    ) -> List[CodeQLPack]:
        """Recompile and promote every query pack that depends on a woven pack."""
        if not woven:
            return []
        bundle_root = self.mutator.bundle_root

        async def recreate_if_affected(pack: CodeQLPack) -> Optional[CodeQLPack]:
            logger.debug("cascade.considering", pack=pack.name)
            if not self.is_affected(pack, woven):
                return None
            logger.debug(
                "cascade.recreate", pack=pack.name, output=str(self.recreated_root)
            )
            self.patch_dependency_on_suite_helpers(pack)
            await self.codeql.recreate_pack(
                pack.path, [bundle_root], output_path=self.recreated_root
            )
            return pack

        try:
            results = await bounded_map(
                snapshot.by_role(PackRole.QUERY),
                recreate_if_affected,
                self.concurrency_limit,
            )
        except BaseException:
            await self.mutator.purge(self.recreated_root)
            raise

        recreated = [pack for pack in results if pack is not None]
        await self.mutator.promote_all(
            [pack.identity for pack in recreated], self.recreated_root
        )
        logger.info("cascade.recreated", packs=[pack.name for pack in recreated])
        return recreated
