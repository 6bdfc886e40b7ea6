"""
Promotion of staged packs into the live bundle.

The live `qlpacks` tree is only written here, and only between stages.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

import structlog

from qlbundle.core import fsops
from qlbundle.services.models import PackIdentity

logger = structlog.get_logger(__name__)

QLPACKS_DIR = "qlpacks"


class RepositoryMutator:
    def __init__(self, bundle_root: Path):
        self.bundle_root = Path(bundle_root)

    @property
    def qlpacks_path(self) -> Path:
        return self.bundle_root / QLPACKS_DIR

    def destination(self, identity: PackIdentity) -> Path:
        scope, name, version = identity
        return self.qlpacks_path / scope / name / version

    async def replace(self, identity: PackIdentity, staged_path: Path) -> Path:
        """Swap the live pack at ``identity`` for ``staged_path``; nothing of the old copy survives."""
        dest = self.destination(identity)
        logger.debug("mutator.replace.remove", path=str(dest))
        await fsops.remove(dest)
        logger.debug("mutator.replace.move", source=str(staged_path), dest=str(dest))
        await fsops.move(staged_path, dest)
        return dest

    async def promote_all(
        self, identities: Iterable[PackIdentity], staging_root: Path
    ) -> List[Path]:
        """Replace each identity with its counterpart under ``staging_root``, then purge it."""
        promoted = []
        for scope, name, version in identities:
            staged = Path(staging_root) / scope / name / version
            promoted.append(await self.replace((scope, name, version), staged))
        await self.purge(staging_root)
        return promoted

    @staticmethod
    async def purge(scratch_root: Path) -> None:
        logger.debug("mutator.purge", path=str(scratch_root))
        await fsops.remove(scratch_root)
