"""
Customization Weaver

Weaves each customization pack into the single standard library pack that
shares its extractor:

1. resolve: every customization gets exactly one compatible standard pack
   (no files are touched while resolving, so a bad input aborts cleanly)
2. weave: break the customization -> standard dependency, bundle the
   customization, stage a copy of the standard pack, make it depend on and
   import the customization, then bundle the staged copy
3. promote: the re-bundled standard packs replace their live versions
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import structlog

from qlbundle.core import fsops
from qlbundle.core.concurrency import bounded_map
from qlbundle.core.config import get_settings
from qlbundle.core.errors import (
    AmbiguousOrMissingBaseError,
    ExtensionPointNotFoundError,
    MissingCompatibilityTagError,
    UnsupportedConfigurationError,
)
from qlbundle.services.codeql_cli import CodeQLCli
from qlbundle.services.manifest_editor import (
    MANIFEST_FILE,
    append_extension,
    load_manifest,
    save_manifest,
)
from qlbundle.services.models import CodeQLPack, PackRole, RepositorySnapshot
from qlbundle.services.repository_mutator import RepositoryMutator

logger = structlog.get_logger(__name__)

STANDARD_PACKS_DIR = "standard-packs"
REPACKED_PACKS_DIR = "repacked-packs"


@dataclass(frozen=True)
class WeavePlan:
    customization: CodeQLPack
    base: CodeQLPack


class CustomizationWeaver:
    def __init__(
        self,
        codeql: CodeQLCli,
        mutator: RepositoryMutator,
        scratch_root: Path,
        concurrency_limit: Optional[int] = None,
        standard_scope: Optional[str] = None,
        extension_file: Optional[str] = None,
    ):
        settings = get_settings()
        self.codeql = codeql
        self.mutator = mutator
        self.standard_root = Path(scratch_root) / STANDARD_PACKS_DIR
        self.repacked_root = Path(scratch_root) / REPACKED_PACKS_DIR
        self.concurrency_limit = concurrency_limit or settings.concurrency_limit
        self.standard_scope = standard_scope or settings.standard_pack_scope
        self.extension_file = extension_file or settings.extension_point_file

    def compatible_bases(
        self, tag: str, snapshot: RepositorySnapshot
    ) -> List[CodeQLPack]:
        prefix = f"{self.standard_scope}/"
        return [
            pack
            for pack in snapshot.by_role(PackRole.LIBRARY)
            if pack.name.startswith(prefix) and pack.extractor == tag
        ]

    def resolve(
        self, customizations: Sequence[CodeQLPack], snapshot: RepositorySnapshot
    ) -> List[WeavePlan]:
        plans = []
        for pack in customizations:
            logger.debug("weaver.considering", customization=pack.name)
            if not pack.extractor:
                raise MissingCompatibilityTagError(pack.name)

            candidates = self.compatible_bases(pack.extractor, snapshot)
            if len(candidates) != 1:
                raise AmbiguousOrMissingBaseError(
                    pack.name, pack.extractor, [c.name for c in candidates]
                )
            base = candidates[0]

            extension = base.version_dir / self.extension_file
            if not extension.exists():
                raise ExtensionPointNotFoundError(base.name, str(extension))

            logger.debug("weaver.base.resolved", customization=pack.name, base=base.name)
            plans.append(WeavePlan(customization=pack, base=base))

        targets: Dict[str, List[str]] = defaultdict(list)
        for plan in plans:
            targets[plan.base.name].append(plan.customization.name)
        for base_name, names in targets.items():
            if len(names) > 1:
                raise UnsupportedConfigurationError(base_name, names)
        return plans

    async def weave(
        self, customizations: Sequence[CodeQLPack], snapshot: RepositorySnapshot
    ) -> List[CodeQLPack]:
        """Weave all customizations and promote the results. Returns the woven standard packs."""
        plans = self.resolve(customizations, snapshot)
        if not plans:
            return []

        try:
            woven = await bounded_map(plans, self._weave_one, self.concurrency_limit)
        except BaseException:
            await self.mutator.purge(self.repacked_root)
            raise
        finally:
            await self.mutator.purge(self.standard_root)
        logger.debug("weaver.rebundled", count=len(woven))

        await self.mutator.promote_all(
            [pack.identity for pack in woven], self.repacked_root
        )
        logger.info("weaver.customized", packs=[pack.name for pack in woven])
        return woven

    async def _weave_one(self, plan: WeavePlan) -> CodeQLPack:
        pack, base = plan.customization, plan.base
        bundle_root = self.mutator.bundle_root

        manifest = load_manifest(pack.path)
        if manifest.remove_dependency(base.name):
            logger.debug(
                "weaver.cycle.detached", customization=pack.name, base=base.name
            )
        save_manifest(pack.path, manifest)

        # All dependencies of the customization are expected in the bundle
        await self.codeql.bundle_pack(
            pack.path, self.mutator.qlpacks_path, [bundle_root]
        )

        scope, name, version = base.identity
        staged_dir = self.standard_root / scope / name / version
        logger.debug("weaver.stage", source=str(base.version_dir), dest=str(staged_dir))
        await fsops.copy_tree(base.version_dir, staged_dir)

        staged_manifest_path = staged_dir / MANIFEST_FILE
        staged_manifest = load_manifest(staged_manifest_path)
        staged_manifest.add_dependency(pack.name, pack.version)
        save_manifest(staged_manifest_path, staged_manifest)

        append_extension(staged_dir / self.extension_file, pack.name)

        await self.codeql.rebundle_pack(
            staged_manifest_path, [bundle_root], output_path=self.repacked_root
        )
        return base
