"""
CodeQL CLI facade.

Every command runs as a subprocess of the `codeql` executable shipped at the
root of the bundle. Output is captured in full and any non-zero exit raises
ToolchainError; nothing is retried.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog
from packaging.version import InvalidVersion, Version

from qlbundle.core import fsops
from qlbundle.core.config import get_settings
from qlbundle.core.errors import IntrospectionError, ToolchainError
from qlbundle.services.manifest_editor import MANIFEST_FILE
from qlbundle.services.models import CodeQLPack, PackDependency, PackRole, VersionInfo

logger = structlog.get_logger(__name__)

PathArg = Union[str, Path]

LOCK_FILE = "codeql-pack.lock.yml"
DEPENDENCY_DIR = ".codeql"
CACHE_DIR = ".cache"
PRECOMPILED_SUFFIX = ".qlx"


@dataclass
class RunResult:
    exit_code: int
    stdout: str
    stderr: str


class CodeQLCli:
    def __init__(
        self,
        codeql_home: PathArg,
        scratch_root: Optional[PathArg] = None,
        qlx_min_version: Optional[str] = None,
        executable: Optional[str] = None,
    ):
        settings = get_settings()
        self.codeql_home = Path(codeql_home)
        self.executable = self.codeql_home / (executable or settings.codeql_executable)
        self.scratch_root = Path(
            scratch_root or Path(settings.temp_root) / "qlbundle-toolchain"
        )
        self.qlx_min_version = Version(qlx_min_version or settings.qlx_min_version)
        self._version: Optional[VersionInfo] = None

    async def _run(self, *args: str) -> RunResult:
        logger.debug("codeql.run", args=list(args))
        process = await asyncio.create_subprocess_exec(
            str(self.executable),
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # A cancelled stage must not leave the toolchain writing behind it
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            logger.debug("codeql.run.killed", args=list(args))
            raise
        result = RunResult(
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if result.exit_code != 0:
            logger.debug("codeql.run.failed", args=list(args), exit_code=result.exit_code)
            raise ToolchainError(result.exit_code, result.stderr, args)
        return result

    def _scratch_dir(self, kind: str) -> Path:
        # Random suffix keeps concurrent operations on same-named packs apart
        return self.scratch_root / f"{kind}-{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _additional_packs_arg(additional_packs: Sequence[PathArg]) -> List[str]:
        if not additional_packs:
            return []
        return [f"--additional-packs={':'.join(str(p) for p in additional_packs)}"]

    async def version(self) -> VersionInfo:
        if self._version is None:
            result = await self._run("version", "--format=json")
            self._version = VersionInfo.model_validate(json.loads(result.stdout))
        return self._version

    async def supports_qlx(self) -> bool:
        info = await self.version()
        try:
            return Version(info.version) >= self.qlx_min_version
        except InvalidVersion:
            logger.warning("codeql.version.unparseable", version=info.version)
            return False

    async def list_packs(self, root_directory: PathArg = ".") -> List[CodeQLPack]:
        args = ["pack", "ls", "--format=json"]
        if str(root_directory) != ".":
            args.append(str(root_directory))
        logger.debug("codeql.list_packs", root=str(root_directory))
        try:
            result = await self._run(*args)
        except ToolchainError as e:
            raise IntrospectionError(e.exit_code, e.stderr, e.command) from e

        packs: Dict[str, Dict[str, Any]] = json.loads(result.stdout).get("packs", {})
        listed = []
        for path, raw in packs.items():
            dependencies = [
                PackDependency(
                    name=name,
                    version=str(dep.get("text", "*")),
                    inclusive=bool(dep.get("inclusive", True)),
                )
                for name, dep in (raw.get("dependencies") or {}).items()
            ]
            library = bool(raw.get("library", False))
            listed.append(
                CodeQLPack(
                    path=Path(path),
                    name=raw["name"],
                    version=str(raw["version"]),
                    library=library,
                    dependencies=dependencies,
                    extractor=raw.get("extractor") or None,
                    role=PackRole.LIBRARY if library else PackRole.QUERY,
                )
            )
        return listed

    async def bundle_pack(
        self,
        pack_path: PathArg,
        output_path: PathArg,
        additional_packs: Sequence[PathArg] = (),
    ) -> None:
        args = ["pack", "bundle", f"--pack-path={output_path}", "--format=json"]
        args.extend(self._additional_packs_arg(additional_packs))
        args.append(str(pack_path))
        await self._run(*args)

    async def create_pack(
        self,
        pack_path: PathArg,
        output_path: PathArg,
        additional_packs: Sequence[PathArg] = (),
        qlx: bool = False,
    ) -> None:
        pack_path = Path(pack_path)
        if pack_path.name == MANIFEST_FILE:
            pack_path = pack_path.parent
        args = [
            "pack",
            "create",
            f"--output={output_path}",
            "--threads=0",
            "--format=json",
        ]
        args.extend(self._additional_packs_arg(additional_packs))
        if qlx:
            args.append("--qlx")
        args.append(str(pack_path))
        await self._run(*args)

    async def rebundle_pack(
        self,
        pack_path: PathArg,
        additional_packs: Sequence[PathArg] = (),
        output_path: Optional[PathArg] = None,
    ) -> None:
        """
        Bundle a pack that already lives in a `<scope>/<name>/<version>` tree.

        The CLI refuses to bundle a pack onto its own location, so the pack's
        name directory is moved to a scratch area first and bundled from there.
        Without ``output_path`` the result lands in the tree the pack came from.
        If bundling fails the pack is moved back to where it was.
        """
        manifest = Path(pack_path)
        version_dir = manifest.parent
        name_dir = version_dir.parent
        scope_dir = name_dir.parent
        output = Path(output_path) if output_path else scope_dir.parent

        scratch = self._scratch_dir("rebundle")
        scratch_name_dir = scratch / scope_dir.name / name_dir.name
        logger.debug("codeql.rebundle.move", source=str(name_dir), scratch=str(scratch))
        await fsops.move(name_dir, scratch_name_dir)
        try:
            await self.bundle_pack(
                scratch_name_dir / version_dir.name / manifest.name,
                output,
                additional_packs,
            )
        except BaseException:
            if not name_dir.exists():
                logger.debug("codeql.rebundle.restore", pack=str(name_dir))
                await fsops.move(scratch_name_dir, name_dir)
            raise
        finally:
            await fsops.remove(scratch)

    async def recreate_pack(
        self,
        pack_path: PathArg,
        additional_packs: Sequence[PathArg] = (),
        output_path: Optional[PathArg] = None,
    ) -> None:
        """
        Recompile a pack from a clean copy of its version directory.

        The lock file, resolved dependencies, caches and precompiled queries are
        stripped from the copy so the pack is resolved against
        ``additional_packs`` again.
        """
        manifest = Path(pack_path)
        version_dir = manifest.parent
        name_dir = version_dir.parent
        scope_dir = name_dir.parent
        output = Path(output_path) if output_path else scope_dir.parent

        scratch = self._scratch_dir("recreate")
        scratch_version_dir = scratch / scope_dir.name / name_dir.name / version_dir.name
        logger.debug(
            "codeql.recreate.copy", source=str(version_dir), scratch=str(scratch)
        )
        try:
            await fsops.copy_tree(version_dir, scratch_version_dir)
            await self._strip_compiled_state(scratch_version_dir)
            qlx = await self.supports_qlx()
            await self.create_pack(
                scratch_version_dir / manifest.name,
                output,
                additional_packs,
                qlx=qlx,
            )
        finally:
            await fsops.remove(scratch)

    async def _strip_compiled_state(self, version_dir: Path) -> None:
        for name in (LOCK_FILE, DEPENDENCY_DIR, CACHE_DIR):
            logger.debug("codeql.recreate.strip", path=str(version_dir / name))
            await fsops.remove(version_dir / name)
        precompiled = await asyncio.to_thread(
            lambda: list(version_dir.rglob(f"*{PRECOMPILED_SUFFIX}"))
        )
        for path in precompiled:
            await fsops.remove(path)
