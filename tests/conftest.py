"""Pytest configuration and fixtures for bundle customization tests

Provides:
- make_pack: writes a pack (qlpack.yml plus optional extension points) to disk
- bundle_env: an extracted bundle layout, a workspace and a scratch dir
- FakeCodeQL: the real CLI facade with the subprocess replaced by an
  in-process emulation of `version`, `pack ls`, `pack bundle`, `pack create`
"""

import json
import shutil
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional, Set

import pytest
import yaml

from qlbundle.core.config import Settings
from qlbundle.core.errors import ToolchainError
from qlbundle.services.codeql_cli import CodeQLCli, RunResult


class FakeCodeQL(CodeQLCli):
    """Emulates the CodeQL CLI commands used by the pipeline on the local filesystem."""

    def __init__(self, codeql_home, scratch_root=None, cli_version="2.15.0", **kwargs):
        super().__init__(codeql_home, scratch_root=scratch_root, **kwargs)
        self.cli_version = cli_version
        self.calls: List[List[str]] = []
        self.fail_commands: Set[str] = set()
        self.fail_when: Optional[Callable[[List[str]], bool]] = None
        self.on_call: Optional[Callable[[List[str]], None]] = None

    @staticmethod
    def _option(args, prefix: str) -> Optional[str]:
        for arg in args:
            if arg.startswith(prefix):
                return arg[len(prefix):]
        return None

    async def _run(self, *args: str) -> RunResult:
        args = list(args)
        self.calls.append(args)
        if self.on_call:
            self.on_call(args)
        command = args[1] if args[0] == "pack" else args[0]
        if command in self.fail_commands or (self.fail_when and self.fail_when(args)):
            raise ToolchainError(2, f"{command} failed", args)

        if args[0] == "version":
            return RunResult(0, json.dumps(
                {
                    "productName": "CodeQL",
                    "vendor": "GitHub",
                    "version": self.cli_version,
                    "sha": "abc123",
                    "branches": ["codeql-cli-" + self.cli_version],
                    "copyright": "Copyright (C) 2019-2024, GitHub, Inc.",
                    "unpackedLocation": str(self.codeql_home),
                    "configFileLocation": "",
                    "configFileFound": False,
                }
            ), "")
        if command == "ls":
            root = Path(args[3]) if len(args) > 3 else Path.cwd()
            return RunResult(0, json.dumps({"packs": self._list(root)}), "")
        if command == "bundle":
            self._install(Path(args[-1]), Path(self._option(args, "--pack-path=")))
            return RunResult(0, "{}", "")
        if command == "create":
            self._install(Path(args[-1]), Path(self._option(args, "--output=")))
            return RunResult(0, "{}", "")
        raise AssertionError(f"unexpected command {args}")

    @staticmethod
    def _list(root: Path) -> Dict[str, dict]:
        packs = {}
        for manifest in sorted(root.rglob("qlpack.yml")):
            if ".codeql" in manifest.parts:
                continue
            data = yaml.safe_load(manifest.read_text()) or {}
            packs[str(manifest)] = {
                "name": data["name"],
                "version": str(data["version"]),
                "library": bool(data.get("library", False)),
                "dependencies": {
                    name: {"text": str(constraint), "inclusive": True}
                    for name, constraint in (data.get("dependencies") or {}).items()
                },
                "extractor": data.get("extractor"),
            }
        return packs

    @staticmethod
    def _install(pack_path: Path, output: Path) -> None:
        manifest = pack_path if pack_path.name == "qlpack.yml" else pack_path / "qlpack.yml"
        data = yaml.safe_load(manifest.read_text())
        scope, name = data["name"].split("/", 1)
        dest = output / scope / name / str(data["version"])
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(manifest.parent, dest)

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if c[0] == "pack" and c[1] == name]


def write_pack(
    pack_dir: Path,
    name: str,
    version: str = "1.0.0",
    library: bool = True,
    extractor: Optional[str] = None,
    dependencies: Optional[Dict[str, str]] = None,
    extension_point: bool = False,
    customizes: bool = False,
) -> Path:
    pack_dir.mkdir(parents=True, exist_ok=True)
    data = {"name": name, "version": version, "library": library}
    if extractor:
        data["extractor"] = extractor
    if dependencies is not None:
        data["dependencies"] = dict(dependencies)
    manifest = pack_dir / "qlpack.yml"
    manifest.write_text(yaml.safe_dump(data, sort_keys=False))
    if extension_point:
        (pack_dir / "Customizations.qll").write_text("import java\n")
    if customizes:
        module_dir = pack_dir / name.replace("-", "_")
        module_dir.mkdir(parents=True, exist_ok=True)
        (module_dir / "Customizations.qll").write_text("import java\n\nclass Sanitizer {}\n")
    return manifest


def read_manifest(path: Path) -> dict:
    return yaml.safe_load(Path(path).read_text()) or {}


@pytest.fixture
def make_pack():
    return write_pack


@pytest.fixture
def manifest_of():
    return read_manifest


@pytest.fixture
def fake_codeql_cls():
    return FakeCodeQL


@pytest.fixture
def bundle_env(tmp_path: Path):
    bundle_root = tmp_path / "codeql"
    qlpacks = bundle_root / "qlpacks"
    qlpacks.mkdir(parents=True)
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    tmp = tmp_path / "tmp"
    tmp.mkdir()
    settings = Settings(runner_temp=str(tmp), concurrency_limit=2)
    codeql = FakeCodeQL(bundle_root, scratch_root=tmp / "toolchain")

    def live_pack(name: str, version: str = "1.0.0", **kwargs) -> Path:
        scope, short = name.split("/", 1)
        return write_pack(qlpacks / scope / short / version, name, version, **kwargs)

    return SimpleNamespace(
        root=tmp_path,
        bundle_root=bundle_root,
        qlpacks=qlpacks,
        workspace=workspace,
        tmp=tmp,
        settings=settings,
        codeql=codeql,
        live_pack=live_pack,
    )
