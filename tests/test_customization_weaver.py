"""
Tests for weaving customization packs into standard library packs.
"""

from pathlib import Path

import pytest

from qlbundle.core.errors import (
    AmbiguousOrMissingBaseError,
    ExtensionPointNotFoundError,
    MissingCompatibilityTagError,
    ToolchainError,
    UnsupportedConfigurationError,
)
from qlbundle.services.customization_weaver import CustomizationWeaver
from qlbundle.services.models import PackRole
from qlbundle.services.pack_repository import PackRepository
from qlbundle.services.repository_mutator import RepositoryMutator

CUSTOM = "acme/java-customizations"


@pytest.fixture
def weaver(bundle_env) -> CustomizationWeaver:
    return CustomizationWeaver(
        bundle_env.codeql,
        RepositoryMutator(bundle_env.bundle_root),
        bundle_env.tmp / "run",
        concurrency_limit=2,
    )


async def _inputs(bundle_env):
    repository = PackRepository(bundle_env.codeql)
    snapshot = await repository.snapshot(bundle_env.bundle_root)
    workspace = await repository.list(bundle_env.workspace)
    return [p for p in workspace if p.role is PackRole.CUSTOMIZATION], snapshot


def _customization(bundle_env, make_pack, name=CUSTOM, extractor="java", directory="custom"):
    return make_pack(
        bundle_env.workspace / directory,
        name,
        extractor=extractor,
        dependencies={"codeql/java-all": "*"},
        customizes=True,
    )


class TestWeave:
    @pytest.mark.asyncio
    async def test_weaves_customization_into_standard_pack(
        self, bundle_env, weaver, make_pack, manifest_of
    ):
        base_manifest = bundle_env.live_pack(
            "codeql/java-all", "0.7.0", extractor="java", extension_point=True,
            dependencies={"codeql/util": "0.1.0"},
        )
        custom_manifest = _customization(bundle_env, make_pack)
        customizations, snapshot = await _inputs(bundle_env)

        woven = await weaver.weave(customizations, snapshot)

        assert [p.name for p in woven] == ["codeql/java-all"]
        assert manifest_of(base_manifest)["dependencies"] == {
            "codeql/util": "0.1.0",
            CUSTOM: "1.0.0",
        }
        extension = base_manifest.parent / "Customizations.qll"
        assert extension.read_text().endswith(
            "\nimport acme.java_customizations.Customizations\n"
        )
        assert "dependencies" not in manifest_of(custom_manifest)

        bundled = bundle_env.qlpacks / "acme" / "java-customizations" / "1.0.0"
        assert "dependencies" not in manifest_of(bundled / "qlpack.yml")
        assert (bundled / "acme" / "java_customizations" / "Customizations.qll").exists()

        bundle_calls = bundle_env.codeql.commands("bundle")
        assert bundle_calls[0][-1] == str(custom_manifest)
        assert f"--additional-packs={bundle_env.bundle_root}" in bundle_calls[0]
        assert not weaver.standard_root.exists()
        assert not weaver.repacked_root.exists()

    @pytest.mark.asyncio
    async def test_failure_leaves_live_pack_and_purges_scratch(
        self, bundle_env, weaver, make_pack, manifest_of
    ):
        base_manifest = bundle_env.live_pack(
            "codeql/java-all", "0.7.0", extractor="java", extension_point=True
        )
        _customization(bundle_env, make_pack)
        customizations, snapshot = await _inputs(bundle_env)
        bundle_env.codeql.fail_when = lambda args: (
            args[1] == "bundle" and "codeql/java-all" in args[-1]
        )

        with pytest.raises(ToolchainError):
            await weaver.weave(customizations, snapshot)

        assert "dependencies" not in manifest_of(base_manifest)
        assert not weaver.standard_root.exists()
        assert not weaver.repacked_root.exists()


class TestResolve:
    @pytest.mark.asyncio
    async def test_missing_extractor(self, bundle_env, weaver, make_pack, manifest_of):
        bundle_env.live_pack("codeql/java-all", extractor="java", extension_point=True)
        manifest = _customization(bundle_env, make_pack, extractor=None)
        customizations, snapshot = await _inputs(bundle_env)

        with pytest.raises(MissingCompatibilityTagError):
            await weaver.weave(customizations, snapshot)

        assert manifest_of(manifest)["dependencies"] == {"codeql/java-all": "*"}
        assert bundle_env.codeql.commands("bundle") == []

    @pytest.mark.asyncio
    async def test_no_compatible_standard_pack(self, bundle_env, weaver, make_pack):
        bundle_env.live_pack("codeql/java-all", extractor="java", extension_point=True)
        _customization(bundle_env, make_pack, extractor="python")
        customizations, snapshot = await _inputs(bundle_env)

        with pytest.raises(AmbiguousOrMissingBaseError) as excinfo:
            await weaver.weave(customizations, snapshot)

        assert excinfo.value.candidates == []

    @pytest.mark.asyncio
    async def test_ambiguous_standard_packs(self, bundle_env, weaver, make_pack, manifest_of):
        bundle_env.live_pack("codeql/java-all", extractor="java", extension_point=True)
        bundle_env.live_pack("codeql/java-legacy-all", extractor="java", extension_point=True)
        manifest = _customization(bundle_env, make_pack)
        customizations, snapshot = await _inputs(bundle_env)

        with pytest.raises(AmbiguousOrMissingBaseError) as excinfo:
            await weaver.weave(customizations, snapshot)

        assert sorted(excinfo.value.candidates) == ["codeql/java-all", "codeql/java-legacy-all"]
        assert "codeql/java-all" in str(excinfo.value)
        assert "codeql/java-legacy-all" in str(excinfo.value)
        assert manifest_of(manifest)["dependencies"] == {"codeql/java-all": "*"}

    @pytest.mark.asyncio
    async def test_only_standard_scope_is_a_candidate(self, bundle_env, weaver, make_pack):
        bundle_env.live_pack("codeql/java-all", extractor="java", extension_point=True)
        bundle_env.live_pack("acme/java-extras", extractor="java", extension_point=True)
        _customization(bundle_env, make_pack)
        customizations, snapshot = await _inputs(bundle_env)

        plans = weaver.resolve(customizations, snapshot)

        assert [(p.customization.name, p.base.name) for p in plans] == [
            (CUSTOM, "codeql/java-all")
        ]

    @pytest.mark.asyncio
    async def test_two_customizations_for_one_standard_pack(
        self, bundle_env, weaver, make_pack, manifest_of
    ):
        bundle_env.live_pack("codeql/java-all", extractor="java", extension_point=True)
        first = _customization(bundle_env, make_pack)
        second = _customization(
            bundle_env, make_pack, name="acme/java-more-customizations", directory="more"
        )
        customizations, snapshot = await _inputs(bundle_env)

        with pytest.raises(UnsupportedConfigurationError) as excinfo:
            await weaver.weave(customizations, snapshot)

        assert excinfo.value.base_name == "codeql/java-all"
        assert sorted(excinfo.value.customizations) == [
            CUSTOM,
            "acme/java-more-customizations",
        ]
        for manifest in (first, second):
            assert manifest_of(manifest)["dependencies"] == {"codeql/java-all": "*"}

    @pytest.mark.asyncio
    async def test_standard_pack_without_extension_point(self, bundle_env, weaver, make_pack):
        bundle_env.live_pack("codeql/java-all", extractor="java")
        _customization(bundle_env, make_pack)
        customizations, snapshot = await _inputs(bundle_env)

        with pytest.raises(ExtensionPointNotFoundError):
            await weaver.weave(customizations, snapshot)
