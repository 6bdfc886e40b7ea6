"""
Error taxonomy for bundle customization.

Nothing here is retried: every error propagates to the entry point and aborts
the run. Repository mutations committed before the failure are kept.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence


class BundleError(Exception):
    """Base class for every failure raised by the customization pipeline"""

    pass


class ToolchainError(BundleError):
    """Raised when the CodeQL CLI exits with a non-zero status"""

    def __init__(self, exit_code: int, stderr: str, args: Sequence[str] = ()):
        self.exit_code = exit_code
        self.stderr = stderr
        self.command = list(args)
        command = " ".join(self.command) or "<unknown>"
        super().__init__(
            f"CodeQL exited with code {exit_code} and error {stderr.strip()} "
            f"when executing '{command}'"
        )


class IntrospectionError(ToolchainError):
    """Raised when `codeql pack ls` fails"""

    pass


class MissingCompatibilityTagError(BundleError):
    def __init__(self, pack_name: str):
        self.pack_name = pack_name
        super().__init__(
            f"Pack {pack_name} containing customizations doesn't define an extractor "
            "required to determine the language pack to customize."
        )


class AmbiguousOrMissingBaseError(BundleError):
    def __init__(self, pack_name: str, tag: str, candidates: Iterable[str]):
        self.pack_name = pack_name
        self.tag = tag
        self.candidates: List[str] = list(candidates)
        super().__init__(
            f"Found the following list of compatible standard packs for {pack_name} "
            f"(extractor {tag}) when we expected only 1: "
            f"{','.join(self.candidates) or '<none>'}"
        )


class UnsupportedConfigurationError(BundleError):
    """Raised when more than one customization pack targets the same standard pack"""

    def __init__(self, base_name: str, customizations: Iterable[str]):
        self.base_name = base_name
        self.customizations = list(customizations)
        super().__init__(
            f"Multiple customization packs target {base_name}: "
            f"{','.join(self.customizations)}. Only one customization pack per "
            "standard pack is supported."
        )


class DependencyCycleError(BundleError):
    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class MissingDependencyError(BundleError):
    """Raised when requested packs are not present in the workspace"""

    def __init__(self, missing: Iterable[str], location: str = "workspace"):
        self.missing = list(missing)
        super().__init__(
            f"The provided {location} doesn't contain the packs: {','.join(self.missing)}"
        )


class ExtensionPointNotFoundError(BundleError):
    def __init__(self, pack_name: str, path: str):
        self.pack_name = pack_name
        self.path = path
        super().__init__(
            f"Standard pack {pack_name} has no extension point at {path}"
        )


class ReleaseAssetError(BundleError):
    """Raised when a CodeQL bundle release or its asset cannot be retrieved"""

    pass
