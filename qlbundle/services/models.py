"""
Data model for CodeQL packs in a bundle repository
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

PackIdentity = Tuple[str, str, str]


class PackRole(Enum):
    """How a pack takes part in customization"""

    LIBRARY = "library"
    QUERY = "query"
    CUSTOMIZATION = "customization"


@dataclass(frozen=True)
class PackDependency:
    name: str
    version: str
    inclusive: bool = True


@dataclass
class CodeQLPack:
    """A pack version discovered in a repository, `path` is its qlpack.yml"""

    path: Path
    name: str
    version: str
    library: bool
    dependencies: List[PackDependency] = field(default_factory=list)
    extractor: Optional[str] = None
    role: PackRole = PackRole.QUERY

    @property
    def scope(self) -> str:
        return self.name.split("/", 1)[0]

    @property
    def short_name(self) -> str:
        parts = self.name.split("/", 1)
        return parts[1] if len(parts) == 2 else parts[0]

    @property
    def identity(self) -> PackIdentity:
        return (self.scope, self.short_name, self.version)

    @property
    def version_dir(self) -> Path:
        return self.path.parent

    def dependency_names(self) -> List[str]:
        return [dep.name for dep in self.dependencies]

    def depends_on(self, name: str) -> bool:
        return any(dep.name == name for dep in self.dependencies)


class VersionInfo(BaseModel):
    """Output of `codeql version --format=json`"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_name: str = Field(default="CodeQL", alias="productName")
    vendor: Optional[str] = None
    version: str
    sha: Optional[str] = None
    branches: List[str] = Field(default_factory=list)
    copyright: Optional[str] = None
    unpacked_location: Optional[str] = Field(default=None, alias="unpackedLocation")
    config_file_location: Optional[str] = Field(
        default=None, alias="configFileLocation"
    )
    config_file_found: bool = Field(default=False, alias="configFileFound")


@dataclass(frozen=True)
class RepositorySnapshot:
    """Enumeration of a repository taken at one stage boundary."""

    root: Path
    packs: Tuple[CodeQLPack, ...]

    @classmethod
    def of(cls, root: Path, packs: Iterable[CodeQLPack]) -> "RepositorySnapshot":
        return cls(root=Path(root), packs=tuple(packs))

    def by_role(self, role: PackRole) -> List[CodeQLPack]:
        return [pack for pack in self.packs if pack.role is role]

    def find(self, name: str) -> Optional[CodeQLPack]:
        for pack in self.packs:
            if pack.name == name:
                return pack
        return None

    def names(self) -> List[str]:
        return [pack.name for pack in self.packs]

    def grouped(self) -> Dict[PackRole, List[CodeQLPack]]:
        return {role: self.by_role(role) for role in PackRole}
