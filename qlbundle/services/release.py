"""
Acquisition of a CodeQL bundle from a GitHub release.
"""

from __future__ import annotations

import asyncio
import tarfile
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx
import structlog

from qlbundle.core.config import get_settings
from qlbundle.core.errors import ReleaseAssetError

logger = structlog.get_logger(__name__)

LATEST = "latest"
BUNDLE_DIR = "codeql"


def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    dest_dir.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive_path, "r:gz") as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(dest_dir, filter="data")
        else:
            tar.extractall(dest_dir)


class ReleaseClient:
    """Resolves release tags and downloads the bundle asset."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.token = token if token is not None else settings.github_token
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_sec
        self.default_repository = settings.release_repository
        self.asset_name = settings.bundle_asset_name
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers(),
            follow_redirects=True,
            transport=self.transport,
        )

    async def _get_json(self, client: httpx.AsyncClient, path: str) -> Dict[str, Any]:
        r = await client.get(f"{self.api_url}{path}")
        if r.status_code == 404:
            raise ReleaseAssetError(f"Release not found at {path}")
        r.raise_for_status()
        return r.json()

    async def resolve_tag(self, tag: str) -> str:
        if tag != LATEST:
            return tag
        logger.debug("release.resolve_latest", repository=self.default_repository)
        async with self._client() as client:
            release = await self._get_json(
                client, f"/repos/{self.default_repository}/releases/latest"
            )
        logger.debug("release.resolved", tag=release["tag_name"])
        return release["tag_name"]

    async def fetch_bundle(
        self, repository: str, tag: str, dest_dir: Path
    ) -> Tuple[str, Path]:
        """Download and extract the bundle for ``tag``. Returns the resolved tag and the bundle path."""
        tag = await self.resolve_tag(tag)
        dest_dir = Path(dest_dir)
        archive_path = dest_dir / self.asset_name

        async with self._client() as client:
            logger.debug("release.get_by_tag", repository=repository, tag=tag)
            release = await self._get_json(
                client, f"/repos/{repository}/releases/tags/{tag}"
            )
            asset = next(
                (a for a in release.get("assets", []) if a.get("name") == self.asset_name),
                None,
            )
            if asset is None:
                raise ReleaseAssetError(
                    f"Unable to download the CodeQL bundle version {tag}"
                )

            url = asset["browser_download_url"]
            logger.debug("release.download", url=url, dest=str(archive_path))
            dest_dir.mkdir(parents=True, exist_ok=True)
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with archive_path.open("wb") as fp:
                    async for chunk in response.aiter_bytes():
                        fp.write(chunk)

        logger.debug("release.extract", archive=str(archive_path), dest=str(dest_dir))
        await asyncio.to_thread(extract_archive, archive_path, dest_dir)
        return tag, dest_dir / BUNDLE_DIR
