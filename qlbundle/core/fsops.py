"""Filesystem primitives that run off the event loop."""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path
from typing import Union

PathLike = Union[str, os.PathLike]


def _remove_sync(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


async def remove(path: PathLike) -> None:
    """Recursively delete ``path``; a missing path is a no-op."""
    target = Path(path)
    if not target.exists() and not target.is_symlink():
        return
    await asyncio.to_thread(_remove_sync, target)


def _move_sync(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dest))


async def move(src: PathLike, dest: PathLike) -> Path:
    """Move ``src`` to exactly ``dest`` (not into it); ``dest`` must not exist."""
    target = Path(dest)
    await asyncio.to_thread(_move_sync, Path(src), target)
    return target


def _copy_tree_sync(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(src, dest, symlinks=True)


async def copy_tree(src: PathLike, dest: PathLike) -> Path:
    target = Path(dest)
    await asyncio.to_thread(_copy_tree_sync, Path(src), target)
    return target
