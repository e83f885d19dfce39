from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
import tempfile
import time
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path

from preview_proxy.errors import NotFound

logger = logging.getLogger(__name__)

CACHE_KEY_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class ArtifactKind(str, Enum):
    RAW = "raw"
    PDF = "pdf"
    HTML = "html"


@dataclass(frozen=True)
class PruneResult:
    removed_keys: list[str]
    removed_files: int
    remaining_entries: int
    remaining_bytes: int

    def to_dict(self) -> dict:
        return asdict(self)


def cache_key(src: str) -> str:
    return hashlib.sha1(src.encode("utf-8")).hexdigest()


def is_cache_key(value: str | None) -> bool:
    return bool(value) and CACHE_KEY_PATTERN.fullmatch(value) is not None


class CacheStore:
    """Flat on-disk artifact cache with lazy, mtime-based expiry.

    Each key owns up to three sibling files (``<key>.raw``, ``<key>.pdf``,
    ``<key>.html``). Freshness is only evaluated when asked for; reads never
    filter stale content and nothing is deleted unless ``prune`` is called.
    """

    def __init__(self, cache_dir: Path, cache_seconds: float):
        self.cache_dir = Path(cache_dir)
        self.cache_seconds = cache_seconds

    def ensure_dir(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str, kind: ArtifactKind) -> Path:
        return self.cache_dir / f"{key}.{ArtifactKind(kind).value}"

    def _is_fresh(self, path: Path) -> bool:
        try:
            modified = path.stat().st_mtime
        except OSError:
            return False
        return (time.time() - modified) < self.cache_seconds

    async def exists(self, key: str, kind: ArtifactKind) -> bool:
        return await asyncio.to_thread(self.path_for(key, kind).is_file)

    async def exists_and_fresh(self, key: str, kind: ArtifactKind) -> bool:
        return await asyncio.to_thread(self._is_fresh, self.path_for(key, kind))

    def _read_bytes(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"Cached artifact '{path.name}' not found") from exc

    async def read_bytes(self, key: str, kind: ArtifactKind) -> bytes:
        return await asyncio.to_thread(self._read_bytes, self.path_for(key, kind))

    async def read_text(self, key: str, kind: ArtifactKind) -> str:
        content = await self.read_bytes(key, kind)
        return content.decode("utf-8")

    def _write(self, path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(handle, "wb") as temp_file:
                temp_file.write(payload)
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    async def write(self, key: str, kind: ArtifactKind, content: bytes | str) -> Path:
        payload = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        path = self.path_for(key, kind)
        await asyncio.to_thread(self._write, path, payload)
        logger.debug("Cached %s artifact for %s (%d bytes)", ArtifactKind(kind).value, key, len(payload))
        return path

    def _collect_entries(self) -> dict[str, list[tuple[Path, float, int]]]:
        entries: dict[str, list[tuple[Path, float, int]]] = {}
        if not self.cache_dir.exists():
            return entries
        for path in self.cache_dir.iterdir():
            key, _, suffix = path.name.partition(".")
            if not is_cache_key(key) or suffix not in {kind.value for kind in ArtifactKind}:
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            entries.setdefault(key, []).append((path, stat.st_mtime, stat.st_size))
        return entries

    def prune(self, *, max_entries: int | None = None, max_bytes: int | None = None) -> PruneResult:
        """Evict whole keys, least recently written first, until both bounds hold."""
        entries = self._collect_entries()
        ordered = sorted(entries.items(), key=lambda item: max(mtime for _, mtime, _ in item[1]))
        total_bytes = sum(size for files in entries.values() for _, _, size in files)
        remaining_entries = len(entries)

        removed_keys: list[str] = []
        removed_files = 0
        for key, files in ordered:
            over_count = max_entries is not None and remaining_entries > max_entries
            over_bytes = max_bytes is not None and total_bytes > max_bytes
            if not over_count and not over_bytes:
                break
            for path, _, size in files:
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                removed_files += 1
                total_bytes -= size
            remaining_entries -= 1
            removed_keys.append(key)

        if removed_keys:
            logger.info("Pruned %d cache entries (%d files)", len(removed_keys), removed_files)
        return PruneResult(
            removed_keys=removed_keys,
            removed_files=removed_files,
            remaining_entries=remaining_entries,
            remaining_bytes=total_bytes,
        )
