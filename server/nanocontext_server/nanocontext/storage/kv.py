"""Durable key-value backends for the record store.

Any backend satisfying ``DurableKV`` can hold the persisted store: the
in-process ``MemoryKV`` (tests, ephemeral sessions) and the filesystem-backed
``FileKV`` ship here. Both can enforce a byte quota and raise
``CapacityExceeded`` when a write would exceed it.
"""

from __future__ import annotations

import asyncio
import os
import urllib.parse
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from nanocontext import config as cfg


class StorageFault(Exception):
    """A persistence read or write failed."""


class CapacityExceeded(StorageFault):
    """A write would exceed the backend's capacity quota."""


# ── Interface (structural typing) ────────────────────────────────────

class DurableKV(Protocol):
    """Shared durable key-value interface."""

    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self) -> List[str]: ...


# ── Implementations ──────────────────────────────────────────────────

class MemoryKV:
    """In-process backend with an optional byte quota."""

    def __init__(self, capacity_bytes: Optional[int] = None) -> None:
        self._data: Dict[str, str] = {}
        self.capacity_bytes = capacity_bytes

    def _size_with(self, key: str, value: str) -> int:
        size = len(value.encode("utf-8"))
        for other_key, other_value in self._data.items():
            if other_key != key:
                size += len(other_value.encode("utf-8"))
        return size

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        if self.capacity_bytes is not None:
            size = self._size_with(key, value)
            if size > self.capacity_bytes:
                raise CapacityExceeded(
                    f"write of {key!r} needs {size} bytes, quota is {self.capacity_bytes}"
                )
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._data)


class FileKV:
    """One file per key under *root*; writes are atomic via rename.

    ``max_bytes`` of ``0`` disables the quota.
    """

    def __init__(self, root: Optional[Path | str] = None, max_bytes: int = 0) -> None:
        self.root = Path(root or cfg.NANO_CONTEXT_STORE_PATH)
        self.max_bytes = max_bytes

    def _path(self, key: str) -> Path:
        return self.root / (urllib.parse.quote(key, safe="") + ".json")

    def _used_bytes(self, excluding: Path) -> int:
        if not self.root.exists():
            return 0
        return sum(
            p.stat().st_size for p in self.root.glob("*.json") if p.is_file() and p != excluding
        )

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageFault(f"failed to read {path}: {exc}") from exc

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        payload = value.encode("utf-8")
        if self.max_bytes:
            needed = self._used_bytes(excluding=path) + len(payload)
            if needed > self.max_bytes:
                raise CapacityExceeded(
                    f"write of {key!r} needs {needed} bytes, quota is {self.max_bytes}"
                )
        tmp = path.with_suffix(".tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(payload)
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageFault(f"failed to write {path}: {exc}") from exc

    def _delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFault(f"failed to delete {key!r}: {exc}") from exc

    def _keys(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(urllib.parse.unquote(p.stem) for p in self.root.glob("*.json"))

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def keys(self) -> List[str]:
        return await asyncio.to_thread(self._keys)
