"""
Object storage clients for bank persistence.
Plain get/put semantics: no transactions, no conditional writes, last writer wins.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional


class StorageError(Exception):
    """Custom exception for object storage operations."""
    pass


class ObjectStorage(ABC):
    """Abstract key/value object store with JSON and binary helpers."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def full_key(self, key: str) -> str:
        """Apply the configured key prefix."""
        return f"{self.prefix}{key}" if self.prefix else key

    @abstractmethod
    async def download_buffer(self, key: str) -> Optional[bytes]:
        """Return object bytes, or None when the key does not exist."""
        pass

    @abstractmethod
    async def upload_buffer(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        """Write object bytes, replacing any previous object."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Return a URL a browser can load the object from."""
        pass

    async def download_json(self, key: str) -> Optional[Any]:
        """Return the decoded JSON document, or None when absent."""
        body = await self.download_buffer(key)
        if body is None:
            return None
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(f"Object {self.full_key(key)} is not valid JSON: {e}") from e

    async def upload_json(self, key: str, data: Any) -> None:
        body = json.dumps(data, indent=2).encode("utf-8")
        await self.upload_buffer(key, body, "application/json")


class LocalObjectStorage(ObjectStorage):
    """Object storage backed by a local directory.

    Keys map to paths under the root directory; writes go through a temp
    file and rename so readers never observe a partial object.
    """

    def __init__(self, root: str, prefix: str = "", public_url: Optional[str] = None):
        super().__init__(prefix)
        self.root = Path(root)
        self.base_url = public_url.rstrip("/") if public_url else None

    def _path(self, key: str) -> Path:
        path = (self.root / self.full_key(key)).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    async def download_buffer(self, key: str) -> Optional[bytes]:
        path = self._path(key)

        def _read():
            if not path.exists():
                return None
            return path.read_bytes()

        return await asyncio.to_thread(_read)

    async def upload_buffer(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        path = self._path(key)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)

        await asyncio.to_thread(_write)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).exists)

    def public_url(self, key: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{self.full_key(key)}"
        return self._path(key).as_uri()


class InMemoryObjectStorage(ObjectStorage):
    """Dictionary-backed object storage for development and tests."""

    def __init__(self, prefix: str = "", public_url: str = "memory://bank"):
        super().__init__(prefix)
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.base_url = public_url

    async def download_buffer(self, key: str) -> Optional[bytes]:
        return self.objects.get(self.full_key(key))

    async def upload_buffer(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self.objects[self.full_key(key)] = bytes(data)
        self.content_types[self.full_key(key)] = content_type

    async def exists(self, key: str) -> bool:
        return self.full_key(key) in self.objects

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{self.full_key(key)}"
