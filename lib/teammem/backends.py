"""Storage backends - byte-level put/get/delete per backend kind.

Backends know nothing about serialization, fallback or replication; that is
StorageManager's job. Each backend also maintains a partition index
(namespace -> set of record ids) so listing a team's records never requires
scanning keys or directories.
"""

import hashlib
import json
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

import redis
from redis.exceptions import RedisError

from .constants import BackendTag
from .errors import BackendError


class StorageBackend:
    """Uniform contract consumed by StorageManager."""

    tag = ""
    content_addressed = False

    def put(self, key: str, data: bytes, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def index_add(self, namespace: str, member: str) -> None:
        raise NotImplementedError

    def index_remove(self, namespace: str, member: str) -> None:
        raise NotImplementedError

    def index_members(self, namespace: str) -> Set[str]:
        raise NotImplementedError

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.tag}>"


class MemoryBackend(StorageBackend):
    """Process-local backend for tests and single-instance runs."""

    tag = BackendTag.MEMORY

    def __init__(self):
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._index: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, ttl: Optional[int] = None) -> None:
        expires = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._data[key] = (bytes(data), expires)

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            data, expires = entry
            if expires is not None and time.monotonic() >= expires:
                del self._data[key]
                return None
            return data

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def index_add(self, namespace: str, member: str) -> None:
        with self._lock:
            self._index.setdefault(namespace, set()).add(member)

    def index_remove(self, namespace: str, member: str) -> None:
        with self._lock:
            self._index.get(namespace, set()).discard(member)

    def index_members(self, namespace: str) -> Set[str]:
        with self._lock:
            return set(self._index.get(namespace, set()))

    def keys(self):
        with self._lock:
            return list(self._data)


class CacheBackend(StorageBackend):
    """Redis-backed cache.

    Partition indexes are Redis sets under ``<prefix>idx:<namespace>``.
    """

    tag = BackendTag.CACHE

    def __init__(self, redis_client: redis.Redis, prefix: str = "teammem:"):
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _index_key(self, namespace: str) -> str:
        return f"{self.prefix}idx:{namespace}"

    def _call(self, op: str, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RedisError, OSError) as e:
            raise BackendError(f"Redis {op} failed: {e}", backend=self.tag) from e

    def put(self, key: str, data: bytes, ttl: Optional[int] = None) -> None:
        if ttl:
            self._call("set", self.redis.set, self._key(key), data, ex=ttl)
        else:
            self._call("set", self.redis.set, self._key(key), data)

    def get(self, key: str) -> Optional[bytes]:
        data = self._call("get", self.redis.get, self._key(key))
        if data is None:
            return None
        return data.encode("utf-8") if isinstance(data, str) else data

    def delete(self, key: str) -> bool:
        return self._call("delete", self.redis.delete, self._key(key)) > 0

    def index_add(self, namespace: str, member: str) -> None:
        self._call("sadd", self.redis.sadd, self._index_key(namespace), member)

    def index_remove(self, namespace: str, member: str) -> None:
        self._call("srem", self.redis.srem, self._index_key(namespace), member)

    def index_members(self, namespace: str) -> Set[str]:
        members = self._call("smembers", self.redis.smembers, self._index_key(namespace))
        return {m.decode("utf-8") if isinstance(m, bytes) else m for m in members}

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except (RedisError, OSError):
            return False

    def close(self) -> None:
        self.redis.close()


class FileBackend(StorageBackend):
    """One JSON document per key under a base directory.

    Key segments separated by ``:`` become directories. Partition indexes are
    manifest files under ``_index/``. TTLs are not enforced on disk.
    """

    tag = BackendTag.FILE
    SAFE_SEGMENT = re.compile(r'^[\w\-.@]+$')

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self._lock = threading.Lock()
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendError(f"Cannot create storage directory {base_path}: {e}", backend=self.tag) from e

    def _validate_segments(self, key: str):
        segments = key.split(':')
        for segment in segments:
            if segment in ('', '.', '..') or not self.SAFE_SEGMENT.match(segment):
                raise BackendError(f"Invalid key for file storage: {key!r}", backend=self.tag)
        return segments

    def _path(self, key: str) -> Path:
        segments = self._validate_segments(key)
        return self.base_path.joinpath(*segments[:-1], f"{segments[-1]}.json")

    def _manifest_path(self, namespace: str) -> Path:
        segments = self._validate_segments(namespace)
        return self.base_path.joinpath("_index", *segments[:-1], f"{segments[-1]}.manifest.json")

    def _write_atomic(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def put(self, key: str, data: bytes, ttl: Optional[int] = None) -> None:
        try:
            self._write_atomic(self._path(key), data)
        except OSError as e:
            raise BackendError(f"File write failed for {key}: {e}", backend=self.tag) from e

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendError(f"File read failed for {key}: {e}", backend=self.tag) from e

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise BackendError(f"File delete failed for {key}: {e}", backend=self.tag) from e

    def _read_manifest(self, path: Path) -> Set[str]:
        try:
            return set(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return set()
        except ValueError as e:
            raise BackendError(f"Corrupt manifest {path}: {e}", backend=self.tag) from e

    def _update_manifest(self, namespace: str, add: Optional[str] = None, remove: Optional[str] = None) -> None:
        path = self._manifest_path(namespace)
        with self._lock:
            try:
                members = self._read_manifest(path)
                if add is not None:
                    if add in members:
                        return
                    members.add(add)
                if remove is not None:
                    if remove not in members:
                        return
                    members.discard(remove)
                self._write_atomic(path, json.dumps(sorted(members)).encode("utf-8"))
            except OSError as e:
                raise BackendError(f"Manifest update failed for {namespace}: {e}", backend=self.tag) from e

    def index_add(self, namespace: str, member: str) -> None:
        self._update_manifest(namespace, add=member)

    def index_remove(self, namespace: str, member: str) -> None:
        self._update_manifest(namespace, remove=member)

    def index_members(self, namespace: str) -> Set[str]:
        try:
            return self._read_manifest(self._manifest_path(namespace))
        except OSError as e:
            raise BackendError(f"Manifest read failed for {namespace}: {e}", backend=self.tag) from e

    def ping(self) -> bool:
        return self.base_path.is_dir() and os.access(self.base_path, os.W_OK)


class ContentAddressedBackend(StorageBackend):
    """Immutable blob store addressed by SHA-256 of the content.

    Blobs are never removed: deleting a logical key only drops the reference
    StorageManager keeps elsewhere. Key-addressed operations are rejected.
    """

    tag = BackendTag.CONTENT
    content_addressed = True

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendError(f"Cannot create content store {base_path}: {e}", backend=self.tag) from e

    @staticmethod
    def content_hash(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def _blob_path(self, content_hash: str) -> Path:
        if not re.fullmatch(r'[0-9a-f]{64}', content_hash):
            raise BackendError(f"Invalid content hash: {content_hash!r}", backend=self.tag)
        return self.base_path / content_hash[:2] / content_hash

    def put_content(self, data: bytes) -> str:
        content_hash = self.content_hash(data)
        path = self._blob_path(content_hash)
        if path.exists():
            return content_hash
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError as e:
            raise BackendError(f"Content write failed: {e}", backend=self.tag) from e
        return content_hash

    def get_content(self, content_hash: str) -> Optional[bytes]:
        try:
            data = self._blob_path(content_hash).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendError(f"Content read failed for {content_hash}: {e}", backend=self.tag) from e
        if self.content_hash(data) != content_hash:
            raise BackendError(f"Content hash mismatch for {content_hash}", backend=self.tag)
        return data

    def has_content(self, content_hash: str) -> bool:
        return self._blob_path(content_hash).exists()

    def _unsupported(self, *args, **kwargs):
        raise BackendError("Content store is addressed by hash, not by key", backend=self.tag)

    put = get = delete = _unsupported
    index_add = index_remove = index_members = _unsupported

    def ping(self) -> bool:
        return self.base_path.is_dir()
