"""Storage Manager - primary/fallback persistence over pluggable backends.

Supports three backend kinds behind one interface:
- cache: Redis, fast and shared between instances
- file: local filesystem, for development and offline usage
- content: immutable content-addressed blobs

Values are JSON-encoded. Every backend call runs on a worker pool and is
abandoned after ``timeout`` seconds; a failed or timed-out primary call falls
through to the fallback backend instead of being retried.
"""

import json
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .backends import StorageBackend
from .constants import BackendTag, Defaults, StorageKeys
from .errors import BackendError, BackendTimeout, BackendUnavailable, NotFound, SerializationError
from .log import get_logger
from .telemetry import TeamMemoryMetrics
from .types import StorageMetadata, StorageResult

logger = get_logger(__name__)

IndexEntry = Tuple[str, str]


class StorageManager:
    """Unified storage over a primary backend with optional fallback.

    Usage:
        manager = StorageManager(
            {"cache": CacheBackend(redis_client), "file": FileBackend("./storage")},
            primary="cache",
            fallback="file",
        )

        manager.store("teams:frontend:config", {"name": "Frontend"}, replicate=True)
        result = manager.retrieve("teams:frontend:config")
        result.value, result.metadata.backend
    """

    def __init__(
        self,
        backends: Dict[str, StorageBackend],
        primary: str,
        fallback: Optional[str] = None,
        reference_backend: Optional[str] = None,
        enable_cache: bool = True,
        timeout: float = Defaults.BACKEND_TIMEOUT_SECONDS,
        max_workers: int = Defaults.MAX_WORKERS,
        metrics: Optional[TeamMemoryMetrics] = None
    ):
        """Initialize the storage manager.

        Args:
            backends: Configured backends keyed by tag
            primary: Tag of the backend used by default
            fallback: Tag of the backend tried when the primary fails
            reference_backend: Where content-addressed references are kept.
                Defaults to the cache backend, then the file backend.
            enable_cache: Keep an in-process copy of stored and retrieved values
            timeout: Seconds before a backend call is abandoned
            max_workers: Size of each backend's I/O worker pool
            metrics: Metrics sink (a private one is created if omitted)

        Raises:
            ValueError: If a referenced backend is not configured
        """
        if primary not in backends:
            raise ValueError(f"Primary backend not configured: {primary}")
        if fallback is not None and fallback not in backends:
            raise ValueError(f"Fallback backend not configured: {fallback}")

        self.backends = dict(backends)
        self.primary = primary
        self.fallback = fallback if fallback != primary else None
        self.enable_cache = enable_cache
        self.timeout = timeout
        self.metrics = metrics or TeamMemoryMetrics()
        self.reference_backend = self._pick_reference_backend(reference_backend)

        self._cache: Dict[str, Tuple[bytes, StorageMetadata]] = {}
        self._cache_lock = threading.Lock()
        # stalled calls only tie up their own backend's pool
        self._executors = {
            tag: ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"teammem-{tag}")
            for tag in self.backends
        }
        # one worker keeps replicas of a key in submission order
        self._replicator = ThreadPoolExecutor(max_workers=1, thread_name_prefix="teammem-replica")
        self._pending_replicas: Set[Any] = set()
        self._pending_lock = threading.Lock()
        # key -> [latest version, queued replicas, write lock]
        self._replica_versions: Dict[str, List[Any]] = {}

    def _pick_reference_backend(self, requested: Optional[str]) -> Optional[str]:
        if requested is not None:
            if requested not in self.backends or self.backends[requested].content_addressed:
                raise ValueError(f"Invalid reference backend: {requested}")
            return requested
        for tag in (BackendTag.CACHE, BackendTag.FILE, BackendTag.MEMORY):
            if tag in self.backends:
                return tag
        if any(b.content_addressed for b in self.backends.values()):
            raise ValueError("Content-addressed storage needs a cache, file or memory backend for references")
        return None

    # =========================================================================
    # BACKEND CALLS
    # =========================================================================

    def _call(self, tag: str, operation: str, func, *args):
        """Run a backend call on the worker pool, bounded by the timeout."""
        with self.metrics.measure(operation, tag):
            future = self._executors[tag].submit(func, *args)
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeout:
                future.cancel()
                raise BackendTimeout(
                    f"{operation} on {tag} timed out after {self.timeout}s", backend=tag)
            except OSError as e:
                raise BackendError(f"{operation} on {tag} failed: {e}", backend=tag) from e

    def _backend(self, tag: str) -> StorageBackend:
        try:
            return self.backends[tag]
        except KeyError:
            raise ValueError(f"Backend not configured: {tag}") from None

    def _fallback_for(self, tag: str) -> Optional[str]:
        if self.fallback is not None and self.fallback != tag:
            return self.fallback
        return None

    def _index_backend(self, tag: str) -> str:
        if self._backend(tag).content_addressed:
            return self.reference_backend
        return tag

    @staticmethod
    def _encode(value: Any) -> bytes:
        try:
            return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot encode value: {e}") from e

    @staticmethod
    def _decode(key: str, data: bytes) -> Any:
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise SerializationError(f"Cannot decode value for {key}: {e}") from e

    def _write_to(self, tag: str, key: str, data: bytes, ttl: Optional[int],
                  encrypt: bool, index: Optional[IndexEntry]) -> StorageMetadata:
        backend = self._backend(tag)
        metadata = StorageMetadata(backend=tag, size=len(data), encrypted=encrypt)

        if backend.content_addressed:
            content_hash = self._call(tag, "store", backend.put_content, data)
            metadata.content_hash = content_hash
            reference = self._encode({
                "hash": content_hash,
                "backend": tag,
                "timestamp": metadata.timestamp,
            })
            ref_backend = self._backend(self.reference_backend)
            self._call(self.reference_backend, "store_reference",
                       ref_backend.put, StorageKeys.reference(key), reference, None)
        else:
            self._call(tag, "store", backend.put, key, data, ttl)

        if index is not None:
            index_tag = self._index_backend(tag)
            self._call(index_tag, "index_add", self._backend(index_tag).index_add, *index)

        return metadata

    def _read_from(self, tag: str, key: str) -> Tuple[Optional[bytes], Optional[StorageMetadata]]:
        backend = self._backend(tag)

        if backend.content_addressed:
            ref_backend = self._backend(self.reference_backend)
            raw_ref = self._call(self.reference_backend, "retrieve_reference",
                                 ref_backend.get, StorageKeys.reference(key))
            if raw_ref is None:
                return None, None
            content_hash = self._decode(key, raw_ref)["hash"]
            data = self._call(tag, "retrieve", backend.get_content, content_hash)
            if data is None:
                return None, None
            return data, StorageMetadata(backend=tag, size=len(data), content_hash=content_hash)

        data = self._call(tag, "retrieve", backend.get, key)
        if data is None:
            return None, None
        return data, StorageMetadata(backend=tag, size=len(data))

    def _delete_from(self, tag: str, key: str, index: Optional[IndexEntry]) -> None:
        backend = self._backend(tag)
        if backend.content_addressed:
            ref_backend = self._backend(self.reference_backend)
            self._call(self.reference_backend, "delete_reference",
                       ref_backend.delete, StorageKeys.reference(key))
        else:
            self._call(tag, "delete", backend.delete, key)

        if index is not None:
            index_tag = self._index_backend(tag)
            self._call(index_tag, "index_remove", self._backend(index_tag).index_remove, *index)

    def _cache_put(self, key: str, data: bytes, metadata: StorageMetadata) -> None:
        if self.enable_cache:
            with self._cache_lock:
                self._cache[key] = (data, metadata)

    # =========================================================================
    # CORE OPERATIONS
    # =========================================================================

    def store(
        self,
        key: str,
        value: Any,
        backend: Optional[str] = None,
        ttl: Optional[int] = None,
        replicate: bool = False,
        encrypt: bool = False,
        index: Optional[IndexEntry] = None
    ) -> StorageMetadata:
        """Store a JSON-serializable value.

        Args:
            key: Logical key
            value: Value to store
            backend: Override the primary backend for this call
            ttl: Expiry in seconds (honored by the cache and memory backends)
            replicate: Mirror the write to the fallback in the background
            encrypt: Recorded in metadata; payload encryption happens upstream
            index: ``(namespace, member)`` partition index entry written
                alongside the value on whichever backend accepts it

        Returns:
            Metadata describing where the value landed

        Raises:
            SerializationError: If the value cannot be encoded
            BackendUnavailable: If neither the target nor the fallback accepted it
        """
        data = self._encode(value)
        target = backend or self.primary

        try:
            metadata = self._write_to(target, key, data, ttl, encrypt, index)
        except BackendError as e:
            fallback = self._fallback_for(target)
            logger.warning("Storage failed for backend %s (%s): %s",
                           target, key, str(e), extra={"backend": target})
            if fallback is None:
                raise BackendUnavailable(f"Store failed for {key}: {e}") from e

            self.metrics.count(TeamMemoryMetrics.STORAGE_FALLBACKS, operation="store")
            try:
                metadata = self._write_superseding_replicas(fallback, key, data, ttl, encrypt, index)
            except BackendError as fallback_error:
                raise BackendUnavailable(
                    f"Store failed for {key} on {target} and {fallback}: {fallback_error}"
                ) from fallback_error
        else:
            fallback = self._fallback_for(target)
            if replicate and fallback is not None:
                self._schedule_replica(fallback, key, data, ttl, encrypt, index)

        self._cache_put(key, data, metadata)
        return metadata

    def _schedule_replica(self, tag, key, data, ttl, encrypt, index) -> None:
        with self._pending_lock:
            state = self._replica_versions.setdefault(key, [0, 0, threading.Lock()])
            state[0] += 1
            state[1] += 1
            version = state[0]
        future = self._replicator.submit(self._replicate, tag, key, data, ttl, encrypt, index, version)
        with self._pending_lock:
            self._pending_replicas.add(future)
        future.add_done_callback(self._replica_done)

    def _replica_done(self, future) -> None:
        with self._pending_lock:
            self._pending_replicas.discard(future)

    def _write_superseding_replicas(self, tag, key, data, ttl, encrypt, index) -> StorageMetadata:
        """Write directly to ``tag``; replicas of ``key`` still queued are dropped."""
        with self._pending_lock:
            state = self._replica_versions.get(key)
            if state is not None:
                state[0] += 1
        if state is None:
            return self._write_to(tag, key, data, ttl, encrypt, index)
        with state[2]:
            return self._write_to(tag, key, data, ttl, encrypt, index)

    def _replicate(self, tag, key, data, ttl, encrypt, index, version) -> bool:
        with self._pending_lock:
            state = self._replica_versions[key]
        try:
            with state[2]:
                if state[0] != version:
                    logger.debug("Dropping superseded replica of %s", key)
                    return False
                self._write_to(tag, key, data, ttl, encrypt, index)
            return True
        except BackendError as e:
            self.metrics.count(TeamMemoryMetrics.REPLICATION_FAILURES, backend=tag)
            logger.error("Replication to %s failed for %s: %s", tag, key, str(e),
                         extra={"backend": tag})
            return False
        finally:
            with self._pending_lock:
                state[1] -= 1
                if state[1] == 0:
                    del self._replica_versions[key]

    def wait_for_replication(self, timeout: Optional[float] = None) -> bool:
        """Block until queued replica writes finish. Returns False on timeout."""
        with self._pending_lock:
            pending = list(self._pending_replicas)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def retrieve(
        self,
        key: str,
        backend: Optional[str] = None,
        use_cache: bool = True
    ) -> StorageResult:
        """Retrieve a value, consulting the local cache first.

        An explicit ``backend`` always reads from that backend.

        Raises:
            NotFound: If the key is absent on every reachable backend
            BackendUnavailable: If no backend could be reached
            SerializationError: If the stored payload is corrupt
        """
        if use_cache and self.enable_cache and backend is None:
            with self._cache_lock:
                cached = self._cache.get(key)
            if cached is not None:
                data, metadata = cached
                return StorageResult(value=self._decode(key, data), metadata=metadata, cached=True)

        target = backend or self.primary
        order = [target]
        fallback = self._fallback_for(target)
        if fallback is not None:
            order.append(fallback)

        reachable = False
        last_error: Optional[BackendError] = None
        for tag in order:
            try:
                data, metadata = self._read_from(tag, key)
            except BackendError as e:
                last_error = e
                logger.warning("Retrieval failed for backend %s (%s): %s",
                               tag, key, str(e), extra={"backend": tag})
                if tag == target and fallback is not None:
                    self.metrics.count(TeamMemoryMetrics.STORAGE_FALLBACKS, operation="retrieve")
                continue

            reachable = True
            if data is None:
                continue

            value = self._decode(key, data)
            self._cache_put(key, data, metadata)
            return StorageResult(value=value, metadata=metadata, cached=False)

        if not reachable:
            raise BackendUnavailable(f"No backend reachable for {key}: {last_error}")
        raise NotFound(f"Key not found: {key}")

    def get(self, key: str, default: Any = None, use_cache: bool = True) -> Any:
        """Return the stored value or ``default`` when the key is absent."""
        try:
            return self.retrieve(key, use_cache=use_cache).value
        except NotFound:
            return default

    def delete(
        self,
        key: str,
        backend: Optional[str] = None,
        delete_from_all: bool = False,
        index: Optional[IndexEntry] = None
    ) -> bool:
        """Delete a key.

        Returns True only if every targeted backend completed the delete; a
        key that was already absent counts as deleted. With
        ``delete_from_all`` every configured backend is targeted.

        On a content-addressed backend only the key's reference is removed.
        The content bytes are immutable and stay in the store, so anyone
        holding the hash can still read them.
        """
        with self._cache_lock:
            self._cache.pop(key, None)

        targets = list(self.backends) if delete_from_all else [backend or self.primary]
        outcomes = []
        for tag in targets:
            try:
                self._delete_from(tag, key, index)
                outcomes.append(True)
            except BackendError as e:
                logger.error("Deletion failed for backend %s (%s): %s", tag, key, str(e),
                             extra={"backend": tag})
                outcomes.append(False)

        return all(outcomes)

    # =========================================================================
    # PARTITION INDEX
    # =========================================================================

    def _index_tags(self) -> List[str]:
        tags = [self._index_backend(self.primary)]
        if self.fallback is not None:
            fallback_index = self._index_backend(self.fallback)
            if fallback_index not in tags:
                tags.append(fallback_index)
        return tags

    def index_add(self, namespace: str, member: str) -> None:
        """Add a member to a partition index on the primary (or fallback)."""
        tags = self._index_tags()
        last_error = None
        for tag in tags:
            try:
                self._call(tag, "index_add", self._backend(tag).index_add, namespace, member)
                return
            except BackendError as e:
                last_error = e
                logger.warning("Index update failed for backend %s: %s", tag, str(e))
        raise BackendUnavailable(f"Index update failed for {namespace}: {last_error}")

    def index_remove(self, namespace: str, member: str) -> bool:
        """Remove a member from every reachable partition index."""
        removed = False
        for tag in self._index_tags():
            try:
                self._call(tag, "index_remove", self._backend(tag).index_remove, namespace, member)
                removed = True
            except BackendError as e:
                logger.warning("Index removal failed for backend %s: %s", tag, str(e))
        return removed

    def list_index(self, namespace: str) -> Set[str]:
        """Members of a partition index across primary and fallback.

        Records written while the primary was down only exist in the
        fallback's index, so reachable indexes are unioned.

        Raises:
            BackendUnavailable: If no index backend is reachable
        """
        members: Set[str] = set()
        reachable = False
        last_error = None
        for tag in self._index_tags():
            try:
                members |= self._call(tag, "index_members", self._backend(tag).index_members, namespace)
                reachable = True
            except BackendError as e:
                last_error = e
                logger.warning("Index read failed for backend %s: %s", tag, str(e))
        if not reachable:
            raise BackendUnavailable(f"No index backend reachable for {namespace}: {last_error}")
        return members

    # =========================================================================
    # UTILITIES
    # =========================================================================

    def connection_state(self) -> Dict[str, bool]:
        """Reachability of every configured backend."""
        state = {}
        for tag, backend in self.backends.items():
            try:
                state[tag] = bool(self._call(tag, "ping", backend.ping))
            except BackendError:
                state[tag] = False
        return state

    def get_storage_stats(self) -> Dict[str, Any]:
        with self._cache_lock:
            cached_keys = len(self._cache)
            cached_bytes = sum(len(data) for data, _ in self._cache.values())
        with self._pending_lock:
            pending = len(self._pending_replicas)
        return {
            "primary": self.primary,
            "fallback": self.fallback,
            "cached_keys": cached_keys,
            "cached_bytes": cached_bytes,
            "pending_replicas": pending,
            "backends": self.connection_state(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def migrate(self, keys: Iterable[str], source: str, target: str) -> List[str]:
        """Copy keys from one backend into another.

        Used to move a deployment between backends (for example from the
        cache to the content store). Keys missing on the source are skipped;
        the source copy is left in place.

        Returns:
            Keys successfully written to the target
        """
        migrated = []
        for key in keys:
            try:
                data, _ = self._read_from(source, key)
                if data is None:
                    continue
                self._write_to(target, key, data, None, False, None)
                migrated.append(key)
            except BackendError as e:
                logger.error("Migration of %s from %s to %s failed: %s", key, source, target, str(e))
        logger.info("Migrated %d keys from %s to %s", len(migrated), source, target)
        return migrated

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def close(self) -> None:
        """Flush replicas, stop worker pools and close backends."""
        self._replicator.shutdown(wait=True)
        for executor in self._executors.values():
            executor.shutdown(wait=False)
        self.clear_cache()
        for backend in self.backends.values():
            backend.close()
