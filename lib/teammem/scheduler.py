"""Periodic reconciliation of team memories.

Instances only converge through shared storage plus these sync passes, so
the sync interval is the consistency bound: two instances may each hold an
active memory for the same concept until the next pass merges them.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .constants import Defaults
from .errors import TeamMemoryError
from .log import get_logger
from .telemetry import TeamMemoryMetrics

logger = get_logger(__name__)


class Clock:
    """Time source for scheduling."""

    def now(self) -> float:
        raise NotImplementedError

    def wait(self, event: threading.Event, timeout: float) -> bool:
        """Block until ``event`` is set or ``timeout`` elapses; True if set."""
        raise NotImplementedError


class SystemClock(Clock):

    def now(self) -> float:
        return time.monotonic()

    def wait(self, event: threading.Event, timeout: float) -> bool:
        return event.wait(timeout)


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now

    def wait(self, event: threading.Event, timeout: float) -> bool:
        self.advance(timeout)
        return event.is_set()


class PeriodicTask:
    """Runs a callable every ``interval`` seconds until cancelled.

    ``run_pending()`` runs the callable if it is due, which lets tests drive
    the schedule with a ManualClock. ``start()`` runs the same schedule on a
    daemon thread. An interval of 0 disables automatic runs.
    """

    def __init__(self, func: Callable[[], object], interval: float,
                 clock: Optional[Clock] = None, name: str = "periodic-task"):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.func = func
        self.interval = interval
        self.clock = clock or SystemClock()
        self.name = name
        self.runs = 0
        self._next_run = self.clock.now() + interval if interval > 0 else None
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def seconds_until_due(self) -> Optional[float]:
        if self._next_run is None:
            return None
        return max(0.0, self._next_run - self.clock.now())

    def run_now(self) -> None:
        try:
            self.func()
        except Exception as e:
            logger.exception("%s run failed: %s", self.name, str(e))
        finally:
            self.runs += 1
            if self.enabled:
                self._next_run = self.clock.now() + self.interval

    def run_pending(self) -> bool:
        """Run once if due. Returns True if the callable ran."""
        if self._stopped.is_set() or self._next_run is None:
            return False
        if self.clock.now() < self._next_run:
            return False
        self.run_now()
        return True

    def _loop(self) -> None:
        while not self._stopped.is_set():
            if self.clock.wait(self._stopped, self.seconds_until_due() or 0.0):
                break
            self.run_pending()

    def start(self) -> None:
        if not self.enabled:
            logger.info("%s disabled (interval 0); manual runs only", self.name)
            return
        if self.running:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None


@dataclass
class SyncResult:
    """Outcome of one team's sync pass."""
    team_id: str
    started_at: float
    finished_at: Optional[float] = None
    memories_scanned: int = 0
    conflicts_found: int = 0
    conflicts_resolved: int = 0
    consolidated: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class SyncScheduler:
    """Reconciles every team's memories on an interval or on demand.

    Syncs of one team are serialized by the team lock shared with write-time
    conflict resolution; different teams sync concurrently.
    """

    def __init__(
        self,
        registry,
        memory_store,
        interval: float = Defaults.SYNC_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
        max_workers: int = 4,
        metrics: Optional[TeamMemoryMetrics] = None
    ):
        self.registry = registry
        self.memory_store = memory_store
        self.resolver = memory_store.resolver
        self.clock = clock or SystemClock()
        self.max_workers = max_workers
        self.metrics = metrics or memory_store.metrics
        self._last_sync: Dict[str, float] = {}
        self._task = PeriodicTask(self.sync_all, interval, self.clock, name="team-memory-sync")

    @property
    def interval(self) -> float:
        return self._task.interval

    def sync_team(self, team_id: str) -> SyncResult:
        """Resolve every latent conflict in one team.

        Raises:
            TeamNotFound: If the team does not exist
            BackendUnavailable: If the team's memories cannot be listed
        """
        self.registry.require_team(team_id)
        result = SyncResult(team_id=team_id, started_at=time.time())
        start = time.monotonic()

        with self.resolver.locks.hold(team_id):
            memories = self.memory_store.active(team_id)
            result.memories_scanned = len(memories)

            for conflict, group in self.resolver.detect(team_id, memories):
                result.conflicts_found += 1
                try:
                    self.resolver.resolve(conflict, group)
                except TeamMemoryError as e:
                    result.errors.append(f"{conflict.concept}: {e}")
                    logger.error("Sync could not resolve %s: %s", conflict.concept, str(e),
                                 extra={'team_id': team_id})
                    continue
                if conflict.resolved:
                    result.conflicts_resolved += 1
                else:
                    result.errors.append(f"{conflict.concept}: partially resolved")
                result.consolidated.extend(
                    m.id for m in group if m.id != conflict.winner_id and m.consolidated)

        result.finished_at = time.time()
        self._last_sync[team_id] = result.finished_at
        self.metrics.record_sync(team_id, result.success, (time.monotonic() - start) * 1000)
        logger.info("Synced team %s: %d memories, %d conflicts, %d consolidated",
                    team_id, result.memories_scanned, result.conflicts_found,
                    len(result.consolidated), extra={'team_id': team_id})
        return result

    def _sync_isolated(self, team_id: str) -> SyncResult:
        try:
            return self.sync_team(team_id)
        except Exception as e:
            if isinstance(e, TeamMemoryError):
                logger.error("Sync failed for team %s: %s", team_id, str(e), extra={'team_id': team_id})
            else:
                logger.exception("Unexpected sync failure for team %s", team_id, extra={'team_id': team_id})
            self.metrics.record_sync(team_id, False, 0.0)
            result = SyncResult(team_id=team_id, started_at=time.time(), finished_at=time.time())
            result.errors.append(str(e))
            return result

    def sync_all(self) -> Dict[str, SyncResult]:
        """Sync every known team; one team's failure never stops the others."""
        team_ids = self.registry.list_team_ids()
        if not team_ids:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(team_ids)),
                                thread_name_prefix="teammem-sync") as executor:
            results = list(executor.map(self._sync_isolated, team_ids))
        return {result.team_id: result for result in results}

    def last_sync(self, team_id: str) -> Optional[float]:
        return self._last_sync.get(team_id)

    def run_pending(self) -> bool:
        return self._task.run_pending()

    def start(self) -> None:
        self._task.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._task.cancel(timeout)

    @property
    def running(self) -> bool:
        return self._task.running
