"""Time-boxed, file-backed cache of the SAS topology"""

import json
import logging
import os
import tempfile
import threading
import time
from typing import List, Optional, Sequence

from .controllers import BaseController
from .errors import CommandFailedError, CommandTimeoutError, EmptyInventoryError
from .models import DriveRecord, TopologySnapshot
from .parser import index_by_serial

CACHE_VERSION = 1


class TopologyStore:
    """Owns the current topology snapshot and decides when it is stale

    The snapshot is persisted to ``cache_file`` whose modification time is
    the freshness clock, so a later invocation can reuse it within the TTL.
    """

    def __init__(self, controllers: Sequence[BaseController], cache_file: str,
                 ttl: float = 300, logger: Optional[logging.Logger] = None):
        """Initialize the topology store

        Args:
            controllers: Available HBA query tools
            cache_file: Path of the persisted snapshot
            ttl: Seconds a snapshot stays fresh
            logger: Logger instance
        """
        self.controllers = list(controllers)
        self.cache_file = os.path.expanduser(cache_file)
        self.ttl = ttl
        self.logger = logger or logging.getLogger(__name__)

        self.query_count = 0
        self._snapshot: Optional[TopologySnapshot] = None
        self._rebuild_lock = threading.Lock()

    @property
    def snapshot(self) -> Optional[TopologySnapshot]:
        """The last snapshot served or built, fresh or not"""
        return self._snapshot

    def get_topology(self, force_refresh: bool = False) -> TopologySnapshot:
        """Return a fresh snapshot, rebuilding it if needed

        Args:
            force_refresh: Skip the cache and query every adapter

        Raises:
            EmptyInventoryError: If a rebuild found no drives at all
        """
        if not force_refresh:
            snapshot = self._cached_snapshot()
            if snapshot is not None:
                return snapshot

        return self.rebuild()

    def _cached_snapshot(self) -> Optional[TopologySnapshot]:
        now = time.time()

        if self._snapshot is not None and self._snapshot.is_fresh(now):
            return self._snapshot

        snapshot = self._load_cache_file()
        if snapshot is not None and snapshot.is_fresh(now):
            self.logger.debug(f"Using cached topology from {self.cache_file} ({snapshot.age(now):.0f}s old)")
            self._snapshot = snapshot
            return snapshot

        return None

    def _load_cache_file(self) -> Optional[TopologySnapshot]:
        """Load the persisted snapshot, None if missing or unreadable"""
        if not os.path.exists(self.cache_file):
            return None

        try:
            mtime = os.path.getmtime(self.cache_file)
            with open(self.cache_file, 'r') as f:
                data = json.load(f)

            if data.get("version") != CACHE_VERSION:
                self.logger.debug(f"Ignoring cache file {self.cache_file} with unknown version")
                return None

            drives = tuple(DriveRecord.from_dict(d) for d in data.get("drives", []))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.warning(f"Ignoring unreadable topology cache {self.cache_file}: {e}")
            return None

        if not drives:
            return None

        return TopologySnapshot(drives=drives, captured_at=mtime, ttl=self.ttl)

    def rebuild(self) -> TopologySnapshot:
        """Query every adapter and atomically replace the snapshot

        The previous snapshot and cache file are kept if nothing was found.
        """
        with self._rebuild_lock:
            records = self._query_all()
            drives = tuple(index_by_serial(records).values())

            if not drives:
                raise EmptyInventoryError([c.controller_type for c in self.controllers])

            snapshot = TopologySnapshot(drives=drives, captured_at=time.time(), ttl=self.ttl)
            self._write_cache_file(snapshot)
            self._snapshot = snapshot

            self.logger.debug(
                f"Topology rebuilt: {len(drives)} drives on {len(snapshot.adapter_keys)} adapters"
            )
            return snapshot

    def _query_all(self) -> List[DriveRecord]:
        records: List[DriveRecord] = []

        for controller in self.controllers:
            binary = controller.controller_type

            try:
                self.query_count += 1
                adapters = controller.list_adapters()
            except (CommandTimeoutError, CommandFailedError) as e:
                self.logger.warning(f"Cannot list adapters via {binary}: {e}")
                continue

            if not adapters:
                self.logger.warning(f"No adapters found via {binary}")
                continue

            for adapter in adapters:
                try:
                    self.query_count += 1
                    records.extend(controller.get_drives(adapter.adapter_id))
                except CommandTimeoutError:
                    self.logger.warning(f"Timeout reading adapter {adapter.adapter_id} via {binary}")
                except CommandFailedError as e:
                    self.logger.warning(f"Cannot read adapter {adapter.adapter_id} via {binary}: {e}")

        return records

    def _write_cache_file(self, snapshot: TopologySnapshot) -> None:
        """Persist a snapshot via temp file and rename"""
        data = {
            "version": CACHE_VERSION,
            "captured_at": snapshot.captured_at,
            "drives": [d.to_dict() for d in snapshot.drives]
        }

        directory = os.path.dirname(self.cache_file) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=os.path.basename(self.cache_file) + ".", dir=directory)
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self.cache_file)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            self.logger.warning(f"Cannot write topology cache {self.cache_file}: {e}")
