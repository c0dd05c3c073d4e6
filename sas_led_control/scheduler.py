"""Bulk locate scheduling across adapters"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from .actuator import LedActuator
from .blink_registry import BlinkRegistry
from .device_mapper import DeviceMapper
from .errors import EmptyInventoryError, LedControlError, ToolMissingError
from .models import (AdapterResult, BulkSummary, DeviceBinding, DriveRecord, LocateResult,
                     LocateState, Status, TopologySnapshot)
from .topology_store import TopologyStore


class BatchScheduler:
    """Applies a locate state to every known drive

    One worker per adapter sweeps its drives strictly one at a time, since
    concurrent firmware calls to the same HBA corrupt its state. Adapters
    are swept concurrently with each other and with the AHCI blink starts.
    """

    def __init__(self, store: TopologyStore, actuator: LedActuator, device_mapper: DeviceMapper,
                 registry: BlinkRegistry, max_workers: int = 8,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.actuator = actuator
        self.device_mapper = device_mapper
        self.registry = registry
        self.max_workers = max_workers
        self.logger = logger or logging.getLogger(__name__)

    def bulk_set_locate(self, state: LocateState) -> BulkSummary:
        """Turn every locate LED on or off and report per-adapter results

        Raises:
            EmptyInventoryError: No SAS drives were found and ``state`` is ON
        """
        start_time = time.monotonic()
        summary = BulkSummary(state=state)

        try:
            snapshot: Optional[TopologySnapshot] = self.store.get_topology(force_refresh=False)
        except EmptyInventoryError as e:
            if state is LocateState.ON:
                raise
            # Blink jobs must still be stopped without any SAS drive
            self.logger.warning(str(e))
            summary.warnings.append(str(e))
            snapshot = None

        partitions = snapshot.by_adapter() if snapshot is not None else {}
        summary.total_drives = len(snapshot) if snapshot is not None else 0

        self.logger.info(
            f"Turning {state.value} locate LEDs for {summary.total_drives} SAS drives "
            f"across {len(partitions)} adapters..."
        )

        with ThreadPoolExecutor(max_workers=max(1, len(partitions)),
                                thread_name_prefix="adapter") as sas_pool, \
                ThreadPoolExecutor(max_workers=max(1, self.max_workers),
                                   thread_name_prefix="ahci") as ahci_pool:
            adapter_futures = [
                sas_pool.submit(self._sweep_adapter, key, drives, state)
                for key, drives in partitions.items()
            ]

            ahci_futures = []
            if state is LocateState.ON:
                for binding in self._ahci_candidates(snapshot, summary):
                    ahci_futures.append(ahci_pool.submit(self._start_blink, binding))
            else:
                self._stop_all_blinks(summary)

            summary.adapters = [f.result() for f in adapter_futures]
            summary.ahci = [f.result() for f in ahci_futures]

        summary.elapsed = time.monotonic() - start_time
        self.logger.debug(f"Bulk {state.value} finished in {summary.elapsed:.1f}s")
        return summary

    def _sweep_adapter(self, adapter_key: str, drives: Sequence[DriveRecord],
                       state: LocateState) -> AdapterResult:
        """Apply the state to one adapter's drives, strictly in order"""
        first = drives[0]
        result = AdapterResult(adapter_key=adapter_key, binary=first.binary, adapter_id=first.adapter_id)

        for drive in drives:
            try:
                self.actuator.set_locate(drive, state)
                result.ok += 1
            except (LedControlError, OSError) as e:
                # Timeouts and firmware errors only cost this one drive
                self.logger.warning(f"Failed to turn {state.value.lower()} locate for {drive.serial}: {e}")
                result.failed += 1
                result.failures.append(LocateResult(Status.WARNING, str(e), drive.serial))

        self.logger.debug(f"Adapter {adapter_key}: {result.ok} OK, {result.failed} FAIL (of {result.total})")
        return result

    def ahci_candidates(self, snapshot: Optional[TopologySnapshot]) -> Tuple[List[DeviceBinding], List[str]]:
        """Find local block devices whose serial is not on any SAS HBA

        Returns:
            Tuple of (candidates, unidentifiable device paths)
        """
        bindings, unidentified = self.device_mapper.bind_all()

        candidates = []
        seen = set()
        for binding in bindings:
            key = binding.serial.upper()
            if key in seen:
                # Second path to the same drive
                continue
            seen.add(key)
            if snapshot is None or snapshot.find(binding.serial) is None:
                candidates.append(binding)

        return candidates, unidentified

    def _ahci_candidates(self, snapshot: Optional[TopologySnapshot],
                         summary: BulkSummary) -> List[DeviceBinding]:
        try:
            candidates, unidentified = self.ahci_candidates(snapshot)
        except ToolMissingError as e:
            message = f"AHCI discovery skipped: {e}"
            self.logger.warning(message)
            summary.warnings.append(message)
            return []

        for device in unidentified:
            self.logger.debug(f"Unidentifiable device {device}: no serial number readable")
        summary.unidentified = unidentified
        return candidates

    def _start_blink(self, binding: DeviceBinding) -> LocateResult:
        try:
            job = self.actuator.start_blink(binding.device, binding.serial)
        except (LedControlError, OSError) as e:
            self.logger.warning(f"Failed to start blink for {binding.device}: {e}")
            return LocateResult(Status.WARNING, f"Blink failed: {binding.device}: {e}", binding.serial)
        return LocateResult(Status.OK, f"Blink ON: {binding.device} (AHCI fallback, PID {job.pid})",
                            binding.serial)

    def _stop_all_blinks(self, summary: BulkSummary) -> None:
        registered = len(self.registry.jobs())
        failed = self.registry.terminate_all()
        summary.stopped_blinks = registered - len(failed)
        for serial in failed:
            summary.warnings.append(f"Failed to stop blink job for {serial}")
