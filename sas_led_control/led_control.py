"""Main LedControl facade and command line interface"""

import argparse
import json
import logging
import os
import sys
from typing import Dict, List, Optional

from . import __version__
from .actuator import LedActuator
from .blink_registry import BlinkRegistry
from .config import ConfigManager
from .controllers import BaseController, SasIrcuController
from .device_mapper import DeviceMapper
from .errors import (CommandFailedError, CommandTimeoutError, EmptyInventoryError, LedControlError,
                     PermissionDeniedError, ToolMissingError)
from .models import (BulkSummary, Inventory, InventoryRow, LocateResult, LocateState, Settings,
                     Status)
from .resolver import DriveResolver
from .scheduler import BatchScheduler
from .topology_store import TopologyStore

LABELS = {
    Status.OK: "[OK]",
    Status.WARNING: "[WARN]",
    Status.ERROR: "[ERR]",
}


class LedControl:
    """High-level drive locate operations

    This class wires the specialized components together:
    - Controllers (sas2ircu, sas3ircu)
    - Topology store and drive resolver
    - LED actuator, batch scheduler and blink registry

    It returns structured results and never writes to the terminal.
    """

    def __init__(self, settings: Optional[Settings] = None, use_cache: bool = True,
                 logger: Optional[logging.Logger] = None,
                 controllers: Optional[List[BaseController]] = None,
                 device_mapper: Optional[DeviceMapper] = None,
                 registry: Optional[BlinkRegistry] = None):
        """Initialize the LedControl instance

        Args:
            settings: Runtime settings, defaults if omitted
            use_cache: Serve a fresh cached topology instead of re-querying
            logger: Logger instance
            controllers: Query tools to use, detected from PATH if omitted
            device_mapper: smartctl based device lookup
            registry: Blink process registry

        Raises:
            ToolMissingError: If neither sas2ircu nor sas3ircu is installed
        """
        self.settings = settings or Settings()
        self.use_cache = use_cache
        self.logger = logger or logging.getLogger(__name__)

        self.controllers = controllers if controllers is not None else self.detect_controllers()
        self.device_mapper = device_mapper or DeviceMapper(
            sys_block=self.settings.sys_block,
            device_pattern=self.settings.device_pattern,
            timeout=self.settings.lookup_timeout,
            max_workers=self.settings.max_workers,
            logger=self.logger
        )
        self.registry = registry or BlinkRegistry(self.settings.blink_pid_dir, logger=self.logger)

        self.store = TopologyStore(self.controllers, self.settings.cache_file,
                                   ttl=self.settings.cache_ttl, logger=self.logger)
        self.resolver = DriveResolver(self.store, self.device_mapper, logger=self.logger)
        controller_map: Dict[str, BaseController] = {c.controller_type: c for c in self.controllers}
        self.actuator = LedActuator(controller_map, self.registry, self.settings, logger=self.logger)
        self.scheduler = BatchScheduler(self.store, self.actuator, self.device_mapper, self.registry,
                                        max_workers=self.settings.max_workers, logger=self.logger)

        # A disabled cache means the first lookup of this run re-queries the HBAs
        self._refresh_pending = not use_cache

    def detect_controllers(self) -> List[BaseController]:
        """Detect the installed query tools

        Returns:
            List of available controllers

        Raises:
            ToolMissingError: If no query tool is found
        """
        controllers = []
        for binary in self.settings.binaries:
            controller = SasIrcuController(
                logger=self.logger,
                controller_type=binary,
                list_timeout=self.settings.list_timeout,
                display_timeout=self.settings.display_timeout,
                locate_timeout=self.settings.locate_timeout
            )
            if controller.is_available():
                self.logger.debug(f"Found controller tool: {binary}")
                controllers.append(controller)

        if not controllers:
            raise ToolMissingError(" or ".join(self.settings.binaries), "install from Broadcom/LSI")

        return controllers

    def _prepare_topology(self, tolerate_empty: bool = False) -> None:
        if not self._refresh_pending:
            return
        self._refresh_pending = False
        try:
            self.store.get_topology(force_refresh=True)
        except EmptyInventoryError:
            if not tolerate_empty:
                raise

    def list_drives(self) -> Inventory:
        """Build the drive table, always from a fresh adapter query"""
        inventory = Inventory()
        self._refresh_pending = False

        snapshot = None
        try:
            snapshot = self.store.get_topology(force_refresh=True)
        except EmptyInventoryError as e:
            self.logger.warning(str(e))
            inventory.warnings.append(str(e))

        try:
            bindings, inventory.unidentified = self.device_mapper.bind_all()
        except ToolMissingError as e:
            self.logger.warning(f"Device names unavailable: {e}")
            inventory.warnings.append(str(e))
            bindings = []

        serial_to_dev: Dict[str, str] = {}
        for binding in bindings:
            serial_to_dev.setdefault(binding.serial.upper(), binding.device)

        if snapshot is not None:
            inventory.rows = [InventoryRow(record, serial_to_dev.get(record.serial_key))
                              for record in snapshot.drives]

        inventory.ahci = [b for b in bindings if snapshot is None or snapshot.find(b.serial) is None]
        return inventory

    def locate_one(self, identifier: str, state: LocateState) -> LocateResult:
        """Turn the locate LED of one drive on or off

        SAS drives use the HBA firmware, other devices the activity blink.

        Raises:
            DriveNotFoundError: The identifier does not resolve to a drive
            UnidentifiableDeviceError: No serial readable from the device
            ToolMissingError: A required tool is missing
            EmptyInventoryError: No SAS topology available
        """
        self._prepare_topology()
        record, is_device_path, serial, device = self.resolver.resolve(identifier)

        if record is not None:
            try:
                self.actuator.set_locate(record, state)
            except (CommandTimeoutError, CommandFailedError) as e:
                self.logger.debug(f"Locate failed for {identifier}: {e}")
                return LocateResult(
                    Status.WARNING,
                    f"Failed to turn {state.value.lower()} locate for {identifier}: {e}",
                    record.serial
                )

            return LocateResult(
                Status.OK,
                f"Locate {state.value}: {identifier} (adapter {record.adapter_id}, "
                f"encl {record.enclosure}, slot {record.slot}) via {record.binary}",
                record.serial
            )

        # Not on any SAS HBA: only reachable through a device path
        if state is LocateState.ON:
            job = self.actuator.start_blink(device, serial)
            return LocateResult(Status.OK, f"Blink ON: {device} (AHCI fallback, dd PID {job.pid})", serial)

        if self.actuator.stop_blink(serial):
            return LocateResult(Status.OK, f"Blink OFF: {device} (AHCI fallback)", serial)
        return LocateResult(Status.OK, f"Blink OFF: {device} (AHCI fallback, no blink was running)", serial)

    def bulk(self, state: LocateState) -> BulkSummary:
        """Turn every locate LED on or off"""
        self._prepare_topology(tolerate_empty=state is LocateState.OFF)
        return self.scheduler.bulk_set_locate(state)


class LedControlCLI:
    """Command line front end rendering LedControl results"""

    def __init__(self):
        """Initialize the CLI"""
        self.command = None
        self.identifier = None
        self.json_output = False
        self.use_cache = True
        self.config_file = None
        self.verbose = False
        self.quiet = False

        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Set up the logger for the application"""
        logger = logging.getLogger("sas-led-control")
        logger.setLevel(logging.INFO)

        if not logger.handlers:
            ch = logging.StreamHandler()
            ch.setLevel(logging.INFO)

            formatter = logging.Formatter('[%(levelname)s] %(message)s')
            ch.setFormatter(formatter)

            logger.addHandler(ch)

        return logger

    def parse_arguments(self, argv: Optional[List[str]] = None) -> None:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            prog="sas-led-control",
            description="Drive locate LED control for LSI/Broadcom SAS HBAs with AHCI blink fallback.",
            epilog="Parallel across SAS adapters, serial within each adapter. "
                   "Locate LEDs persist until explicitly turned OFF. Requires root."
        )

        parser.add_argument("--no-cache", action="store_true", help="Force topology refresh (skip cache)")
        parser.add_argument("--config", metavar="FILE", help="YAML configuration file")
        parser.add_argument("-j", "--json", action="store_true", help="Output results in JSON format")
        parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
        parser.add_argument("-q", "--quiet", action="store_true", help="Suppress INFO messages")
        parser.add_argument("-V", "--version", action="version", version=f"sas-led-control {__version__}")

        subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
        subparsers.required = True
        subparsers.add_parser("list", help="Show all drives with adapter:encl:slot, serial, device, model")
        blink = subparsers.add_parser("blink", help="Turn ON locate LED (or dd-blink for AHCI) for one drive")
        blink.add_argument("drive", metavar="DEV|SERIAL", help="Block device path or drive serial")
        off = subparsers.add_parser("off", help="Turn OFF locate LED (or stop dd-blink) for one drive")
        off.add_argument("drive", metavar="DEV|SERIAL", help="Block device path or drive serial")
        subparsers.add_parser("all-on", help="Turn ON locate LED for ALL drives")
        subparsers.add_parser("all-off", help="Turn OFF locate LED for ALL drives (and stop dd-blinks)")

        args = parser.parse_args(argv)

        self.command = args.command
        self.identifier = getattr(args, "drive", None)
        self.json_output = args.json
        self.use_cache = not args.no_cache
        self.config_file = args.config
        self.verbose = args.verbose
        self.quiet = args.quiet

        # Configure logger
        if self.verbose:
            self.logger.setLevel(logging.DEBUG)
            for handler in self.logger.handlers:
                handler.setLevel(logging.DEBUG)
        elif self.quiet:
            self.logger.setLevel(logging.WARNING)
            for handler in self.logger.handlers:
                handler.setLevel(logging.WARNING)

    def check_privileges(self) -> None:
        if os.geteuid() != 0:
            raise PermissionDeniedError()

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point for the application

        Returns:
            int: Process exit status
        """
        self.parse_arguments(argv)

        try:
            self.check_privileges()
            settings = ConfigManager(self.config_file, logger=self.logger).settings
            control = LedControl(settings, use_cache=self.use_cache, logger=self.logger)

            with control.registry.cleanup_on_abort():
                return self._dispatch(control)

        except LedControlError as e:
            self.logger.error(str(e))
            return 1
        except OSError as e:
            # Blink marker directory or process table trouble
            self.logger.error(f"System error: {e}")
            return 1

    def _dispatch(self, control: LedControl) -> int:
        if self.command == "list":
            self._display_inventory(control.list_drives())
            return 0

        if self.command in ("blink", "off"):
            state = LocateState.ON if self.command == "blink" else LocateState.OFF
            result = control.locate_one(self.identifier, state)
            self._display_result(result)
            return 1 if result.status is Status.ERROR else 0

        state = LocateState.ON if self.command == "all-on" else LocateState.OFF
        self._display_summary(control.bulk(state))
        return 0

    def _print_line(self, status: Status, message: str) -> None:
        print(f"{LABELS[status]} {message}")

    def _display_result(self, result: LocateResult) -> None:
        if self.json_output:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            self._print_line(result.status, result.message)

    def _display_summary(self, summary: BulkSummary) -> None:
        """Print one line per adapter, AHCI action and problem, then the summary line"""
        if self.json_output:
            print(json.dumps(summary.to_dict(), indent=2))
            return

        for warning in summary.warnings:
            self._print_line(Status.WARNING, warning)

        for adapter in summary.adapters:
            status = Status.OK if adapter.failed == 0 else Status.WARNING
            self._print_line(
                status,
                f"Adapter {adapter.adapter_id} ({adapter.binary}): "
                f"{adapter.ok} OK, {adapter.failed} FAIL (of {adapter.total})"
            )

        for result in summary.ahci:
            self._print_line(result.status, result.message)

        for device in summary.unidentified:
            self._print_line(Status.WARNING, f"Unidentifiable device {device}: no serial number readable")

        if summary.state is LocateState.OFF and summary.stopped_blinks:
            self._print_line(Status.OK, f"Stopped {summary.stopped_blinks} dd-blink jobs")

        status = Status.OK if summary.failed == 0 else Status.WARNING
        self._print_line(
            status,
            f"Done in {summary.elapsed:.1f}s ({summary.total_drives} SAS drives, "
            f"{summary.adapter_count} adapters, {summary.ahci_count} AHCI)"
        )

    def _display_inventory(self, inventory: Inventory) -> None:
        """Display drives in table format"""
        if self.json_output:
            print(json.dumps(inventory.to_dict(), indent=2))
            return

        for warning in inventory.warnings:
            self._print_line(Status.WARNING, warning)

        headers = ["Adapter", "Encl", "Slot", "Device", "Serial", "Model", "Size", "Controller"]
        table_data = []

        for row in inventory.rows:
            record = row.record
            table_data.append([
                record.adapter_id,
                str(record.enclosure),
                str(record.slot),
                row.device or "N/A",
                record.serial,
                record.model,
                record.size_tb,
                record.binary
            ])

        for binding in inventory.ahci:
            table_data.append([
                "---", "---", "---",
                binding.device,
                binding.serial,
                binding.model or "N/A",
                binding.capacity or "N/A",
                "AHCI (dd-blink)"
            ])

        for device in inventory.unidentified:
            table_data.append(["---", "---", "---", device, "N/A", "N/A", "N/A", "unidentified"])

        self._print_table(headers, table_data)

    def _print_table(self, headers: List[str], data: List[List[str]]) -> None:
        """Print a formatted table"""
        # Calculate column widths
        widths = [len(h) for h in headers]
        for row in data:
            for i, val in enumerate(row):
                if i < len(widths):
                    widths[i] = max(widths[i], len(str(val)))

        # Print header
        header_parts = [h.ljust(widths[i]) for i, h in enumerate(headers)]
        header_line = "  ".join(header_parts)
        print(header_line)
        print("-" * len(header_line))

        # Print data
        for row in data:
            row_parts = [str(val).ljust(widths[i]) for i, val in enumerate(row)]
            print("  ".join(row_parts))


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point"""
    return LedControlCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
