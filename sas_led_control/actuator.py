"""Locate LED state changes for single drives"""

import logging
import subprocess
import sys
from typing import Dict, List, Optional

from .blink_registry import BlinkRegistry
from .controllers import BaseController
from .errors import LedControlError, ToolMissingError
from .models import BlinkJob, DriveRecord, LocateState, Settings


class LedActuator:
    """Performs one locate change against one drive

    SAS drives go through the HBA firmware; AHCI drives get a background
    blink process managed through the registry.
    """

    def __init__(self, controllers: Dict[str, BaseController], registry: BlinkRegistry,
                 settings: Optional[Settings] = None, logger: Optional[logging.Logger] = None):
        """Initialize the actuator

        Args:
            controllers: Controllers keyed by binary name
            registry: Blink process registry
            settings: Blink timing and locate timeout
            logger: Logger instance
        """
        self.controllers = controllers
        self.registry = registry
        self.settings = settings or Settings()
        self.logger = logger or logging.getLogger(__name__)

    def set_locate(self, record: DriveRecord, state: LocateState) -> None:
        """Turn the locate LED of a SAS drive on or off

        Raises:
            CommandTimeoutError: The firmware call was killed after the timeout
            CommandFailedError: The query tool reported an error
            ToolMissingError: The record's query tool is not available
        """
        controller = self.controllers.get(record.binary)
        if controller is None:
            raise ToolMissingError(record.binary)

        self.logger.debug(
            f"{record.binary} {record.adapter_id} locate {record.encl_slot} {state.value} ({record.serial})"
        )
        controller.locate(record.adapter_id, record.enclosure, record.slot, state,
                          timeout=self.settings.locate_timeout)

    def blink_command(self, device: str) -> List[str]:
        """Command line of the background blink cycle for a device"""
        return [
            sys.executable, "-m", "sas_led_control.blink_cycle", device,
            "--read-seconds", str(self.settings.blink_read_seconds),
            "--idle-seconds", str(self.settings.blink_idle_seconds),
            "--block-mb", str(self.settings.blink_block_mb),
        ]

    def start_blink(self, device: str, serial: str) -> BlinkJob:
        """Start the activity blink fallback for an AHCI drive

        Must never be used for a drive that resolved to a SAS record.

        Raises:
            LedControlError: The blink process could not be started or recorded
        """
        self.registry.terminate(serial)

        # New session: the cycle and its dd children share one process group
        try:
            process = subprocess.Popen(
                self.blink_command(device),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as e:
            raise LedControlError(f"Cannot start blink process for {device}: {e}")

        job = self.registry.register(serial, device, process)
        self.logger.debug(f"Blink started for {device} ({serial}), PID {job.pid}")
        return job

    def stop_blink(self, serial: str) -> bool:
        """Stop the blink fallback for a serial, no-op if none is running"""
        return self.registry.terminate(serial)
