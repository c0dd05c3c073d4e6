"""Block device to serial number mapping via smartctl"""

import glob
import logging
import os
import re
import stat
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Tuple

from .command import command_exists, execute_command
from .errors import LedControlError, ToolMissingError, UnidentifiableDeviceError
from .models import DeviceBinding

SMARTCTL = "smartctl"

SERIAL_PATTERN = re.compile(r'^\s*Serial\s+Number\s*:\s*(.+?)\s*$', re.IGNORECASE | re.MULTILINE)
MODEL_PATTERN = re.compile(r'^\s*(?:Device Model|Model Number|Product)\s*:\s*(.+?)\s*$', re.MULTILINE)
CAPACITY_PATTERN = re.compile(r'^\s*(?:User Capacity|Total NVM Capacity)\s*:\s*(.+?)\s*$', re.MULTILINE)


class DeviceMapper:
    """Resolves local block devices to the serial numbers they report"""

    def __init__(self, sys_block: str = "/sys/block", device_pattern: str = "sd*",
                 timeout: float = 10, max_workers: int = 8,
                 logger: Optional[logging.Logger] = None):
        """Initialize device mapper

        Args:
            sys_block: sysfs directory listing block devices
            device_pattern: Glob of device names to consider
            timeout: Seconds allowed for one smartctl call
            max_workers: Concurrent lookups in bind_all()
            logger: Logger instance
        """
        self.sys_block = sys_block
        self.device_pattern = device_pattern
        self.timeout = timeout
        self.max_workers = max_workers
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def is_device_path(identifier: str) -> bool:
        """Check if an identifier looks like a device path rather than a serial"""
        return identifier.startswith("/dev/")

    @staticmethod
    def is_block_device(path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False

    def is_available(self) -> bool:
        return command_exists(SMARTCTL)

    def block_devices(self) -> List[str]:
        """List candidate block devices as /dev paths"""
        names = sorted(os.path.basename(p) for p in glob.glob(os.path.join(self.sys_block, self.device_pattern)))
        self.logger.debug(f"Found {len(names)} block devices in {self.sys_block}")
        return [f"/dev/{name}" for name in names]

    def lookup(self, device: str) -> DeviceBinding:
        """Read serial, model and capacity of one device with a single smartctl call

        Raises:
            ToolMissingError: If smartctl is not installed
            UnidentifiableDeviceError: If no serial could be read
        """
        try:
            # smartctl's exit status is a bit mask that is non-zero for many
            # healthy drives, so only the presence of a serial counts
            output = execute_command([SMARTCTL, "-i", device], timeout=self.timeout,
                                     check=False, logger=self.logger)
        except ToolMissingError:
            raise ToolMissingError(SMARTCTL, "install smartmontools")
        except LedControlError as e:
            self.logger.debug(f"smartctl failed for {device}: {e}")
            raise UnidentifiableDeviceError(device)

        serial = _first(SERIAL_PATTERN, output)
        if not serial:
            raise UnidentifiableDeviceError(device)

        return DeviceBinding(
            device=device,
            serial=serial,
            model=_first(MODEL_PATTERN, output),
            capacity=_capacity(_first(CAPACITY_PATTERN, output))
        )

    def serial_for_device(self, device: str) -> str:
        """Get the serial number of a block device"""
        return self.lookup(device).serial

    def bind_all(self, devices: Optional[Iterable[str]] = None) -> Tuple[List[DeviceBinding], List[str]]:
        """Look up every block device concurrently

        Returns:
            Tuple of (bindings, unidentified device paths), both in device order

        Raises:
            ToolMissingError: If smartctl is not installed
        """
        devices = list(self.block_devices() if devices is None else devices)
        if not devices:
            return [], []

        if not self.is_available():
            raise ToolMissingError(SMARTCTL, "install smartmontools")

        def _lookup(device: str) -> Optional[DeviceBinding]:
            try:
                return self.lookup(device)
            except UnidentifiableDeviceError:
                return None

        bindings = []
        unidentified = []
        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(devices)))) as executor:
            for device, binding in zip(devices, executor.map(_lookup, devices)):
                if binding is None:
                    self.logger.debug(f"No serial readable from {device}")
                    unidentified.append(device)
                else:
                    bindings.append(binding)

        return bindings, unidentified


def _first(pattern: re.Pattern, output: str) -> str:
    match = pattern.search(output)
    return match.group(1) if match else ""


def _capacity(value: str) -> str:
    """Reduce '4,000,787,030,016 bytes [4.00 TB]' to '4.00 TB'"""
    match = re.search(r'\[(.+?)\]', value)
    return match.group(1) if match else value
