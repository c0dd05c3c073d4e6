"""Resolution of user supplied drive identifiers"""

import logging
from typing import NamedTuple, Optional

from .device_mapper import DeviceMapper
from .errors import DriveNotFoundError
from .models import DriveRecord
from .topology_store import TopologyStore


class Resolution(NamedTuple):
    """Outcome of resolving an identifier

    ``record`` is None when a device path is not on any SAS HBA, which
    means the AHCI fallback applies to ``device``.
    """

    record: Optional[DriveRecord]
    is_device_path: bool
    serial: str
    device: Optional[str] = None


class DriveResolver:
    """Maps a device path or serial number onto the SAS topology"""

    def __init__(self, store: TopologyStore, device_mapper: DeviceMapper,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.device_mapper = device_mapper
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, identifier: str) -> Resolution:
        """Resolve an identifier to a drive record

        Raises:
            DriveNotFoundError: Unknown serial, or a device path that does not exist
            UnidentifiableDeviceError: No serial could be read from the device
            ToolMissingError: smartctl is needed but not installed
            EmptyInventoryError: The topology could not be built
        """
        identifier = identifier.strip()
        is_device_path = self.device_mapper.is_device_path(identifier)
        device = None

        if is_device_path:
            device = identifier
            if not self.device_mapper.is_block_device(device):
                raise DriveNotFoundError(device, "not a block device")
            serial = self.device_mapper.serial_for_device(device)
            self.logger.debug(f"{device} has serial {serial}")
        else:
            serial = identifier

        snapshot = self.store.get_topology(force_refresh=False)
        record = snapshot.find(serial)

        if record is not None:
            return Resolution(record, is_device_path, record.serial, device)

        if is_device_path:
            self.logger.debug(f"{device} ({serial}) is not on a SAS HBA")
            return Resolution(None, True, serial, device)

        raise DriveNotFoundError(identifier, "not in SAS topology, not a device path")
