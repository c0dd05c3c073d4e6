"""Data models for drive locate operations"""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from subprocess import Popen
from typing import Dict, List, Optional, Tuple


class LocateState(Enum):
    """Locate LED state, valued as the word the locate command expects"""

    ON = "ON"
    OFF = "OFF"


class Status(Enum):
    """Outcome label of one unit of work"""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Adapter:
    """One HBA row of the adapter list output"""

    adapter_id: str                  # Index printed by the query tool
    family: str                      # Device family (e.g., SAS2008)
    binary: str                      # sas2ircu or sas3ircu

    def to_dict(self) -> dict:
        """Convert adapter to dictionary representation"""
        return {
            "adapter": self.adapter_id,
            "family": self.family,
            "binary": self.binary
        }


@dataclass(frozen=True)
class DriveRecord:
    """Represents a physical drive known to a SAS HBA"""

    adapter_id: str                  # Owning HBA index, stable within one run
    binary: str                      # Query tool that produced the record
    enclosure: int                   # Enclosure number
    slot: int                        # Slot number within enclosure
    serial: str                      # Serial number
    model: str = ""                  # Model number
    size_mb: Optional[int] = None    # Size in MB

    @property
    def adapter_key(self) -> str:
        """Unique adapter key, both tool variants may number an adapter 0"""
        return f"{self.binary}:{self.adapter_id}"

    @property
    def encl_slot(self) -> str:
        """Enclosure:slot address as the locate command takes it"""
        return f"{self.enclosure}:{self.slot}"

    @property
    def serial_key(self) -> str:
        return self.serial.upper()

    @property
    def size_tb(self) -> str:
        """Human readable size"""
        if self.size_mb:
            return f"{self.size_mb / 1000000:.1f}TB"
        return "N/A"

    def to_dict(self) -> dict:
        """Convert record to dictionary representation"""
        return {
            "adapter": self.adapter_id,
            "binary": self.binary,
            "enclosure": self.enclosure,
            "slot": self.slot,
            "serial": self.serial,
            "model": self.model,
            "size_mb": self.size_mb
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DriveRecord":
        """Create DriveRecord from dictionary"""
        size_mb = data.get("size_mb")
        return cls(
            adapter_id=str(data["adapter"]),
            binary=data.get("binary", "sas2ircu"),
            enclosure=int(data["enclosure"]),
            slot=int(data["slot"]),
            serial=data["serial"],
            model=data.get("model", ""),
            size_mb=int(size_mb) if size_mb is not None else None
        )


@dataclass(frozen=True)
class DeviceBinding:
    """A live join between a block device and the serial read from it"""

    device: str                      # Device path (e.g., /dev/sda)
    serial: str                      # Serial number reported by the device
    model: str = ""
    capacity: str = ""

    def to_dict(self) -> dict:
        return {
            "device": self.device,
            "serial": self.serial,
            "model": self.model,
            "capacity": self.capacity
        }


@dataclass(frozen=True)
class TopologySnapshot:
    """Merged inventory of all adapters at one point in time

    A snapshot is never updated in place; a rebuild replaces it.
    """

    drives: Tuple[DriveRecord, ...]
    captured_at: float
    ttl: float

    def __post_init__(self):
        index: Dict[str, DriveRecord] = {}
        for drive in self.drives:
            index.setdefault(drive.serial_key, drive)
        object.__setattr__(self, "_index", index)

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.captured_at

    def is_fresh(self, now: Optional[float] = None) -> bool:
        """Check whether the snapshot can be served without re-querying"""
        return 0 <= self.age(now) < self.ttl

    def find(self, serial: str) -> Optional[DriveRecord]:
        """Find a drive by serial number (case-insensitive)"""
        if not serial:
            return None
        return self._index.get(serial.strip().upper())

    def by_adapter(self) -> "OrderedDict[str, List[DriveRecord]]":
        """Partition drives by adapter key, keeping snapshot order"""
        partitions: "OrderedDict[str, List[DriveRecord]]" = OrderedDict()
        for drive in self.drives:
            partitions.setdefault(drive.adapter_key, []).append(drive)
        return partitions

    @property
    def adapter_keys(self) -> List[str]:
        return list(self.by_adapter().keys())

    def __len__(self) -> int:
        return len(self.drives)


@dataclass
class BlinkJob:
    """An active background blink process for an AHCI drive"""

    serial: str
    device: str
    pid: int
    process: Optional[Popen] = field(default=None, repr=False, compare=False)
    marker: Optional[str] = field(default=None, repr=False, compare=False)   # File the job was read from

    def to_dict(self) -> dict:
        return {
            "serial": self.serial,
            "device": self.device,
            "pid": self.pid
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BlinkJob":
        return cls(
            serial=data.get("serial", ""),
            device=data.get("device", ""),
            pid=int(data["pid"])
        )


@dataclass
class LocateResult:
    """Outcome of one unit of work, rendered as one labeled line"""

    status: Status
    message: str
    target: str = ""

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "target": self.target
        }


@dataclass
class AdapterResult:
    """Per-adapter success/failure counts of a bulk operation"""

    adapter_key: str
    binary: str
    adapter_id: str
    ok: int = 0
    failed: int = 0
    failures: List[LocateResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.ok + self.failed

    def to_dict(self) -> dict:
        return {
            "adapter": self.adapter_id,
            "binary": self.binary,
            "ok": self.ok,
            "failed": self.failed,
            "failures": [f.to_dict() for f in self.failures]
        }


@dataclass
class BulkSummary:
    """Final report of a bulk locate operation"""

    state: LocateState
    adapters: List[AdapterResult] = field(default_factory=list)
    total_drives: int = 0
    ahci: List[LocateResult] = field(default_factory=list)
    unidentified: List[str] = field(default_factory=list)
    stopped_blinks: int = 0
    warnings: List[str] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def adapter_count(self) -> int:
        return len(self.adapters)

    @property
    def ahci_count(self) -> int:
        return len(self.ahci)

    @property
    def ok(self) -> int:
        return sum(a.ok for a in self.adapters)

    @property
    def failed(self) -> int:
        return sum(a.failed for a in self.adapters)

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "total_drives": self.total_drives,
            "adapter_count": self.adapter_count,
            "adapters": [a.to_dict() for a in self.adapters],
            "ahci_count": self.ahci_count,
            "ahci": [r.to_dict() for r in self.ahci],
            "unidentified": list(self.unidentified),
            "stopped_blinks": self.stopped_blinks,
            "warnings": list(self.warnings),
            "elapsed": round(self.elapsed, 3)
        }


@dataclass
class InventoryRow:
    """A SAS drive joined with the block device currently carrying its serial"""

    record: DriveRecord
    device: Optional[str] = None

    def to_dict(self) -> dict:
        data = self.record.to_dict()
        data["device"] = self.device
        return data


@dataclass
class Inventory:
    """Result of the list operation"""

    rows: List[InventoryRow] = field(default_factory=list)
    ahci: List[DeviceBinding] = field(default_factory=list)
    unidentified: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sas": [r.to_dict() for r in self.rows],
            "ahci": [b.to_dict() for b in self.ahci],
            "unidentified": list(self.unidentified),
            "warnings": list(self.warnings)
        }


@dataclass
class Settings:
    """Runtime settings, loaded from the YAML configuration file"""

    cache_file: str = "/tmp/sas2ircu-led-topology.cache"
    cache_ttl: int = 300                 # Seconds a topology snapshot stays fresh
    blink_pid_dir: str = "/tmp/sas2ircu-led-blink-pids"
    list_timeout: float = 5.0            # Adapter list query
    display_timeout: float = 10.0        # Per-adapter display query
    locate_timeout: float = 5.0          # Firmware locate call
    lookup_timeout: float = 10.0         # smartctl serial lookup
    blink_read_seconds: float = 3.0      # Sustained read per blink cycle
    blink_idle_seconds: float = 3.0      # Darkness between reads
    blink_block_mb: int = 100            # Upper bound of data read per cycle
    binaries: List[str] = field(default_factory=lambda: ["sas2ircu", "sas3ircu"])
    sys_block: str = "/sys/block"
    device_pattern: str = "sd*"
    max_workers: int = 8                 # Concurrent AHCI starts and lookups

    def to_dict(self) -> dict:
        """Convert settings to dictionary representation"""
        return {name: getattr(self, name) for name in self.__dataclass_fields__}

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Create Settings from dictionary, ignoring unknown keys"""
        defaults = cls()
        values = {}
        for name in cls.__dataclass_fields__:
            if name not in data or data[name] is None:
                continue
            default = getattr(defaults, name)
            value = data[name]
            if isinstance(default, list):
                values[name] = [str(v) for v in (value if isinstance(value, list) else [value])]
            elif isinstance(default, bool):
                values[name] = bool(value)
            elif isinstance(default, (int, float)):
                values[name] = type(default)(value)
            else:
                values[name] = str(value)
        return cls(**values)
