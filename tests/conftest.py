import os
import subprocess
import sys
import threading
import time

import pytest

from sas_led_control.controllers import BaseController
from sas_led_control.device_mapper import DeviceMapper
from sas_led_control.errors import CommandTimeoutError, ToolMissingError, UnidentifiableDeviceError
from sas_led_control.models import Adapter, DeviceBinding, DriveRecord, Settings

DATA_DIR = os.path.join(os.path.dirname(__file__), "data")


def read_data(name):
    with open(os.path.join(DATA_DIR, name), encoding="utf-8") as f:
        return f.read()


def drive(adapter_id, enclosure, slot, serial, binary="sas2ircu", model="ST8000NM0075"):
    return DriveRecord(adapter_id=adapter_id, binary=binary, enclosure=enclosure, slot=slot,
                       serial=serial, model=model, size_mb=7630885)


class FakeController(BaseController):
    """In-memory HBA query tool recording every call"""

    def __init__(self, drives_by_adapter, binary="sas2ircu", locate_delay=0.0,
                 timeout_serials=(), timeout_adapters=()):
        super().__init__()
        self.binary = binary
        self.drives_by_adapter = drives_by_adapter
        self.locate_delay = locate_delay
        self.timeout_serials = set(timeout_serials)
        self.timeout_adapters = set(timeout_adapters)
        self.queries = []
        self.locate_calls = []
        self._calls_lock = threading.Lock()

    @property
    def controller_type(self):
        return self.binary

    def is_available(self):
        return True

    def list_adapters(self):
        self.queries.append(("list",))
        return [Adapter(adapter_id=a, family="SAS2008", binary=self.binary) for a in self.drives_by_adapter]

    def get_drives(self, adapter_id):
        self.queries.append(("display", adapter_id))
        if adapter_id in self.timeout_adapters:
            raise CommandTimeoutError([self.binary, adapter_id, "display"], 10)
        return list(self.drives_by_adapter[adapter_id])

    def locate(self, adapter_id, enclosure, slot, state, timeout=None):
        started = time.monotonic()
        serial = next(d.serial for d in self.drives_by_adapter[adapter_id]
                      if d.enclosure == enclosure and d.slot == slot)
        if self.locate_delay:
            time.sleep(self.locate_delay)
        finished = time.monotonic()
        with self._calls_lock:
            self.locate_calls.append((adapter_id, serial, state, started, finished))
        if serial in self.timeout_serials:
            raise CommandTimeoutError([self.binary, adapter_id, "locate", f"{enclosure}:{slot}", state.value],
                                      timeout or 5)


class FakeDeviceMapper(DeviceMapper):
    """Device mapper answering from a device -> serial table"""

    def __init__(self, serials, unidentified=(), smartctl_installed=True):
        super().__init__()
        self.serials = dict(serials)
        self.unidentified = list(unidentified)
        self.smartctl_installed = smartctl_installed
        self.lookups = []

    @staticmethod
    def is_block_device(path):
        return True

    def is_available(self):
        return self.smartctl_installed

    def block_devices(self):
        return sorted(list(self.serials) + self.unidentified)

    def lookup(self, device):
        self.lookups.append(device)
        if not self.smartctl_installed:
            raise ToolMissingError("smartctl")
        if device not in self.serials:
            raise UnidentifiableDeviceError(device)
        return DeviceBinding(device=device, serial=self.serials[device], model="Samsung SSD 860 EVO 500GB",
                             capacity="500 GB")


class FakeActuator:
    """Records actuator calls without touching hardware or processes"""

    def __init__(self, controller=None):
        self.controller = controller
        self.started = []
        self.stopped = []
        self._lock = threading.Lock()

    def set_locate(self, record, state):
        self.controller.locate(record.adapter_id, record.enclosure, record.slot, state)

    def start_blink(self, device, serial):
        from sas_led_control.models import BlinkJob
        with self._lock:
            self.started.append((device, serial))
            return BlinkJob(serial=serial, device=device, pid=40000 + len(self.started))

    def stop_blink(self, serial):
        self.stopped.append(serial)
        return True


@pytest.fixture
def settings(tmp_path):
    return Settings(
        cache_file=str(tmp_path / "topology.cache"),
        blink_pid_dir=str(tmp_path / "blink-pids"),
        blink_read_seconds=0.1,
        blink_idle_seconds=0.1,
    )


@pytest.fixture
def two_adapter_controller():
    """Adapter 0 carries serials A and B, adapter 3 carries C"""
    return FakeController({
        "0": [drive("0", 2, 0, "A"), drive("0", 2, 1, "B")],
        "3": [drive("3", 1, 4, "C")],
    })


BLINK_STAND_IN = [sys.executable, "-c", "import time; time.sleep(60)", "sas_led_control.blink_cycle"]


@pytest.fixture
def sleepers():
    """Start stand-in blink processes in their own process group

    The default command line names the blink cycle module so that markers
    pointing at it are recognised as blink jobs.
    """
    processes = []

    def _start(cmd=None):
        process = subprocess.Popen(cmd or BLINK_STAND_IN, start_new_session=True)
        processes.append(process)
        return process

    yield _start

    for process in processes:
        if process.poll() is None:
            process.kill()
            process.wait()
