"""Parsers for sas2ircu/sas3ircu LIST and DISPLAY output

DISPLAY output is a sequence of device blocks::

    Device is a Hard disk
      Enclosure #                             : 2
      Slot #                                  : 5
      ...
      Serial No                               : ZR50MFBH
      Protocol                                : SAS

A block opens at the hard disk marker and is closed by the Protocol line.
Only blocks carrying a serial, an enclosure and a slot become DriveRecords.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

from .models import Adapter, DriveRecord

logger = logging.getLogger(__name__)

ADAPTER_ROW = re.compile(r'^\s*(?P<index>\d+)\s+(?P<family>SAS\S*)')
FIELD_LINE = re.compile(r'^\s*(?P<label>[^:]+?)\s*:\s*(?P<value>.*?)\s*$')

HARD_DISK_MARKER = "Device is a Hard disk"
DEVICE_MARKER = "Device is a"
BLOCK_TERMINATOR = "Protocol"

# Label prefix -> field name
FIELD_LABELS = (
    ("Enclosure #", "enclosure"),
    ("Slot #", "slot"),
    ("Serial No", "serial"),
    ("Model Number", "model"),
    ("Size (in MB)", "size"),
)


def parse_adapter_list(output: str, binary: str) -> List[Adapter]:
    """Extract adapters from LIST command output

    Rows look like ``  0     SAS2008     1000h    72h   00h:01h:00h:00h ...``;
    banners, column headers and status lines are ignored.
    """
    adapters = []
    seen = set()

    for line in output.splitlines():
        match = ADAPTER_ROW.match(line)
        if not match:
            continue
        index = match.group("index")
        if index in seen:
            continue
        seen.add(index)
        adapters.append(Adapter(adapter_id=index, family=match.group("family"), binary=binary))

    return adapters


def _field_name(label: str) -> Optional[str]:
    for prefix, name in FIELD_LABELS:
        if label.startswith(prefix):
            return name
    return None


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    value = value.strip()
    return int(value) if value.isdigit() else None


def _build_record(fields: Dict[str, str], adapter_id: str, binary: str) -> Optional[DriveRecord]:
    serial = fields.get("serial", "").strip()
    enclosure = _to_int(fields.get("enclosure"))
    slot = _to_int(fields.get("slot"))

    if not serial or enclosure is None or slot is None:
        logger.debug(f"Dropping incomplete drive block on adapter {adapter_id}: {fields}")
        return None

    size_mb = None
    if "size" in fields:
        size_mb = _to_int(fields["size"].split("/")[0])

    return DriveRecord(
        adapter_id=adapter_id,
        binary=binary,
        enclosure=enclosure,
        slot=slot,
        serial=serial,
        model=fields.get("model", ""),
        size_mb=size_mb
    )


def parse_display_output(output: str, adapter_id: str, binary: str) -> List[DriveRecord]:
    """Parse DISPLAY command output into drive records"""
    records = []
    fields: Optional[Dict[str, str]] = None

    for line in output.splitlines():
        if DEVICE_MARKER in line:
            # Any new device marker discards a block that never saw its terminator
            fields = {} if HARD_DISK_MARKER in line else None
            continue

        if fields is None:
            continue

        match = FIELD_LINE.match(line)
        if not match:
            continue

        label = match.group("label")
        if label.startswith(BLOCK_TERMINATOR):
            record = _build_record(fields, adapter_id, binary)
            if record:
                records.append(record)
            fields = None
            continue

        name = _field_name(label)
        if name:
            fields[name] = match.group("value")

    return records


def index_by_serial(records: Iterable[DriveRecord]) -> Dict[str, DriveRecord]:
    """Map upper-cased serial -> record, keeping the first of any duplicates"""
    index: Dict[str, DriveRecord] = {}

    for record in records:
        key = record.serial_key
        if key in index:
            first = index[key]
            logger.warning(
                f"Duplicate serial {record.serial} on {record.adapter_key} {record.encl_slot}, "
                f"keeping {first.adapter_key} {first.encl_slot}"
            )
            continue
        index[key] = record

    return index
