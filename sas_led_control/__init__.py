"""
SAS LED Control

Drive locate LED control for servers with LSI/Broadcom SAS HBAs driven by
sas2ircu/sas3ircu, with an activity-blink fallback for AHCI attached drives.
"""

__version__ = "1.0.0"

from .models import BulkSummary, DriveRecord, LocateResult, LocateState, Settings, TopologySnapshot
from .led_control import LedControl

__all__ = ["BulkSummary", "DriveRecord", "LedControl", "LocateResult", "LocateState", "Settings",
           "TopologySnapshot"]
