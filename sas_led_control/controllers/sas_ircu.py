"""SAS2IRCU/SAS3IRCU controller implementation"""

from typing import List, Optional

from .base import BaseController
from ..models import Adapter, DriveRecord, LocateState
from ..parser import parse_adapter_list, parse_display_output


class SasIrcuController(BaseController):
    """Controller for LSI SAS HBAs using sas2ircu/sas3ircu

    Both variants share the same command syntax and output grammar but are
    different executables, each seeing only the adapters it supports.
    """

    def __init__(self, logger=None, controller_type: str = "sas2ircu",
                 list_timeout: float = 5, display_timeout: float = 10,
                 locate_timeout: float = 5):
        """Initialize SasIrcuController

        Args:
            logger: Logger instance
            controller_type: Either 'sas2ircu' or 'sas3ircu'
            list_timeout: Seconds allowed for the LIST command
            display_timeout: Seconds allowed for one adapter DISPLAY
            locate_timeout: Seconds allowed for one LOCATE firmware call
        """
        super().__init__(logger)
        self.cmd = controller_type
        self._controller_type = controller_type
        self.list_timeout = list_timeout
        self.display_timeout = display_timeout
        self.locate_timeout = locate_timeout

    @property
    def controller_type(self) -> str:
        """Get controller type identifier"""
        return self._controller_type

    def is_available(self) -> bool:
        """Check if sas2ircu/sas3ircu is installed"""
        return self._check_command_exists(self.cmd)

    def list_adapters(self) -> List[Adapter]:
        """Get adapter indices from the LIST command"""
        output = self._execute_command([self.cmd, "list"], timeout=self.list_timeout)
        adapters = parse_adapter_list(output, self.cmd)
        self.logger.debug(f"Found adapters via {self.cmd}: {[a.adapter_id for a in adapters]}")
        return adapters

    def get_drives(self, adapter_id: str) -> List[DriveRecord]:
        """Get all hard disks of one adapter from the DISPLAY command"""
        output = self._execute_command([self.cmd, adapter_id, "display"], timeout=self.display_timeout)
        drives = parse_display_output(output, adapter_id, self.cmd)
        self.logger.debug(f"Found {len(drives)} drives on adapter {adapter_id} using {self.cmd}")
        return drives

    def locate(self, adapter_id: str, enclosure: int, slot: int, state: LocateState,
               timeout: Optional[float] = None) -> None:
        """Turn on or off the locate LED for one enclosure:slot"""
        encl_slot = f"{enclosure}:{slot}"
        cmd = [self.cmd, adapter_id, "locate", encl_slot, state.value]
        self._execute_command(cmd, timeout=self.locate_timeout if timeout is None else timeout)
