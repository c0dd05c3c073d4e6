"""Base controller abstraction"""

from abc import ABC, abstractmethod
from typing import List, Optional
import logging

from ..command import command_exists, execute_command
from ..models import Adapter, DriveRecord, LocateState


class BaseController(ABC):
    """Abstract base class for HBA query tools"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        """Initialize the controller

        Args:
            logger: Logger instance for output
        """
        self.logger = logger or logging.getLogger(__name__)

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this controller's tool is installed

        Returns:
            bool: True if the binary can be executed
        """
        pass

    @abstractmethod
    def list_adapters(self) -> List[Adapter]:
        """Get the adapters this tool can see

        Returns:
            List[Adapter]: Adapters in the order the tool lists them
        """
        pass

    @abstractmethod
    def get_drives(self, adapter_id: str) -> List[DriveRecord]:
        """Get all drives attached to one adapter

        Args:
            adapter_id: Adapter index from list_adapters()

        Returns:
            List[DriveRecord]: Drives with serial, enclosure and slot
        """
        pass

    @abstractmethod
    def locate(self, adapter_id: str, enclosure: int, slot: int, state: LocateState,
               timeout: Optional[float] = None) -> None:
        """Turn the locate LED of one bay on or off

        Raises:
            CommandTimeoutError: If the firmware call did not return in time
            CommandFailedError: If the tool reported a failure
        """
        pass

    @property
    @abstractmethod
    def controller_type(self) -> str:
        """Get the controller type identifier

        Returns:
            str: Controller type (e.g., 'sas2ircu', 'sas3ircu')
        """
        pass

    # Helper methods that can be used by all controllers

    def _execute_command(self, cmd: List[str], timeout: Optional[float] = None,
                         check: bool = True) -> str:
        """Execute a command and return its output

        Args:
            cmd: Command to execute as list of strings
            timeout: Seconds before the command is killed
            check: Whether a non-zero exit status raises

        Returns:
            str: Command output as string
        """
        return execute_command(cmd, timeout=timeout, check=check, logger=self.logger)

    def _check_command_exists(self, cmd: str) -> bool:
        """Check if a command exists in the system PATH"""
        return command_exists(cmd)
