"""Exceptions raised by the LED control core"""

from typing import List, Optional


class LedControlError(Exception):
    """Base class for all LED control errors

    ``fatal`` tells the caller whether the condition makes the whole
    operation unusable or only affects a single unit of work.
    """

    fatal = True


class ToolMissingError(LedControlError):
    """A required external binary is not installed"""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        message = f"Required tool not found in PATH: {tool}"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)


class CommandTimeoutError(LedControlError):
    """An external command exceeded its time bound and was killed"""

    fatal = False

    def __init__(self, cmd: List[str], timeout: float):
        self.cmd = cmd
        self.timeout = timeout
        super().__init__(f"Timeout: {' '.join(cmd)} ({timeout}s timeout exceeded)")


class CommandFailedError(LedControlError):
    """An external command exited with a non-zero status"""

    fatal = False

    def __init__(self, cmd: List[str], returncode: int, output: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command failed with exit code {returncode}: {' '.join(cmd)}")


class DriveNotFoundError(LedControlError):
    """An identifier does not resolve to any known drive or device"""

    def __init__(self, identifier: str, reason: Optional[str] = None):
        self.identifier = identifier
        super().__init__(f"Drive not found: {identifier}" + (f" ({reason})" if reason else ""))


class UnidentifiableDeviceError(LedControlError):
    """A block device exists but no serial number could be read from it"""

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Cannot read serial for {device} (is smartctl installed? run as root?)")


class EmptyInventoryError(LedControlError):
    """A topology rebuild found no drives on any adapter"""

    def __init__(self, binaries: Optional[List[str]] = None):
        tools = "/".join(binaries) if binaries else "sas2ircu/sas3ircu"
        super().__init__(f"No SAS drives found via {tools}")


class PermissionDeniedError(LedControlError):
    """The invocation lacks the privileges needed for HBA and raw device access"""

    def __init__(self, message: str = "Must run as root (needs HBA and raw device access)"):
        super().__init__(message)
