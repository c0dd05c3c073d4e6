"""Bounded execution of external commands"""

import logging
import shutil
import subprocess
from typing import List, Optional

from .errors import CommandFailedError, CommandTimeoutError, ToolMissingError


def command_exists(cmd: str) -> bool:
    """Check if a command exists in the system PATH"""
    return shutil.which(cmd) is not None


def decode_output(output_bytes: bytes, decode_method: str = 'utf-8',
                  logger: Optional[logging.Logger] = None) -> str:
    """Decode command output, falling back to latin-1 for odd firmware strings"""
    try:
        return output_bytes.decode(decode_method)
    except UnicodeDecodeError:
        if logger:
            logger.debug(f"{decode_method} decoding failed, falling back to latin-1")
        return output_bytes.decode('latin-1')


def execute_command(cmd: List[str], timeout: Optional[float] = None, check: bool = True,
                    logger: Optional[logging.Logger] = None) -> str:
    """Execute a command and return its combined stdout/stderr

    The child is killed when ``timeout`` expires so that an abandoned call
    does not keep talking to the HBA after the caller has moved on.

    Args:
        cmd: Command to execute as list of strings
        timeout: Seconds before the command is killed, None for no bound
        check: Raise CommandFailedError on a non-zero exit status
        logger: Logger instance for debug output

    Returns:
        str: Command output as string

    Raises:
        ToolMissingError: If the executable does not exist
        CommandTimeoutError: If the command ran longer than ``timeout``
        CommandFailedError: If ``check`` is set and the command failed
    """
    logger = logger or logging.getLogger(__name__)
    logger.debug(f"Executing command: {' '.join(cmd)}")

    try:
        result = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise ToolMissingError(cmd[0])
    except subprocess.TimeoutExpired:
        # subprocess.run() has already killed and reaped the child
        raise CommandTimeoutError(cmd, timeout)

    output = decode_output(result.stdout or b"", logger=logger)

    if check and result.returncode != 0:
        logger.debug(f"Command {' '.join(cmd)} exited with {result.returncode}: {output[:200]}")
        raise CommandFailedError(cmd, result.returncode, output)

    return output
