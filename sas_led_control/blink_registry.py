"""Registry of background blink processes for AHCI drives"""

import contextlib
import glob
import json
import logging
import os
import re
import signal
import subprocess
import threading
from typing import Dict, Iterator, List, Optional

from .errors import LedControlError
from .models import BlinkJob

MARKER_SUFFIX = ".pid"

# Command line fragments of blink processes, including the shell tool's subshell
BLINK_COMMANDS = ("blink_cycle", "sas2ircu-led-control")


class BlinkRegistry:
    """Tracks blink jobs by serial so they can be stopped later

    Every job is recorded as a marker file holding its process id, which lets
    a later invocation find and stop jobs started by an earlier one. At most
    one job exists per serial. The registry is the only component that
    signals blink processes.
    """

    def __init__(self, pid_dir: str, term_timeout: float = 5,
                 logger: Optional[logging.Logger] = None):
        """Initialize the registry

        Args:
            pid_dir: Directory holding one marker file per job
            term_timeout: Seconds to wait for a child of this process to exit
            logger: Logger instance
        """
        self.pid_dir = os.path.expanduser(pid_dir)
        self.term_timeout = term_timeout
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._owned: Dict[str, BlinkJob] = {}

    @staticmethod
    def _key(serial: str) -> str:
        return serial.strip().upper()

    def _file_key(self, serial: str) -> str:
        return re.sub(r'[^A-Za-z0-9._-]', '_', self._key(serial))

    def _marker_path(self, serial: str) -> str:
        return os.path.join(self.pid_dir, self._file_key(serial) + MARKER_SUFFIX)

    def _marker_files(self) -> List[str]:
        return sorted(glob.glob(os.path.join(self.pid_dir, "*" + MARKER_SUFFIX)))

    def _find_marker(self, serial: str) -> Optional[str]:
        """Marker file of a serial, also matching older markers named in any case"""
        path = self._marker_path(serial)
        if os.path.exists(path):
            return path

        key = self._file_key(serial)
        for candidate in self._marker_files():
            if self._file_key(os.path.basename(candidate)[:-len(MARKER_SUFFIX)]) == key:
                return candidate
        return None

    def register(self, serial: str, device: str, process: subprocess.Popen) -> BlinkJob:
        """Record a freshly started blink process, replacing any previous job

        Returns:
            BlinkJob: The registered job

        Raises:
            LedControlError: The marker file could not be written, the process
                has been stopped again
        """
        with self._lock:
            self.terminate(serial)

            path = self._marker_path(serial)
            job = BlinkJob(serial=serial, device=device, pid=process.pid, process=process, marker=path)
            try:
                os.makedirs(self.pid_dir, exist_ok=True)
                with open(path, 'w') as f:
                    json.dump(job.to_dict(), f)
            except OSError as e:
                # An unrecorded job could never be stopped by a later run
                self._signal(job)
                raise LedControlError(f"Cannot record blink job in {self.pid_dir}: {e}")

            self._owned[self._key(serial)] = job
            self.logger.debug(f"Registered blink job for {serial} on {device} (PID {job.pid})")
            return job

    def lookup(self, serial: str) -> Optional[BlinkJob]:
        """Find the active job for a serial, None if there is none"""
        with self._lock:
            job = self._owned.get(self._key(serial))
            if job is not None:
                return job
            path = self._find_marker(serial)
            return self._read_marker(path) if path else None

    def jobs(self) -> List[BlinkJob]:
        """All registered jobs, from this and earlier invocations"""
        with self._lock:
            found = {self._key(job.serial): job for job in self._owned.values()}
            for path in self._marker_files():
                job = self._read_marker(path)
                if job is not None:
                    found.setdefault(self._key(job.serial), job)
            return list(found.values())

    def _read_marker(self, path: str) -> Optional[BlinkJob]:
        if not os.path.exists(path):
            return None

        try:
            with open(path, 'r') as f:
                content = f.read().strip()
        except OSError as e:
            self.logger.warning(f"Cannot read blink marker {path}: {e}")
            return None

        serial = os.path.basename(path)[:-len(MARKER_SUFFIX)]

        # Plain PID markers are written by older versions of the tool
        if content.isdigit():
            return BlinkJob(serial=serial, device="", pid=int(content), marker=path)

        try:
            data = json.loads(content)
            job = BlinkJob.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError):
            self.logger.warning(f"Ignoring malformed blink marker {path}")
            return None

        if not job.serial:
            job.serial = serial
        job.marker = path
        return job

    def terminate(self, serial: str) -> bool:
        """Stop the job for a serial and forget it

        Returns:
            bool: True if a job was registered, False if there was nothing to stop
        """
        with self._lock:
            job = self.lookup(serial)
            if job is None:
                return False

            self._stop(job)
            return True

    def _stop(self, job: BlinkJob) -> None:
        """Signal a job if it is still a blink process, then drop its marker"""
        if job.process is not None:
            self._signal(job)
        else:
            cmdline = _process_cmdline(job.pid)
            if not cmdline:
                self.logger.debug(f"Blink process {job.pid} already exited")
            elif not _is_blink_command(cmdline):
                # The PID was reused since the marker was written, e.g. across a reboot
                self.logger.warning(
                    f"PID {job.pid} of blink marker for {job.serial} is no longer a blink process "
                    f"({' '.join(cmdline)}), dropping marker"
                )
            else:
                self._signal(job)

        if job.marker:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(job.marker)
        self._owned.pop(self._key(job.serial), None)

        self.logger.debug(f"Stopped blink job for {job.serial} (PID {job.pid})")

    def _signal(self, job: BlinkJob) -> None:
        """Terminate the job's whole process group

        Each blink cycle spawns a dd per iteration, so signalling only the
        leader could leave a read running.
        """
        try:
            os.killpg(job.pid, signal.SIGTERM)
        except ProcessLookupError:
            try:
                os.kill(job.pid, signal.SIGTERM)
            except ProcessLookupError:
                self.logger.debug(f"Blink process {job.pid} already exited")
        except PermissionError as e:
            raise LedControlError(f"Cannot stop blink process {job.pid}: {e}")

        if job.process is None:
            return

        try:
            job.process.wait(timeout=self.term_timeout)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Blink process {job.pid} ignored SIGTERM, killing it")
            with contextlib.suppress(ProcessLookupError):
                os.killpg(job.pid, signal.SIGKILL)
            job.process.wait(timeout=self.term_timeout)

    def terminate_all(self, owned_only: bool = False) -> List[str]:
        """Stop every job, continuing past individual failures

        Args:
            owned_only: Only stop jobs registered by this process

        Returns:
            List[str]: Serials whose job could not be stopped
        """
        failed = []

        with self._lock:
            targets = list(self._owned.values()) if owned_only else self.jobs()

            for job in targets:
                try:
                    self._stop(job)
                except (LedControlError, OSError, subprocess.SubprocessError) as e:
                    self.logger.warning(f"Failed to stop blink job for {job.serial}: {e}")
                    failed.append(job.serial)

        return failed

    @contextlib.contextmanager
    def cleanup_on_abort(self) -> Iterator["BlinkRegistry"]:
        """Stop jobs started by this invocation if it ends abnormally

        SIGTERM is turned into SystemExit for the duration of the block so
        that it unwinds through here like an interrupt does.
        """
        previous = None
        in_main_thread = threading.current_thread() is threading.main_thread()

        def _on_sigterm(signum, frame):
            raise SystemExit(128 + signum)

        if in_main_thread:
            previous = signal.signal(signal.SIGTERM, _on_sigterm)

        try:
            yield self
        except BaseException as e:
            if not (isinstance(e, SystemExit) and not e.code):
                if self._owned:
                    self.logger.warning("Aborted, stopping blink jobs started by this run")
                self.terminate_all(owned_only=True)
            raise
        finally:
            if in_main_thread and previous is not None:
                signal.signal(signal.SIGTERM, previous)


def _process_cmdline(pid: int) -> Optional[List[str]]:
    """Arguments of a running process, None if it does not exist"""
    try:
        with open(f"/proc/{pid}/cmdline", 'rb') as f:
            raw = f.read()
    except OSError:
        return None
    return [arg.decode('utf-8', 'replace') for arg in raw.split(b'\0') if arg]


def _is_blink_command(cmdline: List[str]) -> bool:
    if os.path.basename(cmdline[0]) == "dd":
        return True
    return any(name in arg for arg in cmdline for name in BLINK_COMMANDS)
