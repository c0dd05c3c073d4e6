"""Tests for the blink process registry"""

import json
import os
import signal

import pytest

from sas_led_control.blink_registry import BlinkRegistry
from sas_led_control.errors import LedControlError


@pytest.fixture
def registry(settings):
    return BlinkRegistry(settings.blink_pid_dir, term_timeout=5)


def test_register_writes_marker(registry, sleepers, settings):
    process = sleepers()
    job = registry.register("S3Z1NB0K", "/dev/sde", process)

    with open(os.path.join(settings.blink_pid_dir, "S3Z1NB0K.pid")) as f:
        marker = json.load(f)
    assert marker == {"serial": "S3Z1NB0K", "device": "/dev/sde", "pid": process.pid}
    assert job.pid == process.pid
    assert registry.lookup("s3z1nb0k").device == "/dev/sde"


def test_second_registration_leaves_one_live_process(registry, sleepers):
    first = sleepers()
    second = sleepers()

    registry.register("D", "/dev/sdx", first)
    registry.register("d", "/dev/sdx", second)

    assert first.wait(timeout=5) == -signal.SIGTERM
    assert second.poll() is None
    assert [job.pid for job in registry.jobs()] == [second.pid]


def test_terminate_unknown_serial_is_a_noop(registry):
    assert registry.terminate("NOPE") is False


def test_terminate_tolerates_exited_process(registry, sleepers, settings):
    process = sleepers()
    registry.register("GONE", "/dev/sdf", process)
    process.kill()
    process.wait()

    assert registry.terminate("GONE") is True
    assert registry.lookup("GONE") is None
    assert os.listdir(settings.blink_pid_dir) == []


def test_jobs_from_an_earlier_invocation_can_be_stopped(settings, sleepers):
    process = sleepers()
    BlinkRegistry(settings.blink_pid_dir).register("OLD", "/dev/sdg", process)

    later = BlinkRegistry(settings.blink_pid_dir)
    job = later.lookup("OLD")

    assert job.pid == process.pid
    assert job.process is None
    assert later.terminate("OLD") is True
    assert process.wait(timeout=5) == -signal.SIGTERM


def test_plain_pid_markers_are_understood(settings, sleepers):
    process = sleepers()
    os.makedirs(settings.blink_pid_dir)
    with open(os.path.join(settings.blink_pid_dir, "LEGACY.pid"), "w") as f:
        f.write(f"{process.pid}\n")

    registry = BlinkRegistry(settings.blink_pid_dir)
    assert [job.serial for job in registry.jobs()] == ["LEGACY"]
    assert registry.terminate_all() == []
    assert process.wait(timeout=5) == -signal.SIGTERM


def test_terminate_all_without_jobs_is_a_noop(registry):
    assert registry.terminate_all() == []


def test_terminate_all_continues_after_a_failure(registry, sleepers, monkeypatch):
    processes = {serial: sleepers() for serial in ("A", "B", "C")}
    for serial, process in processes.items():
        registry.register(serial, f"/dev/sd{serial.lower()}", process)

    real_signal = registry._signal

    def flaky_signal(job):
        if job.serial == "B":
            raise LedControlError("Cannot stop blink process")
        real_signal(job)

    monkeypatch.setattr(registry, "_signal", flaky_signal)

    assert registry.terminate_all() == ["B"]
    assert processes["A"].wait(timeout=5) == -signal.SIGTERM
    assert processes["C"].wait(timeout=5) == -signal.SIGTERM
    assert processes["B"].poll() is None


def test_cleanup_on_abort_stops_jobs_of_this_run(settings, sleepers):
    earlier = sleepers()
    BlinkRegistry(settings.blink_pid_dir).register("EARLIER", "/dev/sdh", earlier)

    registry = BlinkRegistry(settings.blink_pid_dir)
    ours = sleepers()
    with pytest.raises(RuntimeError):
        with registry.cleanup_on_abort():
            registry.register("OURS", "/dev/sdi", ours)
            raise RuntimeError("boom")

    assert ours.wait(timeout=5) == -signal.SIGTERM
    assert earlier.poll() is None
    assert [job.serial for job in registry.jobs()] == ["EARLIER"]


def test_cleanup_on_abort_keeps_jobs_on_success(registry, sleepers):
    process = sleepers()
    with registry.cleanup_on_abort():
        registry.register("KEEP", "/dev/sdj", process)

    assert process.poll() is None
    assert registry.lookup("KEEP") is not None


def test_lower_case_plain_pid_marker_is_stopped(settings, sleepers):
    process = sleepers()
    os.makedirs(settings.blink_pid_dir)
    marker = os.path.join(settings.blink_pid_dir, "wd-wcc4n1abcd.pid")
    with open(marker, "w") as f:
        f.write(f"{process.pid}\n")

    registry = BlinkRegistry(settings.blink_pid_dir)

    assert registry.terminate_all() == []
    assert process.wait(timeout=5) == -signal.SIGTERM
    assert os.listdir(settings.blink_pid_dir) == []


def test_lower_case_marker_is_found_by_serial(settings, sleepers):
    process = sleepers()
    os.makedirs(settings.blink_pid_dir)
    with open(os.path.join(settings.blink_pid_dir, "wd-wcc4n1abcd.pid"), "w") as f:
        f.write(f"{process.pid}\n")

    registry = BlinkRegistry(settings.blink_pid_dir)

    assert registry.lookup("WD-WCC4N1ABCD").pid == process.pid
    assert registry.terminate("WD-WCC4N1ABCD") is True
    assert process.wait(timeout=5) == -signal.SIGTERM
    assert os.listdir(settings.blink_pid_dir) == []


def test_marker_with_reused_pid_is_dropped_without_signal(settings, sleepers):
    unrelated = sleepers(["sleep", "60"])
    os.makedirs(settings.blink_pid_dir)
    with open(os.path.join(settings.blink_pid_dir, "STALE.pid"), "w") as f:
        f.write(f"{unrelated.pid}\n")

    registry = BlinkRegistry(settings.blink_pid_dir)

    assert registry.terminate_all() == []
    assert unrelated.poll() is None
    assert os.listdir(settings.blink_pid_dir) == []


def test_marker_of_exited_process_is_dropped(settings, sleepers):
    process = sleepers()
    process.kill()
    process.wait()
    os.makedirs(settings.blink_pid_dir)
    with open(os.path.join(settings.blink_pid_dir, "GONE.pid"), "w") as f:
        json.dump({"serial": "GONE", "device": "/dev/sdk", "pid": process.pid}, f)

    registry = BlinkRegistry(settings.blink_pid_dir)

    assert registry.terminate("GONE") is True
    assert os.listdir(settings.blink_pid_dir) == []


def test_unwritable_marker_directory_stops_the_process(tmp_path, sleepers):
    blocked = tmp_path / "not-a-directory"
    blocked.write_text("")
    registry = BlinkRegistry(str(blocked / "pids"))
    process = sleepers()

    with pytest.raises(LedControlError):
        registry.register("S3Z1NB0K", "/dev/sde", process)

    assert process.wait(timeout=5) == -signal.SIGTERM
    assert registry.lookup("S3Z1NB0K") is None
