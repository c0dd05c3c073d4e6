"""Activity LED blink loop for drives without firmware locate support

Run as ``python -m sas_led_control.blink_cycle /dev/sdX``. Each cycle reads
from the device for a bounded time, lighting its activity LED, then stays
idle for an equally long period. The loop runs until it is signalled.
"""

import argparse
import subprocess
import sys
import time
from typing import List, Optional


def sustained_read(device: str, seconds: float, block_mb: int) -> None:
    """Read from a device with O_DIRECT for at most ``seconds``

    Failures are ignored, the read is only a visual signal.
    """
    cmd = ["dd", f"if={device}", "of=/dev/null", "bs=1M", f"count={block_mb}", "iflag=direct"]
    try:
        subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, timeout=seconds)
    except subprocess.TimeoutExpired:
        pass
    except OSError:
        # dd missing or device gone, keep the idle rhythm anyway
        pass


def run_cycle(device: str, read_seconds: float = 3, idle_seconds: float = 3,
              block_mb: int = 100, iterations: Optional[int] = None) -> int:
    """Alternate sustained reads and idle periods

    Args:
        device: Block device to read from
        read_seconds: Upper bound of each read
        idle_seconds: Sleep between reads
        block_mb: Megabytes read per cycle at most
        iterations: Stop after this many cycles, None to run forever

    Returns:
        int: Number of completed cycles
    """
    done = 0
    while iterations is None or done < iterations:
        sustained_read(device, read_seconds, block_mb)
        time.sleep(idle_seconds)
        done += 1
    return done


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Blink a drive's activity LED with sustained reads.")
    parser.add_argument("device", help="Block device path (e.g., /dev/sde)")
    parser.add_argument("--read-seconds", type=float, default=3, help="Duration of each read")
    parser.add_argument("--idle-seconds", type=float, default=3, help="Idle time between reads")
    parser.add_argument("--block-mb", type=int, default=100, help="Megabytes read per cycle at most")
    parser.add_argument("--iterations", type=int, default=None, help="Stop after N cycles")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    try:
        run_cycle(args.device, args.read_seconds, args.idle_seconds, args.block_mb, args.iterations)
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
