"""Process uptime and memory figures, passed through to health and stats."""

import os
import resource
import sys
import time

_started_at = time.monotonic()


def uptime_seconds() -> float:
    return round(time.monotonic() - _started_at, 3)


def memory_usage() -> dict:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is KiB on Linux, bytes on macOS
    max_rss = usage.ru_maxrss if sys.platform == "darwin" else usage.ru_maxrss * 1024
    return {
        "pid": os.getpid(),
        "maxRss": max_rss,
        "rss": _current_rss(),
    }


def _current_rss() -> int | None:
    """Resident set size from /proc where available."""
    try:
        with open("/proc/self/statm") as f:
            resident_pages = int(f.read().split()[1])
    except (OSError, IndexError, ValueError):
        return None
    return resident_pages * os.sysconf("SC_PAGE_SIZE")
