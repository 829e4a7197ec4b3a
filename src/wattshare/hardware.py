"""Hardware identity lookup for display labels.

Best effort only: every lookup returns None on failure.
"""

import platform
from pathlib import Path

from wattshare.power import NvmlPowerReader

CPUINFO_PATH = Path("/proc/cpuinfo")


def get_cpu_name(cpuinfo_path: Path = CPUINFO_PATH) -> str | None:
    """Return the CPU model name.

    Reads the first "model name" line of /proc/cpuinfo, falling back to
    platform.processor() where that file does not exist.
    """
    try:
        for line in cpuinfo_path.read_text(errors="replace").splitlines():
            key, sep, value = line.partition(":")
            if sep and key.strip() == "model name" and value.strip():
                return value.strip()
    except OSError:
        pass  # Not Linux, or procfs unavailable

    name = platform.processor().strip()
    return name or None


def get_gpu_name(gpu: NvmlPowerReader | None = None) -> str | None:
    """Return the GPU device name reported by NVML."""
    reader = gpu or NvmlPowerReader()
    try:
        return reader.device_name()
    finally:
        if gpu is None:
            reader.close()


def detect_hardware_names(gpu: NvmlPowerReader | None = None) -> tuple[str | None, str | None]:
    """Return (cpu_name, gpu_name)."""
    return get_cpu_name(), get_gpu_name(gpu)
