"""Package power readers.

CPU package power comes from the Linux powercap (RAPL) energy counters,
GPU package power from NVML. Both are best effort: any reader that cannot
produce a value returns None, never raises.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pynvml
import structlog

log = structlog.get_logger()


class PowerSource(Protocol):
    """Instantaneous package power, or None when no reading is available."""

    def cpu_package_watts(self) -> float | None: ...

    def gpu_package_watts(self) -> float | None: ...


@dataclass
class _RaplDomain:
    """One RAPL package domain and its last counter reading."""

    name: str
    energy_file: Path
    max_energy_uj: int
    last_uj: int | None = None


class RaplPowerReader:
    """CPU package power from powercap energy_uj counters.

    Watts are derived from the counter delta between two reads, so the first
    read after construction returns None. Multiple package domains (sockets)
    are summed into one machine-wide figure.
    """

    def __init__(
        self,
        rapl_path: str | Path = "/sys/class/powercap/intel-rapl",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rapl_path = Path(rapl_path)
        self._clock = clock
        self._last_time: float | None = None
        self._domains = self._detect()

    @property
    def available(self) -> bool:
        return bool(self._domains)

    def _detect(self) -> list[_RaplDomain]:
        """Locate readable package energy counters."""
        domains: list[_RaplDomain] = []
        for subdir in sorted(self._rapl_path.glob("intel-rapl:*")):
            energy_file = subdir / "energy_uj"
            if not energy_file.is_file():
                continue
            try:
                energy_file.read_text()
                name_file = subdir / "name"
                name = name_file.read_text().strip() if name_file.exists() else subdir.name
                if not name.startswith("package"):
                    continue
                max_file = subdir / "max_energy_range_uj"
                max_uj = int(max_file.read_text().strip()) if max_file.exists() else 2**63
            except (OSError, ValueError) as e:
                log.warning("rapl_domain_unreadable", path=str(energy_file), error=str(e))
                continue
            domains.append(_RaplDomain(name=name, energy_file=energy_file, max_energy_uj=max_uj))

        if domains:
            log.info("rapl_detected", domains=[d.name for d in domains])
        else:
            log.info("rapl_unavailable", path=str(self._rapl_path))
        return domains

    @staticmethod
    def _delta_uj(domain: _RaplDomain, start_uj: int, end_uj: int) -> int:
        """Counter delta, handling wrap at max_energy_range_uj."""
        if end_uj >= start_uj:
            return end_uj - start_uj
        return (domain.max_energy_uj - start_uj) + end_uj

    def cpu_package_watts(self) -> float | None:
        if not self._domains:
            return None

        now = self._clock()
        readings: list[int] = []
        try:
            for domain in self._domains:
                readings.append(int(domain.energy_file.read_text().strip()))
        except (OSError, ValueError) as e:
            log.debug("rapl_read_failed", error=str(e))
            return None

        last_time = self._last_time
        self._last_time = now

        total_uj = 0
        have_delta = last_time is not None
        for domain, value in zip(self._domains, readings):
            if domain.last_uj is None:
                have_delta = False
            else:
                total_uj += self._delta_uj(domain, domain.last_uj, value)
            domain.last_uj = value

        if not have_delta or last_time is None:
            return None
        elapsed = now - last_time
        if elapsed <= 0:
            return None
        return (total_uj / 1_000_000.0) / elapsed

    def gpu_package_watts(self) -> float | None:
        return None


class NvmlPowerReader:
    """GPU board power via NVML.

    NVML is initialized lazily on first use. If initialization fails (no
    NVIDIA driver, no device at gpu_index) the reader stays unavailable.
    """

    def __init__(self, gpu_index: int = 0) -> None:
        self._gpu_index = gpu_index
        self._handle = None
        self._initialized = False
        self._failed = False

    def _ensure_handle(self):
        if self._handle is not None or self._failed:
            return self._handle
        try:
            pynvml.nvmlInit()
            self._initialized = True
            self._handle = pynvml.nvmlDeviceGetHandleByIndex(self._gpu_index)
        except pynvml.NVMLError as e:
            self._failed = True
            log.info("nvml_unavailable", gpu_index=self._gpu_index, error=str(e))
        return self._handle

    @property
    def available(self) -> bool:
        return self._ensure_handle() is not None

    def device_name(self) -> str | None:
        handle = self._ensure_handle()
        if handle is None:
            return None
        try:
            name = pynvml.nvmlDeviceGetName(handle)
        except pynvml.NVMLError:
            return None
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="replace")
        return name.strip() or None

    def cpu_package_watts(self) -> float | None:
        return None

    def gpu_package_watts(self) -> float | None:
        handle = self._ensure_handle()
        if handle is None:
            return None
        try:
            return pynvml.nvmlDeviceGetPowerUsage(handle) / 1000.0  # mW -> W
        except pynvml.NVMLError as e:
            log.debug("nvml_read_failed", error=str(e))
            return None

    def close(self) -> None:
        if self._initialized:
            try:
                pynvml.nvmlShutdown()
            except pynvml.NVMLError:
                pass  # Already shut down
            self._initialized = False
            self._handle = None


class SystemPowerSource:
    """CPU power from RAPL plus GPU power from NVML."""

    def __init__(self, cpu: RaplPowerReader, gpu: NvmlPowerReader) -> None:
        self.cpu = cpu
        self.gpu = gpu

    @classmethod
    def from_config(cls, rapl_path: str, gpu_index: int) -> SystemPowerSource:
        return cls(cpu=RaplPowerReader(rapl_path), gpu=NvmlPowerReader(gpu_index))

    def cpu_package_watts(self) -> float | None:
        return self.cpu.cpu_package_watts()

    def gpu_package_watts(self) -> float | None:
        return self.gpu.gpu_package_watts()

    def read_all(self) -> list[tuple[str, float | None]]:
        """Current reading of every sensor, for diagnostics."""
        return [
            ("cpu_package", self.cpu_package_watts()),
            ("gpu_package", self.gpu_package_watts()),
        ]

    def close(self) -> None:
        self.gpu.close()
