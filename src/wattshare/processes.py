"""Process table reader.

Enumerates running processes with their cumulative CPU time via psutil.
Individual processes that exit or deny access mid-enumeration are skipped.
"""

from dataclasses import dataclass

import psutil
import structlog

log = structlog.get_logger()


@dataclass(frozen=True)
class ProcessSample:
    """Point-in-time cumulative CPU time of one process.

    cpu_time_total is user + system seconds and never decreases for a live pid.
    """

    pid: int
    name: str
    cpu_time_total: float


def read_process_samples() -> list[ProcessSample]:
    """Read the whole process table.

    Returns an empty list if the table itself cannot be enumerated.
    """
    samples: list[ProcessSample] = []
    try:
        procs = psutil.process_iter(["pid", "name", "cpu_times"])
        for p in procs:
            try:
                times = p.info.get("cpu_times")
                if times is None:
                    continue  # Access denied on cpu_times
                samples.append(
                    ProcessSample(
                        pid=int(p.info["pid"]),
                        name=p.info.get("name") or "unknown",
                        cpu_time_total=float(times.user + times.system),
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
    except OSError as e:
        log.warning("process_table_unavailable", error=str(e))
        return []

    return samples
