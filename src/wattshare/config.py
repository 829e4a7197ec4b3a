"""Configuration system for wattshare."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

# Sampling period bounds (milliseconds)
MIN_PERIOD_MS = 50
MAX_PERIOD_MS = 5000


def clamp_period_ms(ms: int) -> int:
    """Clamp a sampling period to the supported range."""
    return max(MIN_PERIOD_MS, min(MAX_PERIOD_MS, int(ms)))


@dataclass
class EngineConfig:
    """Tick computation options: validation, filtering and allocation."""

    # Real dt window (seconds); ticks outside it are dropped
    min_dt_seconds: float = 0.001
    max_dt_seconds: float = 2.0
    # Plausible CPU package power (W)
    min_cpu_watts: float = 0.1
    max_cpu_watts: float = 500.0
    # Plausible GPU package power (W)
    min_gpu_watts: float = 0.0
    max_gpu_watts: float = 800.0
    # EMA filter on total CPU watts
    enable_cpu_ema: bool = True
    cpu_ema_tau_seconds: float = 0.5
    # Processes below this CPU% are noise
    min_process_cpu_percent: float = 0.05
    max_apps_per_tick: int = 250
    strip_exe_suffix: bool = True


@dataclass
class SchedulerConfig:
    """Tick scheduling configuration."""

    period_ms: int = 500
    top_n_apps: int = 200  # Rows shown by the CLI and written to reports
    heartbeat_ticks: int = 10  # Console summary every N applied ticks


@dataclass
class SessionConfig:
    """Session aggregation configuration."""

    keep_hardware_names_on_reset: bool = False


@dataclass
class PowerConfig:
    """Power sensor configuration."""

    rapl_path: str = "/sys/class/powercap/intel-rapl"
    gpu_index: int = 0


@dataclass
class SystemConfig:
    """Process-level settings."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    power: PowerConfig = field(default_factory=PowerConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "wattshare"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "wattshare"

    @property
    def log_path(self) -> Path:
        """Monitor log path (JSON Lines)."""
        return self.state_dir / "monitor.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("engine", "scheduler", "session", "power", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() agree.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        system_data = data.get("system", {})
        sys_defaults = defaults.system

        return cls(
            engine=_load_engine_config(data.get("engine", {})),
            scheduler=_load_scheduler_config(data.get("scheduler", {})),
            session=SessionConfig(
                keep_hardware_names_on_reset=data.get("session", {}).get(
                    "keep_hardware_names_on_reset",
                    defaults.session.keep_hardware_names_on_reset,
                ),
            ),
            power=_load_power_config(data.get("power", {})),
            system=SystemConfig(
                log_max_bytes=system_data.get("log_max_bytes", sys_defaults.log_max_bytes),
                log_backup_count=system_data.get("log_backup_count", sys_defaults.log_backup_count),
            ),
        )


def _load_engine_config(data: dict) -> EngineConfig:
    """Load engine config from TOML data, using dataclass defaults for missing fields."""
    d = EngineConfig()
    cfg = EngineConfig(
        min_dt_seconds=data.get("min_dt_seconds", d.min_dt_seconds),
        max_dt_seconds=data.get("max_dt_seconds", d.max_dt_seconds),
        min_cpu_watts=data.get("min_cpu_watts", d.min_cpu_watts),
        max_cpu_watts=data.get("max_cpu_watts", d.max_cpu_watts),
        min_gpu_watts=data.get("min_gpu_watts", d.min_gpu_watts),
        max_gpu_watts=data.get("max_gpu_watts", d.max_gpu_watts),
        enable_cpu_ema=data.get("enable_cpu_ema", d.enable_cpu_ema),
        cpu_ema_tau_seconds=data.get("cpu_ema_tau_seconds", d.cpu_ema_tau_seconds),
        min_process_cpu_percent=data.get("min_process_cpu_percent", d.min_process_cpu_percent),
        max_apps_per_tick=data.get("max_apps_per_tick", d.max_apps_per_tick),
        strip_exe_suffix=data.get("strip_exe_suffix", d.strip_exe_suffix),
    )

    if cfg.min_dt_seconds <= 0 or cfg.min_dt_seconds >= cfg.max_dt_seconds:
        raise ValueError(
            f"min_dt_seconds must be > 0 and < max_dt_seconds, "
            f"got {cfg.min_dt_seconds} / {cfg.max_dt_seconds}"
        )
    if cfg.min_cpu_watts > cfg.max_cpu_watts:
        raise ValueError(
            f"min_cpu_watts must be <= max_cpu_watts, "
            f"got {cfg.min_cpu_watts} / {cfg.max_cpu_watts}"
        )
    if cfg.min_gpu_watts > cfg.max_gpu_watts:
        raise ValueError(
            f"min_gpu_watts must be <= max_gpu_watts, "
            f"got {cfg.min_gpu_watts} / {cfg.max_gpu_watts}"
        )
    if cfg.cpu_ema_tau_seconds <= 0:
        raise ValueError(f"cpu_ema_tau_seconds must be > 0, got {cfg.cpu_ema_tau_seconds}")
    if cfg.max_apps_per_tick < 1:
        raise ValueError(f"max_apps_per_tick must be >= 1, got {cfg.max_apps_per_tick}")

    return cfg


def _load_scheduler_config(data: dict) -> SchedulerConfig:
    """Load scheduler config from TOML data."""
    d = SchedulerConfig()
    top_n_apps = data.get("top_n_apps", d.top_n_apps)
    heartbeat_ticks = data.get("heartbeat_ticks", d.heartbeat_ticks)

    if top_n_apps < 1:
        raise ValueError(f"top_n_apps must be >= 1, got {top_n_apps}")
    if heartbeat_ticks < 1:
        raise ValueError(f"heartbeat_ticks must be >= 1, got {heartbeat_ticks}")

    return SchedulerConfig(
        period_ms=clamp_period_ms(data.get("period_ms", d.period_ms)),
        top_n_apps=top_n_apps,
        heartbeat_ticks=heartbeat_ticks,
    )


def _load_power_config(data: dict) -> PowerConfig:
    """Load power config from TOML data."""
    d = PowerConfig()
    gpu_index = data.get("gpu_index", d.gpu_index)
    if gpu_index < 0:
        raise ValueError(f"gpu_index must be >= 0, got {gpu_index}")
    return PowerConfig(
        rapl_path=data.get("rapl_path", d.rapl_path),
        gpu_index=gpu_index,
    )
