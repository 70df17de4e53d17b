import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "store": "json",  # "memory" | "json" | "sqlite"
    "store_path": None,  # None = backend default (.qctrack.json / .qctrack.db)
    "grace_window_seconds": 300,  # wait this long after /complete/ for a /transition
    "timeout_multiplier": 2.0,  # abandon sessions older than max_time * multiplier
    "default_max_time": 3 * 60 * 60,  # seconds, used until the platform reports one
    "max_audit_entries": 1000,
    "max_off_platform_entries": 500,
    "project_overrides": {},  # project_id -> {display_name, max_time}
    "hourly_rate": 25.0,
    "weekly_overtime_enabled": True,
    "weekly_overtime_threshold": 40,  # hours per week before overtime applies
    "overtime_rate": 1.25,  # multiplier on hourly_rate for overtime hours
    "log_level": "WARNING",
}


def load_config(config_path: str = ".qctrack.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .qctrack.yml in the current directory
      3. CLI argument overrides
      4. QCTRACK_* environment variables
    """
    config = {**DEFAULT_CONFIG, "project_overrides": dict(DEFAULT_CONFIG["project_overrides"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if os.environ.get("QCTRACK_STORE_PATH"):
        config["store_path"] = os.environ["QCTRACK_STORE_PATH"]
    if os.environ.get("QCTRACK_LOG_LEVEL"):
        config["log_level"] = os.environ["QCTRACK_LOG_LEVEL"]

    return config


def write_config(config: dict, config_path: str = ".qctrack.yml") -> None:
    """Write or update the config file, preserving any existing keys."""
    path = Path(config_path)
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


@dataclass(frozen=True)
class ProjectOverride:
    display_name: Optional[str] = None
    max_time: Optional[int] = None  # seconds


@dataclass(frozen=True)
class CorrelatorSettings:
    """Typed view of the config keys the session correlator cares about."""

    grace_window_seconds: int = DEFAULT_CONFIG["grace_window_seconds"]
    timeout_multiplier: float = DEFAULT_CONFIG["timeout_multiplier"]
    default_max_time: int = DEFAULT_CONFIG["default_max_time"]
    project_overrides: dict = field(default_factory=dict)

    @property
    def grace_window_ms(self) -> int:
        return int(self.grace_window_seconds * 1000)

    @classmethod
    def from_config(cls, config: dict) -> "CorrelatorSettings":
        overrides = {}
        for project_id, raw in (config.get("project_overrides") or {}).items():
            if not isinstance(raw, dict):
                raise ValueError(f"project_overrides[{project_id!r}] must be a mapping.")
            max_time = raw.get("max_time")
            overrides[str(project_id)] = ProjectOverride(
                display_name=raw.get("display_name"),
                max_time=int(max_time) if max_time is not None else None,
            )

        multiplier = float(config.get("timeout_multiplier", DEFAULT_CONFIG["timeout_multiplier"]))
        if multiplier <= 0:
            raise ValueError("timeout_multiplier must be positive.")

        return cls(
            grace_window_seconds=int(config.get("grace_window_seconds", DEFAULT_CONFIG["grace_window_seconds"])),
            timeout_multiplier=multiplier,
            default_max_time=int(config.get("default_max_time", DEFAULT_CONFIG["default_max_time"])),
            project_overrides=overrides,
        )


@dataclass(frozen=True)
class PaySettings:
    """Typed view of the config keys used by the weekly pay summary."""

    hourly_rate: float = DEFAULT_CONFIG["hourly_rate"]
    weekly_overtime_enabled: bool = DEFAULT_CONFIG["weekly_overtime_enabled"]
    weekly_overtime_threshold: float = DEFAULT_CONFIG["weekly_overtime_threshold"]
    overtime_rate: float = DEFAULT_CONFIG["overtime_rate"]

    @classmethod
    def from_config(cls, config: dict) -> "PaySettings":
        hourly_rate = float(config.get("hourly_rate", DEFAULT_CONFIG["hourly_rate"]))
        if not 0 <= hourly_rate <= 1000:
            raise ValueError("hourly_rate must be between 0 and 1000.")

        threshold = float(config.get("weekly_overtime_threshold", DEFAULT_CONFIG["weekly_overtime_threshold"]))
        if not 0 <= threshold <= 168:
            raise ValueError("weekly_overtime_threshold must be between 0 and 168 hours.")

        overtime_rate = float(config.get("overtime_rate", DEFAULT_CONFIG["overtime_rate"]))
        if not 1 <= overtime_rate <= 5:
            raise ValueError("overtime_rate must be between 1.0 and 5.0.")

        return cls(
            hourly_rate=hourly_rate,
            weekly_overtime_enabled=bool(
                config.get("weekly_overtime_enabled", DEFAULT_CONFIG["weekly_overtime_enabled"])
            ),
            weekly_overtime_threshold=threshold,
            overtime_rate=overtime_rate,
        )
