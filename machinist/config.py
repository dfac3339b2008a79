"""TOML-based actuator configuration.

Loads ~/.machinist/defaults.toml (global) and machinist.toml (project),
merges them, and builds an ActuatorConfig from the ``[actuator]`` table and a
LogConfig from the ``[logging]`` table.

Example machinist.toml:

    [actuator]
    provider_name = "aws"
    request_timeout = 60
    token_ttl = 900

    [logging]
    level = "DEBUG"
    file = "/var/log/machinist.log"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from machinist.constants import (
    CONTROL_PLANE_EXISTENCE_REQUEUE,
    CONTROL_PLANE_READY_REQUEUE,
    DEFAULT_PROVIDER_NAME,
    DEFAULT_TOKEN_TTL,
    INFRASTRUCTURE_READY_REQUEUE,
    TIMEOUT_REQUEUE,
)
from machinist.core.exceptions import ConfigurationError
from machinist.logging import LogConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".machinist" / "defaults.toml"
PROJECT_CONFIG_NAME = "machinist.toml"


@dataclass(frozen=True, slots=True)
class ActuatorConfig:
    """Actuator tuning. All durations are in seconds.

    Args:
        infrastructure_ready_requeue: Delay when cluster infrastructure is not ready.
        control_plane_existence_requeue: Delay when no control-plane machine exists yet.
        control_plane_ready_requeue: Delay after losing the control-plane init race.
        token_ttl: Lifetime of bootstrap tokens issued for joining machines.
        provider_name: Scheme used when synthesising provider ids.
        request_timeout: Deadline for a single verb. None disables it.
        timeout_requeue: Delay signalled when a verb hits its deadline.
    """

    infrastructure_ready_requeue: float = INFRASTRUCTURE_READY_REQUEUE
    control_plane_existence_requeue: float = CONTROL_PLANE_EXISTENCE_REQUEUE
    control_plane_ready_requeue: float = CONTROL_PLANE_READY_REQUEUE
    token_ttl: float = DEFAULT_TOKEN_TTL
    provider_name: str = DEFAULT_PROVIDER_NAME
    request_timeout: float | None = None
    timeout_requeue: float = TIMEOUT_REQUEUE

    def __post_init__(self) -> None:
        for name in (
            "infrastructure_ready_requeue",
            "control_plane_existence_requeue",
            "control_plane_ready_requeue",
            "token_ttl",
            "timeout_requeue",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if not self.provider_name:
            raise ConfigurationError("provider_name must not be empty")

    @classmethod
    def from_dict(cls, raw: RawConfig) -> ActuatorConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigurationError(f"Unknown actuator settings: {', '.join(unknown)}")
        return cls(**raw)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("actuator", {})
    merged.setdefault("logging", {})
    return merged


def resolve_actuator_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ActuatorConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return ActuatorConfig.from_dict(config["actuator"])


def resolve_log_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> LogConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)
    return LogConfig.from_dict(config["logging"])
