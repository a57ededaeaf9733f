"""Configuration loading for the HugeX job engine.

Configuration lives in ``config.yaml``; every section is optional and merged
over :data:`DEFAULT_CONFIG_TEMPLATE`. A handful of deployment-level values can
be overridden through environment variables so container images can be
retargeted without editing the file.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "ContainerSettings",
    "ExecutionMode",
    "ExecutionProfile",
    "GitSettings",
    "RemoteApiSettings",
    "RepositoryDefaults",
    "Settings",
    "load_config",
    "load_settings",
    "settings_from_mapping",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "execution": {
        "mode": "api",
    },
    "remote_api": {
        "base_url": "https://huggingface.co/api/jobs",
        "flavor": "cpu-basic",
        "command": ["/opt/agents/codex"],
        "timeout_seconds": 600,
        "poll_interval": 10.0,
        "max_poll_attempts": 180,
        "request_timeout": 30.0,
    },
    "container": {
        "image": "codex-universal-explore:dev",
        "socket_path": "/var/run/docker.sock",
        "command": ["/opt/agents/codex"],
        "working_dir": "/workspace",
        "memory_limit": "512m",
        "cpu_shares": 512,
        "timeout": 7200,
    },
    "repository": {
        "url": "https://github.com/drbh/cleanplate",
        "branch": "main",
    },
    "defaults": {
        "environment": {},
        "secrets": {},
    },
    "git": {
        "timeout": 300,
        "bot_name": "HugeX Bot",
        "bot_email": "hugex@users.noreply.github.com",
        "marker_file": ".hugex-branch-marker",
    },
    "logging": {
        "level": "INFO",
    },
}

_ENV_OVERRIDES: Tuple[Tuple[str, Tuple[str, str]], ...] = (
    ("EXECUTION_MODE", ("execution", "mode")),
    ("DOCKER_IMAGE", ("container", "image")),
    ("DOCKER_MEMORY_LIMIT", ("container", "memory_limit")),
    ("DOCKER_CPU_SHARES", ("container", "cpu_shares")),
    ("DOCKER_TIMEOUT", ("container", "timeout")),
    ("REPO_URL", ("repository", "url")),
    ("REPO_BRANCH", ("repository", "branch")),
    ("HUGEX_GIT_TIMEOUT", ("git", "timeout")),
)

_MEMORY_UNITS = {"": 1, "b": 1, "k": 1024, "m": 1024**2, "g": 1024**3}


class ExecutionMode(str, Enum):
    """Closed set of execution backends."""

    API = "api"
    DOCKER = "docker"

    @classmethod
    def parse(cls, value: "ExecutionMode | str") -> "ExecutionMode":
        if isinstance(value, cls):
            return value
        normalised = str(value).strip().lower()
        for member in cls:
            if member.value == normalised:
                return member
        valid = ", ".join(member.value for member in cls)
        raise ConfigError(
            f"Invalid execution mode: {value!r}. Valid modes are {valid}.",
            details={"mode": str(value)},
        )


@dataclass(slots=True, frozen=True)
class ExecutionProfile:
    """Caller-owned defaults merged into every execution request.

    ``environment`` and ``secrets`` sit between the base job fields and the
    per-job overrides in precedence.
    """

    image: str
    environment: Mapping[str, str] = field(default_factory=dict)
    secrets: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class RemoteApiSettings:
    base_url: str
    flavor: str
    command: Tuple[str, ...]
    timeout_seconds: int
    poll_interval: float
    max_poll_attempts: int
    request_timeout: float


@dataclass(slots=True, frozen=True)
class ContainerSettings:
    image: str
    socket_path: str
    command: Tuple[str, ...]
    working_dir: str
    memory_limit: int
    cpu_shares: int
    timeout: float


@dataclass(slots=True, frozen=True)
class RepositoryDefaults:
    url: str
    branch: str


@dataclass(slots=True, frozen=True)
class GitSettings:
    timeout: float
    bot_name: str
    bot_email: str
    marker_file: str


@dataclass(slots=True, frozen=True)
class Settings:
    """Fully resolved engine configuration."""

    mode: ExecutionMode
    remote_api: RemoteApiSettings
    container: ContainerSettings
    repository: RepositoryDefaults
    git: GitSettings
    default_environment: Mapping[str, str] = field(default_factory=dict)
    default_secrets: Mapping[str, str] = field(default_factory=dict)
    log_level: str = "INFO"

    def profile(self) -> ExecutionProfile:
        """Build the execution profile handed to each request."""
        return ExecutionProfile(
            image=self.container.image,
            environment=dict(self.default_environment),
            secrets=dict(self.default_secrets),
        )


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path: Path | str) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}", details={"path": str(path)})

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}", details={"path": str(path)}) from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.", details={"path": str(path)})
    return data


def _parse_memory(value: Any) -> int:
    """Convert ``512m``/``1g``/plain byte counts into bytes."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid memory limit: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    number, unit = text, ""
    if text and text[-1] in _MEMORY_UNITS:
        number, unit = text[:-1], text[-1]
    try:
        amount = float(number)
    except ValueError as error:
        raise ConfigError(f"Invalid memory limit: {value!r}") from error
    if amount <= 0:
        raise ConfigError(f"Invalid memory limit: {value!r}")
    return int(amount * _MEMORY_UNITS[unit])


def _positive_number(value: Any, name: str, *, integer: bool = False) -> Any:
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"{name} must be a number, got {value!r}", details={"key": name}) from error
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}", details={"key": name})
    return number


def _command(value: Any, name: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not value:
        raise ConfigError(f"{name} must be a non-empty list of strings", details={"key": name})
    return tuple(str(item) for item in value)


def _string_map(value: Any, name: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{name} must be a mapping", details={"key": name})
    return {str(key): str(item) for key, item in value.items() if item is not None}


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping", details={"section": name})
    return value


def _apply_env_overrides(data: Dict[str, Any], env: Mapping[str, str]) -> None:
    for variable, (section, key) in _ENV_OVERRIDES:
        raw = env.get(variable)
        if raw is None or not raw.strip():
            continue
        LOGGER.debug("Config %s.%s overridden by %s", section, key, variable)
        data.setdefault(section, {})[key] = raw.strip()


def settings_from_mapping(
    data: Mapping[str, Any],
    *,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Resolve ``data`` (merged over the defaults) into :class:`Settings`."""
    merged = _deep_merge(DEFAULT_CONFIG_TEMPLATE, data)
    _apply_env_overrides(merged, os.environ if env is None else env)

    execution = _section(merged, "execution")
    remote = _section(merged, "remote_api")
    container = _section(merged, "container")
    repository = _section(merged, "repository")
    defaults = _section(merged, "defaults")
    git = _section(merged, "git")
    logging_cfg = _section(merged, "logging")

    remote_settings = RemoteApiSettings(
        base_url=str(remote.get("base_url", "")).rstrip("/"),
        flavor=str(remote.get("flavor", "cpu-basic")),
        command=_command(remote.get("command"), "remote_api.command"),
        timeout_seconds=_positive_number(remote.get("timeout_seconds"), "remote_api.timeout_seconds", integer=True),
        poll_interval=_positive_number(remote.get("poll_interval"), "remote_api.poll_interval"),
        max_poll_attempts=_positive_number(
            remote.get("max_poll_attempts"), "remote_api.max_poll_attempts", integer=True
        ),
        request_timeout=_positive_number(remote.get("request_timeout"), "remote_api.request_timeout"),
    )
    if not remote_settings.base_url:
        raise ConfigError("remote_api.base_url must not be empty")

    container_settings = ContainerSettings(
        image=str(container.get("image", "")).strip(),
        socket_path=str(container.get("socket_path", "")),
        command=_command(container.get("command"), "container.command"),
        working_dir=str(container.get("working_dir", "/workspace")),
        memory_limit=_parse_memory(container.get("memory_limit")),
        cpu_shares=_positive_number(container.get("cpu_shares"), "container.cpu_shares", integer=True),
        timeout=_positive_number(container.get("timeout"), "container.timeout"),
    )
    if not container_settings.image:
        raise ConfigError("container.image must not be empty")

    repository_defaults = RepositoryDefaults(
        url=str(repository.get("url", "")),
        branch=str(repository.get("branch", "main")),
    )

    git_settings = GitSettings(
        timeout=_positive_number(git.get("timeout"), "git.timeout"),
        bot_name=str(git.get("bot_name")),
        bot_email=str(git.get("bot_email")),
        marker_file=str(git.get("marker_file")),
    )

    return Settings(
        mode=ExecutionMode.parse(execution.get("mode", "api")),
        remote_api=remote_settings,
        container=container_settings,
        repository=repository_defaults,
        git=git_settings,
        default_environment=_string_map(defaults.get("environment"), "defaults.environment"),
        default_secrets=_string_map(defaults.get("secrets"), "defaults.secrets"),
        log_level=str(logging_cfg.get("level", "INFO")),
    )


def load_settings(
    config_path: Path | str | None = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from ``config_path`` if it exists, else from defaults.

    An explicitly named file that is missing is an error; the implicit
    ``config.yaml`` in the working directory is optional.
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        data = load_config(config_path)
    elif Path(DEFAULT_CONFIG_NAME).exists():
        data = load_config(DEFAULT_CONFIG_NAME)
    return settings_from_mapping(data, env=env)

