"""Configuration management for vCenter Migrator."""

import asyncio
import os
import re
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings

from ..models.enums import ConnectionSide
from .exceptions import ConfigurationError

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = "config/migrator.yml"


class ConnectionProfile(BaseModel):
    """A saved vCenter endpoint."""

    server_address: str
    username: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)


class SSHJumpHost(BaseModel):
    """Management host that runs PowerShell on behalf of the migrator."""

    hostname: str
    user: str
    port: int = 22
    identity_file: str | None = None
    remote_command: str = "pwsh -NoProfile -NonInteractive -Command -"


class PowerShellConfig(BaseModel):
    """How each side's PowerShell session is hosted."""

    transport: Literal["local", "ssh"] = "local"
    executables: list[str] = Field(default_factory=lambda: ["pwsh", "powershell"])
    scripts_dir: str = "Scripts"
    working_dir: str | None = None
    ssh: SSHJumpHost | None = None


class MigratorConfig(BaseSettings):
    """Main configuration for vCenter Migrator."""

    profiles: dict[str, ConnectionProfile] = Field(default_factory=dict)
    source_profile: str | None = None
    target_profile: str | None = None
    powershell: PowerShellConfig = Field(default_factory=PowerShellConfig)
    backup_dir: str = "backups"
    data_dir: str = Field(default="~/.vcenter-migrator", alias="VCMIGRATOR_DATA_DIR")
    log_dir: str | None = Field(default=None, alias="LOG_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    config_file: str = Field(default=DEFAULT_CONFIG_FILE, alias="VCMIGRATOR_CONFIG")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def profile_for(self, side: ConnectionSide) -> ConnectionProfile | None:
        """Connection profile assigned to a side, if any."""
        name = self.source_profile if side is ConnectionSide.SOURCE else self.target_profile
        if name is None:
            return None
        try:
            return self.profiles[name]
        except KeyError as e:
            raise ConfigurationError(f"{side.value} profile '{name}' is not defined") from e

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


def load_config(config_path: str | None = None) -> MigratorConfig:
    """Load configuration from multiple sources (synchronous interface).

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration

    Note:
        This function cannot be used inside a running event loop.
        For async code, use load_config_async() instead.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(load_config_async(config_path))
    raise RuntimeError(
        "load_config() cannot be called from within an async context. "
        "Use 'await load_config_async()' instead."
    )


async def load_config_async(config_path: str | None = None) -> MigratorConfig:
    """Load configuration from multiple sources (async interface).

    Order of precedence (lowest first): defaults, user config
    (~/.config/vcenter-migrator/migrator.yml), project config, environment.
    """
    load_dotenv()

    config = MigratorConfig()

    user_config_path = Path.home() / ".config" / "vcenter-migrator" / "migrator.yml"
    await _load_config_file(config, user_config_path)

    default_config_file = os.getenv("VCMIGRATOR_CONFIG", DEFAULT_CONFIG_FILE)
    project_config_path = Path(config_path or default_config_file)
    if config_path and not project_config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {project_config_path}")
    await _load_config_file(config, project_config_path)

    config.config_file = str(project_config_path)

    _apply_env_overrides(config)
    _validate_profiles(config)

    return config


async def _load_config_file(config: MigratorConfig, config_path: Path) -> None:
    """Load and apply configuration from a YAML file."""
    if not config_path.exists():
        return

    yaml_config = await _load_yaml_config(config_path)
    try:
        _apply_profiles(config, yaml_config)
        _apply_settings(config, yaml_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e
    logger.debug("Loaded configuration file", path=str(config_path))


def _apply_profiles(config: MigratorConfig, yaml_config: dict[str, Any]) -> None:
    """Apply connection profiles and side assignments from YAML data."""
    for name, data in (yaml_config.get("profiles") or {}).items():
        config.profiles[name] = ConnectionProfile(**data)
    if "source" in yaml_config:
        config.source_profile = yaml_config["source"]
    if "target" in yaml_config:
        config.target_profile = yaml_config["target"]


def _apply_settings(config: MigratorConfig, yaml_config: dict[str, Any]) -> None:
    """Apply PowerShell hosting and path settings from YAML data."""
    if yaml_config.get("powershell"):
        config.powershell = PowerShellConfig(**yaml_config["powershell"])
    for key in ("backup_dir", "data_dir", "log_dir", "log_level"):
        if key in yaml_config and yaml_config[key] is not None:
            setattr(config, key, str(yaml_config[key]))


def _apply_env_overrides(config: MigratorConfig) -> None:
    """Apply environment variable overrides."""
    if os.getenv("LOG_LEVEL"):
        config.log_level = os.getenv("LOG_LEVEL", config.log_level)
    if os.getenv("LOG_DIR"):
        config.log_dir = os.getenv("LOG_DIR", config.log_dir)
    if os.getenv("POWERSHELL_PATH"):
        config.powershell.executables = [os.getenv("POWERSHELL_PATH", "pwsh")]
    if os.getenv("VCMIGRATOR_SOURCE_PROFILE"):
        config.source_profile = os.getenv("VCMIGRATOR_SOURCE_PROFILE")
    if os.getenv("VCMIGRATOR_TARGET_PROFILE"):
        config.target_profile = os.getenv("VCMIGRATOR_TARGET_PROFILE")


def _validate_profiles(config: MigratorConfig) -> None:
    for side in ConnectionSide:
        config.profile_for(side)
    if config.powershell.transport == "ssh" and config.powershell.ssh is None:
        raise ConfigurationError("powershell.transport is 'ssh' but no powershell.ssh host is set")


async def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file."""
    try:
        content = await asyncio.to_thread(config_path.read_text)
        content = _expand_yaml_config(content)
        loaded = yaml.safe_load(content)
        if not isinstance(loaded, dict):
            return {}
        return loaded
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e


ALLOWED_ENV_VARS = {
    "HOME",
    "USER",
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
    "VCMIGRATOR_CONFIG",
    "VCMIGRATOR_DATA_DIR",
    "LOG_DIR",
    "LOG_LEVEL",
}


def _expand_yaml_config(content: str) -> str:
    """Expand ${VAR} references, limited to an allowlist (passwords never live in YAML)."""

    def replace_var(match: re.Match) -> str:
        var_name = match.group(1)
        if var_name in ALLOWED_ENV_VARS:
            return os.getenv(var_name, match.group(0))
        logger.warning(
            "Environment variable not in allowlist, skipping expansion", variable=var_name
        )
        return match.group(0)

    return re.sub(r"\$\{([^}]+)\}", replace_var, content)


def save_config(config: MigratorConfig, config_path: str | None = None) -> None:
    """Save profiles and settings to a YAML file.

    Raises:
        ConfigurationError: If unable to save configuration
    """
    path = Path(config_path or config.config_file)
    data: dict[str, Any] = {
        "profiles": {name: p.model_dump() for name, p in config.profiles.items()},
        "powershell": config.powershell.model_dump(exclude_none=True),
        "backup_dir": config.backup_dir,
        "log_level": config.log_level,
    }
    if config.source_profile:
        data["source"] = config.source_profile
    if config.log_dir:
        data["log_dir"] = config.log_dir
    if config.target_profile:
        data["target"] = config.target_profile
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=False))
    except OSError as e:
        raise ConfigurationError(f"Failed to save config to {path}: {e}") from e
    logger.info("Configuration saved", path=str(path))
