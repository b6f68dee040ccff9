"""
Configuration for NAMDRunner.

Settings come from a YAML file (``~/.config/namdrunner/config.yaml`` by
default, overridable with ``NAMDRUNNER_CONFIG``). Example::

    cluster:
      host: login.rc.colorado.edu
      port: 22
      username: jdoe
    paths:
      project_base: /projects
      scratch_base: /scratch/alpine
    slurm:
      partition: amilan
      qos: normal
      namd_module: namd/3.0.1_cpu
    timeouts:
      command: 120
      file_transfer: 300
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NAMDRUNNER_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/namdrunner/config.yaml")
DEFAULT_DB_PATH = Path("~/.local/share/namdrunner/jobs.db")

KEYRING_SERVICE = "namdrunner"

# Directory names under each user's project/scratch base
JOB_ROOT_MARKER = "namdrunner_jobs"
INPUT_FILES_DIR = "input_files"
SCRIPTS_DIR = "scripts"
OUTPUTS_DIR = "outputs"
JOB_SUBDIRECTORIES = (INPUT_FILES_DIR, SCRIPTS_DIR, OUTPUTS_DIR)

METADATA_FILENAME = "job_info.json"
SBATCH_FILENAME = "job.sbatch"
CONFIG_FILENAME = "config.namd"


class Timeouts(BaseModel):
    """Per-operation timeouts in seconds."""

    model_config = ConfigDict(extra="forbid")

    connect: float = 30.0
    command: float = 120.0
    file_transfer: float = 300.0
    slurm_operation: float = 60.0


class PathSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_base: str = "/projects"
    scratch_base: str = "/scratch/alpine"


class SlurmSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    partition: Optional[str] = "amilan"
    qos: Optional[str] = "normal"
    namd_module: str = "namd/3.0.1_cpu"
    modules: list[str] = Field(default_factory=lambda: ["gcc/14.2.0", "openmpi/5.0.6"])


class ClusterSettings(BaseModel):
    """Connection target. Passwords are never stored here, see keyring."""

    model_config = ConfigDict(extra="forbid")

    host: Optional[str] = None
    port: int = Field(default=22, ge=1, le=65535)
    username: Optional[str] = None
    known_hosts: Optional[str] = None


class Settings(BaseModel):
    """Top-level NAMDRunner settings."""

    model_config = ConfigDict(extra="forbid")

    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    slurm: SlurmSettings = Field(default_factory=SlurmSettings)
    timeouts: Timeouts = Field(default_factory=Timeouts)
    database_path: str = str(DEFAULT_DB_PATH)
    template_dir: Optional[str] = None

    @property
    def db_path(self) -> Path:
        return Path(self.database_path).expanduser()


def resolve_config_path(path: Optional[Path] = None) -> Path:
    """Explicit path, then ``$NAMDRUNNER_CONFIG``, then the default location."""
    if path is not None:
        return Path(path).expanduser()
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings from YAML.

    A missing file at the default location yields default settings; a
    missing file that was asked for explicitly is an error.

    Args:
        path: Optional explicit config file path

    Returns:
        Parsed Settings

    Raises:
        ConfigurationError: If the file is unreadable or invalid
    """
    config_path = resolve_config_path(path)
    if not config_path.exists():
        if path is not None:
            raise ConfigurationError(
                f"Config file not found: {config_path}", config_key="path"
            )
        logger.debug(f"No config file at {config_path}, using defaults")
        return Settings()

    try:
        with open(config_path) as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Could not read config file {config_path}", details=str(e)
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    try:
        settings = Settings.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid configuration in {config_path}: {key}: {first.get('msg')}",
            config_key=key,
            details=str(e),
        ) from e

    logger.info(f"Loaded configuration from {config_path}")
    return settings
