"""Engine configuration management.

Settings are loaded from YAML in the converge home directory:
- config.yaml: engine settings (workers, retry policy, state location)
- state/state.json: persisted resource state (default location)

Resolution order for the home directory:
1. $CONVERGE_HOME environment variable
2. ~/.converge/

Environment overrides (applied after config.yaml):
- CONVERGE_STATE: path of the state file
- CONVERGE_MAX_WORKERS: worker pool size
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_MAX_WORKERS = 8
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 30.0


class ConfigError(Exception):
    """Configuration error."""


def get_home_dir() -> Path:
    """Get the converge home directory.

    Resolution order:
    1. $CONVERGE_HOME environment variable
    2. ~/.converge/
    """
    if env_path := os.environ.get('CONVERGE_HOME'):
        return Path(env_path)
    return Path.home() / '.converge'


def get_state_path(home: Optional[Path] = None) -> Path:
    """Get the default state file location (<home>/state/state.json)."""
    return (home or get_home_dir()) / 'state' / 'state.json'


@dataclass
class Settings:
    """Engine settings.

    Attributes:
        home: Converge home directory
        state_path: Location of the persisted state file
        max_workers: Upper bound on concurrently running provider calls
        retry_attempts: Attempts for provider calls raising RetryableError
        retry_delay: Initial backoff delay in seconds (doubles per attempt)
        retry_max_delay: Cap on a single backoff delay
    """
    home: Path = field(default_factory=get_home_dir)
    state_path: Optional[Path] = None
    max_workers: int = DEFAULT_MAX_WORKERS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY

    def __post_init__(self):
        if isinstance(self.home, str):
            self.home = Path(self.home)
        if self.state_path is None:
            self.state_path = get_state_path(self.home)
        elif isinstance(self.state_path, str):
            self.state_path = Path(self.state_path)
        self.validate()

    def validate(self) -> None:
        """Validate numeric settings.

        Raises:
            ConfigError: If a value is out of range
        """
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigError(f"max_workers must be a positive integer, got {self.max_workers!r}")
        if not isinstance(self.retry_attempts, int) or self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be a positive integer, got {self.retry_attempts!r}")
        if self.retry_delay < 0 or self.retry_max_delay < 0:
            raise ConfigError("retry delays must not be negative")


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML object (dict)")
    return data


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load engine settings.

    Merge order: defaults -> config.yaml -> environment overrides.

    Args:
        path: Optional settings file. Default: <home>/config.yaml

    Raises:
        ConfigError: If the file is invalid or a value is out of range
    """
    home = get_home_dir()
    if path is None:
        path = home / 'config.yaml'

    data = _parse_yaml(path) if path.exists() else {}
    engine = data.get('engine', {}) or {}
    retry = engine.get('retry', {}) or {}

    state_path = engine.get('state_path')
    if env_state := os.environ.get('CONVERGE_STATE'):
        state_path = env_state

    max_workers = engine.get('max_workers', DEFAULT_MAX_WORKERS)
    if env_workers := os.environ.get('CONVERGE_MAX_WORKERS'):
        try:
            max_workers = int(env_workers)
        except ValueError:
            raise ConfigError(f"CONVERGE_MAX_WORKERS must be an integer, got '{env_workers}'")

    try:
        return Settings(
            home=home,
            state_path=Path(state_path).expanduser() if state_path else None,
            max_workers=max_workers,
            retry_attempts=retry.get('attempts', DEFAULT_RETRY_ATTEMPTS),
            retry_delay=float(retry.get('delay', DEFAULT_RETRY_DELAY)),
            retry_max_delay=float(retry.get('max_delay', DEFAULT_RETRY_MAX_DELAY)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid settings in {path}: {e}")
