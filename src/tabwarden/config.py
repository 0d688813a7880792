"""Configuration system for tabwarden.

Environment variables (and a local ``.env`` file) are read through
pydantic-settings. The ``Config`` singleton re-reads the environment on every
property access so tests and long-running processes can change settings
without re-importing the module.
"""

import logging
import os
from functools import cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = logging.getLogger(__name__)


@cache
def is_running_in_docker() -> bool:
    """Detect if we are running in a docker container.

    Used for choosing container-safe chromium launch flags (dev shm usage, sandbox).
    """
    try:
        if Path('/.dockerenv').exists():
            return True
        cgroup_path = Path('/proc/1/cgroup')
        if cgroup_path.exists() and 'docker' in cgroup_path.read_text().lower():
            return True
    except OSError:
        pass
    return False


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


class EnvConfig(BaseSettings):
    """Environment variable configuration using pydantic-settings."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='allow',
    )

    # Logging
    TABWARDEN_LOGGING_LEVEL: str = Field(default='info')

    # Path configuration
    XDG_CONFIG_HOME: str = Field(default='~/.config')
    TABWARDEN_CONFIG_DIR: str | None = Field(default=None)

    # Runtime hints
    IN_DOCKER: bool | None = Field(default=None)

    # Browser profile overrides
    TABWARDEN_HEADLESS: bool | None = Field(default=None)
    TABWARDEN_ALLOWED_DOMAINS: str | None = Field(default=None)
    TABWARDEN_DOWNLOADS_PATH: str | None = Field(default=None)

    # Proxy env vars
    TABWARDEN_PROXY_URL: str | None = Field(default=None)
    TABWARDEN_NO_PROXY: str | None = Field(default=None)
    TABWARDEN_PROXY_USERNAME: str | None = Field(default=None)
    TABWARDEN_PROXY_PASSWORD: str | None = Field(default=None)


class Config:
    """Configuration class backed by the process environment.

    Re-reads environment variables on every access for flexibility.
    """

    _instance: 'Config | None' = None

    def __new__(cls) -> 'Config':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def LOGGING_LEVEL(self) -> str:
        return os.getenv('TABWARDEN_LOGGING_LEVEL', 'info').lower()

    @property
    def XDG_CONFIG_HOME(self) -> Path:
        return Path(os.getenv('XDG_CONFIG_HOME', '~/.config')).expanduser().resolve()

    @property
    def CONFIG_DIR(self) -> Path:
        return Path(
            os.getenv('TABWARDEN_CONFIG_DIR', str(self.XDG_CONFIG_HOME / 'tabwarden'))
        ).expanduser().resolve()

    @property
    def DEFAULT_DOWNLOADS_DIR(self) -> Path:
        return self.CONFIG_DIR / 'downloads'

    @property
    def IN_DOCKER(self) -> bool:
        return (os.getenv('IN_DOCKER') or 'false').lower()[:1] in 'ty1' or is_running_in_docker()

    def load_profile_overrides(self) -> dict[str, Any]:
        """Collect BrowserProfile keyword overrides from the environment.

        Returns:
            Dict suitable for ``BrowserProfile(**overrides)``. Only variables
            that are actually set contribute a key.
        """
        env_config = EnvConfig()
        overrides: dict[str, Any] = {}

        if env_config.TABWARDEN_HEADLESS is not None:
            overrides['headless'] = env_config.TABWARDEN_HEADLESS

        domains = _split_csv(env_config.TABWARDEN_ALLOWED_DOMAINS)
        if domains:
            overrides['allowed_domains'] = domains

        if env_config.TABWARDEN_DOWNLOADS_PATH:
            overrides['downloads_path'] = env_config.TABWARDEN_DOWNLOADS_PATH

        proxy_dict: dict[str, Any] = {}
        if env_config.TABWARDEN_PROXY_URL:
            proxy_dict['server'] = env_config.TABWARDEN_PROXY_URL
        bypass = _split_csv(env_config.TABWARDEN_NO_PROXY)
        if bypass:
            proxy_dict['bypass'] = ','.join(bypass)
        if env_config.TABWARDEN_PROXY_USERNAME:
            proxy_dict['username'] = env_config.TABWARDEN_PROXY_USERNAME
        if env_config.TABWARDEN_PROXY_PASSWORD:
            proxy_dict['password'] = env_config.TABWARDEN_PROXY_PASSWORD
        if proxy_dict:
            overrides['proxy'] = proxy_dict

        logger.debug(f'Loaded browser profile overrides from environment: {sorted(overrides)}')
        return overrides


# Create singleton instance
CONFIG = Config()
