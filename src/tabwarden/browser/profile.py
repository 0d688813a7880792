"""Browser profile configuration."""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tabwarden.config import CONFIG


class ProxySettings(BaseModel):
    """Typed proxy settings for browser traffic."""

    server: str | None = Field(default=None, description='Proxy URL, e.g. http://host:8080 or socks5://host:1080')
    bypass: str | None = Field(default=None, description='Comma-separated hosts to bypass, e.g. localhost,127.0.0.1,*.internal')
    username: str | None = Field(default=None, description='Proxy auth username')
    password: str | None = Field(default=None, description='Proxy auth password')

    def to_playwright(self) -> dict[str, str]:
        """Return the proxy dict accepted by Playwright's launch/new_context."""
        return {key: value for key, value in self.model_dump().items() if value is not None}


class ViewportSize(BaseModel):
    """Viewport size configuration."""

    width: int = Field(ge=0)
    height: int = Field(ge=0)

    def __getitem__(self, key: str) -> int:
        return dict(self)[key]


class BrowserProfile(BaseModel):
    """Browser profile configuration.

    Holds every setting the session and its watchdogs consume: launch options,
    context options, the navigation allowlist, download and dialog handling,
    and monitoring intervals.
    """

    model_config = ConfigDict(
        extra='ignore',
        validate_assignment=True,
        revalidate_instances='always',
        from_attributes=True,
        validate_by_name=True,
        validate_by_alias=True,
    )

    # Browser launch settings
    headless: bool = Field(default=True, description='Whether to run browser in headless mode')
    browser_type: Literal['chromium', 'firefox', 'webkit'] = Field(default='chromium')
    executable_path: str | Path | None = Field(default=None, description='Path to browser executable')
    args: list[str] = Field(default_factory=list, description='Additional CLI args to pass to browser')
    launch_timeout_ms: int = Field(default=30_000, ge=0)

    # Proxy settings
    proxy: ProxySettings | None = Field(default=None, description='Proxy settings')

    # Context settings
    viewport: ViewportSize = Field(default_factory=lambda: ViewportSize(width=1280, height=720))
    device_scale_factor: float = Field(default=1.0, gt=0)
    user_agent: str | None = Field(default=None, description='Custom user agent string')

    # Security settings
    allowed_domains: list[str] = Field(
        default_factory=list,
        description='Allowed navigation patterns, e.g. ["*.google.com", "https://wiki.org", "brave://*"]. Empty allows everything.',
    )

    # Downloads
    downloads_path: str | Path | None = Field(
        default=None,
        description='Directory to save downloads to',
        validation_alias='downloads_dir',
    )
    auto_accept_downloads: bool = Field(default=True)
    max_download_timeout_ms: int = Field(default=30_000, ge=0)

    # Dialogs
    auto_accept_dialogs: bool = Field(default=True)
    dialog_delay_ms: int = Field(default=250, ge=0)

    # Timeouts
    navigation_timeout_ms: int = Field(default=30_000, ge=0)
    action_timeout_ms: int = Field(default=10_000, ge=0)

    # Permissions
    permissions: list[str] = Field(
        default_factory=lambda: ['clipboard-read', 'clipboard-write', 'notifications'],
        description='Permissions granted to the browser context on connect.',
    )

    # Storage state
    storage_state: str | Path | None = Field(
        default=None, description='Storage state file for cookie/localStorage persistence'
    )

    # Blank tab handling
    show_blank_screensaver: bool = Field(default=False, description='Draw an idle indicator on about:blank tabs')

    # Crash / health monitoring
    network_timeout_seconds: float = Field(default=10.0, gt=0)
    health_check_interval_seconds: float = Field(default=5.0, gt=0)

    @model_validator(mode='before')
    @classmethod
    def _viewport_shortcuts(cls, data: Any) -> Any:
        """Accept viewport_width/viewport_height as a shortcut for viewport."""
        if isinstance(data, dict) and ('viewport_width' in data or 'viewport_height' in data):
            data = dict(data)
            width = data.pop('viewport_width', 1280)
            height = data.pop('viewport_height', 720)
            data.setdefault('viewport', {'width': width, 'height': height})
        return data

    @classmethod
    def from_env(cls, **kwargs: Any) -> 'BrowserProfile':
        """Build a profile from TABWARDEN_* environment overrides; explicit kwargs win."""
        return cls(**{**CONFIG.load_profile_overrides(), **kwargs})

    def get_launch_args(self) -> list[str]:
        """Get the list of extra browser CLI args for this profile.

        Returns:
            List of browser CLI arguments
        """
        args: list[str] = []

        if self.browser_type == 'chromium' and CONFIG.IN_DOCKER:
            args.extend(['--no-sandbox', '--disable-dev-shm-usage'])

        if self.user_agent and self.browser_type == 'chromium':
            args.append(f'--user-agent={self.user_agent}')

        args.extend(self.args)
        return args

    def get_launch_options(self) -> dict[str, Any]:
        """Keyword arguments for ``BrowserType.launch``."""
        options: dict[str, Any] = {
            'headless': self.headless,
            'args': self.get_launch_args(),
            'timeout': self.launch_timeout_ms,
        }
        if self.executable_path:
            options['executable_path'] = str(self.executable_path)
        if self.downloads_path:
            options['downloads_path'] = str(Path(self.downloads_path).expanduser())
        if self.proxy and self.proxy.server:
            options['proxy'] = self.proxy.to_playwright()
        return options

    def get_context_options(self) -> dict[str, Any]:
        """Keyword arguments for ``Browser.new_context``."""
        options: dict[str, Any] = {
            'viewport': {'width': self.viewport.width, 'height': self.viewport.height},
            'device_scale_factor': self.device_scale_factor,
            'accept_downloads': self.auto_accept_downloads,
        }
        if self.user_agent:
            options['user_agent'] = self.user_agent
        if self.proxy and self.proxy.server:
            options['proxy'] = self.proxy.to_playwright()
        return options
