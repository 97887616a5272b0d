"""Configuration management for crawl and extraction runs.

- Dataclass sections with the documented defaults
- Environment overrides (``PHASECRAWL_*``)
- Bounds enforced with ``mathcore.clamp``
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from .errors import InvalidOption
from .mathcore import clamp

ENV_PREFIX = "PHASECRAWL_"
DEFAULT_USER_AGENT = "LPS-Crawler/1.0 (+https://github.com/phasecrawl/phasecrawl)"
DOWNLOADER_USER_AGENT = "LPS-Crawler/1.0 (Media Downloader)"


@dataclass
class BrowserConfig:
    """Browser session parameters."""
    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = DEFAULT_USER_AGENT
    default_timeout: int = 30000  # ms
    respect_robots: bool = True
    rate_limit_max_requests: int = 5
    rate_limit_interval: int = 1000  # ms
    executable_path: Optional[str] = None

    def to_options(self) -> Dict[str, Any]:
        return {
            "headless": self.headless,
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "user_agent": self.user_agent,
            "default_timeout": self.default_timeout,
            "respect_robots": self.respect_robots,
            "rate_limit": {
                "max_requests": self.rate_limit_max_requests,
                "interval": self.rate_limit_interval,
            },
            "executable_path": self.executable_path,
        }


@dataclass
class CrawlConfig:
    """Discovery loop controls."""
    max_phases: int = 50
    tension_threshold: float = 0.5
    stasis_window: int = 3
    save_interval: int = 10
    output_dir: str = "./output"
    phase_delay_ms: int = 500  # per batch-size unit

    def to_options(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DownloadConfig:
    """Media download behaviour."""
    download_media: bool = False
    download_dir: str = "./downloads"
    max_concurrent: int = 5
    organize_by_type: bool = True
    organize_by_source: bool = False
    retry_attempts: int = 3
    timeout: int = 30000  # ms
    user_agent: str = DOWNLOADER_USER_AGENT

    def to_options(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SystemConfig:
    """Logging and paths."""
    log_level: str = "INFO"
    log_dir: Optional[str] = None


@dataclass
class AppConfig:
    """Aggregated configuration loaded from defaults and the environment."""
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """Load configuration from ``PHASECRAWL_*`` environment variables."""
        env = os.environ if environ is None else environ
        cfg = cls()

        def get(key: str, default: Any) -> Any:
            return env.get(ENV_PREFIX + key, default)

        def get_bool(key: str, default: bool) -> bool:
            value = str(get(key, "")).lower()
            if value in ("true", "1", "yes", "on"):
                return True
            if value in ("false", "0", "no", "off"):
                return False
            return default

        def get_int(key: str, default: int) -> int:
            try:
                return int(get(key, default))
            except (TypeError, ValueError):
                return default

        def get_float(key: str, default: float) -> float:
            try:
                return float(get(key, default))
            except (TypeError, ValueError):
                return default

        # Browser settings
        cfg.browser.headless = get_bool("HEADLESS", cfg.browser.headless)
        cfg.browser.viewport_width = get_int("VIEWPORT_WIDTH", cfg.browser.viewport_width)
        cfg.browser.viewport_height = get_int("VIEWPORT_HEIGHT", cfg.browser.viewport_height)
        cfg.browser.user_agent = get("USER_AGENT", cfg.browser.user_agent)
        cfg.browser.default_timeout = get_int("DEFAULT_TIMEOUT", cfg.browser.default_timeout)
        cfg.browser.respect_robots = get_bool("RESPECT_ROBOTS", cfg.browser.respect_robots)
        cfg.browser.rate_limit_max_requests = get_int("RATE_LIMIT", cfg.browser.rate_limit_max_requests)
        cfg.browser.rate_limit_interval = get_int("RATE_INTERVAL", cfg.browser.rate_limit_interval)
        cfg.browser.executable_path = get("EXECUTABLE_PATH", cfg.browser.executable_path)

        # Crawl settings
        cfg.crawl.max_phases = get_int("MAX_PHASES", cfg.crawl.max_phases)
        cfg.crawl.tension_threshold = get_float("TENSION_THRESHOLD", cfg.crawl.tension_threshold)
        cfg.crawl.stasis_window = get_int("STASIS_WINDOW", cfg.crawl.stasis_window)
        cfg.crawl.save_interval = get_int("SAVE_INTERVAL", cfg.crawl.save_interval)
        cfg.crawl.output_dir = get("OUTPUT_DIR", cfg.crawl.output_dir)

        # Download settings
        cfg.download.download_media = get_bool("DOWNLOAD_MEDIA", cfg.download.download_media)
        cfg.download.download_dir = get("DOWNLOAD_DIR", cfg.download.download_dir)
        cfg.download.max_concurrent = get_int("MAX_CONCURRENT_DOWNLOADS", cfg.download.max_concurrent)
        cfg.download.retry_attempts = get_int("RETRY_ATTEMPTS", cfg.download.retry_attempts)
        cfg.download.timeout = get_int("DOWNLOAD_TIMEOUT", cfg.download.timeout)

        # System settings
        cfg.system.log_level = get("LOG_LEVEL", cfg.system.log_level)
        cfg.system.log_dir = get("LOG_DIR", cfg.system.log_dir)

        cfg.validate()
        return cfg

    def validate(self) -> None:
        """Clamp bounded values; reject values that cannot be repaired."""
        if self.crawl.max_phases < 1:
            raise InvalidOption("max_phases must be at least 1")
        if self.crawl.stasis_window < 1:
            raise InvalidOption("stasis_window must be at least 1")
        if self.crawl.save_interval < 1:
            raise InvalidOption("save_interval must be at least 1")

        self.browser.rate_limit_max_requests = int(max(1, self.browser.rate_limit_max_requests))
        self.browser.rate_limit_interval = int(max(1000, self.browser.rate_limit_interval))
        self.download.max_concurrent = int(clamp(self.download.max_concurrent, 1, 20))
        self.download.retry_attempts = int(clamp(self.download.retry_attempts, 1, 10))
        self.download.timeout = int(max(5000, self.download.timeout))

    def summary(self) -> Dict[str, Any]:
        """Configuration summary for logging/debugging."""
        return {
            "browser": {
                "headless": self.browser.headless,
                "respect_robots": self.browser.respect_robots,
                "rate_limit": f"{self.browser.rate_limit_max_requests}/{self.browser.rate_limit_interval}ms",
            },
            "crawl": self.crawl.to_options(),
            "download": {
                "enabled": self.download.download_media,
                "dir": self.download.download_dir,
                "max_concurrent": self.download.max_concurrent,
            },
            "log_level": self.system.log_level,
        }


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the process-wide configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
        logging.getLogger("phasecrawl.config").debug(f"⚙️ Configuration loaded: {_config.summary()}")
    return _config


def reset_config() -> None:
    """Reset configuration (mainly for tests)."""
    global _config
    _config = None
