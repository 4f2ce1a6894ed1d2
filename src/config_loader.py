"""
Configuration loader for the company collector
Reads and validates settings.yaml
"""

import re
import yaml
import os
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
import logging

from dotenv import load_dotenv

from site_adapters import ADAPTERS

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)


class ConfigValidationError(ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and float(value) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and float(value) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_required(value: Any, field: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigValidationError(f"Invalid config: '{field}' is required")


def _validate_pattern(value: Any, field: str) -> None:
    if not value:
        return
    try:
        re.compile(value)
    except (re.error, TypeError) as e:
        raise ConfigValidationError(f"Invalid config: '{field}' is not a valid regex: {e}") from e


def _env_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigValidationError(f"Invalid env: {name} must be an integer, got {raw!r}") from e


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: str = "config/settings.yaml"):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load config from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"✓ Config loaded from {self.config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            raise

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        site = self.get_site()
        if site not in ADAPTERS:
            raise ConfigValidationError(
                f"Invalid config: 'site' must be one of {sorted(ADAPTERS)}, got {site!r}"
            )

        # Search start point is mandatory
        _validate_required(self.get('search.url'), 'search.url')
        start_page = self.get('search.start_page')
        _validate_required(start_page, 'search.start_page')
        try:
            start_page = int(start_page)
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(
                f"Invalid config: 'search.start_page' must be an integer, got {start_page!r}"
            ) from e
        if start_page < 1:
            raise ConfigValidationError(
                f"Invalid config: 'search.start_page' must be >= 1, got {start_page}"
            )

        _validate_non_negative(self.get('search.max_companies'), 'search.max_companies')
        _validate_non_negative(_env_int('MAX_COMPANIES'), 'MAX_COMPANIES')

        # Browser timeouts (must be positive)
        _validate_non_negative(self.get('browser.delay_ms'), 'browser.delay_ms')
        _validate_positive(self.get('browser.page_timeout'), 'browser.page_timeout')
        _validate_positive(self.get('browser.navigation_timeout'), 'browser.navigation_timeout')
        _validate_positive(self.get('browser.launch_timeout'), 'browser.launch_timeout')

        _validate_positive(self.get('relay.timeout'), 'relay.timeout')

        _validate_pattern(self.get('extraction.phone_pattern'), 'extraction.phone_pattern')
        _validate_pattern(self.get('extraction.email_pattern'), 'extraction.email_pattern')

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'search.url')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    # === Search Config ===

    def get_site(self) -> str:
        """Get the job site to crawl (mynavi | rikunabi)"""
        return str(self.get('site', 'mynavi') or 'mynavi').strip().lower()

    def get_search_url(self) -> str:
        """Get the first search results URL"""
        return str(self.get('search.url', '')).strip()

    def get_start_page(self) -> int:
        """Get the first search page that is processed (1-based)"""
        return int(self.get('search.start_page', 1))

    def get_max_companies(self) -> Optional[int]:
        """Get the new-company cap for this run; None means unlimited"""
        value = _env_int('MAX_COMPANIES')
        if value is None:
            value = int(self.get('search.max_companies', 0) or 0)
        return value if value > 0 else None

    # === Output Config ===

    def get_ledger_path(self, site: Optional[str] = None) -> Path:
        """Get the CSV ledger path for a site"""
        site = site or self.get_site()
        template = self.get('output.ledger_path', '') or f'output/{site}_companies.csv'
        return Path(template.replace('{site}', site))

    def get_metrics_file(self) -> str:
        """Get run metrics JSON template (empty disables the dump)"""
        return self.get('output.metrics_file', '') or ''

    # === Spreadsheet Config ===

    def is_sheet_sync_enabled(self) -> bool:
        """Check if the ledger should be seeded from the shared spreadsheet"""
        return bool(self.get_spreadsheet_url())

    def get_spreadsheet_url(self) -> str:
        return (self.get('spreadsheet.url', '') or '').strip()

    def get_session_file(self) -> Path:
        """Get the saved spreadsheet session (storage state JSON) path"""
        return Path(self.get('spreadsheet.session_file', 'data/sheet_session.json'))

    def get_sheet_user_data_dir(self) -> Path:
        """Get the Chrome profile used for interactive spreadsheet sign-in"""
        return Path(self.get('spreadsheet.user_data_dir', 'data/sheet_chrome_profile'))

    def get_remote_debug_host(self) -> str:
        host = (os.getenv('SHEET_REMOTE_DEBUG_HOST') or '').strip()
        return host or str(self.get('spreadsheet.remote_debug_host', '127.0.0.1'))

    def get_remote_debug_port(self) -> int:
        port = _env_int('SHEET_REMOTE_DEBUG_PORT')
        if port is None:
            port = int(self.get('spreadsheet.remote_debug_port', 9223))
        return port

    # === Relay Config ===

    def get_relay_url(self) -> str:
        """Get the remote relay endpoint (empty disables relaying)"""
        return (self.get('relay.url', '') or '').strip()

    def get_relay_token(self) -> str:
        """Read relay token from env first, then config"""
        return (os.getenv('RELAY_TOKEN') or self.get('relay.token', '') or '').strip()

    def get_relay_timeout(self) -> float:
        """Get relay request timeout in seconds"""
        return float(self.get('relay.timeout', 10))

    # === Browser Config ===

    def get_user_data_dir(self, site: Optional[str] = None) -> Path:
        """Get the persistent browser profile for the crawl"""
        site = site or self.get_site()
        template = self.get('browser.user_data_dir', '') or f'data/{site}_profile'
        return Path(template.replace('{site}', site))

    def is_headless(self) -> bool:
        """Check if browser should run in headless mode"""
        return self.get('browser.headless', False)

    def get_delay_ms(self) -> Optional[int]:
        """Get delay before each navigation; None keeps the site default"""
        value = self.get('browser.delay_ms')
        return None if value is None else int(value)

    def get_page_timeout(self) -> int:
        """Get page load timeout in milliseconds"""
        return self.get('browser.page_timeout', 30) * 1000

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return self.get('browser.navigation_timeout', 45) * 1000

    def get_launch_timeout(self) -> int:
        """Get browser launch timeout in milliseconds"""
        return self.get('browser.launch_timeout', 60) * 1000

    def get_browser_channel(self) -> str:
        """Get Playwright browser channel override"""
        return self.get('browser.channel', '')

    def get_browser_executable_path(self) -> str:
        """Get browser executable path override"""
        return self.get('browser.executable_path', '')

    def use_stealth(self) -> bool:
        """Check if Playwright stealth should be enabled"""
        return self.get('browser.use_stealth', False)

    def is_login_wait_enabled(self) -> bool:
        """Check if the run pauses on the site's login page before crawling"""
        return bool(self.get('browser.wait_for_login', True))

    # === Extraction Config ===

    def get_phone_pattern(self) -> Optional[str]:
        return self.get('extraction.phone_pattern') or None

    def get_email_pattern(self) -> Optional[str]:
        return self.get('extraction.email_pattern') or None

    # === Logging Config ===

    def get_log_level(self) -> str:
        """Get logging level"""
        return self.get('logging.level', 'INFO')

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/collector_{timestamp}.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = template.replace('{timestamp}', timestamp)
        return Path(filename)

    def __repr__(self) -> str:
        return f"<Config: site={self.get_site()}, start_page={self.get_start_page()}>"


# Convenience function
def load_config(config_path: str = "config/settings.yaml") -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path)
