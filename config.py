"""
Environment-sourced configuration for the Productboard emoji field sync service.

Values are read from the process environment; a local `.env` file is loaded
first when present so the service can be run the same way in development.
"""

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

DEFAULT_PORT = 3000
DEFAULT_PB_BASE_URL = 'https://api.productboard.com'
DEFAULT_PB_API_VERSION = '1'

REQUIRED_VARS = ('PB_API_TOKEN', 'CF_TRIGGER_ID', 'CF_TARGET_ID')

# Levels understood by both logging and uvicorn
LOG_LEVELS = ('CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG')


class ConfigurationError(Exception):
    """Raised when required environment variables are missing or invalid"""


class RetryPolicy(BaseModel):
    """Transport-level retry for outbound Productboard calls"""
    model_config = ConfigDict(frozen=True)

    total: int = 3
    backoff_factor: float = 0.5
    retry_on_rate_limit: bool = False

    def status_forcelist(self) -> List[int]:
        statuses = list(range(500, 600))
        if self.retry_on_rate_limit:
            statuses.append(429)
        return statuses


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int = DEFAULT_PORT
    webhook_secret: Optional[str] = None
    pb_api_token: str
    cf_trigger_id: str
    cf_target_id: str
    pb_base_url: str = DEFAULT_PB_BASE_URL
    pb_api_version: str = DEFAULT_PB_API_VERSION
    timeout_seconds: float = 30.0
    retry: RetryPolicy = RetryPolicy()
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'Settings':
        """Build settings from the environment, failing on missing required values"""
        if environ is None:
            load_dotenv()
            environ = dict(os.environ)

        missing = [name for name in REQUIRED_VARS if not environ.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required env vars: {', '.join(missing)}"
            )

        try:
            retry = RetryPolicy(
                total=int(environ.get('PB_RETRY_TOTAL') or 3),
                backoff_factor=float(environ.get('PB_RETRY_BACKOFF') or 0.5),
                retry_on_rate_limit=_parse_bool(environ.get('PB_RETRY_ON_RATE_LIMIT')),
            )
            return cls(
                port=int(environ.get('PORT') or DEFAULT_PORT),
                webhook_secret=environ.get('WEBHOOK_SECRET') or None,
                pb_api_token=environ['PB_API_TOKEN'],
                cf_trigger_id=environ['CF_TRIGGER_ID'],
                cf_target_id=environ['CF_TARGET_ID'],
                pb_base_url=environ.get('PB_BASE_URL') or DEFAULT_PB_BASE_URL,
                pb_api_version=environ.get('PB_API_VERSION') or DEFAULT_PB_API_VERSION,
                timeout_seconds=float(environ.get('PB_TIMEOUT_SECONDS') or 30),
                retry=retry,
                log_level=_parse_log_level(environ.get('LOG_LEVEL')),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e


def _parse_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_log_level(value: Optional[str]) -> str:
    level = (value or 'INFO').strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {value}")
    return level
