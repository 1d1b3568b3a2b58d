"""
Application configuration definition.

Loads settings from ONION_-prefixed environment variables (and an
optional .env file) into a Pydantic model. Values passed to the
constructor win over the environment.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """
    Shared, read-only configuration for one application.
    """

    ENV: str = Field(default="development", description="Deployment environment name")
    KEYS: Optional[List[str]] = Field(default=None, description="Cookie signing keys")

    # Proxy handling
    PROXY: bool = Field(default=False, description="Trust X-Forwarded-* headers")
    SUBDOMAIN_OFFSET: int = Field(default=2, ge=0, description="Hostname parts ignored by subdomains")
    PROXY_IP_HEADER: str = Field(
        default="X-Forwarded-For", description="Header listing client and proxy addresses"
    )
    MAX_IPS_COUNT: int = Field(
        default=0, ge=0, description="Max addresses read from the proxy header (0 = unlimited)"
    )

    # Error reporting
    SILENT: bool = Field(default=False, description="Suppress error logging from the default hook")
    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_CONFIG_PATH: str = Field(
        default="logging.yml", description="YAML logging config loaded by listen()"
    )

    model_config = SettingsConfigDict(
        env_prefix="ONION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


OPTION_NAMES = {
    "env": "ENV",
    "keys": "KEYS",
    "proxy": "PROXY",
    "subdomain_offset": "SUBDOMAIN_OFFSET",
    "proxy_ip_header": "PROXY_IP_HEADER",
    "max_ips_count": "MAX_IPS_COUNT",
    "silent": "SILENT",
    "log_level": "LOG_LEVEL",
    "log_config_path": "LOG_CONFIG_PATH",
}


def load_config(**options) -> AppConfig:
    """Build an AppConfig from lower-case application options."""
    unknown = set(options) - set(OPTION_NAMES)
    if unknown:
        raise TypeError(f"unknown application option(s): {', '.join(sorted(unknown))}")
    return AppConfig(**{OPTION_NAMES[name]: value for name, value in options.items()})
