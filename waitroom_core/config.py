"""
Gatekeeper Configuration
========================
Settings supplied by the host application, with environment loading.
"""

import os
import re
from dataclasses import dataclass
from typing import Optional, Pattern
import structlog

from .exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

DEFAULT_API_ENDPOINT = "https://api.crowdhandler.com"
DEFAULT_WR_ENDPOINT = "https://wait.crowdhandler.com"
DEFAULT_API_REQUEST_TIMEOUT = 3.0
DEFAULT_ROOM_CACHE_TTL = 60
DEFAULT_COOKIE_NAME = "crowdhandler"


def get_config_value(
    name: str,
    required: bool = False,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Look up a setting from the environment.

    Args:
        name: Environment variable name
        required: Raise if the setting is missing or empty
        default: Value returned when the setting is missing and not required

    Returns:
        The setting value, or default

    Raises:
        ConfigurationError: If required and missing
    """
    value = os.environ.get(name)
    if value is None or value == "":
        if required:
            raise ConfigurationError("Missing required setting", setting=name)
        return default
    return value


def _number(name: str, default, cast):
    raw = get_config_value(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("config_value_unparsable", setting=name, fallback=default)
        return default


@dataclass
class GateKeeperConfig:
    """Configuration for the gatekeeper and its API client."""
    public_key: str
    private_key: str
    api_endpoint: str = DEFAULT_API_ENDPOINT
    waiting_room_endpoint: str = DEFAULT_WR_ENDPOINT
    exclusions: Optional[str] = None
    api_request_timeout: float = DEFAULT_API_REQUEST_TIMEOUT
    room_cache_ttl: int = DEFAULT_ROOM_CACHE_TTL
    safety_net_slug: str = ""
    cookie_name: str = DEFAULT_COOKIE_NAME
    integration: str = "python"

    def __post_init__(self):
        if not self.public_key:
            raise ConfigurationError("Missing required setting", setting="public_key")
        if not self.private_key:
            raise ConfigurationError("Missing required setting", setting="private_key")
        self.api_endpoint = self.api_endpoint.rstrip("/")
        self.waiting_room_endpoint = self.waiting_room_endpoint.rstrip("/")

    def compile_exclusions(self) -> Optional[Pattern]:
        """
        Compile the exclusion pattern.

        Raises:
            ConfigurationError: If the pattern is not a valid regex
        """
        if not self.exclusions:
            return None
        try:
            return re.compile(self.exclusions)
        except re.error as e:
            raise ConfigurationError(f"Invalid exclusion pattern: {e}", setting="exclusions") from e

    @classmethod
    def from_env(cls, **overrides) -> "GateKeeperConfig":
        """Build a config from CROWDHANDLER_* environment variables."""
        values = dict(
            public_key=get_config_value("CROWDHANDLER_PUBLIC_KEY", required="public_key" not in overrides),
            private_key=get_config_value("CROWDHANDLER_PRIVATE_KEY", required="private_key" not in overrides),
            api_endpoint=get_config_value("CROWDHANDLER_API_ENDPOINT", default=DEFAULT_API_ENDPOINT),
            waiting_room_endpoint=get_config_value("CROWDHANDLER_WR_ENDPOINT", default=DEFAULT_WR_ENDPOINT),
            exclusions=get_config_value("CROWDHANDLER_EXCLUSIONS"),
            api_request_timeout=_number(
                "CROWDHANDLER_API_REQUEST_TIMEOUT", DEFAULT_API_REQUEST_TIMEOUT, float
            ),
            room_cache_ttl=_number("CROWDHANDLER_ROOM_CACHE_TIME", DEFAULT_ROOM_CACHE_TTL, int),
            safety_net_slug=get_config_value("CROWDHANDLER_SAFETYNET_SLUG", default=""),
            cookie_name=get_config_value("CROWDHANDLER_COOKIE_NAME", default=DEFAULT_COOKIE_NAME),
        )
        values.update(overrides)
        return cls(**values)
