"""
Broker client configuration, from keyword arguments or the environment.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .logging import LogLevel

ENV_URL = "BROKERLINK_URL"
ENV_RETRY_DELAY = "BROKERLINK_RETRY_DELAY"
ENV_RECONNECT_DELAY = "BROKERLINK_RECONNECT_DELAY"
ENV_LOG_LEVEL = "BROKERLINK_LOG_LEVEL"


@dataclass
class BrokerConfig:
    """
    Settings for one ServiceBroker.

    - url: broker address; the scheme picks the transport (ws, wss, tcp, ipc)
    - retry_delay: seconds before retrying a failed connection attempt
    - reconnect_delay: seconds before reconnecting after a lost connection
    - log_level: minimum level passed to the log handler
    - enable_metrics: collect Metrics for this broker
    """

    url: str
    retry_delay: float = 15.0
    reconnect_delay: float = 0.0
    log_level: LogLevel = LogLevel.INFO
    enable_metrics: bool = True

    def __post_init__(self):
        if not self.url:
            raise ValueError("Broker URL must not be empty")
        if self.retry_delay < 0 or self.reconnect_delay < 0:
            raise ValueError("Retry delays must not be negative")

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        url: Optional[str] = None,
    ) -> "BrokerConfig":
        """
        Build a config from BROKERLINK_* variables.

        Args:
            environ: Mapping to read instead of os.environ
            url: Fallback URL when BROKERLINK_URL is unset
        """
        env = os.environ if environ is None else environ

        resolved_url = env.get(ENV_URL) or url
        if not resolved_url:
            raise ValueError(f"{ENV_URL} is not set")

        config = cls(url=resolved_url)
        try:
            if env.get(ENV_RETRY_DELAY):
                config.retry_delay = float(env[ENV_RETRY_DELAY])
            if env.get(ENV_RECONNECT_DELAY):
                config.reconnect_delay = float(env[ENV_RECONNECT_DELAY])
        except ValueError as e:
            raise ValueError(f"Invalid retry delay in environment: {e}") from e

        level = env.get(ENV_LOG_LEVEL)
        if level:
            try:
                config.log_level = LogLevel(level.lower())
            except ValueError:
                raise ValueError(
                    f"{ENV_LOG_LEVEL} must be one of "
                    f"{', '.join(lvl.value for lvl in LogLevel)}, got {level!r}"
                )

        config.__post_init__()
        return config
