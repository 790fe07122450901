"""
Runtime configuration for the backbone.

Settings are plain pydantic models so they validate on construction. Each
service reads them from its environment at startup; nothing here is read on
import.

Environment variables:
    RABBITMQ_HOST, RABBITMQ_PORT, RABBITMQ_USER, RABBITMQ_PASSWORD, RABBITMQ_VHOST
    REDIS_HOST, REDIS_PORT, REDIS_DB, REDIS_SOCKET_TIMEOUT, REDIS_CONNECT_TIMEOUT
        (the cache section exists only if REDIS_HOST is set)
    DEDUP_TTL_SECONDS, LOG_LEVEL
"""

import logging
import os
from typing import Mapping, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field

LOG_FORMAT = "%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

# Dedup records live for 24 hours
DEFAULT_DEDUP_TTL_SECONDS = 24 * 60 * 60

# Seconds to wait for the cache before a dedup check fails open
DEFAULT_SOCKET_TIMEOUT = 3.0
DEFAULT_CONNECT_TIMEOUT = 5.0


class BrokerSettings(BaseModel):
    """Connection parameters for the AMQP broker."""
    host: str = "localhost"
    port: int = Field(default=5672, gt=0)
    user: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"

    @property
    def url(self) -> str:
        vhost = quote(self.virtual_host, safe="") if self.virtual_host != "/" else ""
        return (
            f"amqp://{quote(self.user, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{vhost}"
        )


class CacheSettings(BaseModel):
    """Connection parameters for the shared dedup cache."""
    host: str = "localhost"
    port: int = Field(default=6379, gt=0)
    db: int = Field(default=0, ge=0)
    socket_timeout: float = Field(default=DEFAULT_SOCKET_TIMEOUT, gt=0)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)

    @property
    def url(self) -> str:
        return f"redis://{self.host}:{self.port}/{self.db}"


class Settings(BaseModel):
    """
    Everything a service needs to join the backbone.

    Attributes:
        service_name: Name used in logs and to pick the producer exchange
        broker: AMQP connection settings
        cache: Dedup cache settings, or None to run without deduplication
        dedup_ttl_seconds: Retention window for dedup records
        log_level: Root log level name
    """
    service_name: str
    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    cache: Optional[CacheSettings] = None
    dedup_ttl_seconds: int = Field(default=DEFAULT_DEDUP_TTL_SECONDS, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        service_name: str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """
        Build settings from environment variables.

        Unset or empty variables fall back to the model defaults. Malformed
        values raise pydantic.ValidationError so a misconfigured service
        fails before it touches the broker.
        """
        env = os.environ if environ is None else environ

        def pick(mapping: dict[str, str]) -> dict[str, str]:
            return {field: env[var] for var, field in mapping.items() if env.get(var)}

        broker = BrokerSettings(**pick({
            "RABBITMQ_HOST": "host",
            "RABBITMQ_PORT": "port",
            "RABBITMQ_USER": "user",
            "RABBITMQ_PASSWORD": "password",
            "RABBITMQ_VHOST": "virtual_host",
        }))

        cache = None
        if env.get("REDIS_HOST"):
            cache = CacheSettings(**pick({
                "REDIS_HOST": "host",
                "REDIS_PORT": "port",
                "REDIS_DB": "db",
                "REDIS_SOCKET_TIMEOUT": "socket_timeout",
                "REDIS_CONNECT_TIMEOUT": "connect_timeout",
            }))

        return cls(
            service_name=service_name,
            broker=broker,
            cache=cache,
            **pick({
                "DEDUP_TTL_SECONDS": "dedup_ttl_seconds",
                "LOG_LEVEL": "log_level",
            }),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install the console log format used by every service."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
