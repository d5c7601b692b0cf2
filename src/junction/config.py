"""Application configuration.

AppConfig is a frozen dataclass — immutable after creation, IDE-autocompletable,
no string-key dict lookups. Runtime-tunable named settings
(``etag``, ``trust proxy`` ...) live in :mod:`junction.settings` instead.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(strict_routing=True, env="production")
    """

    # Routing — applied to every Layer the app's router compiles
    case_sensitive_routing: bool = False
    strict_routing: bool = False

    # Environment name. None means: $JUNCTION_ENV, else "development"
    env: str | None = None

    # Seconds a handler may hold the continuation before failing with 503.
    # None disables the timeout.
    handler_timeout: float | None = None

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    workers: int = 1
    log_level: str = "info"
