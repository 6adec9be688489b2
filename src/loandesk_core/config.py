"""Core settings.

Configuration is driven by environment variables so the same library runs
unchanged in local development (in-memory store) and in deployment (Redis).

Environment Variables:
    LOANDESK_STORE_BACKEND: "memory" (default) or "redis"
    LOANDESK_NAMESPACE: Key prefix for persisted records (default: "loandesk")
    LOANDESK_CASE_ID_PREFIX: Prefix of human-readable case ids (default: "CASE")
    LOANDESK_CONFLICT_RETRY_ATTEMPTS: Attempts for counter-bearing writes (default: 2)
    LOANDESK_CONFLICT_RETRY_WAIT: Max jittered wait between attempts in seconds (default: 0.05)
    LOANDESK_MAX_FILE_FIELDS: File-typed custom fields allowed per case (default: 5)

Redis connection details are read by infrastructure.redis_setup from the
REDIS_* variables.
"""

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

STORE_BACKENDS = ("memory", "redis")


def _env(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using default {default!r}")
        return default


@dataclass
class CoreSettings:
    """Settings shared by every component of the case desk."""

    store_backend: str = "memory"
    namespace: str = "loandesk"
    case_id_prefix: str = "CASE"
    conflict_retry_attempts: int = 2
    conflict_retry_wait: float = 0.05
    max_file_custom_fields: int = 5

    @classmethod
    def from_env(cls, store_backend: Optional[str] = None) -> "CoreSettings":
        backend = (store_backend or os.getenv("LOANDESK_STORE_BACKEND", "memory")).lower()
        if backend not in STORE_BACKENDS:
            logger.warning(f"Invalid LOANDESK_STORE_BACKEND '{backend}', defaulting to 'memory'")
            backend = "memory"

        attempts = _env("LOANDESK_CONFLICT_RETRY_ATTEMPTS", 2, int)
        if attempts < 1:
            logger.warning(f"LOANDESK_CONFLICT_RETRY_ATTEMPTS must be >= 1, got {attempts}")
            attempts = 1

        settings = cls(
            store_backend=backend,
            namespace=os.getenv("LOANDESK_NAMESPACE", "loandesk"),
            case_id_prefix=os.getenv("LOANDESK_CASE_ID_PREFIX", "CASE"),
            conflict_retry_attempts=attempts,
            conflict_retry_wait=_env("LOANDESK_CONFLICT_RETRY_WAIT", 0.05, float),
            max_file_custom_fields=_env("LOANDESK_MAX_FILE_FIELDS", 5, int),
        )
        logger.info(
            f"CoreSettings loaded: backend={settings.store_backend}, "
            f"namespace={settings.namespace}"
        )
        return settings
