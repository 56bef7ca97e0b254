"""Runtime settings read from environment variables."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ASSOCIATION_BACKENDS = ("property", "topic", "migrating")


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""
    pass


@dataclass(frozen=True)
class Settings:
    """Operator-tunable parameters. Branch prefix and association names are never hard-coded."""

    github_token: Optional[str] = None
    api_url: str = "https://api.github.com"
    branch_prefix: str = "template-update-"
    property_name: str = "template-repo"
    topic_prefix: str = "template-"
    association_backend: str = "property"
    propagation_workers: int = 1
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the process environment.

        Args:
            environ: Mapping to read instead of os.environ (used by tests).

        Raises:
            ConfigError: If a value is present but invalid.
        """
        env = os.environ if environ is None else environ

        backend = env.get("ASSOCIATION_BACKEND", "property").strip().lower()
        if backend not in ASSOCIATION_BACKENDS:
            raise ConfigError(
                f"ASSOCIATION_BACKEND must be one of {', '.join(ASSOCIATION_BACKENDS)}, got {backend!r}"
            )

        raw_workers = env.get("PROPAGATION_WORKERS", "1")
        try:
            workers = int(raw_workers)
        except ValueError:
            raise ConfigError(f"PROPAGATION_WORKERS must be an integer, got {raw_workers!r}")
        if workers < 1:
            raise ConfigError("PROPAGATION_WORKERS must be at least 1")

        branch_prefix = env.get("UPDATE_BRANCH_PREFIX", "template-update-")
        property_name = env.get("CUSTOM_PROPERTY_NAME", "template-repo")
        if not branch_prefix or not property_name:
            raise ConfigError("UPDATE_BRANCH_PREFIX and CUSTOM_PROPERTY_NAME must not be empty")

        token = env.get("GITHUB_TOKEN") or None
        if token is None:
            logger.warning("GITHUB_TOKEN not set. Requests will be unauthenticated.")

        return cls(
            github_token=token,
            api_url=env.get("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
            branch_prefix=branch_prefix,
            property_name=property_name,
            topic_prefix=env.get("TEMPLATE_TOPIC_PREFIX", "template-").lower(),
            association_backend=backend,
            propagation_workers=workers,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
