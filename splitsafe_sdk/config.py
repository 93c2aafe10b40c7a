"""
Configuration for the SplitSafe SDK.

Every setting has a default; :meth:`SplitSafeConfig.from_env` overrides them
from ``SPLITSAFE_*`` environment variables.
"""
import logging
import os
from typing import Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "SPLITSAFE_"


class SplitSafeConfig(BaseModel):
    """Tunables for transports, the orchestrator and display helpers"""
    model_config = ConfigDict(frozen=True)

    ledger_url: Optional[str] = None
    api_key: Optional[str] = None
    notification_url: Optional[str] = None

    # Re-fetch after a mutation
    retry_attempts: int = Field(3, ge=1)
    retry_delay_ms: int = Field(1000, ge=0)
    # Overall budget for one action, in seconds
    action_timeout: float = Field(30.0, gt=0)

    request_timeout: int = Field(30, gt=0)
    http_retry_count: int = Field(3, ge=0)
    page_size: int = Field(100, gt=0)
    display_unit: int = Field(10 ** 8, gt=0)

    # Transaction id prefixes whose recipient-less records count as sender-owned
    legacy_sender_prefixes: Tuple[str, ...] = ()

    @field_validator("legacy_sender_prefixes", mode="before")
    @classmethod
    def _split_prefixes(cls, value):
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "SplitSafeConfig":
        """
        Build a configuration from ``SPLITSAFE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            overrides: Explicit values that win over the environment

        Returns:
            Validated configuration

        Raises:
            pydantic.ValidationError: If a variable has an invalid value
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = f"{ENV_PREFIX}{name.upper()}"
            if key in environ:
                values[name] = environ[key]
        values.update(overrides)
        if values:
            logger.debug(f"Configuration overrides: {sorted(k for k in values if k != 'api_key')}")
        return cls(**values)
