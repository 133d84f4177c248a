"""Configuration models for Arke Edit."""

from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator
from typing import Callable, Optional


class RetryConfig(BaseModel):
    """Exponential backoff policy for status polling.

    Only status reads are retried; writes never are.
    """

    max_retries: int = Field(
        default=5,
        ge=0,
        description="Retries after the first attempt before giving up"
    )

    initial_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Delay in seconds before the first retry"
    )

    first_poll_initial_delay: float = Field(
        default=3.0,
        ge=0.0,
        description="Initial delay for the first poll after triggering a reprocess (orchestrator warmup)"
    )

    max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for any single backoff delay in seconds"
    )

    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Factor applied to the delay after each retry"
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "RetryConfig":
        """Cap must not be below the starting delays."""
        if self.max_delay < max(self.initial_delay, self.first_poll_initial_delay):
            raise ValueError(
                "max_delay must be greater than or equal to initial_delay "
                "and first_poll_initial_delay"
            )
        return self

    def initial_delay_for(self, is_first_poll: bool) -> float:
        """Starting delay for a poll, longer on the first poll."""
        return self.first_poll_initial_delay if is_first_poll else self.initial_delay

    model_config = {"frozen": True}


class ClientConfig(BaseModel):
    """Configuration for the Arke service endpoints."""

    ipfs_wrapper_url: HttpUrl = Field(
        ...,
        description="Base URL of the entity store (IPFS wrapper)"
    )

    reprocess_api_url: HttpUrl = Field(
        ...,
        description="Base URL of the reprocess API"
    )

    auth_token: Optional[str] = Field(
        default=None,
        description="Optional bearer token sent with every request"
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Per-request timeout in seconds"
    )

    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Backoff policy for status polling"
    )

    status_url_transform: Optional[Callable[[str], str]] = Field(
        default=None,
        exclude=True,
        description="Rewrites status URLs before fetching (e.g. to route through a proxy)"
    )

    @field_validator("auth_token")
    @classmethod
    def validate_auth_token(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty token as no token."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def ipfs_base(self) -> str:
        """Entity store base URL without trailing slash."""
        return str(self.ipfs_wrapper_url).rstrip("/")

    @property
    def reprocess_base(self) -> str:
        """Reprocess API base URL without trailing slash."""
        return str(self.reprocess_api_url).rstrip("/")

    model_config = {"frozen": True}
