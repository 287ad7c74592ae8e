from datetime import timedelta

from pydantic import BaseModel, Field, model_validator

from replayguard.core.config import Settings


class GuardConfig(BaseModel):
    """
    Immutable per-guard settings.
    Shared read-only across concurrent validations.
    """

    nonce_header: str = Field(default="X-Request-Id", min_length=1)
    timestamp_header: str = Field(default="X-Timestamp", min_length=1)
    allowed_clock_skew: timedelta = timedelta(minutes=5)
    nonce_ttl: timedelta = timedelta(minutes=10)
    reject_if_missing_headers: bool = True
    fail_closed: bool = True

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def check_windows(self):
        if self.allowed_clock_skew < timedelta(0):
            raise ValueError("allowed_clock_skew must not be negative")

        if self.nonce_ttl <= timedelta(0):
            raise ValueError("nonce_ttl must be positive")

        # Fingerprints must outlive the skew window.
        if self.nonce_ttl < self.allowed_clock_skew:
            raise ValueError("nonce_ttl must be >= allowed_clock_skew")

        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> "GuardConfig":
        return cls(
            nonce_header=settings.NONCE_HEADER,
            timestamp_header=settings.TIMESTAMP_HEADER,
            allowed_clock_skew=timedelta(seconds=settings.ALLOWED_CLOCK_SKEW_SECONDS),
            nonce_ttl=timedelta(seconds=settings.NONCE_TTL_SECONDS),
            reject_if_missing_headers=settings.REJECT_IF_MISSING_HEADERS,
            fail_closed=settings.FAIL_CLOSED_ON_STORE_ERROR,
        )
