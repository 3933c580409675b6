from pydantic import BaseModel, HttpUrl, model_validator


class VerificationSettings(BaseModel):
    """Timing for on-chain verification and the reconciliation lifecycle."""

    # Chain history window searched for a matching transfer
    time_window_seconds: int = 1800
    # Age after which an unverified pending intent is marked failed
    payment_timeout_seconds: int = 1800

    poll_interval_seconds: float = 10.0
    poll_timeout_seconds: float = 1800.0

    # Invoice/email hand-off; notifications are only logged when unset
    confirmation_url: HttpUrl | None = None
    confirmation_timeout_seconds: float = 10.0

    @model_validator(mode="after")
    def validate_timing(self) -> "VerificationSettings":
        if self.time_window_seconds <= 0:
            raise ValueError(
                "CRYPTOPAYLINK_VERIFICATION__TIME_WINDOW_SECONDS must be positive"
            )
        if self.payment_timeout_seconds <= 0:
            raise ValueError(
                "CRYPTOPAYLINK_VERIFICATION__PAYMENT_TIMEOUT_SECONDS must be positive"
            )
        if self.poll_interval_seconds <= 0 or self.poll_timeout_seconds <= 0:
            raise ValueError("Polling interval and timeout must be positive")
        return self

    @property
    def time_window_ms(self) -> int:
        return self.time_window_seconds * 1000
