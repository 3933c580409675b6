from pydantic import AliasChoices, BaseModel, Field, HttpUrl, model_validator


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(8000, validation_alias=AliasChoices("port", "HTTP_PORT"))
    log_level: str = "info"

    # Telemetry
    telemetry_enabled: bool = False
    otel_service_name: str = Field(
        "cryptopaylink",
        validation_alias=AliasChoices("otel_service_name", "OTEL_SERVICE_NAME"),
    )
    otel_exporter_otlp_endpoint: HttpUrl = Field(
        "http://jaeger:4317",  # type: ignore
        validation_alias=AliasChoices(
            "otel_exporter_otlp_endpoint", "OTEL_EXPORTER_OTLP_ENDPOINT"
        ),
    )

    @model_validator(mode="after")
    def validate_otel_config(self) -> "ServerSettings":
        """Validate OpenTelemetry configuration."""
        if self.telemetry_enabled and not self.otel_service_name.strip():
            raise ValueError("OTEL_SERVICE_NAME cannot be empty")
        return self
