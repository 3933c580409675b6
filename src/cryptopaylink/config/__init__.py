from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .chains import ChainSettings, TokenContract
from .database import DatabaseSettings
from .oracle import OracleSettings
from .server import ServerSettings
from .verification import VerificationSettings


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="CRYPTOPAYLINK_",
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chains: ChainSettings = Field(default_factory=ChainSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = [
    "ChainSettings",
    "DatabaseSettings",
    "OracleSettings",
    "ServerSettings",
    "Settings",
    "TokenContract",
    "VerificationSettings",
    "get_settings",
]
