from pydantic import AliasChoices, BaseModel, Field


class DatabaseSettings(BaseModel):
    url: str = Field(
        "sqlite+aiosqlite:///./cryptopaylink.db",
        validation_alias=AliasChoices("url", "DATABASE_URL"),
    )
    echo: bool = False
