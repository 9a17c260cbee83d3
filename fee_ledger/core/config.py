from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Ledger read-modify-write units retried from a fresh read on optimistic-lock conflict
    ledger_conflict_retries: int = Field(3, alias="LEDGER_CONFLICT_RETRIES", ge=1)

    # Receipt numbers: <prefix><YY><MM><sequence zero-padded to width>
    receipt_prefix: str = Field("RCP", alias="RECEIPT_PREFIX")
    receipt_sequence_width: int = Field(4, alias="RECEIPT_SEQUENCE_WIDTH", ge=1)
    receipt_max_attempts: int = Field(50, alias="RECEIPT_MAX_ATTEMPTS", ge=1)

    default_page_size: int = Field(20, alias="DEFAULT_PAGE_SIZE", ge=1)
    max_page_size: int = Field(100, alias="MAX_PAGE_SIZE", ge=1)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
