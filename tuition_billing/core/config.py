from pydantic import Field
from pydantic_settings import BaseSettings

from tuition_billing.core.enums import ProrationMode


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    # Day of the target month a charge falls due; clamped to the month's last day.
    payment_due_day: int = Field(5, alias="PAYMENT_DUE_DAY", ge=1, le=31)
    proration_mode: ProrationMode = Field(ProrationMode.FOUR_WEEK, alias="PRORATION_MODE")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(True, alias="LOG_JSON")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


settings = Settings()
