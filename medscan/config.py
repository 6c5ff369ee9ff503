# medscan/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field


GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./medscan.db", validation_alias="DATABASE_URL")

    vision_api_key: str | None = Field(
        None, validation_alias=AliasChoices("VISION_API_KEY", "GEMINI_API_KEY")
    )
    vision_base_url: str = Field(GEMINI_OPENAI_BASE_URL, validation_alias="VISION_BASE_URL")
    vision_model: str = Field("gemini-2.0-flash", validation_alias="VISION_MODEL")
    live_feedback_model: str = Field("gemini-2.0-flash", validation_alias="LIVE_FEEDBACK_MODEL")

    supabase_url: str | None = Field(None, validation_alias="SUPABASE_URL")
    supabase_service_key: str | None = Field(
        None, validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
    )
    media_bucket: str = Field("patient-media", validation_alias="MEDIA_BUCKET")

    whatsapp_api_url: str = Field("https://graph.facebook.com/v19.0", validation_alias="WHATSAPP_API_URL")
    whatsapp_phone_number_id: str | None = Field(None, validation_alias="WHATSAPP_PHONE_NUMBER_ID")
    whatsapp_access_token: str | None = Field(None, validation_alias="WHATSAPP_ACCESS_TOKEN")
    default_country_code: str = Field("91", validation_alias="DEFAULT_COUNTRY_CODE")

    camera_backend: str = Field("browser", validation_alias="CAMERA_BACKEND")
    camera_index: int = Field(0, validation_alias="CAMERA_INDEX")

    live_feedback_enabled: bool = Field(True, validation_alias="LIVE_FEEDBACK_ENABLED")
    live_feedback_interval_seconds: float = Field(3.5, validation_alias="LIVE_FEEDBACK_INTERVAL_SECONDS")
    live_feedback_max_side: int = Field(320, validation_alias="LIVE_FEEDBACK_MAX_SIDE")

    analysis_timeout_seconds: float = Field(60.0, validation_alias="ANALYSIS_TIMEOUT_SECONDS")
    live_feedback_timeout_seconds: float = Field(10.0, validation_alias="LIVE_FEEDBACK_TIMEOUT_SECONDS")
    store_timeout_seconds: float = Field(15.0, validation_alias="STORE_TIMEOUT_SECONDS")
    delivery_timeout_seconds: float = Field(20.0, validation_alias="DELIVERY_TIMEOUT_SECONDS")
    retry_attempts: int = Field(1, validation_alias="RETRY_ATTEMPTS")
    retry_backoff_seconds: float = Field(0.5, validation_alias="RETRY_BACKOFF_SECONDS")

    report_output_dir: str = Field("reports", validation_alias="REPORT_OUTPUT_DIR")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    cors_origins: str = Field("*", validation_alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
