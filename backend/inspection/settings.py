from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inspection.scoring import ScoringWeights


class Settings(BaseSettings):
    # Environment variables first, then an optional .env for local development
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Supabase Configuration (only needed for submission)
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_role_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_ROLE_KEY")
    supabase_storage_bucket: str = Field(default="inspection-photos", alias="SUPABASE_STORAGE_BUCKET")
    upload_images_to_storage: bool = Field(default=False, alias="UPLOAD_IMAGES_TO_STORAGE")

    # OpenAI Configuration
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_vision_model: str = Field(default="gpt-4o-mini", alias="OPENAI_VISION_MODEL")
    openai_request_timeout_seconds: int = Field(default=60, alias="OPENAI_REQUEST_TIMEOUT_SECONDS")

    # Features
    enable_remote_identity_extraction: bool = Field(default=True, alias="ENABLE_REMOTE_IDENTITY_EXTRACTION")
    enable_vision_classifier: bool = Field(default=False, alias="ENABLE_VISION_CLASSIFIER")
    enable_damage_analysis: bool = Field(default=True, alias="ENABLE_DAMAGE_ANALYSIS")

    # OCR
    tesseract_cmd: str | None = Field(default=None, alias="TESSERACT_CMD")
    ocr_timeout_seconds: int = Field(default=30, alias="OCR_TIMEOUT_SECONDS")

    # Reverse geocoding
    geocoder_url: str = Field(default="https://nominatim.openstreetmap.org/reverse", alias="GEOCODER_URL")
    geocoder_timeout_seconds: float = Field(default=10.0, alias="GEOCODER_TIMEOUT_SECONDS")
    geocoder_user_agent: str = Field(default="accident-inspection-wizard/0.1", alias="GEOCODER_USER_AGENT")

    # Draft snapshot
    snapshot_path: str = Field(default=".inspection/accident-inspection-storage.json", alias="SNAPSHOT_PATH")

    # Submission
    sla_hours: int = Field(default=24, alias="SLA_HOURS")
    scoring_weights: ScoringWeights = Field(default_factory=ScoringWeights, alias="SCORING_WEIGHTS")

    # Image handling
    max_image_bytes: int = Field(default=1024 * 1024, alias="MAX_IMAGE_BYTES")
    max_image_dimension: int = Field(default=1920, alias="MAX_IMAGE_DIMENSION")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, alias="LOG_FILE")

    # Server
    port: int = Field(default=10000, alias="PORT")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    @field_validator('supabase_url')
    @classmethod
    def validate_supabase_url(cls, v: str | None) -> str | None:
        """Validate Supabase URL format when one is configured."""
        if v is None or v == "":
            return None
        if not v.startswith('https://'):
            raise ValueError('SUPABASE_URL must be a valid HTTPS URL')
        return v

    @field_validator('openai_api_key')
    @classmethod
    def validate_openai_key(cls, v: str | None) -> str | None:
        """Validate OpenAI API key format when one is configured."""
        if v is None or v == "":
            return None
        if not v.startswith('sk-'):
            raise ValueError('OPENAI_API_KEY must start with "sk-"')
        return v

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key)


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get settings singleton instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
