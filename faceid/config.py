"""Configuration management for the face verification session."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 8000
    host: str = "127.0.0.1"

    # Matching settings
    match_threshold: float = 0.55  # Max Euclidean distance for a positive match
    descriptor_length: int = 128
    attempt_log_capacity: int = 4

    # Enrolled signature storage
    signature_store_path: str = ".faceid/signature.json"

    # Capture device
    camera_index: int = 0
    frame_width: int = 640
    frame_height: int = 480

    # Feature extraction
    detection_model: str = "hog"
    num_jitters: int = 1
    preload_models: bool = True

    # Logging configuration
    log_level: str = "INFO"

    @field_validator('match_threshold')
    @classmethod
    def validate_match_threshold(cls, v):
        if v <= 0.0:
            raise ValueError('MATCH_THRESHOLD must be a positive distance')
        return v

    @field_validator('descriptor_length', 'attempt_log_capacity')
    @classmethod
    def validate_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f'{info.field_name.upper()} must be greater than 0')
        return v

    @field_validator('detection_model')
    @classmethod
    def validate_detection_model(cls, v):
        if v not in ("hog", "cnn"):
            raise ValueError('DETECTION_MODEL must be "hog" or "cnn"')
        return v


# Global settings instance
settings = Settings()
