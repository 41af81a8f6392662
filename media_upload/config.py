from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from typing import Annotated, List, Literal, Optional
from functools import lru_cache

DEFAULT_ALLOWED_TYPES = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "video/mp4",
    "video/webm",
    "application/pdf",
    "text/plain",
    "application/json",
]

# Credentials each storage provider needs before it can be constructed.
PROVIDER_REQUIRED_SETTINGS = {
    "local": [],
    "aws-s3": ["AWS_S3_BUCKET", "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"],
    "cloudinary": ["CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"],
}


class Settings(BaseSettings):
    """
    Centralized application configuration with type validation.
    Automatically reads variables from the environment and the .env file.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- General Settings ---
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Path("logs")

    # --- Metadata Store ---
    METADATA_BACKEND: Literal["sql", "memory"] = "sql"
    DATABASE_URL: str = "sqlite:///media.db"

    # --- Upload Limits ---
    MAX_FILE_SIZE: int = Field(10 * 1024 * 1024, gt=0)  # 10 MB default
    MAX_FILES_PER_UPLOAD: int = Field(10, gt=0)
    ALLOWED_TYPES: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_TYPES)
    )
    MAX_IMAGE_WIDTH: Optional[int] = None
    MAX_IMAGE_HEIGHT: Optional[int] = None
    TMP_DIR: Optional[Path] = None

    # --- Storage Provider ---
    STORAGE_PROVIDER: Literal["local", "aws-s3", "cloudinary"] = "local"

    # --- Local Storage Settings ---
    LOCAL_STORAGE_PATH: Path = Path("./uploads")
    LOCAL_PUBLIC_URL_PREFIX: str = "/files"

    # --- AWS S3 Settings (optional) ---
    AWS_S3_BUCKET: Optional[str] = None
    AWS_S3_REGION: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_S3_ENDPOINT: Optional[str] = None
    S3_MULTIPART_THRESHOLD: int = 8 * 1024 * 1024
    S3_MULTIPART_CHUNKSIZE: int = 8 * 1024 * 1024
    S3_SIGNED_URL_EXPIRY: int = 3600

    # --- Cloudinary Settings (optional) ---
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None

    # --- Image Processing ---
    IMAGE_QUALITY: int = Field(80, ge=1, le=100)
    IMAGE_PROGRESSIVE: bool = False
    GENERATE_THUMBNAILS: bool = True
    THUMBNAIL_SIZE: int = Field(150, gt=0)
    RESPONSIVE_BREAKPOINTS: Annotated[List[int], NoDecode] = Field(
        default_factory=lambda: [480, 768, 1024, 1920]
    )

    @field_validator("ALLOWED_TYPES", mode="before")
    @classmethod
    def split_allowed_types(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("RESPONSIVE_BREAKPOINTS", mode="before")
    @classmethod
    def split_breakpoints(cls, value):
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("RESPONSIVE_BREAKPOINTS")
    @classmethod
    def check_breakpoints(cls, value: List[int]) -> List[int]:
        for breakpoint in value:
            if breakpoint <= 0:
                raise ValueError(f"Responsive breakpoints must be positive, got {breakpoint}")
        return value

    def missing_provider_settings(self) -> List[str]:
        """Returns the credential keys the selected STORAGE_PROVIDER still lacks."""
        required = PROVIDER_REQUIRED_SETTINGS[self.STORAGE_PROVIDER]
        return [key for key in required if not getattr(self, key)]

    @property
    def LOG_FILE(self) -> Path:
        return self.LOG_DIR / "combined.log"

    @property
    def ERROR_LOG_FILE(self) -> Path:
        return self.LOG_DIR / "error.log"


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the application settings.
    The first call to this function will initialize the settings.
    """
    return Settings()
