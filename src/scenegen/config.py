"""Configuration management."""

import os
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config(BaseModel):
    """Application configuration."""

    # API Keys
    kling_api_key: str = Field(
        default_factory=lambda: os.getenv("KLING_API_KEY", ""),
        description="Kling API key for image-to-video generation"
    )

    # Service endpoints
    kling_api_base: str = Field(
        default_factory=lambda: os.getenv("KLING_API_BASE", "https://api.klingai.com/v1"),
        description="Kling API base URL"
    )
    image_service_url: str = Field(
        default_factory=lambda: os.getenv("IMAGE_SERVICE_URL", "http://localhost:3001"),
        description="Base URL of the image generation proxy"
    )

    # Generation settings
    poll_interval: float = Field(
        default_factory=lambda: float(os.getenv("SCENEGEN_POLL_INTERVAL", "5")),
        description="Seconds between video job status checks",
        gt=0,
    )
    max_poll_attempts: int = Field(
        default_factory=lambda: int(os.getenv("SCENEGEN_MAX_POLL_ATTEMPTS", "60")),
        description="Status checks before a video job is considered timed out",
        gt=0,
    )
    max_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("SCENEGEN_MAX_CONCURRENCY", "1")),
        description="Scenes processed at the same time during a batch",
        ge=1,
    )
    offline_threshold: float = Field(
        default_factory=lambda: float(os.getenv("SCENEGEN_OFFLINE_THRESHOLD", "3")),
        description="Seconds before an offline video job reports completion",
        ge=0,
    )

    class Config:
        """Pydantic config."""
        frozen = False

    @property
    def offline(self) -> bool:
        """True when no video service credentials are configured."""
        return not self.kling_api_key

    def validate_video_required(self) -> None:
        """Validate that the live video service is configured.

        Raises:
            ValueError: If any required video configuration is missing.
        """
        missing: list[str] = []

        if not self.kling_api_key:
            missing.append("KLING_API_KEY")
        if not self.kling_api_base:
            missing.append("KLING_API_BASE")

        if missing:
            raise ValueError(
                f"Missing required video configuration: {', '.join(missing)}. "
                "Set the corresponding environment variables."
            )

        if not self.kling_api_base.startswith(("http://", "https://")):
            raise ValueError(
                f"KLING_API_BASE must be an http(s) URL. "
                f"Got: {self.kling_api_base}"
            )


# Global config instance
config = Config()
