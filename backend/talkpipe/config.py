"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class ServicesConfig(BaseModel):
    """Remote collaborator endpoint configuration.

    All five stage services and the batch status endpoint live behind a
    single API host.
    """

    base_url: str = "http://localhost:3001"
    api_token: Optional[str] = None
    request_timeout: float = 300.0
    connect_timeout: float = 30.0
    lipsync_timeout: float = 660.0

    @field_validator("base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v):
        """Normalize base URL so paths can be appended directly."""
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    poll_interval: float = 2.0
    video_max_attempts: int = 2
    video_retry_backoff: float = 3.0
    aspect_ratio: str = "9:16"
    resolution: str = "2K"
    output_format: str = "jpeg"
    images_per_prompt: int = 1


class LimitsConfig(BaseModel):
    """Input bounds enforced before any request leaves the client."""

    prompt_count_min: int = 1
    prompt_count_max: int = 20
    prompt_count_default: int = 6
    concept_max_length: int = 100
    script_concept_max_length: int = 500
    script_duration_min: int = 5
    script_duration_max: int = 120
    max_speech_chars: int = 5000
    max_reference_images: int = 3
    voice_id_max_length: int = 100


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: TALKPIPE_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="TALKPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    services: ServicesConfig = ServicesConfig()
    pipeline: PipelineConfig = PipelineConfig()
    limits: LimitsConfig = LimitsConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit keyword arguments, used by tests)
        2. Environment variables
        3. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Singleton instance
settings = Settings()
