"""Application configuration."""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment (``RULEGATE_`` prefix)."""

    # API
    app_name: str = "rulegate"
    debug: bool = False
    log_level: str = "INFO"

    # Compilation
    default_domain: str = "default"
    parse_workers: int = 4
    fail_on_warnings: bool = False

    # Paths
    schema_files: list[str] = ["schema.sql", "views.sql"]
    features_dir: str = "features"
    metadata_path: str = "metadata.yaml"
    models_output: str = "models.yaml"
    specs_output: str = "specs.yaml"

    model_config = {
        "env_prefix": "RULEGATE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Install a single stream handler on the root logger."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
