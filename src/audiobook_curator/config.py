"""Curator configuration via pydantic-settings (.env + env vars)."""

import os
import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

# Upper bound for auto-sized worker pools
MAX_AUTO_WORKERS = 10


class CuratorConfig(BaseSettings):
    """All curator configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Directories --
    cache_dir: Path = Path.home() / ".cache" / "audiobook-curator"
    log_dir: Path = Path.home() / ".local" / "state" / "audiobook-curator" / "logs"

    # -- Parallelism --
    max_workers: int = 10  # 0 = auto (CPU-based)

    # -- Behavior --
    dry_run: bool = False
    force: bool = False
    verbose: bool = False
    log_level: str = "INFO"

    # -- Tag writing --
    backup_tags: bool = True
    write_sidecar: bool = False
    save_cover_to_folder: bool = True

    # -- Metadata --
    genre_enforcement: bool = True
    description_max_length: int = 2000
    source_timeout: float = 15.0
    audible_region: str = "com"
    google_books_api_key: str = ""
    fetch_covers: bool = True

    # -- Renaming --
    rename_template: str = "default"  # built-in name or a literal template
    rename_folder_template: str = ""

    # -- AI (uses CURATOR_LLM_* env vars to avoid OPENAI_* collisions) --
    curator_llm_base_url: str = ""
    curator_llm_api_key: str = ""
    curator_llm_model: str = "gpt-4o-mini"

    @property
    def cache_path(self) -> Path:
        """Path to the SQLite key/value cache."""
        return self.cache_dir / "cache.db"

    @property
    def worker_count(self) -> int:
        """Effective worker count; 0 means derive it from the CPU count."""
        if self.max_workers > 0:
            return self.max_workers
        return max(1, min(MAX_AUTO_WORKERS, (os.cpu_count() or 1) * 2))

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (self.cache_dir, self.log_dir):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the curator."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        level = "DEBUG" if self.verbose else self.log_level.upper()
        logger.add(
            sys.stderr,
            format=log_format,
            level=level,
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "curator.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
