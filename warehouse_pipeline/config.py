import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()  # load environment variables from .env file

DEFAULT_DB_PATH = "database/warehouse.db"
DEFAULT_SOURCE_PATH = "datasets"
DEFAULT_LOG_DIR = "logs"


@dataclass(frozen=True)
class PipelineConfig:
    """Runtime settings for one pipeline invocation."""

    db_path: str = DEFAULT_DB_PATH
    source_path: str = DEFAULT_SOURCE_PATH
    log_dir: str = DEFAULT_LOG_DIR
    log_level: str = "INFO"
    max_workers: int = 1

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Read settings from the environment (and .env), falling back to defaults."""
        max_workers = int(os.environ.get("PIPELINE_MAX_WORKERS", "1"))
        if max_workers < 1:
            raise ValueError(f"PIPELINE_MAX_WORKERS must be at least 1, got {max_workers}")
        return cls(
            db_path=os.environ.get("PIPELINE_DB_PATH", DEFAULT_DB_PATH),
            source_path=os.environ.get("PIPELINE_SOURCE_PATH", DEFAULT_SOURCE_PATH),
            log_dir=os.environ.get("PIPELINE_LOG_DIR", DEFAULT_LOG_DIR),
            log_level=os.environ.get("PIPELINE_LOG_LEVEL", "INFO").upper(),
            max_workers=max_workers,
        )
