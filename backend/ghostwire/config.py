from pathlib import Path
from typing import Optional, List

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    """
    Centralized application configuration.

    Every field can be overridden through environment variables or `.env`.
    """

    # Storage
    DATA_DIR: Path = Path("./data")
    DB_FILENAME: str = "database.json"

    # Seconds to wait for the document lock; None or 0 waits forever
    STORE_LOCK_TIMEOUT: Optional[float] = 10.0

    # Per-profile activity log cap
    ACTIVITY_LOG_LIMIT: int = 500

    # Identity reserved for the observer (wire/admin view)
    OBSERVER_ID: int = 0

    # Logging
    LOG_LEVEL: str = "INFO"
    DEBUG_LOG_PATH: Optional[Path] = None

    # HTTP
    HOST: str = "0.0.0.0"
    PORT: int = 3004
    CORS_ORIGINS: List[str] = ["http://localhost:3004", "http://127.0.0.1:3004"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def db_path(self) -> Path:
        return self.DATA_DIR / self.DB_FILENAME

    @property
    def lock_timeout(self) -> Optional[float]:
        return self.STORE_LOCK_TIMEOUT or None


settings = Settings()


def _check_bare_name(filename: str) -> None:
    if not filename or Path(filename).name != filename or filename in (".", ".."):
        raise ValueError(f"Invalid dataset name: {filename!r}")


def resolve_dataset_path(cfg: Settings, filename: str) -> Path:
    """
    Resolve a dataset file name to a path inside DATA_DIR.

    Rules:
    1. Must be a bare file name (no directory parts)
    2. Must end in `.json`
    3. Must exist

    Raises ValueError for a bad name and FileNotFoundError for a missing file.
    """
    _check_bare_name(filename)
    if not filename.endswith(".json"):
        raise ValueError(f"Dataset must be a .json file: {filename!r}")

    path = cfg.DATA_DIR / filename
    if not path.is_file():
        raise FileNotFoundError(f"Dataset not found: {filename}")
    return path


def dataset_target_path(cfg: Settings, filename: str) -> Path:
    """
    Path a named dataset is saved to. `.json` is appended when missing and the
    active document file can not be overwritten this way.
    """
    filename = (filename or "").strip()
    _check_bare_name(filename)
    if not filename.endswith(".json"):
        filename = f"{filename}.json"
    if filename == cfg.DB_FILENAME:
        raise ValueError(f"{filename} is the active document; use syncDB to replace it")
    return cfg.DATA_DIR / filename
