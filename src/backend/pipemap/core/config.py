import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field

def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)

def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")

def default_db_path() -> Path:
    base = Path(os.environ.get("LOCALAPPDATA") or Path.home())
    return base / "pipemap" / "features.db"

class AutoSaveConfig(BaseModel):
    """Timing contract of the auto-save queue. Delays are in seconds."""
    debounce_delay: float = Field(2.0, ge=0, description="Quiet period before a queued geometry is written")
    max_retries: int = Field(3, ge=1, description="Failed attempts before a save-failed event is raised")
    retry_delay: float = Field(1.0, ge=0, description="Base backoff delay, doubled per retry")
    enable_offline_queue: bool = Field(True, description="Keep mutations queued while offline")

class Settings(BaseModel):
    autosave: AutoSaveConfig = Field(default_factory=AutoSaveConfig)
    db_path: Path = Field(default_factory=default_db_path)
    health_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        autosave = AutoSaveConfig(
            debounce_delay=_env_float("PIPEMAP_DEBOUNCE_MS", 2000) / 1000.0,
            max_retries=int(_env_float("PIPEMAP_MAX_RETRIES", 3)),
            retry_delay=_env_float("PIPEMAP_RETRY_DELAY_MS", 1000) / 1000.0,
            enable_offline_queue=_env_bool("PIPEMAP_OFFLINE_QUEUE", True),
        )
        db_path = os.environ.get("PIPEMAP_DB_PATH")
        return cls(
            autosave=autosave,
            db_path=Path(db_path) if db_path else default_db_path(),
            health_url=os.environ.get("PIPEMAP_HEALTH_URL") or None,
        )
