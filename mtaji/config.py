from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _env(name: str, default: str = "") -> str:
    return os.getenv(f"MTAJI_{name}", default).strip()


def _resolve_home() -> Path:
    override = _env("HOME")
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent


def _env_path(name: str, default: Path) -> Path:
    raw = _env(name)
    return Path(raw).expanduser() if raw else default


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=lambda: _env_path("DATA_DIR", _resolve_home() / "data"))
    database_path: Path = Field(
        default_factory=lambda: _env_path("DATABASE_PATH", _resolve_home() / "data" / "mtaji.db")
    )
    blob_dir: Path = Field(default_factory=lambda: _env_path("BLOB_DIR", _resolve_home() / "data" / "blobs"))
    blob_base_url: str = Field(default_factory=lambda: _env("BLOB_BASE_URL", "http://127.0.0.1:8001/blobs"))
    image_bucket: str = Field(default_factory=lambda: _env("IMAGE_BUCKET", "initiative-images"))

    # Nominatim-compatible endpoint; empty disables address auto-fill.
    geocoder_url: str = Field(default_factory=lambda: _env("GEOCODER_URL"))
    geocoder_timeout_seconds: float = Field(default_factory=lambda: float(_env("GEOCODER_TIMEOUT", "15")))
    user_agent: str = "MtajiBot/1.0 (+https://mtaji.local)"

    publish_timeout_seconds: float = Field(default_factory=lambda: float(_env("PUBLISH_TIMEOUT", "10")))
    public_list_limit: int = Field(default_factory=lambda: int(_env("PUBLIC_LIST_LIMIT", "100")))
    draft_ttl_days: int = Field(default_factory=lambda: int(_env("DRAFT_TTL_DAYS", "30")))

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.blob_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
