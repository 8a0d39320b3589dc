"""Configuration for the IRM/MRSI viewer service.

Settings are read from the environment (and an optional ``.env`` file).
Viewer constants that the rendering pipeline depends on live here too so
they are documented in one place.
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    # Application info
    app_name: str = "IRM Fusion Viewer"
    app_version: str = "1.0.0"
    app_description: str = "Slice, fuse and inspect IRM volumes with MRSI metabolite maps and spectra"
    debug: bool = False

    # Server / network
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    # External processing backend (uploads, spectra, treatments)
    backend_url: str = "http://127.0.0.1:8000"
    backend_token: Optional[str] = None
    backend_timeout_s: float = 30.0

    # Viewer constants
    overlay_threshold: int = Field(default=15, ge=0, le=255)   # overlay values below are transparent
    drag_threshold_px: float = 3.0                             # press-release moves above this are pans
    zoom_min: float = 1.0
    zoom_max: float = 8.0
    zoom_step: float = 1.1
    iso_target_dim: int = Field(default=32, ge=2)              # samples per axis for the 3D surface
    default_opacity: float = Field(default=0.5, ge=0.0, le=1.0)
    viewport_size: int = 512
    decode_workers: int = 1

    # Sessions: least recently used one is closed when the cap is reached
    max_sessions: int = Field(default=32, ge=1)
    session_idle_s: float = 1800.0

    # Responses
    gzip_minimum_size: int = 1024

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
