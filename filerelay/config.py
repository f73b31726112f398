import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

GIB = 1024 * 1024 * 1024


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and .env) by default."""

    upload_dir: str = field(default_factory=lambda: os.getenv("UPLOAD_DIR", os.path.join(ROOT, "uploads")))
    client_url: str = field(default_factory=lambda: os.getenv("CLIENT_URL", "http://localhost:5173"))
    # empty means "derive from the incoming request"
    server_url: str = field(default_factory=lambda: os.getenv("SERVER_URL", ""))
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 5000))
    max_file_size: int = field(default_factory=lambda: _env_int("MAX_FILE_SIZE", 10 * GIB))
    session_max_age: int = field(default_factory=lambda: _env_int("SESSION_MAX_AGE_SECONDS", 4 * 3600))
    sweep_interval: int = field(default_factory=lambda: _env_int("SWEEP_INTERVAL_SECONDS", 30 * 60))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "info"))
    # comma separated; falls back to CLIENT_URL when set, else any origin
    cors_origins: str = field(default_factory=lambda: os.getenv("CORS_ORIGINS", os.getenv("CLIENT_URL", "*")))

    def allowed_origins(self):
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
