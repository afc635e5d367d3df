from pydantic import BaseModel
import os


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8787"))
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")
    debug: bool = _env_flag("DEBUG")

    engine_path: str = os.getenv("ENGINE_PATH", "./engine/engine")
    engine_threads: int = int(os.getenv("ENGINE_THREADS", "1"))
    engine_hash_mb: int = int(os.getenv("ENGINE_HASH_MB", "256"))
    eval_file: str | None = os.getenv("EVAL_FILE") or None
    eval_dir: str | None = os.getenv("EVAL_DIR") or None
    engine_auto_restart: bool = _env_flag("ENGINE_AUTO_RESTART")

    # Seconds
    ready_timeout: float = float(os.getenv("ENGINE_READY_TIMEOUT", "4.0"))
    timeout_floor: float = float(os.getenv("ENGINE_TIMEOUT_FLOOR", "8.0"))
    timeout_per_depth: float = float(os.getenv("ENGINE_TIMEOUT_PER_DEPTH", "0.4"))

    # Bounds applied by the HTTP and CLI layers
    max_depth: int = int(os.getenv("MAX_DEPTH", "30"))
    default_multipv: int = int(os.getenv("DEFAULT_MULTIPV", "10"))
    max_multipv: int = int(os.getenv("MAX_MULTIPV", "10"))
    max_threads: int = int(os.getenv("MAX_THREADS", "8"))


settings = Settings()
