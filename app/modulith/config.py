import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MODULES_ROOT = str(Path(__file__).resolve().parent / "modules")


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    modules_root: str
    modules_strict_overrides: bool

    api_prefix: str
    default_items_per_page: int
    max_items_per_page: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getbool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from None


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///modulith.db"),
        log_level=_getenv("LOG_LEVEL", "INFO"),
        modules_root=_getenv("MODULES_ROOT", DEFAULT_MODULES_ROOT),
        modules_strict_overrides=_getbool("MODULES_STRICT_OVERRIDES", False),
        api_prefix=_getenv("API_PREFIX", "/api").rstrip("/"),
        default_items_per_page=_getint("DEFAULT_ITEMS_PER_PAGE", 30),
        max_items_per_page=_getint("MAX_ITEMS_PER_PAGE", 100),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "MODULES_ROOT": s.modules_root,
        "MODULES_STRICT_OVERRIDES": s.modules_strict_overrides,
        "API_PREFIX": s.api_prefix,
        "DEFAULT_ITEMS_PER_PAGE": s.default_items_per_page,
        "MAX_ITEMS_PER_PAGE": s.max_items_per_page,
    }
