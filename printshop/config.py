from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional


ROOT_DIR = Path(__file__).resolve().parents[1]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _get_env(*keys: str, default: Optional[str] = None) -> Optional[str]:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int) -> int:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _load_dotenv(env_path: Path) -> None:
    """Minimal .env loader.

    Only sets variables that are not already present in the environment.
    Supports simple KEY=VALUE lines (optionally quoted); ignores blanks and comments.
    """
    if not env_path.is_file():
        return
    with open(env_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            k = k.strip()
            v = v.strip()
            if (v.startswith("'") and v.endswith("'")) or (v.startswith("\"") and v.endswith("\"")):
                v = v[1:-1]
            if k and k not in os.environ:
                os.environ[k] = v


@dataclass(frozen=True)
class Settings:
    secret_key: str
    stripe_secret_key: str
    stripe_publishable_key: str
    stripe_webhook_secret: str
    site_url: str
    admin_password_hash: str
    gallery_dir: str
    gallery_prefix: str
    public_url: str
    currency: str
    log_level: str
    max_upload_mb: int

    def with_overrides(self, **overrides) -> "Settings":
        return replace(self, **overrides)


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Read settings from the environment.

    ``.env`` next to the project root is loaded first; variables that are
    already set in the process environment take precedence.
    """
    _load_dotenv(Path(env_file) if env_file else ROOT_DIR / ".env")

    return Settings(
        secret_key=_get_env("SECRET_KEY", "SESSION_SECRET", default="dev-secret-change-me") or "",
        stripe_secret_key=_get_env("STRIPE_SECRET_KEY", default="") or "",
        stripe_publishable_key=_get_env("STRIPE_PUBLISHABLE_KEY", default="") or "",
        stripe_webhook_secret=_get_env("STRIPE_WEBHOOK_SECRET", default="") or "",
        site_url=(_get_env("SITE_URL", default="http://localhost:5050") or "").rstrip("/"),
        admin_password_hash=(_get_env("ADMIN_PASSWORD_HASH", default="") or "").lower(),
        gallery_dir=_get_env("GALLERY_DIR", default=str(ROOT_DIR / "gallery")) or "",
        gallery_prefix=_get_env("GALLERY_PREFIX", default="prints/") or "prints/",
        public_url=(_get_env("PUBLIC_URL", "R2_PUBLIC_URL", default="") or "").rstrip("/"),
        currency=(_get_env("CURRENCY", default="usd") or "usd").lower(),
        log_level=(_get_env("LOG_LEVEL", default="INFO") or "INFO").upper(),
        max_upload_mb=_get_int("MAX_UPLOAD_MB", default=25),
    )


_logging_configured = False


def setup_logging(level: str = "INFO") -> None:
    global _logging_configured
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    if _logging_configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    _logging_configured = True
