"""Runtime settings, read once from the environment (and .env when present).

MONGO_URI is required; there is no fallback connection string.
"""
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from .errors import ConfigError
from .similarity import SIMILARITY_THRESHOLD

URI_VARS = ("MONGO_URI", "MONGODB_URI", "DATABASE_URL")
CONVENTIONS = ("snake", "camel")


def _split_csv(raw: Optional[str]) -> List[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


class Settings(BaseModel):
    mongo_uri: str
    db_name: Optional[str] = None
    timeout_ms: int = 2000
    threshold: float = SIMILARITY_THRESHOLD
    prefixes: List[str] = []
    convention: str = "snake"
    standard_names: List[str] = []
    log_level: str = "INFO"
    api_key: Optional[str] = None

    @field_validator("mongo_uri")
    @classmethod
    def _check_uri(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("must start with mongodb:// or mongodb+srv://")
        return v

    @field_validator("threshold")
    @classmethod
    def _check_threshold(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("must be in (0, 1]")
        return v

    @field_validator("convention")
    @classmethod
    def _check_convention(cls, v: str) -> str:
        v = v.lower()
        if v not in CONVENTIONS:
            raise ValueError(f"must be one of {', '.join(CONVENTIONS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        return v.upper()


def load_settings(env_file: Optional[str] = None, **overrides) -> Settings:
    """Build Settings from the environment; keyword overrides win when not None.

    Raises ConfigError when the connection string is missing or any value
    fails validation.
    """
    load_dotenv(env_file)
    uri = next((os.getenv(k) for k in URI_VARS if os.getenv(k)), None)
    if not uri:
        raise ConfigError(f"no connection string: set {URI_VARS[0]}")
    raw = {
        "mongo_uri": uri,
        "db_name": os.getenv("DB_NAME") or None,
        "timeout_ms": os.getenv("MONGO_TIMEOUT_MS", "2000"),
        "threshold": os.getenv("RECONCILE_THRESHOLD", str(SIMILARITY_THRESHOLD)),
        "prefixes": _split_csv(os.getenv("RECONCILE_PREFIXES")),
        "convention": os.getenv("NAMING_CONVENTION", "snake"),
        "standard_names": _split_csv(os.getenv("STANDARD_NAMES")),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "api_key": os.getenv("API_KEY") or None,
    }
    raw.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**raw)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
