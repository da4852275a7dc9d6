import json
import os
import re
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
PROD_ENVIRONMENTS = frozenset({"prod", "production"})
DEV_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
)
WEAK_SECRETS = frozenset({"change-me", "secret", "changeme", "dev"})


def _env_of(info: ValidationInfo) -> str:
    return str(info.data.get("environment") or "dev").strip().lower()


def _strip_quotes(value: str) -> str:
    s = value.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in {'"', "'"}:
        return s[1:-1].strip()
    return s


def _origin(value) -> str:
    # Browsers send Origin without a trailing slash.
    return _strip_quotes(str(value)).rstrip("/")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = Field(default="Manufacturing Marketplace API", validation_alias="PROJECT_NAME")
    environment: str = Field(default="dev", validation_alias="ENVIRONMENT")
    build_version: Optional[str] = Field(default=None, validation_alias="BUILD_VERSION")
    database_url: str = Field(
        default="sqlite+pysqlite:///./dev-local.db", validation_alias="DATABASE_URL"
    )
    api_prefix: str = Field(default="/api", validation_alias="API_V1_STR")
    enable_docs: Optional[bool] = Field(default=None, validation_alias="ENABLE_DOCS")
    secret_key: str = Field(default="change-me", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES"
    )
    cors_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=list, validation_alias="CORS_ORIGINS"
    )
    storage_dir: str = Field(default="storage", validation_alias="STORAGE_DIR")
    run_migrations_on_start: bool = Field(default=False, validation_alias="RUN_MIGRATIONS_ON_START")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Quote and order timing.
    sales_quote_validity_days: int = Field(
        default=30, ge=1, validation_alias="SALES_QUOTE_VALIDITY_DAYS"
    )
    delivery_buffer_days: int = Field(default=7, ge=0, validation_alias="DELIVERY_BUFFER_DAYS")
    default_order_lead_days: int = Field(
        default=30, ge=0, validation_alias="DEFAULT_ORDER_LEAD_DAYS"
    )
    # Paying a delivered order also archives it.
    auto_archive_on_payment: bool = Field(default=True, validation_alias="AUTO_ARCHIVE_ON_PAYMENT")

    @field_validator("enable_docs", mode="after")
    @classmethod
    def default_enable_docs(cls, value, info: ValidationInfo):
        if value is None:
            return _env_of(info) in {"dev", "development", "test"}
        return bool(value)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value, info: ValidationInfo):
        """Accept a JSON list, a JSON string or a comma separated list."""
        if value in (None, "", []):
            if _env_of(info) in PROD_ENVIRONMENTS:
                raise ValueError("CORS_ORIGINS must be explicitly set in production")
            return list(DEV_CORS_ORIGINS)

        if isinstance(value, str):
            raw = _strip_quotes(value)
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                parsed = raw.split(",")
            value = parsed if isinstance(parsed, list) else [parsed]

        return [_origin(v) for v in value if str(v).strip()]

    @field_validator("api_prefix", mode="before")
    @classmethod
    def normalize_api_prefix(cls, v) -> str:
        """Ensure a single leading slash and no trailing one ("api/" -> "/api")."""
        s = str(v or "").strip().replace("\\", "/")
        if not s:
            return ""
        # Shells that rewrite "/api" into a filesystem path leave "/api..." at the end.
        m = re.search(r"(/api(?:/\S*)?)$", s)
        if m and not s.startswith("/api"):
            s = m.group(1)
        s = s.strip("/")
        return f"/{s}" if s else ""

    @field_validator("database_url", mode="before")
    @classmethod
    def normalize_database_url(cls, v) -> str:
        """Pin Postgres URLs to psycopg3 and anchor relative SQLite paths.

        `sqlite+pysqlite:///./dev.db` is resolved against the project root so
        running from another folder does not create a fresh empty database.
        """
        s = str(v or "").strip()

        for legacy in ("postgres://", "postgresql://", "postgresql+psycopg2://"):
            if s.startswith(legacy):
                return "postgresql+psycopg://" + s[len(legacy) :]

        marker = ":///"
        if not s.startswith("sqlite") or marker not in s:
            return s

        head, path_part = s.split(marker, 1)
        if path_part.startswith("./") or path_part.startswith(".\\"):
            return f"{head}{marker}{(PROJECT_ROOT / path_part[2:]).resolve().as_posix()}"
        return s

    @field_validator("database_url", mode="after")
    @classmethod
    def validate_database_url_for_environment(cls, v: str, info: ValidationInfo):
        if _env_of(info) not in PROD_ENVIRONMENTS:
            return v
        if not os.getenv("DATABASE_URL"):
            raise ValueError("DATABASE_URL must be explicitly set in production")
        if v.startswith("sqlite"):
            raise ValueError("SQLite DATABASE_URL is not allowed in production")
        if "localhost" in v or "127.0.0.1" in v:
            raise ValueError("DATABASE_URL must not point to localhost in production")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info: ValidationInfo) -> str:
        if _env_of(info) in PROD_ENVIRONMENTS and (not v or v.lower() in WEAK_SECRETS):
            raise ValueError("SECRET_KEY must be set to a strong value")
        return v


settings = Settings()
