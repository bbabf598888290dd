from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "SIPODI"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8080
    log_level: str = "INFO"
    api_prefix: str = "/api/v1"
    public_base_url: str = "http://127.0.0.1:8080"

    database_url: str = "sqlite:///./data/sipodi.db"
    data_dir: Path = Path("./data")
    upload_dir: Path = Path("./data/uploads")

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_ttl_min: int = 15
    refresh_token_ttl_days: int = 7
    refresh_cookie_name: str = "refresh_token"
    cookie_secure: bool = False

    storage_backend: str = "local"
    s3_endpoint_url: str = ""
    s3_public_url: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_bucket: str = "sipodi"
    s3_region: str = "us-east-1"
    presign_expiry_sec: int = 3600

    cors_origins: str = "http://localhost:3000"

    seed_admin_email: str = "admin@sipodi.local"
    seed_admin_password: str = "admin12345"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, value: str) -> str:
        if value not in {"local", "s3"}:
            raise ValueError("storage_backend must be 'local' or 's3'")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def refresh_cookie_path(self) -> str:
        return f"{self.api_prefix}/auth"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
