# src/sqlpractice_bff/config.py

from pathlib import Path
from typing import Any, List, Optional, Union

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env is at the project root, two levels up from src/sqlpractice_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    print(f"SQLPractice-BFF: Successfully loaded .env file from: {ENV_FILE_PATH}")
else:
    print(
        f"SQLPractice-BFF: Warning: .env file not found at {ENV_FILE_PATH}. Relying on environment variables."
    )


def _split_comma_separated(name: str, v: Any) -> List[str]:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, list):
        return v
    raise TypeError(f"{name}: Expected a comma-separated string or a list, got {type(v)}")


class Settings(BaseSettings):
    # === Upstream grading API ===
    UPSTREAM_API_BASE_URL: AnyHttpUrl = "https://dbapi.ptit.edu.vn"
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0

    # === API client (talks to the proxy, or straight to the upstream) ===
    API_BASE_URL: str = "http://localhost:8000/api"
    REFRESH_TOKEN_PATH: str = "/auth/auth/refresh-token"
    LOGIN_PATH: str = "/login"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # === Token persistence ===
    ACCESS_TOKEN_KEY: str = "db_ptit_token"
    REFRESH_TOKEN_KEY: str = "db_ptit_refresh"
    # None keeps tokens in memory only
    TOKEN_STORE_PATH: Optional[Path] = None

    # === CORS preflight answers ===
    # Pydantic sees these as strings from the env first, the validator turns them into lists
    CORS_ALLOW_METHODS: Union[str, List[str]] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    CORS_ALLOW_HEADERS: Union[str, List[str]] = ["Content-Type", "Authorization"]
    CORS_MAX_AGE: int = 86400

    @property
    def UPSTREAM_ROOT(self) -> str:
        return str(self.UPSTREAM_API_BASE_URL).rstrip("/")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("CORS_ALLOW_METHODS", "CORS_ALLOW_HEADERS", mode='before')
    @classmethod
    def parse_comma_separated(cls, v: Any, info) -> List[str]:
        return _split_comma_separated(info.field_name, v)

    @model_validator(mode='after')
    def check_cors_lists(self) -> 'Settings':
        for name in ("CORS_ALLOW_METHODS", "CORS_ALLOW_HEADERS"):
            value = getattr(self, name)
            if not isinstance(value, list):
                raise ValueError(f"{name} ended up as {type(value)}, expected list.")
            if not all(isinstance(item, str) for item in value):
                raise ValueError(f"All items in {name} must be strings.")
        self.CORS_ALLOW_METHODS = [m.upper() for m in self.CORS_ALLOW_METHODS]
        return self


try:
    settings = Settings()
    print(f"Upstream API: {settings.UPSTREAM_ROOT}")
    print(f"API base URL: {settings.API_BASE_URL}")
    print(f"Token store: {settings.TOKEN_STORE_PATH or 'in-memory'}")
except Exception as e:
    print(f"SQLPractice-BFF: Error instantiating Settings: {e}")
    import traceback
    traceback.print_exc()
    raise
