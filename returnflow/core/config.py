from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Optional
import json


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Returnflow Reconciliation API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str

    # Order subsystem (empty = orders live in the local database)
    ORDER_SERVICE_URL: str = ""
    ORDER_SERVICE_TIMEOUT: float = 10.0
    ORDER_SERVICE_TOKEN: str = ""

    # Money
    DEFAULT_CURRENCY: str = "BDT"
    CASH_DENOMINATIONS: List[int] = [1000, 500, 200, 100, 50, 20, 10, 5, 2, 1]

    # Returns
    RETURN_NUMBER_PREFIX: str = "RET"
    EXCHANGE_REFERENCE_PREFIX: str = "EXCHANGE"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Rate limits (slowapi syntax)
    MUTATION_RATE_LIMIT: str = "120/minute"

    # Environment
    ENVIRONMENT: str = "development"
    ENV: Optional[str] = Field(default=None)

    DEBUG: bool = False

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        code = value.upper().strip()
        if len(code) != 3:
            raise ValueError("DEFAULT_CURRENCY must be a 3-letter ISO code")
        return code

    @field_validator("ORDER_SERVICE_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("CASH_DENOMINATIONS", mode="before")
    @classmethod
    def parse_denominations(cls, value):
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                try:
                    value = json.loads(raw)
                except json.JSONDecodeError as exc:
                    raise ValueError("CASH_DENOMINATIONS must be valid JSON or comma-separated integers") from exc
            else:
                value = [part.strip() for part in raw.split(",") if part.strip()]
        faces = [int(face) for face in value]
        if any(face <= 0 for face in faces):
            raise ValueError("CASH_DENOMINATIONS must be positive")
        if len(set(faces)) != len(faces):
            raise ValueError("CASH_DENOMINATIONS must not repeat")
        return sorted(faces, reverse=True)

    @property
    def uses_remote_orders(self) -> bool:
        return bool(self.ORDER_SERVICE_URL)

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
