from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator

from ..application.ledger.use_cases.accounts import FAUCET_BALANCE


class Settings(BaseModel):
    database_url: str

    api_host: str
    api_port: int
    api_debug: bool
    api_cors_origins: list[str]

    app_name: str
    app_version: str

    faucet_balance: int = Field(default=FAUCET_BALANCE, ge=0)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Ledger database URL must be a redis:// URL")
        return v


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    return value.lower() == "true" if value is not None else default


def get_settings() -> Settings:
    faucet_balance_str = os.environ.get("LEDGER_FAUCET_BALANCE")

    return Settings(
        database_url=os.environ.get(
            "LEDGER_DATABASE_URL", "redis://localhost:6379/0"
        ),
        api_host=os.environ.get("LEDGER_API_HOST", "127.0.0.1"),
        api_port=int(os.environ.get("LEDGER_API_PORT", "8001")),
        api_debug=_bool_env("LEDGER_API_DEBUG", False),
        api_cors_origins=os.environ.get("LEDGER_API_CORS_ORIGINS", "*").split(","),
        app_name=os.environ.get("LEDGER_APP_NAME", "Paychan"),
        app_version=os.environ.get("LEDGER_APP_VERSION", "0.1.0"),
        faucet_balance=int(faucet_balance_str)
        if faucet_balance_str is not None
        else FAUCET_BALANCE,
    )
