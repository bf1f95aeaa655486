from __future__ import annotations

import os
from urllib.parse import urlparse

from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, Field, computed_field, field_validator

from ..application.coordinator import RetryPolicy
from ..crypto.certificates import load_private_key_from_pem
from ..crypto.key_utils import compute_public_key_der_b64_from_private_pem


class Settings(BaseModel):
    """Payer and payee wallets plus the ledger they talk to."""

    ledger_base_url: str
    payer_private_key_pem: str
    payee_private_key_pem: str

    http_timeout: float = Field(default=10.0, gt=0)
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=8.0, ge=0)
    retry_timeout: float = Field(default=30.0, gt=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def payer_public_key_der_b64(self) -> str:
        return compute_public_key_der_b64_from_private_pem(self.payer_private_key_pem)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def payee_public_key_der_b64(self) -> str:
        return compute_public_key_der_b64_from_private_pem(self.payee_private_key_pem)

    @field_validator("payer_private_key_pem", "payee_private_key_pem")
    @classmethod
    def validate_private_key_pem(cls, v: str) -> str:
        """Validate that the wallet key is a valid PEM-encoded private key."""
        if not v:
            raise ValueError("Wallet private key cannot be empty")
        try:
            load_private_key_from_pem(v)
        except Exception as e:
            raise ValueError(f"Invalid wallet private key PEM: {e}") from e
        return v

    @field_validator("ledger_base_url")
    @classmethod
    def validate_ledger_base_url(cls, v: str) -> str:
        if not v:
            raise ValueError("Ledger base URL cannot be empty")
        parsed = urlparse(v)
        if parsed.scheme not in {"http", "https"}:
            raise ValueError("Ledger base URL must start with http:// or https://")
        if not parsed.netloc:
            raise ValueError("Ledger base URL must include a host")
        return v

    def payer_private_key(self) -> ec.EllipticCurvePrivateKey:
        return load_private_key_from_pem(self.payer_private_key_pem)

    def payee_private_key(self) -> ec.EllipticCurvePrivateKey:
        return load_private_key_from_pem(self.payee_private_key_pem)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            timeout=self.retry_timeout,
        )


def get_settings() -> Settings:
    payer_private_key_pem = os.environ.get("PAYER_PRIVATE_KEY_PEM")
    payee_private_key_pem = os.environ.get("PAYEE_PRIVATE_KEY_PEM")
    ledger_base_url = os.environ.get("LEDGER_BASE_URL")
    if not (payer_private_key_pem and payee_private_key_pem and ledger_base_url):
        raise ValueError(
            "PAYER_PRIVATE_KEY_PEM, PAYEE_PRIVATE_KEY_PEM, and LEDGER_BASE_URL are required"
        )

    optional = {
        "http_timeout": os.environ.get("CLIENT_HTTP_TIMEOUT"),
        "retry_max_attempts": os.environ.get("CLIENT_RETRY_MAX_ATTEMPTS"),
        "retry_base_delay": os.environ.get("CLIENT_RETRY_BASE_DELAY"),
        "retry_max_delay": os.environ.get("CLIENT_RETRY_MAX_DELAY"),
        "retry_timeout": os.environ.get("CLIENT_RETRY_TIMEOUT"),
    }
    return Settings(
        ledger_base_url=ledger_base_url,
        payer_private_key_pem=payer_private_key_pem,
        payee_private_key_pem=payee_private_key_pem,
        **{name: value for name, value in optional.items() if value is not None},
    )
