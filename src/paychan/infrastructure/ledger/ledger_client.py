"""HTTP ledger gateway bound to one wallet."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from types import TracebackType
from typing import Any, NoReturn, Optional, Type

import httpx
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel

from ...application.ledger.dtos import (
    AccountResponseDTO,
    OpenChannelResponseDTO,
    RegistrationRequestDTO,
    SignedTransactionDTO,
    TransactionResultDTO,
)
from ...application.shared.serialization import sign_payload
from ...application.shared.transaction_payloads import (
    ClaimChannelTx,
    CloseChannelTx,
    FundChannelTx,
    OpenChannelTx,
)
from ...crypto.key_utils import address_from_public_key_der_b64, public_key_der_b64
from ...domain.channel.entities import (
    ChannelLookup,
    ChannelNotFound,
    ChannelOpenResult,
    ChannelState,
    SubmitResult,
)
from ...domain.errors import (
    AccountNotFoundError,
    ChannelNotFoundError,
    KeyMismatchError,
    LedgerRejectedError,
    SettlementUnconfirmedError,
    error_for_kind,
)
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)

LEDGER_API_PREFIX = "/api/v1/ledger"

ERROR_KIND_HEADER = "X-Error-Kind"


def _detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail", response.text))
    except ValueError:
        return response.text


class HttpLedgerGateway:
    """Ledger gateway speaking to the ledger HTTP API on behalf of one wallet.

    Transactions are signed with the wallet's private key and the account's
    current sequence. Network failures, timeouts, server errors and sequence
    conflicts are reported as unconfirmed submissions so the coordinator can
    retry them; rule violations raise the error kind the ledger reports.
    """

    def __init__(
        self,
        base_url: str,
        private_key: ec.EllipticCurvePrivateKey,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._http = AsyncHttpClient(base_url, timeout=timeout, transport=transport)
        self._private_key = private_key
        self._public_key_der_b64 = public_key_der_b64(private_key.public_key())
        self._address = address_from_public_key_der_b64(self._public_key_der_b64)
        # Signed bodies of submissions whose outcome is unknown
        self._pending: dict[str, dict] = {}

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key_der_b64(self) -> str:
        return self._public_key_der_b64

    async def register(self) -> AccountResponseDTO:
        """Open (or look up) this wallet's ledger account."""
        dto = RegistrationRequestDTO(public_key_der_b64=self._public_key_der_b64)
        resp = await self._http.post(
            f"{LEDGER_API_PREFIX}/accounts", json=dto.model_dump()
        )
        return AccountResponseDTO.model_validate(resp.json())

    def _signed(self, payload: BaseModel) -> dict:
        envelope = sign_payload(self._private_key, payload)
        return SignedTransactionDTO.from_envelope(
            self._public_key_der_b64, envelope
        ).model_dump()

    @staticmethod
    def _raise_rejection(
        response: httpx.Response, channel_id: Optional[str]
    ) -> None:
        """Raise the error a definite 4xx answer stands for.

        409 is left alone: the ledger refused the sequence and applied
        nothing, so the submission is reported as unconfirmed.
        """
        if response.status_code == 404:
            if channel_id is not None and "channel" in _detail(response).lower():
                raise ChannelNotFoundError(channel_id)
            raise AccountNotFoundError(_detail(response))
        if response.status_code != 409:
            raise error_for_kind(
                response.headers.get(ERROR_KIND_HEADER), _detail(response)
            )

    async def _next_sequence(self) -> Optional[int]:
        try:
            resp = await self._http.get(f"{LEDGER_API_PREFIX}/accounts/{self._address}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                self._raise_rejection(e.response, None)
            logger.warning(
                "Ledger answered %d to sequence lookup", e.response.status_code
            )
            return None
        except httpx.TransportError as e:
            logger.warning("Ledger unreachable for sequence lookup: %s", e)
            return None
        return AccountResponseDTO.model_validate(resp.json()).sequence

    async def _post_tx(
        self,
        path: str,
        model: Type[BaseModel],
        fields: dict[str, Any],
        channel_id: Optional[str] = None,
    ) -> Optional[httpx.Response]:
        """Submit a signed transaction; None means it did not reach finality.

        A transaction whose outcome is unknown (timeout, dropped connection,
        5xx) stays pending, and the next identical submission resends the
        same signed envelope. The ledger applies an envelope at most once.
        """
        intent = f"{path}|{json.dumps(fields, sort_keys=True, default=str)}"
        body = self._pending.get(intent)
        if body is None:
            sequence = await self._next_sequence()
            if sequence is None:
                return None
            body = self._signed(model(sequence=sequence, **fields))
            self._pending[intent] = body
        else:
            logger.info("Resubmitting unconfirmed transaction to %s", path)

        try:
            resp = await self._http.post(path, json=body)
        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                del self._pending[intent]
                self._raise_rejection(e.response, channel_id)
            logger.warning(
                "Ledger answered %d to %s: %s",
                e.response.status_code,
                path,
                _detail(e.response),
            )
            return None
        except httpx.TransportError as e:
            logger.warning("Outcome of %s unknown: %s", path, e)
            return None
        del self._pending[intent]
        return resp

    def _require_self(self, account: str) -> None:
        if account != self._address:
            raise KeyMismatchError(
                f"Gateway signs for {self._address}, not for {account}"
            )

    async def submit_channel_open(
        self,
        payer: str,
        payee: str,
        amount: int,
        settle_delay: int,
        cancel_after: Optional[datetime] = None,
    ) -> ChannelOpenResult:
        self._require_self(payer)
        resp = await self._post_tx(
            f"{LEDGER_API_PREFIX}/channels",
            OpenChannelTx,
            {
                "account": payer,
                "destination": payee,
                "amount": amount,
                "settle_delay": settle_delay,
                "public_key_der_b64": self._public_key_der_b64,
                "cancel_after": cancel_after,
            },
        )
        if resp is None:
            return ChannelOpenResult(channel_id="", confirmed=False)
        opened = OpenChannelResponseDTO.model_validate(resp.json())
        return ChannelOpenResult(
            channel_id=opened.channel_id, confirmed=True, sequence=opened.sequence
        )

    @staticmethod
    def _submit_result(resp: Optional[httpx.Response]) -> SubmitResult:
        if resp is None:
            return SubmitResult(confirmed=False)
        result = TransactionResultDTO.model_validate(resp.json())
        return SubmitResult(
            confirmed=result.validated,
            channel_closed=result.channel_closed,
            claimed_amount=result.claimed_amount,
        )

    async def submit_channel_fund(
        self,
        channel_id: str,
        amount: int,
        expiration: Optional[datetime] = None,
    ) -> SubmitResult:
        resp = await self._post_tx(
            f"{LEDGER_API_PREFIX}/channels/{channel_id}/fundings",
            FundChannelTx,
            {
                "account": self._address,
                "channel_id": channel_id,
                "amount": amount,
                "expiration": expiration,
            },
            channel_id,
        )
        return self._submit_result(resp)

    async def submit_channel_settle(
        self,
        channel_id: str,
        amount: int,
        signature: str,
        close_requested: bool,
        public_key_der_b64: str,
    ) -> SubmitResult:
        resp = await self._post_tx(
            f"{LEDGER_API_PREFIX}/channels/{channel_id}/claims",
            ClaimChannelTx,
            {
                "account": self._address,
                "channel_id": channel_id,
                "amount": amount,
                "signature_b64": signature,
                "public_key_der_b64": public_key_der_b64,
                "close": close_requested,
            },
            channel_id,
        )
        return self._submit_result(resp)

    async def submit_channel_close_request(self, channel_id: str) -> SubmitResult:
        resp = await self._post_tx(
            f"{LEDGER_API_PREFIX}/channels/{channel_id}/closure-requests",
            CloseChannelTx,
            {"account": self._address, "channel_id": channel_id},
            channel_id,
        )
        return self._submit_result(resp)

    async def _get(self, path: str) -> httpx.Response:
        try:
            return await self._http.get(path)
        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                raise
            self._unavailable(path, e)
        except httpx.TransportError as e:
            self._unavailable(path, e)

    @staticmethod
    def _unavailable(path: str, error: Exception) -> NoReturn:
        logger.warning("Ledger query %s failed: %s", path, error)
        raise SettlementUnconfirmedError(f"Ledger query {path} failed: {error}")

    async def query_channel_state(self, channel_id: str) -> ChannelLookup:
        try:
            resp = await self._get(f"{LEDGER_API_PREFIX}/channels/{channel_id}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return ChannelNotFound(channel_id=channel_id)
            raise LedgerRejectedError(_detail(e.response))
        return ChannelState.model_validate(resp.json())

    async def query_account_balance(self, address: str) -> int:
        try:
            resp = await self._get(f"{LEDGER_API_PREFIX}/accounts/{address}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise AccountNotFoundError(f"Account {address} not found")
            raise LedgerRejectedError(_detail(e.response))
        return AccountResponseDTO.model_validate(resp.json()).balance

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "HttpLedgerGateway":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()
