from __future__ import annotations

from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel

from ...crypto.certificates import Envelope, generate_envelope


def sign_payload(
    private_key: ec.EllipticCurvePrivateKey, payload: BaseModel
) -> Envelope:
    """Sign a Pydantic transaction payload and wrap it into an envelope.

    Centralizes the "model_dump() -> json bytes" convention so the ledger and
    its clients never diverge in how they serialize the exact message being
    signed. Datetimes are dumped in their ISO form.
    """
    return generate_envelope(private_key, payload.model_dump(mode="json"))
