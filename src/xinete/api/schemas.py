# src/xinete/api/schemas.py
from __future__ import annotations

"""Pydantic request schemas for the public API.

Registry semantics live in xinete.registry; these models only validate HTTP
input shape.
"""

from typing import Any, Dict

from pydantic import BaseModel, Field


class TxEnvelopeRequest(BaseModel):
    tx_type: str = Field(..., description="CONTENT_STORE | CONTENT_UPDATE | CONTENT_REMOVE")
    signer: str = Field(..., description="Hex Ed25519 public key of the caller")
    nonce: int = Field(..., description="Signer's last committed nonce + 1")
    payload: Dict[str, Any] = Field(default_factory=dict)
    sig: str = Field(default="", description="Hex or base64 Ed25519 signature")

    model_config = {"extra": "ignore"}
