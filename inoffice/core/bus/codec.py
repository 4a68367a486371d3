# inoffice/core/bus/codec.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ValidationError

from .bus_schemas import BaseEnvelope

RAW_MESSAGE_KIND = "raw.message"


@dataclass(frozen=True)
class DecodeResult:
    envelope: BaseEnvelope
    raw: Dict[str, Any]
    ok: bool
    error: Optional[str] = None


class InOfficeCodec:
    """
    Encode/decode layer for the bus.

    Upstream producers (bank webhook relays) publish bare JSON objects rather
    than envelopes; those are wrapped so handlers always see a BaseEnvelope
    whose payload is the bare object.
    """

    def __init__(self, *, default_envelope_cls: Type[BaseEnvelope] = BaseEnvelope):
        self.default_envelope_cls = default_envelope_cls

    def encode(self, obj: BaseModel | Dict[str, Any]) -> bytes:
        if isinstance(obj, BaseModel):
            # aliases keep wire field names stable (schema_id -> schema)
            return obj.model_dump_json(by_alias=True).encode("utf-8")
        return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def decode(self, data: bytes | str) -> DecodeResult:
        try:
            if isinstance(data, (bytes, bytearray)):
                s = data.decode("utf-8", "ignore")
            else:
                s = data
            raw = json.loads(s)
        except Exception as e:
            return self._failed(raw={}, error=f"invalid_json: {e}")

        if not isinstance(raw, dict):
            return self._failed(raw={"value": raw}, error="not_an_object")

        if raw.get("schema") != "inoffice.envelope":
            src = raw.get("source")
            raw = {
                "schema": "inoffice.envelope",
                "kind": raw.get("kind") or RAW_MESSAGE_KIND,
                "source": src if isinstance(src, dict) else {"name": "raw"},
                "payload": raw,
            }

        try:
            env = self.default_envelope_cls.model_validate(raw)
            return DecodeResult(envelope=env, raw=raw, ok=True)
        except ValidationError:
            return self._failed(raw=raw, error="envelope_validation_failed")

    def _failed(self, *, raw: Dict[str, Any], error: str) -> DecodeResult:
        return DecodeResult(
            envelope=self.default_envelope_cls(
                kind="system.error",
                source={"name": "codec"},
                payload={"error": error},
            ),
            raw=raw,
            ok=False,
            error=error,
        )
