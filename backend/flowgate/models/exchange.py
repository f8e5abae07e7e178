# /flowgate/models/exchange.py

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

# Models for one encrypted request/response cycle ("exchange") of a Flow.

SUCCESS_SCREEN = "SUCCESS"
ERROR_SCREEN = "ERROR"
FLOW_TOKEN_DELIMITER = "-"
UUID_SEGMENTS = 5


class FlowAction(str, Enum):
    PING = "ping"
    INIT = "INIT"
    DATA_EXCHANGE = "data_exchange"
    BACK = "BACK"
    ERROR_NOTIFICATION = "error_notification"


class EncryptedFlowRequest(BaseModel):
    """Wire body posted by the client. All three fields are base64."""
    encrypted_flow_data: str = Field(..., min_length=1)
    encrypted_aes_key: str = Field(..., min_length=1)
    initial_vector: str = Field(..., min_length=1)


class ExchangeRequest(BaseModel):
    """
    Decrypted payload. `action` stays a plain string so an unknown action
    reaches the orchestrator and is rejected there instead of failing
    validation with a generic error.
    """
    version: Optional[str] = None
    action: str
    screen: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    flow_token: Optional[str] = None

    class Config:
        extra = "ignore"


@dataclass(frozen=True)
class FlowToken:
    """
    Structured form of the opaque flow token `<context uuid>-<node id>`.

    `context_id` is None when the token carries no session (missing token,
    too few segments, or a prefix that is not a UUID).
    """
    raw: Optional[str]
    context_id: Optional[str] = None
    node_id: Optional[str] = None

    @property
    def has_session(self) -> bool:
        return self.context_id is not None

    @classmethod
    def parse(cls, raw: Optional[str]) -> "FlowToken":
        if not raw or not isinstance(raw, str):
            return cls(raw=raw)

        parts = raw.split(FLOW_TOKEN_DELIMITER)
        if len(parts) <= UUID_SEGMENTS:
            return cls(raw=raw)

        candidate = FLOW_TOKEN_DELIMITER.join(parts[:UUID_SEGMENTS])
        try:
            uuid.UUID(candidate)
        except ValueError:
            return cls(raw=raw)

        node_id = FLOW_TOKEN_DELIMITER.join(parts[UUID_SEGMENTS:]) or None
        return cls(raw=raw, context_id=candidate, node_id=node_id)

    @classmethod
    def build(cls, context_id: str, node_id: str) -> str:
        return f"{context_id}{FLOW_TOKEN_DELIMITER}{node_id}"
