# /flowgate/models/context.py

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

# Awaiting-output marker written by the chatbot engine when it dispatches a
# Flow; its value names the variable that receives the Flow's final submission.
AWAITING_FLOW_RESPONSE_KEY = "__awaiting_flow_response__"


class ConversationContextSnapshot(BaseModel):
    """
    Copy of the conversation-context record owned by the chatbot engine.
    Read once near the start of an exchange, written at most once at the end.
    """
    id: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    chatbot_id: Optional[str] = None
    current_node_id: Optional[str] = None
    owner_ref: Optional[str] = None

    @property
    def pending_output_var(self) -> Optional[str]:
        return self.variables.get(AWAITING_FLOW_RESPONSE_KEY)

    def public_variables(self) -> Dict[str, Any]:
        """Variables safe to carry into a screen (internal `__x__` markers removed)."""
        return {
            key: value for key, value in self.variables.items()
            if not (key.startswith("__") and key.endswith("__"))
        }

    def with_flow_output(self, flow_data: Dict[str, Any]) -> Optional["ConversationContextSnapshot"]:
        """
        Returns a copy with the submission stored under the pending output
        variable and the marker cleared, or None when nothing is awaited.
        """
        output_var = self.pending_output_var
        if not output_var:
            return None
        variables = dict(self.variables)
        variables[output_var] = flow_data
        variables.pop(AWAITING_FLOW_RESPONSE_KEY, None)
        return self.model_copy(update={"variables": variables})


class ChannelConfig(BaseModel):
    """
    Versioned snapshot of the channel secrets, fetched at the start of every
    exchange and never mutated. A reload is simply a newer snapshot.
    """
    version: int = 0
    app_secret: Optional[str] = None
    private_key_pem: Optional[str] = None
    private_key_passphrase: Optional[str] = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True
