from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import Field, model_validator

from toolchat.schemas.base import CamelModel


class HistoryMessage(CamelModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str
    tool_id: Optional[str] = None


class SessionMetadata(CamelModel):
    start_time: str
    last_activity: str
    message_count: int = 0


class SessionUsage(CamelModel):
    tokens: int = 0
    cost: float = 0.0


class IdleSwitch(CamelModel):
    state: Literal["idle"] = "idle"


class AwaitingConfirmation(CamelModel):
    state: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    to: str
    original_message: str
    requested_at: int


SwitchState = Annotated[Union[IdleSwitch, AwaitingConfirmation], Field(discriminator="state")]


class WhatsAppSession(CamelModel):
    session_id: str
    phone_number: str
    current_tool: Optional[str] = None
    language: str = "en"
    conversation_history: List[HistoryMessage] = Field(default_factory=list)
    metadata: SessionMetadata
    usage: SessionUsage = Field(default_factory=SessionUsage)
    switch_state: SwitchState = Field(default_factory=IdleSwitch)

    @model_validator(mode="before")
    @classmethod
    def upgrade_pending_switch(cls, data: Any) -> Any:
        # Older records carry a bare pendingSwitch object instead of switchState.
        if not isinstance(data, dict) or "pendingSwitch" not in data:
            return data
        data = dict(data)
        pending = data.pop("pendingSwitch")
        if "switchState" not in data and "switch_state" not in data:
            if pending:
                data["switchState"] = {
                    "state": "awaiting_confirmation",
                    "to": pending.get("to"),
                    "originalMessage": pending.get("originalMessage", ""),
                    "requestedAt": pending.get("timestamp") or pending.get("requestedAt") or 0,
                }
            else:
                data["switchState"] = {"state": "idle"}
        return data

    @property
    def pending_switch(self) -> Optional[AwaitingConfirmation]:
        if isinstance(self.switch_state, AwaitingConfirmation):
            return self.switch_state
        return None
