from enum import Enum
from typing import Union

from toolchat.schemas.session import AwaitingConfirmation, IdleSwitch


class SwitchStatus(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


VALID_TRANSITIONS = {
    SwitchStatus.IDLE: [SwitchStatus.AWAITING_CONFIRMATION],
    SwitchStatus.AWAITING_CONFIRMATION: [SwitchStatus.IDLE],
}

SwitchStateValue = Union[IdleSwitch, AwaitingConfirmation]


class InvalidTransitionError(Exception):
    def __init__(self, from_state: SwitchStatus, to_state: SwitchStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def status_of(state: SwitchStateValue) -> SwitchStatus:
    return SwitchStatus(state.state)


def can_transition(from_state: SwitchStatus, to_state: SwitchStatus) -> bool:
    """Check if transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def transition(from_state: SwitchStatus, to_state: SwitchStatus) -> SwitchStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def request_confirmation(state: SwitchStateValue, to_tool: str, original_message: str, requested_at: int) -> AwaitingConfirmation:
    """Park a suggested switch until the user answers yes or no."""
    transition(status_of(state), SwitchStatus.AWAITING_CONFIRMATION)
    return AwaitingConfirmation(to=to_tool, original_message=original_message, requested_at=requested_at)


def confirm(state: SwitchStateValue) -> tuple[IdleSwitch, AwaitingConfirmation]:
    """Accept the pending switch. Returns the new state and the resolved request."""
    transition(status_of(state), SwitchStatus.IDLE)
    return IdleSwitch(), state


def decline(state: SwitchStateValue) -> IdleSwitch:
    """Drop the pending switch; the deferred message is discarded."""
    transition(status_of(state), SwitchStatus.IDLE)
    return IdleSwitch()
