"""Status conditions shared by the producer and consumer engines."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional

from pydantic import Field

from .base import ResourceModel

if TYPE_CHECKING:
    from .tensegrity import TensegrityStatus

# Condition types.
PRODUCED = "Produced"
CONSUMED = "Consumed"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

KEYS_PRODUCED_REASON = "KeysProduced"
KEYS_PRODUCED_MESSAGE = "All keys are produced."
KEYS_NOT_PRODUCED_REASON = "KeysNotProduced"
KEYS_NOT_PRODUCED_MESSAGE = "Keys are not produced: {}."
KEYS_CONSUMED_REASON = "KeysConsumed"
KEYS_CONSUMED_MESSAGE = "All keys are consumed."
KEYS_NOT_CONSUMED_REASON = "KeysNotConsumed"
KEYS_NOT_CONSUMED_MESSAGE = "Keys are not consumed for envs: {}."

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time truncated to whole seconds, the precision Kubernetes keeps."""

    return datetime.now(timezone.utc).replace(microsecond=0)


def format_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Condition(ResourceModel):
    """A named boolean status with reason, message and transition times."""

    type: str
    status: str
    reason: str
    message: str
    last_update_time: str = Field(alias="lastUpdateTime")
    last_transition_time: str = Field(alias="lastTransitionTime")


def new_condition(type_: str, status: str, reason: str, message: str, clock: Clock = utc_now) -> Condition:
    now = format_time(clock())
    return Condition(
        type=type_,
        status=status,
        reason=reason,
        message=message,
        last_update_time=now,
        last_transition_time=now,
    )


def get_condition(status: "TensegrityStatus", type_: str) -> Optional[Condition]:
    for condition in status.conditions:
        if condition.type == type_:
            return condition
    return None


def set_condition(status: "TensegrityStatus", condition: Condition) -> bool:
    """Record ``condition`` on ``status``; return ``False`` when nothing changed.

    A condition whose status is unchanged keeps its original
    ``lastTransitionTime`` even when reason or message differ.
    """

    current = get_condition(status, condition.type)
    if (
        current is not None
        and current.status == condition.status
        and current.reason == condition.reason
        and current.message == condition.message
    ):
        return False
    if current is not None and current.status == condition.status:
        condition = condition.model_copy(update={"last_transition_time": current.last_transition_time})
    status.conditions = _filter_out(status.conditions, condition.type) + [condition]
    return True


def remove_condition(status: "TensegrityStatus", type_: str) -> None:
    status.conditions = _filter_out(status.conditions, type_)


def _filter_out(conditions: List[Condition], type_: str) -> List[Condition]:
    return [condition for condition in conditions if condition.type != type_]
