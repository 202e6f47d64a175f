"""
Veriloop Streaming Models - Events emitted while a request runs

- Phase: coarse progress phases reported to the phase callback
- EventType / AgentEvent: the incremental channel of ``stream_message()``

Message events only ever carry released text; drafts that are still being
verified never appear on this channel.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Phase(str, Enum):
    """Progress phases for UI indicators"""
    GATHER = "gather"
    ACT = "act"
    TOOL = "tool"
    VERIFY = "verify"
    FINAL = "final"


class EventType(str, Enum):
    PHASE_CHANGE = "phase_change"

    TOOL_CALL_START = "tool_call_start"
    TOOL_RESULT = "tool_result"

    VERIFICATION_RESULT = "verification_result"

    # Released text only
    MESSAGE_START = "message_start"
    MESSAGE_CHUNK = "message_chunk"
    MESSAGE_END = "message_end"

    EXECUTION_END = "execution_end"
    ERROR = "error"


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class AgentEvent:
    """
    One event on the incremental channel.

    ``sequence`` increases by one per event within a request, so consumers
    can order events that arrive out of band.
    """
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    request_id: Optional[str] = None
    sequence: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_message(self) -> bool:
        return self.type in (EventType.MESSAGE_START, EventType.MESSAGE_CHUNK, EventType.MESSAGE_END)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "request_id": self.request_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "data": {key: _serialize(value) for key, value in self.data.items()},
        }
