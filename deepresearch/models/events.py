from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    PROGRESS_INIT = "progress-init"
    DEPTH_DELTA = "depth-delta"
    ACTIVITY_DELTA = "activity-delta"
    SOURCE_DELTA = "source-delta"
    TEXT_DELTA = "text-delta"
    FINISH = "finish"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event == EventType.FINISH

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"
