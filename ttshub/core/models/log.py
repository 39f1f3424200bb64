"""
LogLine — one line of output on the log bus.

Lines are immutable once published.  ``seq`` is assigned by the bus at
its single append point, so it is the authoritative ordering across
producers.
"""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SERVICE_TAG = "service"

Stream = Literal["stdout", "stderr"]


class LogLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    seq: int = 0
    timestamp: float = Field(default_factory=time.time)
    source_tag: str
    stream: Stream = "stdout"
    text: str

    def render(self) -> str:
        """``[tag] text`` with an ``!`` marker for stderr."""
        marker = "!" if self.stream == "stderr" else " "
        return f"[{self.source_tag}]{marker} {self.text}"
