from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, List, Optional


@dataclass(frozen=True)
class LogEntry:
    message: str
    level: str = "info"
    tags: tuple[str, ...] = ()
    timestamp: Optional[datetime] = None
    source: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "level": self.level,
            "tags": list(self.tags),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "source": self.source,
        }


@dataclass
class AppContext:
    discovered_drives: List[str] = field(default_factory=list)
    log_buffer: Deque[LogEntry] = field(default_factory=lambda: deque(maxlen=200))

    def add_log(
        self,
        message: str,
        *,
        level: str = "info",
        tags=None,
        timestamp: Optional[datetime] = None,
        source: Optional[str] = None,
    ) -> None:
        if message:
            self.log_buffer.append(
                LogEntry(
                    message=message,
                    level=level,
                    tags=tuple(tags or ()),
                    timestamp=timestamp,
                    source=source,
                )
            )
