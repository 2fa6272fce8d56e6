"""Report model — one per-recipient record of what happened."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Report:
    """An inbox entry.

    Reports are immutable once written except for the ``read`` flag.

    Attributes:
        type: Report kind (``attack``, ``scout``, ``return``, ...).
        title: Headline shown in the inbox.
        timestamp: Epoch seconds of the event.
        body: Type-specific sections (``outcome``, ``attacker``, ...).
    """

    type: str
    title: str
    timestamp: float
    body: dict[str, Any] = field(default_factory=dict)
    read: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = copy.deepcopy(self.body)
        data.update({
            "type": self.type,
            "title": self.title,
            "timestamp": self.timestamp,
            "read": self.read,
        })
        return data
