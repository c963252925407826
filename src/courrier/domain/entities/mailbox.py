from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

@dataclass(frozen=True)
class Mailbox:
    account: str                 # account email
    path: str                    # server-side name, as used for SELECT
    delimiter: Optional[str]     # hierarchy delimiter reported by LIST (None = flat)
    flags: tuple[str, ...] = field(default=(), compare=False)

    @property
    def segments(self) -> list[str]:
        """Hierarchy components of the path, e.g. 'Archive/2024' -> ['Archive', '2024']."""
        if not self.delimiter:
            return [self.path]
        return [p for p in self.path.split(self.delimiter) if p]
