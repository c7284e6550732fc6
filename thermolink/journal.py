"""CSV journal of session transitions and transport events."""
from __future__ import annotations

import asyncio
import csv
import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

FIELDS = ("timestamp", "session", "event", "state", "device", "status", "message", "detail")


class EventJournal:
    """Append-only CSV record of what one session did.

    Every row carries the journal's ``session`` tag, so several sessions can
    share a file and still be told apart. :meth:`record` stamps the row on the
    calling loop and appends it from a worker thread, which keeps file I/O off
    the event loop while the session holds its command lock.
    """

    def __init__(self, path: str | Path, *, session: Optional[str] = None) -> None:
        self.path = Path(path)
        self.session = session or uuid.uuid4().hex[:8]
        self._lock = threading.Lock()

    async def record(
        self,
        event: str,
        *,
        state: Optional[str] = None,
        device: Optional[str] = None,
        status: Optional[str] = None,
        message: Optional[str] = None,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        row = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "session": self.session,
            "event": event,
            "state": state or "",
            "device": device or "",
            "status": status or "",
            "message": message or "",
            "detail": json.dumps(dict(detail), sort_keys=True, separators=(",", ":"), default=str) if detail else "",
        }
        await asyncio.to_thread(self._append, row)

    def read(self, *, session: Optional[str] = None) -> List[Dict[str, str]]:
        """Rows written so far, optionally only those tagged ``session``."""
        with self._lock:
            if not self.path.exists():
                return []
            with self.path.open("r", newline="", encoding="utf-8") as handle:
                rows = list(csv.DictReader(handle))
        if session is None:
            return rows
        return [row for row in rows if row["session"] == session]

    def _append(self, row: Dict[str, str]) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=FIELDS)
                if handle.tell() == 0:
                    writer.writeheader()
                writer.writerow(row)


__all__ = ["EventJournal", "FIELDS"]
