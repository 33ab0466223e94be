"""
Audit ledger — append-only record of every completed provisioning job.

Each job writes one NDJSON line with the request that was made and the
response it produced. Both are redacted before they reach the file:
generated passwords and tokens never land on disk.

Lines are only ever appended; nothing rewrites or prunes the ledger.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from accountctl.core.security.redaction import redact

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = ".state"
DEFAULT_AUDIT_FILE = "provisioning.ndjson"


class AuditEntry(BaseModel):
    """One finished job as recorded in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    job_id: str = ""
    operation_id: str = ""
    operation: str = ""            # provision, deactivate
    email: str = ""                # employee work email

    # Results
    status: str = ""               # success, partial, pending, error
    apps: list[str] = Field(default_factory=list)
    summary: dict[str, int] = Field(default_factory=dict)
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)

    # Full request/response, redacted
    request: dict[str, Any] = Field(default_factory=dict)
    response: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Writes and searches the NDJSON provisioning ledger.

    Writers share one lock per instance; the parent directory is created on
    first write.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is not None:
            self._path = path
        else:
            self._path = (state_dir or Path(DEFAULT_AUDIT_DIR)) / DEFAULT_AUDIT_FILE
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an entry. Secrets in request/response are redacted here."""
        self._path.parent.mkdir(parents=True, exist_ok=True)

        data = entry.model_dump(mode="json")
        data["request"] = redact(data["request"])
        data["response"] = redact(data["response"])
        line = json.dumps(data, ensure_ascii=False) + "\n"

        try:
            with self._lock, self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s/%s", entry.operation, entry.job_id)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def _entries(self) -> Iterator[AuditEntry]:
        if not self._path.is_file():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield AuditEntry.model_validate(json.loads(line))
                    except (json.JSONDecodeError, PydanticValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        return list(self._entries())

    def search(
        self,
        *,
        email: str | None = None,
        job_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """Most recent entries (oldest first) for an employee and/or a job."""
        email = email.strip().lower() if email else None
        found = [
            e for e in self._entries()
            if (email is None or e.email == email) and (job_id is None or e.job_id == job_id)
        ]
        return found[-limit:] if limit else found

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.search(limit=n)

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
