from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from levelkeeper.core.errors import PersistenceIOError
from levelkeeper.schemas.progression import ProgressionRecord

logger = logging.getLogger(__name__)

_RECORDS_ADAPTER = TypeAdapter(dict[str, ProgressionRecord])


class JsonProgressionStore:
    """Durable session id -> record mapping kept in a single JSON file.

    Saves replace the whole file through a temporary sibling and ``os.replace``
    so readers only ever see the previous or the new contents.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, ProgressionRecord]:
        try:
            if not self.path.exists():
                logger.info("No progression file at %s, starting fresh", self.path)
                return {}
            raw = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceIOError(
                f"Unable to read {self.path}: {exc}",
                operation="load",
            ) from exc

        if not raw.strip():
            return {}

        try:
            records = _RECORDS_ADAPTER.validate_python(json.loads(raw))
        except (ValueError, ValidationError, RecursionError) as exc:
            raise PersistenceIOError(
                f"Progression file {self.path} is corrupt: {exc}",
                operation="load",
            ) from exc

        logger.info("Loaded progression for %d sessions from %s", len(records), self.path)
        return records

    def save(self, records: Mapping[str, ProgressionRecord]) -> None:
        payload = {
            session_id: record.model_dump(by_alias=True)
            for session_id, record in records.items()
        }
        body = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)

        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceIOError(
                f"Unable to write {self.path}: {exc}",
                operation="save",
            ) from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.info("Saved progression for %d sessions to %s", len(payload), self.path)
