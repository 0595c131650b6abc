"""Local mirror of a catalog table kept current by a change feed.

The feed delivers ``insert``/``update``/``delete`` events per row. Events may
arrive out of order; per id the event with the newest ``commit_timestamp``
wins, and a delete leaves a tombstone so a late update cannot bring the row
back.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from libs.common.datetime_utils import ensure_aware
from libs.common.logging import get_logger
from pydantic import BaseModel, field_validator

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ChangeEvent(BaseModel):
    event_type: Literal["insert", "update", "delete"]
    commit_timestamp: datetime
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None

    @field_validator("event_type", mode="before")
    @classmethod
    def lower_case_event_type(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("commit_timestamp")
    @classmethod
    def aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @property
    def entity_id(self) -> Optional[str]:
        record = self.old if self.event_type == "delete" else self.new
        if not record or record.get("id") is None:
            return None
        return str(record["id"])


class ChangeFeedCache:
    """Rows of one table keyed by id, sorted by ``display_order`` on read."""

    def __init__(self, table: str):
        self.table = table
        self._rows: dict[str, dict[str, Any]] = {}
        self._versions: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, entity_id) -> bool:
        return str(entity_id) in self._rows

    def get(self, entity_id) -> Optional[dict[str, Any]]:
        return self._rows.get(str(entity_id))

    def load(self, rows: list[dict[str, Any]]) -> None:
        """Replace the contents with a fresh snapshot."""
        self._rows.clear()
        self._versions.clear()
        for row in rows:
            key = str(row["id"])
            self._rows[key] = row
            self._versions[key] = ensure_aware(row.get("updated_at")) or _EPOCH

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one event. Returns False when it was stale or unusable."""
        key = event.entity_id
        if key is None:
            logger.warning("Dropping %s event on %s without id", event.event_type, self.table)
            return False

        current = self._versions.get(key)
        if current is not None and event.commit_timestamp < current:
            logger.debug("Stale %s for %s:%s ignored", event.event_type, self.table, key)
            return False

        self._versions[key] = event.commit_timestamp
        if event.event_type == "delete":
            self._rows.pop(key, None)
        else:
            self._rows[key] = event.new
        return True

    def items(self) -> list[dict[str, Any]]:
        return sorted(self._rows.values(), key=lambda row: row.get("display_order") or 0)
