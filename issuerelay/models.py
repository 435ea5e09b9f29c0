"""Issue and snapshot models shared by the store and both persistence backends.

Field aliases follow the on-disk JSON shape (assignedIds, createdAt, ...);
Python code uses the snake_case names.
"""

from datetime import UTC, date, datetime
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class IssueValidationError(ValueError):
    """Raised when a command argument is malformed (bad id, empty title, bad date)."""

    pass


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def validate_issue_id(value: Any) -> str:
    """Normalize an issue id to the string of a positive integer."""
    text = str(value).strip().lstrip("#")
    if not (text.isascii() and text.isdigit()) or int(text) < 1:
        raise IssueValidationError(f"Invalid issue id: {value!r}")
    return str(int(text))


def validate_title(value: str | None) -> str:
    title = (value or "").strip()
    if not title:
        raise IssueValidationError("Title must not be empty")
    return title


def validate_deadline(value: str) -> str:
    """Accept ISO dates (YYYY-MM-DD) only."""
    text = (value or "").strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise IssueValidationError(f"Invalid deadline date: {value!r}") from None


def _numeric_id(item: Any) -> int:
    raw = item.get("id") if isinstance(item, dict) else getattr(item, "id", None)
    try:
        return int(str(raw))
    except (TypeError, ValueError):
        return 0


def compute_next_id(*collections: List[Any]) -> int:
    """One past the largest numeric id found; non-numeric ids are ignored."""
    highest = 0
    for items in collections:
        for item in items or []:
            highest = max(highest, _numeric_id(item))
    return highest + 1


class Issue(BaseModel):
    """Single tracked issue."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="String of a positive integer")
    title: str = Field(default="")
    assigned_ids: List[str] = Field(default_factory=list, alias="assignedIds")
    creator: str | None = Field(default=None, description="Chat id of the creator")
    created_at: str = Field(default_factory=now_iso, alias="createdAt")
    deadline: str | None = Field(default=None, description="ISO date, optional")
    closed_at: str | None = Field(default=None, alias="closedAt")
    closed_by: str | None = Field(default=None, alias="closedBy")

    @model_validator(mode="before")
    @classmethod
    def _migrate_single_assignee(cls, data: Any) -> Any:
        # Older files stored one assignee as assignedId
        if isinstance(data, dict) and "assignedId" in data and not data.get("assignedIds"):
            data = dict(data)
            legacy = data.pop("assignedId")
            data["assignedIds"] = [legacy] if legacy else []
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> str:
        return str(value)

    @field_validator("assigned_ids", mode="before")
    @classmethod
    def _dedupe_assignees(cls, value: Any) -> List[str]:
        if value is None:
            return []
        return list(dict.fromkeys(str(v) for v in value if v))

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict in the persisted shape (aliases, no empty optionals)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Snapshot(BaseModel):
    """Complete {open, closed, nextId} state written to a backend on every save."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    open: List[Issue] = Field(default_factory=list)
    closed: List[Issue] = Field(default_factory=list)
    next_id: int = Field(default=1, ge=1, alias="nextId")

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy(cls, data: Any) -> Any:
        if isinstance(data, list):
            # Bare array of issues: everything is open
            data = {"open": data, "closed": []}
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["open"] = data.get("open") or []
        data["closed"] = data.get("closed") or []
        stored = data.pop("next_id", None) or data.get("nextId")
        computed = compute_next_id(data["open"], data["closed"])
        try:
            stored = int(stored) if stored is not None else 0
        except (TypeError, ValueError):
            stored = 0
        data["nextId"] = max(stored, computed)
        return data

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls(open=[], closed=[], next_id=1)

    def is_empty(self) -> bool:
        return not self.open and not self.closed

    def to_payload(self) -> dict[str, Any]:
        return {
            "open": [i.to_payload() for i in self.open],
            "closed": [i.to_payload() for i in self.closed],
            "nextId": self.next_id,
        }
