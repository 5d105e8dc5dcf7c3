"""Extraction results and the plain-data save request/outcome schema."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from bs4 import Tag

Role = Literal["user", "assistant"]


class CaptureMode(str, Enum):
    ALL = "all"
    RECENT = "recent"
    SELECTED = "selected"


class MessageType(str, Enum):
    SINGLE = "single"
    SELECTION = "selection"
    RECENT = "recent"
    ALL = "all"
    ARTIFACT = "artifact"


class SaveMethodUsed(str, Enum):
    FILESYSTEM = "filesystem"
    ADVANCED_URI = "advanced-uri"
    ADVANCED_URI_CLIPBOARD = "advanced-uri-clipboard"
    DOWNLOADS = "downloads"
    CLIPBOARD = "clipboard"
    URI = "uri"


# ---------------------------------------------------------------------------
# Extraction results (live only inside the extraction context)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractedMessage:
    """One message pulled out of the page."""

    role: Role
    content: str
    title: str
    # Back-reference for selection tests only; never serialized
    source: Tag | None = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content, "title": self.title}


@dataclass
class CaptureResult:
    success: bool
    messages: list[ExtractedMessage] = field(default_factory=list)
    title: str = ""
    error: str | None = None


@dataclass(frozen=True)
class Artifact:
    """A code deliverable embedded in an assistant message."""

    title: str
    content: str
    language: str = ""
    filename: str = ""
    type: str = "artifact"


# ---------------------------------------------------------------------------
# Channel payloads (plain data, copied across the channel)
# ---------------------------------------------------------------------------

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)

    def copy_across(self):
        """Return an independent copy, as if sent over a message channel."""
        return type(self).model_validate(self.model_dump(by_alias=True))


class SaveRequest(_Payload):
    content: str
    conversation_title: str = Field(default="", alias="conversationTitle")
    service: str
    message_type: MessageType = Field(default=MessageType.SINGLE, alias="messageType")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("conversation_title", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ContentPart(_Payload):
    content: str
    part: int | None = None
    total_parts: int | None = Field(default=None, alias="totalParts")


class SaveOutcome(_Payload):
    success: bool
    method: SaveMethodUsed | None = None
    filename: str = ""
    message: str | None = None
    error: str | None = None
    is_duplicate: bool = Field(default=False, alias="isDuplicate")
    parts: list[SaveOutcome] = Field(default_factory=list)


SaveOutcome.model_rebuild()


def aggregate_outcomes(outcomes: list[SaveOutcome]) -> SaveOutcome:
    """Fold per-part outcomes into one; any failed part fails the whole."""
    if not outcomes:
        return SaveOutcome(success=False, error="No parts were saved")
    if len(outcomes) == 1:
        return outcomes[0]

    failed = [o for o in outcomes if not o.success]
    first = outcomes[0]
    if failed:
        return SaveOutcome(
            success=False,
            method=first.method,
            filename=first.filename,
            message=failed[0].message,
            error=f"{len(failed)} of {len(outcomes)} parts failed: "
                  + "; ".join(o.error or "unknown error" for o in failed),
            parts=outcomes,
        )
    return SaveOutcome(
        success=True,
        method=first.method,
        filename=first.filename,
        message=f"Saved {len(outcomes)} parts",
        is_duplicate=all(o.is_duplicate for o in outcomes),
        parts=outcomes,
    )
