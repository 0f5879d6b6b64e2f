"""Shared dataclass models for generation tasks and analysis results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

SOURCE_TEXT = "text"
SOURCE_IMAGE = "image"
SOURCES = (SOURCE_TEXT, SOURCE_IMAGE)

STATUS_PENDING = "PENDING"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_SUCCEEDED = "SUCCEEDED"
STATUS_FAILED = "FAILED"
STATUS_CANCELED = "CANCELED"
TERMINAL_STATUSES = frozenset({STATUS_SUCCEEDED, STATUS_FAILED, STATUS_CANCELED})


def is_terminal(status: Optional[str]) -> bool:
    """Return True when a provider status ends the task lifecycle."""
    return bool(status) and str(status).upper() in TERMINAL_STATUSES


@dataclass(frozen=True)
class ModelOption:
    """A named model variant and the API version that serves it."""

    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass
class GenerationRequest:
    """Options for a Meshy text-to-3d or image-to-3d submission."""

    prompt: Optional[str] = None
    style: Optional[str] = None
    mode: Optional[str] = None
    topology: Optional[str] = None
    image_data: Optional[bytes] = None
    image_mime_type: Optional[str] = None


@dataclass
class GenerationTask:
    """Represents the latest status snapshot of a Meshy task."""

    task_id: str
    source: str
    status: str = STATUS_PENDING
    accepted_endpoint: Optional[str] = None
    mesh_url: Optional[str] = None
    preview_url: Optional[str] = None
    progress: Optional[float] = None
    payload: Dict[str, object] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


@dataclass(frozen=True)
class AnalysisResult:
    """Normalized reply of the image-understanding provider."""

    summary: Optional[str] = None
    foods: List[str] = field(default_factory=list)
    exercises: List[str] = field(default_factory=list)
    disclaimer: Optional[str] = None
    generated_at: Optional[datetime] = None
    user_notes: Optional[str] = None

    def with_context(self, generated_at: datetime, user_notes: Optional[str]) -> "AnalysisResult":
        """Return a copy with the caller-attached timestamp and notes."""
        return replace(self, generated_at=generated_at, user_notes=user_notes or None)

    def to_dict(self) -> Dict[str, object]:
        return {
            "summary": self.summary,
            "foods": list(self.foods),
            "exercises": list(self.exercises),
            "disclaimer": self.disclaimer,
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
            "userNotes": self.user_notes,
        }
