"""
Data model for batch evaluation jobs.

Each :class:`EvaluationItem` carries an explicit :class:`ItemOutcome`
discriminant, set when the item is built, so consumers branch on
``item.outcome`` rather than probing which optional fields are present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class ItemPhase(str, Enum):
    """Per-item progress phases reported to observers, in order."""

    VALIDATING = "validating"
    CONVERTING = "converting"
    CALLING = "calling"
    DONE = "done"


class ItemOutcome(str, Enum):
    EVALUATED = "evaluated"                    # provider returned a result
    API_ERROR = "api_error"                    # evaluation call failed
    CREDENTIAL_MISSING = "credential_missing"  # call skipped, no API key
    PROCESSING_ERROR = "processing_error"      # decode or conversion failed


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    size_bytes: int
    name: str
    mime_type: str


@dataclass
class PreviewRef:
    """
    Transient local copy of an image used for display.

    Released exactly once through the :class:`~src.evaluation.images.PreviewStore`
    that created it; ``released`` flips to ``True`` at that point.
    """

    ref_id: str
    path: Path
    released: bool = False


@dataclass(frozen=True)
class EvaluationItem:
    """One input's derived metadata and evaluation outcome."""

    title: str
    source_ref: str
    outcome: ItemOutcome
    diagnostic: str
    resolution: str
    size_formatted: str
    preview_ref: PreviewRef | None = None
    image_info: ImageInfo | None = None
    raw_response: dict | None = None
    error_message: str | None = None
    sdk_diagnostics: dict[str, str] = field(default_factory=dict)
    sdk_raw_responses: dict[str, dict] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.outcome is not ItemOutcome.EVALUATED


@dataclass
class BatchJobState:
    """State of the current (or last) job; replaced wholesale on each run."""

    status: JobStatus = JobStatus.IDLE
    items: list[EvaluationItem] = field(default_factory=list)
    error_message: str | None = None
    total: int = 0
    processed: int = 0
    elapsed_seconds: float | None = None
