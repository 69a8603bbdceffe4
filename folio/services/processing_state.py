"""
Explicit processing states for a Document Record.

A document is always in exactly one of ``Pending``, ``Processing``,
``Completed(text)`` or ``Failed(error)``.  The status, extracted text and
error columns are only ever written through ``apply_state``, which keeps them
consistent:

  extracted_text non-empty  <=>  status == completed
  processing_error not NULL <=>  status == failed

Allowed transitions:

  Pending    -> Processing          (begin)
  Failed     -> Processing          (begin, owner-triggered reprocess)
  Completed  -> Processing          (begin, owner-triggered reprocess)
  Processing -> Completed | Failed  (finish)
"""
from __future__ import annotations

import dataclasses
from typing import Union

from folio.models.database_models import Document, DocumentStatus


class InvalidTransition(Exception):
    """Raised when a transition is not allowed from the current state."""


@dataclasses.dataclass(frozen=True)
class Pending:
    status = DocumentStatus.PENDING


@dataclasses.dataclass(frozen=True)
class Processing:
    status = DocumentStatus.PROCESSING


@dataclasses.dataclass(frozen=True)
class Completed:
    text: str
    status = DocumentStatus.COMPLETED

    def __post_init__(self) -> None:
        if not self.text or not self.text.strip():
            raise ValueError("Completed state requires non-empty text")


@dataclasses.dataclass(frozen=True)
class Failed:
    error: str
    status = DocumentStatus.FAILED

    def __post_init__(self) -> None:
        if not self.error or not self.error.strip():
            raise ValueError("Failed state requires an error message")


ProcessingState = Union[Pending, Processing, Completed, Failed]


def state_of(document: Document) -> ProcessingState:
    """Read the current state from a document row."""
    status = DocumentStatus(document.status)
    if status == DocumentStatus.PENDING:
        return Pending()
    if status == DocumentStatus.PROCESSING:
        return Processing()
    if status == DocumentStatus.COMPLETED:
        return Completed(text=document.extracted_text)
    if status == DocumentStatus.FAILED:
        return Failed(error=document.processing_error or "unknown error")
    raise InvalidTransition(f"Unknown status {document.status!r}")


def begin(current: ProcessingState) -> Processing:
    """Start an extraction attempt."""
    if isinstance(current, Processing):
        raise InvalidTransition("Extraction is already in progress")
    if isinstance(current, (Pending, Completed, Failed)):
        return Processing()
    raise InvalidTransition(f"Cannot begin from {current!r}")


def finish(current: ProcessingState, outcome: Union[Completed, Failed]) -> Union[Completed, Failed]:
    """End an extraction attempt with its outcome."""
    if not isinstance(current, Processing):
        raise InvalidTransition(f"Cannot finish from {type(current).__name__}")
    if not isinstance(outcome, (Completed, Failed)):
        raise InvalidTransition(f"{type(outcome).__name__} is not a terminal outcome")
    return outcome


def apply_state(document: Document, state: ProcessingState) -> None:
    """Write *state* to the document's status columns."""
    document.status = state.status.value
    if isinstance(state, Completed):
        document.extracted_text = state.text
        document.processing_error = None
    elif isinstance(state, Failed):
        document.extracted_text = ""
        document.processing_error = state.error
    else:
        document.extracted_text = ""
        document.processing_error = None
