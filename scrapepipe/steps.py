from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .extraction import ExtractionStep
    from .job import Job
    from .storage import StorageBase


@dataclass(frozen=True)
class Process:
    """Run an extraction step, then feed each result to its own next steps."""

    step: "ExtractionStep"


@dataclass(frozen=True)
class Scrape:
    """Fetch a URL result with ``job``, reusing the originating session."""

    job: "Job"


@dataclass(frozen=True)
class Store:
    sink: "StorageBase"


ContinuationStep = Union[Process, Scrape, Store]
