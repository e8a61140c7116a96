from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Union


# Materialization kinds a job can request for a fetched response.
TEXT = "text"
BYTES = "bytes"
MATERIALIZATIONS = (TEXT, BYTES)


@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    url: str
    form: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)


# ---- result units -------------------------------------------------------


@dataclass(frozen=True)
class URL:
    value: str


@dataclass(frozen=True)
class PlainString:
    value: str


@dataclass(frozen=True)
class FormParameter:
    name: str
    value: str


ResultUnit = Union[URL, PlainString, FormParameter]


# ---- responses ----------------------------------------------------------


@dataclass(frozen=True)
class TextResponse:
    url: str
    text: str
    filename: str
    mime_type: Optional[str] = None

    @property
    def kind(self) -> str:
        return TEXT


@dataclass(frozen=True)
class BytesResponse:
    url: str
    content: bytes
    filename: str
    mime_type: Optional[str] = None
    charset: Optional[str] = None

    @property
    def kind(self) -> str:
        return BYTES

    def to_text(self) -> TextResponse:
        """Decode the already-downloaded body; never re-fetches."""
        try:
            text = self.content.decode(self.charset or "utf-8", errors="replace")
        except LookupError:
            text = self.content.decode("utf-8", errors="replace")
        return TextResponse(url=self.url, text=text, filename=self.filename, mime_type=self.mime_type)


Response = Union[TextResponse, BytesResponse]


# ---- metrics ------------------------------------------------------------


@dataclass(frozen=True)
class FetchRecord:
    job_name: str
    url: str
    success: bool
    status_code: Optional[int]
    latency_ms: int
    error_type: Optional[str]


@dataclass(frozen=True)
class MetricsSnapshot:
    total_requests: int
    success_count: int
    http_error_count: int
    transport_error_count: int
    avg_latency_ms: float
    timestamp: float
