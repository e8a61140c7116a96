"""Extraction strategies that turn response text into typed result units.

Three strategies share one contract, ``process(text, base_url) -> [ResultUnit]``:

    StructuredMarkup -- CSS selection over an HTML document (BeautifulSoup)
    Pattern          -- regular-expression groups
    PathLookup       -- a lookup path walked through a JSON document

Each strategy first captures raw strings, applies its cardinality cutoff, and
then runs every string through the step's result-shaping rule. A step that
captures nothing raises ExtractionMiss.
"""
from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Tuple, Union
from urllib.parse import urljoin, urlsplit

import soupsieve
from bs4 import BeautifulSoup

from .errors import ConfigError, ExtractionMiss, ExtractionShapeError, ResultShapeError
from .models import URL, FormParameter, PlainString, ResultUnit
from .request_plan import append_query

if TYPE_CHECKING:
    from .steps import ContinuationStep

# Upper bound applied when a step captures "everything".
UNBOUNDED = 1_000_000


# ---- result-shaping rules -----------------------------------------------


@dataclass(frozen=True)
class AsURL:
    """The captured text is already an absolute URL."""


@dataclass(frozen=True)
class JoinURL:
    """Resolve the captured text against ``base`` (or the page URL when unset)."""

    base: Optional[str] = None


@dataclass(frozen=True)
class QueryURL:
    """Append the captured text to ``url`` as the query parameter ``param``."""

    url: str
    param: str


@dataclass(frozen=True)
class ConcatURL:
    """Concatenate ``base`` and the captured text, then parse it as a URL."""

    base: str


@dataclass(frozen=True)
class AsString:
    pass


@dataclass(frozen=True)
class AsFormParameter:
    name: str


ResultShape = Union[AsURL, JoinURL, QueryURL, ConcatURL, AsString, AsFormParameter]


def _checked_url(text: str) -> URL:
    try:
        parts = urlsplit(text.strip())
    except ValueError as exc:
        raise ResultShapeError(f"Failed to create URL from {text!r}: {exc}") from exc
    if not parts.scheme or not parts.netloc:
        raise ResultShapeError(f"Failed to create URL from {text!r}")
    return URL(parts.geturl())


def shape_result(raw: str, rule: ResultShape, page_url: Optional[str] = None) -> ResultUnit:
    """Convert one captured string into the result unit ``rule`` asks for."""
    if isinstance(rule, AsURL):
        return _checked_url(raw)
    if isinstance(rule, JoinURL):
        base = rule.base or page_url
        if not base:
            raise ResultShapeError(f"No base URL to resolve {raw!r} against")
        return _checked_url(urljoin(base, raw.strip()))
    if isinstance(rule, QueryURL):
        return _checked_url(append_query(rule.url, {rule.param: raw}))
    if isinstance(rule, ConcatURL):
        return _checked_url(rule.base + raw)
    if isinstance(rule, AsString):
        return PlainString(raw)
    if isinstance(rule, AsFormParameter):
        return FormParameter(name=rule.name, value=raw)
    raise TypeError(f"Unknown result shape: {rule!r}")


# ---- strategies ---------------------------------------------------------


class ExtractionStep(ABC):
    """Common pipeline: capture raw strings, cut to cardinality, shape.

    ``capture`` is the "exactly N" cardinality; ``None`` means unbounded.
    """

    def __init__(
        self,
        result: ResultShape,
        capture: Optional[int] = None,
        next_steps: Sequence["ContinuationStep"] = (),
    ) -> None:
        if capture is not None and capture < 1:
            raise ConfigError(f"capture must be a positive integer or unbounded, got {capture}")
        self.result = result
        self.capture = capture
        self.next_steps: Tuple["ContinuationStep", ...] = tuple(next_steps)

    @property
    def limit(self) -> int:
        return UNBOUNDED if self.capture is None else self.capture

    def process(self, text: str, base_url: Optional[str] = None) -> List[ResultUnit]:
        captured = self.capture_strings(text)
        if not captured:
            raise ExtractionMiss(f"{self!r} captured nothing")
        return [shape_result(raw, self.result, base_url) for raw in captured]

    @abstractmethod
    def capture_strings(self, text: str) -> List[str]:
        """Return the raw captured strings, already cut to ``limit``."""


class StructuredMarkup(ExtractionStep):
    """Select HTML nodes with a CSS selector and read an attribute or their text.

    Nodes lacking the requested attribute are skipped; the cardinality limit
    applies to selected nodes, before skipping.
    """

    def __init__(self, selector: str, attribute: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        try:
            self._compiled = soupsieve.compile(selector)
        except soupsieve.SelectorSyntaxError as exc:
            raise ConfigError(f"Invalid CSS selector {selector!r}: {exc}") from exc
        self.selector = selector
        self.attribute = attribute

    def capture_strings(self, text: str) -> List[str]:
        soup = BeautifulSoup(text, "html.parser")
        captured: List[str] = []
        for node in self._compiled.select(soup, limit=self.limit):
            if self.attribute is None:
                captured.append(node.get_text())
                continue
            value = node.get(self.attribute)
            if value is None:
                continue
            # Multi-valued attributes (class, rel) come back as lists.
            captured.append(" ".join(value) if isinstance(value, list) else value)
        return captured

    def __repr__(self) -> str:
        return f"StructuredMarkup(selector={self.selector!r}, attribute={self.attribute!r})"


class Pattern(ExtractionStep):
    """Collect regex groups across all matches, ordered by group index."""

    def __init__(self, pattern: str, groups: Sequence[int] = (1,), **kwargs: Any) -> None:
        super().__init__(**kwargs)
        try:
            self._regex = re.compile(pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid regex expression {pattern!r}: {exc}") from exc
        if not groups:
            raise ConfigError(f"Pattern {pattern!r} needs at least one group index")
        for group in groups:
            if group < 0 or group > self._regex.groups:
                raise ConfigError(f"Pattern {pattern!r} has no group {group}")
        self.pattern = pattern
        self.groups = tuple(groups)

    def capture_strings(self, text: str) -> List[str]:
        pairs: List[Tuple[int, str]] = []
        for match in self._regex.finditer(text):
            for group in self.groups:
                value = match.group(group)
                if value is not None:
                    pairs.append((group, value))
        # sort is stable: match order is kept within a group
        pairs.sort(key=lambda pair: pair[0])
        return [value for _, value in pairs[: self.limit]]

    def __repr__(self) -> str:
        return f"Pattern(pattern={self.pattern!r}, groups={list(self.groups)})"


@dataclass(frozen=True)
class Field:
    name: str


@dataclass(frozen=True)
class Index:
    position: int


@dataclass(frozen=True)
class Each:
    """Apply the rest of the path to every element of an array."""


@dataclass(frozen=True)
class Take:
    """Collect the scalar reached so far."""


Lookup = Union[Field, Index, Each, Take]


class PathLookup(ExtractionStep):
    """Walk a lookup path through a JSON document.

    A missing field or index, or a value of the wrong shape, raises
    ExtractionShapeError: the branch stops instead of silently missing.
    An exhausted path behaves like a trailing ``Take``.
    """

    def __init__(self, path: Sequence[Lookup], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        path = tuple(path)
        for position, step in enumerate(path):
            if isinstance(step, Take) and position != len(path) - 1:
                raise ConfigError("Take must be the last step of a lookup path")
        self.path = path

    def capture_strings(self, text: str) -> List[str]:
        try:
            document = json.loads(text)
        except ValueError as exc:
            raise ExtractionShapeError(f"Response is not valid JSON: {exc}") from exc
        collected: List[str] = []
        self._walk(document, self.path, collected)
        return collected[: self.limit]

    def _walk(self, value: Any, path: Tuple[Lookup, ...], out: List[str]) -> None:
        if not path or isinstance(path[0], Take):
            out.append(_scalar_text(value))
            return

        step, rest = path[0], path[1:]
        if isinstance(step, Field):
            if not isinstance(value, dict):
                raise ExtractionShapeError(f"Lookup {step} expects an object, got {_shape(value)}")
            if step.name not in value:
                raise ExtractionShapeError(f"Field {step.name!r} is missing")
            self._walk(value[step.name], rest, out)
        elif isinstance(step, Index):
            if not isinstance(value, list):
                raise ExtractionShapeError(f"Lookup {step} expects an array, got {_shape(value)}")
            if not 0 <= step.position < len(value):
                raise ExtractionShapeError(f"Index {step.position} is out of range for {len(value)} items")
            self._walk(value[step.position], rest, out)
        elif isinstance(step, Each):
            if not isinstance(value, list):
                raise ExtractionShapeError(f"Lookup {step} expects an array, got {_shape(value)}")
            for item in value:
                self._walk(item, rest, out)
        else:
            raise TypeError(f"Unknown lookup step: {step!r}")

    def __repr__(self) -> str:
        return f"PathLookup(path={list(self.path)})"


def _shape(value: Any) -> str:
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if value is None:
        return "null"
    return type(value).__name__


def _scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    raise ExtractionShapeError(f"Take expects a scalar, got {_shape(value)}")
