"""Configuration document loading.

The document is JSON, validated with pydantic and converted into runtime
jobs. Every problem with its shape (unknown keys, bad regexes or selectors,
nested jobs that try to authenticate) is reported as ConfigError before any
network traffic happens. Authentication chains then run once per top-level
job; a unit whose chain fails is logged and left out of the run.

Example::

    {
      "workers": 15,
      "units": [{
        "urls": ["https://example.com/list"],
        "job": {
          "dynamic_parameters": {"type": "int_range", "target": {"mode": "name", "value": "page"},
                                 "start": 1, "end": 3},
          "targets": {"text": [{"type": "process", "step": {
            "type": "html", "selector": "a.item", "attribute": "href",
            "result": {"type": "join"},
            "next_steps": [{"type": "scrape", "job": {
              "targets": {"bytes": [{"type": "store", "sink": {"type": "local", "path": "out", "or_create": true}}]}
            }}]
          }}]}
        }
      }]
    }
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Tuple, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, ValidationError, field_validator, model_validator

from . import extraction as ex
from .auth import AuthStep, NextStep, SessionEstablished
from .errors import AuthenticationError, ConfigError
from .job import DEFAULT_REQUEST_CONCURRENCY, DEFAULT_STEP_CONCURRENCY, DEFAULT_URL_CONCURRENCY, Job, ScrapingUnit
from .metrics import MetricsCollector
from .models import RequestDescriptor
from .params import IntRange, KeyWords, NamedParam, ParameterSpec, PathSuffix
from .scheduler import DEFAULT_QUEUE_SIZE, DEFAULT_WORKERS
from .steps import ContinuationStep, Process, Scrape, Store
from .storage import JsonlSink, LocalDirectorySink, StorageBase
from .transport import build_session, parse_curl

logger = logging.getLogger(__name__)


class _Doc(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _check_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"{value!r} is not an absolute http(s) URL")
    return value


# ---- parameters ---------------------------------------------------------


class TargetDoc(_Doc):
    mode: Literal["name", "suffix"]
    value: str


class IntRangeDoc(_Doc):
    type: Literal["int_range"]
    target: TargetDoc
    start: int
    end: int
    step: PositiveInt = 1


class KeyWordsDoc(_Doc):
    type: Literal["keywords"]
    target: TargetDoc
    words: List[str]


ParameterSpecDoc = Annotated[Union[IntRangeDoc, KeyWordsDoc], Field(discriminator="type")]


# ---- result shapes and lookups ------------------------------------------


class UrlShapeDoc(_Doc):
    type: Literal["url"]


class JoinShapeDoc(_Doc):
    type: Literal["join"]
    base: Optional[str] = None


class QueryShapeDoc(_Doc):
    type: Literal["query"]
    url: str
    param: str


class ConcatShapeDoc(_Doc):
    type: Literal["concat"]
    base: str


class StringShapeDoc(_Doc):
    type: Literal["string"]


class FormShapeDoc(_Doc):
    type: Literal["form"]
    name: str


ResultShapeDoc = Annotated[
    Union[UrlShapeDoc, JoinShapeDoc, QueryShapeDoc, ConcatShapeDoc, StringShapeDoc, FormShapeDoc],
    Field(discriminator="type"),
]


class FieldLookupDoc(_Doc):
    type: Literal["field"]
    name: str


class IndexLookupDoc(_Doc):
    type: Literal["index"]
    position: Annotated[int, Field(ge=0)]


class EachLookupDoc(_Doc):
    type: Literal["each"]


class TakeLookupDoc(_Doc):
    type: Literal["take"]


LookupDoc = Annotated[
    Union[FieldLookupDoc, IndexLookupDoc, EachLookupDoc, TakeLookupDoc],
    Field(discriminator="type"),
]


# ---- extraction steps ---------------------------------------------------


class _StepDoc(_Doc):
    capture: Union[PositiveInt, Literal["all"]] = "all"
    result: ResultShapeDoc = Field(default_factory=lambda: StringShapeDoc(type="string"))
    next_steps: List["ContinuationDoc"] = Field(default_factory=list)


class HtmlStepDoc(_StepDoc):
    type: Literal["html"]
    selector: str
    attribute: Optional[str] = None


class RegexStepDoc(_StepDoc):
    type: Literal["regex"]
    pattern: str
    groups: List[Annotated[int, Field(ge=0)]] = Field(default_factory=lambda: [1])


class JsonStepDoc(_StepDoc):
    type: Literal["json"]
    path: List[LookupDoc]


ExtractionDoc = Annotated[Union[HtmlStepDoc, RegexStepDoc, JsonStepDoc], Field(discriminator="type")]


# ---- sinks and continuations --------------------------------------------


class LocalSinkDoc(_Doc):
    type: Literal["local"]
    path: str
    or_create: bool = False
    filename: Literal["origin", "random"] = "origin"
    ext: Optional[Literal["jpeg", "mp4"]] = None


class JsonlSinkDoc(_Doc):
    type: Literal["jsonl"]
    path: str


SinkDoc = Annotated[Union[LocalSinkDoc, JsonlSinkDoc], Field(discriminator="type")]


class ProcessDoc(_Doc):
    type: Literal["process"]
    step: ExtractionDoc


class ScrapeDoc(_Doc):
    type: Literal["scrape"]
    job: "JobDoc"

    @model_validator(mode="after")
    def _shares_parent_session(self) -> "ScrapeDoc":
        if self.job.authentication is not None or self.job.impersonate is not None:
            raise ValueError("a nested scrape job reuses its parent's session; drop 'authentication' and 'impersonate'")
        return self


class StoreDoc(_Doc):
    type: Literal["store"]
    sink: SinkDoc


ContinuationDoc = Annotated[Union[ProcessDoc, ScrapeDoc, StoreDoc], Field(discriminator="type")]


# ---- authentication, jobs, document ---------------------------------------


class AuthStepDoc(_Doc):
    url: Optional[str] = None
    curl: Optional[str] = None
    method: Literal["GET", "POST"] = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    form: Dict[str, str] = Field(default_factory=dict)
    extract: Optional[ExtractionDoc] = None
    next: Optional["AuthStepDoc"] = None

    @model_validator(mode="after")
    def _one_request_source(self) -> "AuthStepDoc":
        if (self.url is None) == (self.curl is None):
            raise ValueError("an authentication step needs exactly one of 'url' or 'curl'")
        if self.url is not None:
            _check_url(self.url)
        return self


class JobDoc(_Doc):
    name: Optional[str] = None
    default_parameters: Dict[str, str] = Field(default_factory=dict)
    dynamic_parameters: Optional[ParameterSpecDoc] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    impersonate: Optional[str] = None
    timeout: Optional[PositiveFloat] = None
    authentication: Optional[AuthStepDoc] = None
    targets: Dict[Literal["text", "bytes"], List[ContinuationDoc]] = Field(default_factory=dict)
    request_concurrency: PositiveInt = DEFAULT_REQUEST_CONCURRENCY
    step_concurrency: PositiveInt = DEFAULT_STEP_CONCURRENCY


class UnitDoc(_Doc):
    urls: List[str] = Field(min_length=1)
    job: JobDoc
    url_concurrency: PositiveInt = DEFAULT_URL_CONCURRENCY

    @field_validator("urls")
    @classmethod
    def _absolute_urls(cls, urls: List[str]) -> List[str]:
        return [_check_url(url) for url in urls]


class DocumentDoc(_Doc):
    units: List[UnitDoc] = Field(min_length=1)
    workers: PositiveInt = DEFAULT_WORKERS
    queue_size: PositiveInt = DEFAULT_QUEUE_SIZE


for _model in (_StepDoc, HtmlStepDoc, RegexStepDoc, JsonStepDoc, ProcessDoc, ScrapeDoc, AuthStepDoc, JobDoc, UnitDoc, DocumentDoc):
    _model.model_rebuild()


# ---- conversion -----------------------------------------------------------


@dataclass
class RunConfig:
    units: List[ScrapingUnit]
    workers: int = DEFAULT_WORKERS
    queue_size: int = DEFAULT_QUEUE_SIZE
    sinks: List[StorageBase] = field(default_factory=list)
    failed_units: int = 0

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()


def parse_document(data: Any) -> DocumentDoc:
    try:
        return DocumentDoc.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration document:\n{exc}") from exc


class _Builder:
    """Converts validated documents into runtime objects.

    Sinks are shared between every step that declares the same one, so a
    single JSONL file is written by a single writer thread.
    """

    def __init__(self) -> None:
        self.sinks: Dict[Tuple[Any, ...], StorageBase] = {}
        self._job_count = 0

    def job(self, doc: JobDoc) -> Job:
        self._job_count += 1
        return Job(
            name=doc.name or f"job-{self._job_count}",
            default_parameters=dict(doc.default_parameters),
            parameter_spec=self.parameter_spec(doc.dynamic_parameters) if doc.dynamic_parameters else None,
            targets={kind: tuple(self.continuation(c) for c in steps) for kind, steps in doc.targets.items()},
            headers=dict(doc.headers),
            timeout=doc.timeout,
            request_concurrency=doc.request_concurrency,
            step_concurrency=doc.step_concurrency,
        )

    @staticmethod
    def parameter_spec(doc: Union[IntRangeDoc, KeyWordsDoc]) -> ParameterSpec:
        target = NamedParam(doc.target.value) if doc.target.mode == "name" else PathSuffix(doc.target.value)
        if isinstance(doc, IntRangeDoc):
            return IntRange(target=target, start=doc.start, end=doc.end, step=doc.step)
        return KeyWords(target=target, words=tuple(doc.words))

    def continuation(self, doc: Union[ProcessDoc, ScrapeDoc, StoreDoc]) -> ContinuationStep:
        if isinstance(doc, ProcessDoc):
            return Process(self.extraction(doc.step))
        if isinstance(doc, ScrapeDoc):
            return Scrape(self.job(doc.job))
        if isinstance(doc, StoreDoc):
            return Store(self.sink(doc.sink))
        raise TypeError(f"Unknown continuation document: {doc!r}")

    def extraction(self, doc: Union[HtmlStepDoc, RegexStepDoc, JsonStepDoc]) -> ex.ExtractionStep:
        common = dict(
            result=self.result_shape(doc.result),
            capture=None if doc.capture == "all" else doc.capture,
            next_steps=[self.continuation(c) for c in doc.next_steps],
        )
        if isinstance(doc, HtmlStepDoc):
            return ex.StructuredMarkup(selector=doc.selector, attribute=doc.attribute, **common)
        if isinstance(doc, RegexStepDoc):
            return ex.Pattern(pattern=doc.pattern, groups=doc.groups, **common)
        if isinstance(doc, JsonStepDoc):
            return ex.PathLookup(path=[self.lookup(step) for step in doc.path], **common)
        raise TypeError(f"Unknown extraction document: {doc!r}")

    @staticmethod
    def result_shape(doc: Any) -> ex.ResultShape:
        if isinstance(doc, UrlShapeDoc):
            return ex.AsURL()
        if isinstance(doc, JoinShapeDoc):
            return ex.JoinURL(base=doc.base)
        if isinstance(doc, QueryShapeDoc):
            return ex.QueryURL(url=doc.url, param=doc.param)
        if isinstance(doc, ConcatShapeDoc):
            return ex.ConcatURL(base=doc.base)
        if isinstance(doc, StringShapeDoc):
            return ex.AsString()
        if isinstance(doc, FormShapeDoc):
            return ex.AsFormParameter(name=doc.name)
        raise TypeError(f"Unknown result shape document: {doc!r}")

    @staticmethod
    def lookup(doc: Any) -> ex.Lookup:
        if isinstance(doc, FieldLookupDoc):
            return ex.Field(doc.name)
        if isinstance(doc, IndexLookupDoc):
            return ex.Index(doc.position)
        if isinstance(doc, EachLookupDoc):
            return ex.Each()
        if isinstance(doc, TakeLookupDoc):
            return ex.Take()
        raise TypeError(f"Unknown lookup document: {doc!r}")

    def sink(self, doc: Union[LocalSinkDoc, JsonlSinkDoc]) -> StorageBase:
        key = tuple(sorted(doc.model_dump().items()))
        if key not in self.sinks:
            if isinstance(doc, LocalSinkDoc):
                self.sinks[key] = LocalDirectorySink(doc.path, or_create=doc.or_create, filename=doc.filename, ext=doc.ext)
            elif isinstance(doc, JsonlSinkDoc):
                self.sinks[key] = JsonlSink(doc.path)
            else:
                raise TypeError(f"Unknown sink document: {doc!r}")
        return self.sinks[key]

    def auth_step(self, doc: AuthStepDoc) -> AuthStep:
        if doc.curl is not None:
            request = parse_curl(doc.curl)
            request = replace(request, headers={**request.headers, **doc.headers}, form={**request.form, **doc.form})
        else:
            request = RequestDescriptor(method=doc.method, url=doc.url, form=dict(doc.form), headers=dict(doc.headers))
        action: Union[SessionEstablished, NextStep] = (
            NextStep(self.auth_step(doc.next)) if doc.next is not None else SessionEstablished()
        )
        extraction = self.extraction(doc.extract) if doc.extract is not None else None
        return AuthStep(request=request, action=action, extraction=extraction)


def build_run(
    document: DocumentDoc,
    metrics: Optional[MetricsCollector] = None,
    session_factory: Callable[[Optional[str]], Any] = build_session,
) -> RunConfig:
    """Turn a validated document into ready-to-run scraping units.

    Every unit is converted first, so a malformed step fails the whole load
    before any request is sent. Then each top-level job gets its own session
    and runs its authentication chain; failures drop only that unit.
    """
    builder = _Builder()
    planned: List[Tuple[UnitDoc, Job, Optional[AuthStep]]] = []
    for unit_doc in document.units:
        job = builder.job(unit_doc.job)
        auth = builder.auth_step(unit_doc.job.authentication) if unit_doc.job.authentication else None
        planned.append((unit_doc, job, auth))

    units: List[ScrapingUnit] = []
    failed = 0
    for unit_doc, job, auth in planned:
        session = session_factory(unit_doc.job.impersonate)
        if auth is not None:
            try:
                session = auth.authenticate(session, timeout=job.timeout)
            except AuthenticationError as exc:
                logger.error("Dropping unit for job %r: %s", job.name, exc)
                failed += 1
                continue
        units.append(
            ScrapingUnit(
                job=replace(job, session=session, metrics=metrics),
                urls=tuple(unit_doc.urls),
                url_concurrency=unit_doc.url_concurrency,
            )
        )

    return RunConfig(
        units=units,
        workers=document.workers,
        queue_size=document.queue_size,
        sinks=list(builder.sinks.values()),
        failed_units=failed,
    )


def load_config(
    path: str,
    metrics: Optional[MetricsCollector] = None,
    session_factory: Callable[[Optional[str]], Any] = build_session,
) -> RunConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
    except ValueError as exc:
        raise ConfigError(f"Configuration {path} is not valid JSON: {exc}") from exc
    return build_run(parse_document(data), metrics=metrics, session_factory=session_factory)
