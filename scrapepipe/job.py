from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Mapping, Optional, Tuple

from .dispatcher import PipelineDispatcher
from .errors import ConfigError, TransportError
from .metrics import MetricsCollector
from .models import BYTES, MATERIALIZATIONS, TEXT, FetchRecord, RequestDescriptor
from .params import ParameterSpec
from .request_plan import RequestPlan
from .scheduler import for_each_concurrent
from .transport import is_success, materialize, send

if TYPE_CHECKING:
    from .scheduler import Scheduler
    from .steps import ContinuationStep

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_CONCURRENCY = 15
DEFAULT_STEP_CONCURRENCY = 15
DEFAULT_URL_CONCURRENCY = 2


@dataclass(frozen=True)
class Job:
    """A configured scraping job: URL parameterization plus continuation map.

    ``targets`` maps a materialization kind ("text" or "bytes") to the
    continuation steps run on responses of that kind. ``session`` is the
    authenticated transport handle; jobs spawned from this one share it by
    reference and never authenticate again.
    """

    name: str = "job"
    default_parameters: Mapping[str, str] = field(default_factory=dict)
    parameter_spec: Optional[ParameterSpec] = None
    targets: Mapping[str, Tuple["ContinuationStep", ...]] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    request_concurrency: int = DEFAULT_REQUEST_CONCURRENCY
    step_concurrency: int = DEFAULT_STEP_CONCURRENCY
    session: Any = field(default=None, compare=False, repr=False)
    metrics: Optional[MetricsCollector] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        for kind in self.targets:
            if kind not in MATERIALIZATIONS:
                raise ConfigError(f"Job {self.name!r}: unknown materialization {kind!r}")
        if self.request_concurrency < 1 or self.step_concurrency < 1:
            raise ConfigError(f"Job {self.name!r}: concurrency limits must be positive")

    @property
    def primary_kind(self) -> str:
        """The materialization read from the network; other kinds derive from it."""
        return BYTES if BYTES in self.targets else TEXT

    def spawned_from(self, parent: "Job") -> "Job":
        return replace(self, session=parent.session, metrics=parent.metrics)

    def plan(self, url: str) -> RequestPlan:
        return RequestPlan(self, url)

    def run(self, url: str, scheduler: "Scheduler") -> None:
        """Send every request of this job's plan for ``url`` and dispatch the responses."""
        if self.session is None:
            raise ConfigError(f"Job {self.name!r} has no session")
        dispatcher = PipelineDispatcher(self, scheduler)
        for_each_concurrent(lambda descriptor: self._fetch(descriptor, dispatcher), self.plan(url), self.request_concurrency)

    def _fetch(self, descriptor: RequestDescriptor, dispatcher: PipelineDispatcher) -> None:
        start_ms = self._now_ms()
        try:
            raw = send(self.session, descriptor, self.timeout)
        except TransportError as exc:
            logger.warning("[%s] %s", self.name, exc)
            cause = exc.__cause__ if exc.__cause__ is not None else exc
            self._record(descriptor.url, None, start_ms, type(cause).__name__)
            return

        status_code = getattr(raw, "status_code", None)
        success = is_success(raw)
        self._record(descriptor.url, status_code, start_ms, None if success else f"HTTP_{status_code}")
        if not success:
            logger.warning("[%s] %s answered HTTP %s", self.name, descriptor.url, status_code)
        else:
            logger.info("[%s] fetched %s", self.name, descriptor.url)

        if not self.targets:
            return
        try:
            response = materialize(raw, self.primary_kind)
        except TransportError as exc:
            logger.warning("[%s] %s", self.name, exc)
            return
        dispatcher.dispatch_response(response)

    def _record(self, url: str, status_code: Optional[int], start_ms: int, error_type: Optional[str]) -> None:
        if self.metrics is None:
            return
        self.metrics.record(
            FetchRecord(
                job_name=self.name,
                url=url,
                success=error_type is None,
                status_code=status_code,
                latency_ms=self._now_ms() - start_ms,
                error_type=error_type,
            )
        )

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)


@dataclass(frozen=True)
class ScrapingUnit:
    """A top-level unit from the configuration: one job over a list of URLs."""

    job: Job
    urls: Tuple[str, ...]
    url_concurrency: int = DEFAULT_URL_CONCURRENCY

    def run(self, scheduler: "Scheduler") -> None:
        for_each_concurrent(lambda url: self.job.run(url, scheduler), self.urls, self.url_concurrency)
