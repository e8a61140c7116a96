from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from .errors import ExtractionMiss, ExtractionShapeError, ResultShapeError, SinkError, UnreachableConfigError
from .extraction import ExtractionStep
from .models import TEXT, URL, BytesResponse, FormParameter, PlainString, Response, ResultUnit, TextResponse
from .scheduler import for_each_concurrent
from .steps import ContinuationStep, Process, Scrape, Store
from .storage import StorageBase
from .transport import suggested_filename

if TYPE_CHECKING:
    from .job import Job
    from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class PipelineDispatcher:
    """Routes a fetched response, and every value extracted from it, through
    a job's continuation steps.

    Branch-local failures (empty captures, shape errors, sink failures) are
    logged and the branch is dropped. Continuations that can never apply
    raise UnreachableConfigError.
    """

    def __init__(self, job: "Job", scheduler: "Scheduler") -> None:
        self._job = job
        self._scheduler = scheduler

    def dispatch_response(self, response: Response) -> None:
        """Run the continuation list of every materialization the job asks for.

        The fetched kind goes first; other kinds are converted in-process from
        the bytes already downloaded.
        """
        targets = self._job.targets
        kinds = [response.kind] + [kind for kind in targets if kind != response.kind]
        for kind in kinds:
            steps = targets.get(kind)
            if not steps:
                continue
            converted = response if kind == response.kind else self.convert(response, kind)
            self.run_steps(converted, steps)

    @staticmethod
    def convert(response: Response, kind: str) -> Response:
        if isinstance(response, BytesResponse) and kind == TEXT:
            return response.to_text()
        raise UnreachableConfigError(f"Cannot derive a {kind!r} response from a {response.kind!r} response")

    def run_steps(self, response: Response, steps: Sequence[ContinuationStep]) -> None:
        for_each_concurrent(lambda step: self.apply_to_response(response, step), steps, self._job.step_concurrency)

    def apply_to_response(self, response: Response, step: ContinuationStep) -> None:
        if isinstance(step, Store):
            if isinstance(response, BytesResponse):
                content = response.content
            else:
                content = response.text.encode("utf-8")
            self._store(step.sink, content, response.filename, response.mime_type)
        elif isinstance(step, Process):
            text = response.text if isinstance(response, TextResponse) else response.to_text().text
            results = self._extract(step.step, text, response.url)
            self._route_all(results, step.step, response.url)
        elif isinstance(step, Scrape):
            raise UnreachableConfigError(
                f"Job {self._job.name!r}: Scrape cannot handle a raw response; extract URLs with Process first"
            )
        else:
            raise TypeError(f"Unknown continuation step: {step!r}")

    def route(self, result: ResultUnit, step: ContinuationStep, base_url: str) -> None:
        """Feed one extracted value into one continuation step."""
        if isinstance(step, Store):
            self._store_result(step.sink, result)
        elif isinstance(step, Scrape):
            if not isinstance(result, URL):
                raise UnreachableConfigError(f"Cannot scrape {result!r}; only URL results can be fetched")
            new_job = step.job.spawned_from(self._job)
            logger.debug("[%s] spawning %s for %s", self._job.name, new_job.name, result.value)
            self._scheduler.spawn(new_job.run, result.value, self._scheduler)
        elif isinstance(step, Process):
            if not isinstance(result, PlainString):
                raise UnreachableConfigError(f"Cannot process {result!r}; only plain strings can be extracted again")
            results = self._extract(step.step, result.value, base_url)
            self._route_all(results, step.step, base_url)
        else:
            raise TypeError(f"Unknown continuation step: {step!r}")

    def _route_all(self, results: Optional[List[ResultUnit]], step: ExtractionStep, base_url: str) -> None:
        if not results:
            return
        for result in results:
            for next_step in step.next_steps:
                self.route(result, next_step, base_url)

    def _extract(self, step: ExtractionStep, text: str, base_url: str) -> Optional[List[ResultUnit]]:
        try:
            return step.process(text, base_url=base_url)
        except ExtractionMiss as exc:
            logger.info("[%s] %s: %s", self._job.name, base_url, exc)
        except (ExtractionShapeError, ResultShapeError) as exc:
            logger.warning("[%s] dropping branch for %s: %s", self._job.name, base_url, exc)
        return None

    def _store_result(self, sink: StorageBase, result: ResultUnit) -> None:
        if isinstance(result, URL):
            value, name = result.value, suggested_filename(result.value, None)
        elif isinstance(result, PlainString):
            value = result.value
            name = hashlib.sha1(value.encode("utf-8")).hexdigest()[:16] + ".txt"
        elif isinstance(result, FormParameter):
            value, name = f"{result.name}={result.value}", f"{result.name}.txt"
        else:
            raise TypeError(f"Unknown result unit: {result!r}")
        self._store(sink, value.encode("utf-8"), name, "text/plain")

    def _store(self, sink: StorageBase, content: bytes, name: str, mime_type: Optional[str]) -> None:
        try:
            sink.store(content, name, mime_type)
        except SinkError as exc:
            logger.error("[%s] %s", self._job.name, exc)
