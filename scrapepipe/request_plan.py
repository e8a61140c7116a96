from __future__ import annotations

from typing import TYPE_CHECKING, Iterator, Mapping, Optional
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from .models import RequestDescriptor
from .params import NamedParam, ParameterSpace, PathSuffix

if TYPE_CHECKING:
    from .job import Job

# Characters left untouched when a suffix is concatenated onto a path.
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"


def append_query(url: str, pairs: Mapping[str, str]) -> str:
    """Append query pairs to ``url``, keeping any query it already has."""
    if not pairs:
        return url
    parts = urlsplit(url)
    extra = urlencode(list(pairs.items()))
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def append_path(url: str, literal: str, value: str) -> str:
    parts = urlsplit(url)
    new_path = quote(parts.path + literal + value, safe=_PATH_SAFE)
    return urlunsplit((parts.scheme, parts.netloc, new_path, parts.query, parts.fragment))


class RequestPlan:
    """Lazily expands one base URL into the requests a job must send.

    One descriptor per ParameterSpace element, or exactly one when the job
    has no dynamic parameters. Nothing is sent from here.
    """

    def __init__(self, job: "Job", base_url: str) -> None:
        self._job = job
        self._base_url = base_url
        self._space: Optional[ParameterSpace] = (
            ParameterSpace(job.parameter_spec) if job.parameter_spec is not None else None
        )

    def __len__(self) -> int:
        return len(self._space) if self._space is not None else 1

    def __iter__(self) -> Iterator[RequestDescriptor]:
        with_defaults = self.url_with_defaults()
        if self._space is None:
            yield self._descriptor(with_defaults)
            return

        target = self._space.target
        for value in self._space:
            if isinstance(target, NamedParam):
                url = append_query(with_defaults, {target.name: value})
            elif isinstance(target, PathSuffix):
                url = append_path(with_defaults, target.literal, value)
            else:
                raise TypeError(f"Unknown parameter target: {target!r}")
            yield self._descriptor(url)

    def url_with_defaults(self) -> str:
        defaults = self._job.default_parameters
        return append_query(self._base_url, {k: defaults[k] for k in sorted(defaults)})

    def _descriptor(self, url: str) -> RequestDescriptor:
        return RequestDescriptor(method="GET", url=url, headers=dict(self._job.headers))
