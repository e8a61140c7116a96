from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Tuple, Union

from .errors import ConfigError


@dataclass(frozen=True)
class NamedParam:
    """Apply the dynamic value as the query parameter ``name``."""

    name: str


@dataclass(frozen=True)
class PathSuffix:
    """Append ``literal + value`` to the URL path."""

    literal: str


ParamTarget = Union[NamedParam, PathSuffix]


@dataclass(frozen=True)
class IntRange:
    target: ParamTarget
    start: int
    end: int
    step: int = 1

    def __post_init__(self) -> None:
        if self.step < 1:
            raise ConfigError(f"IntRange step must be a positive integer, got {self.step}")


@dataclass(frozen=True)
class KeyWords:
    target: ParamTarget
    words: Tuple[str, ...]


ParameterSpec = Union[IntRange, KeyWords]


class ParameterSpace:
    """Finite, ordered, restartable sequence of values for one ParameterSpec.

    The length is known up front so a plan can be sized before any request
    is built. Iterating twice yields the same values.
    """

    def __init__(self, spec: ParameterSpec) -> None:
        self._spec = spec

    @property
    def target(self) -> ParamTarget:
        return self._spec.target

    def __len__(self) -> int:
        spec = self._spec
        if isinstance(spec, IntRange):
            return len(range(spec.start, spec.end + 1, spec.step))
        if isinstance(spec, KeyWords):
            return len(spec.words)
        raise TypeError(f"Unknown parameter spec: {spec!r}")

    def __iter__(self) -> Iterator[str]:
        spec = self._spec
        if isinstance(spec, IntRange):
            return (str(i) for i in range(spec.start, spec.end + 1, spec.step))
        if isinstance(spec, KeyWords):
            return iter(spec.words)
        raise TypeError(f"Unknown parameter spec: {spec!r}")
