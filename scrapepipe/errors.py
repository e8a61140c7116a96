from __future__ import annotations


class ScrapePipeError(Exception):
    """Base class for every error raised by the pipeline."""


class ConfigError(ScrapePipeError):
    """The configuration document (or a step built from it) is invalid."""


class UnreachableConfigError(ConfigError):
    """A continuation was attached where it can never be executed.

    Raised at dispatch time, e.g. a Scrape step attached to a raw response,
    or a result unit paired with a continuation that cannot accept it.
    """


class ExtractionMiss(ScrapePipeError):
    """An extraction step captured nothing. The branch is skipped."""


class ExtractionShapeError(ScrapePipeError):
    """A path lookup met a value of the wrong shape, or a missing field/index."""


class ResultShapeError(ScrapePipeError):
    """A captured string could not be turned into the configured result unit."""


class AuthenticationError(ScrapePipeError):
    """An authentication step failed; the owning job cannot be built."""


class TransportError(ScrapePipeError):
    """Sending a request or reading its body failed."""


class SinkError(ScrapePipeError):
    """A sink failed to store content."""
