from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Union

from .errors import AuthenticationError, ConfigError, ExtractionMiss, ExtractionShapeError, ResultShapeError, TransportError
from .extraction import ExtractionStep
from .models import TEXT, FormParameter, RequestDescriptor
from .request_plan import append_query
from .transport import is_success, materialize, send

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEstablished:
    """The chain is complete; the session is authenticated."""


@dataclass(frozen=True)
class NextStep:
    step: "AuthStep"


AuthAction = Union[SessionEstablished, NextStep]


@dataclass(frozen=True)
class AuthStep:
    """One request of an authentication chain.

    Form parameters harvested by ``extraction`` are merged into the form of
    the next step. Steps are never mutated; inherited fields travel as an
    argument down the recursion.
    """

    request: RequestDescriptor
    action: AuthAction = field(default_factory=SessionEstablished)
    extraction: Optional[ExtractionStep] = None

    def authenticate(
        self,
        session: Any,
        inherited: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Run this step and the rest of the chain over ``session``.

        Returns the same session once a SessionEstablished step succeeds.
        Raises AuthenticationError on a non-2xx answer or transport failure.
        """
        descriptor = self.outgoing_request(inherited or {})
        logger.info("Authenticating: %s %s", descriptor.method, descriptor.url)
        try:
            raw = send(session, descriptor, timeout)
        except TransportError as exc:
            raise AuthenticationError(f"Cannot authenticate: {exc}") from exc

        if not is_success(raw):
            raise AuthenticationError(
                f"Cannot authenticate: {descriptor.url} answered HTTP {getattr(raw, 'status_code', None)}"
            )

        harvested = self._harvest(raw) if self.extraction is not None else {}

        action = self.action
        if isinstance(action, SessionEstablished):
            logger.info("Session established by %s", descriptor.url)
            return session
        if isinstance(action, NextStep):
            return action.step.authenticate(session, harvested, timeout)
        raise TypeError(f"Unknown authentication action: {action!r}")

    def outgoing_request(self, inherited: Mapping[str, str]) -> RequestDescriptor:
        form: Dict[str, str] = {**self.request.form, **inherited}
        if self.request.method == "GET":
            return replace(self.request, url=append_query(self.request.url, form), form={})
        return replace(self.request, form=form)

    def _harvest(self, raw: Any) -> Dict[str, str]:
        try:
            response = materialize(raw, TEXT)
        except TransportError as exc:
            raise AuthenticationError(f"Cannot authenticate: {exc}") from exc
        try:
            results = self.extraction.process(response.text, base_url=response.url)
        except (ExtractionMiss, ExtractionShapeError, ResultShapeError) as exc:
            raise AuthenticationError(f"Cannot harvest form fields from {response.url}: {exc}") from exc

        harvested: Dict[str, str] = {}
        for result in results:
            if not isinstance(result, FormParameter):
                raise ConfigError(f"Unexpected result {result!r} in authentication step; only form parameters apply")
            harvested[result.name] = result.value
        logger.debug("Harvested form fields %s from %s", sorted(harvested), response.url)
        return harvested
