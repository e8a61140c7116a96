from __future__ import annotations

import shlex as _shlex
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl as _parse_qsl, unquote as _unquote, urlsplit as _urlsplit

from curl_cffi import requests as curl_requests
import requests

from . import __version__
from .errors import ConfigError, TransportError
from .models import BYTES, TEXT, BytesResponse, RequestDescriptor, Response, TextResponse


USER_AGENT = f"scrapepipe/{__version__}"


def build_session(impersonate: Optional[str] = None) -> Any:
    """Create the transport handle a job (and everything it spawns) shares.

    Sessions keep cookies, so state set up by an authentication chain carries
    over to later requests. ``impersonate`` switches to a curl_cffi session
    that mimics the named browser (e.g. "chrome120").
    """
    if impersonate:
        return curl_requests.Session(impersonate=impersonate)
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    return session


def send(session: Any, descriptor: RequestDescriptor, timeout: Optional[float] = None) -> Any:
    try:
        return session.request(
            method=descriptor.method,
            url=descriptor.url,
            data=descriptor.form or None,
            headers=descriptor.headers or None,
            cookies=descriptor.cookies or None,
            timeout=timeout,
        )
    except Exception as exc:  # noqa: BLE001
        raise TransportError(f"{descriptor.method} {descriptor.url} failed: {type(exc).__name__}: {exc}") from exc


def is_success(raw: Any) -> bool:
    status_code = getattr(raw, "status_code", None)
    return bool(status_code is not None and 200 <= int(status_code) < 300)


def materialize(raw: Any, kind: str) -> Response:
    """Read the body of ``raw`` as the requested materialization kind."""
    url = str(raw.url)
    mime_type, charset = _content_type(raw.headers.get("Content-Type"))
    filename = suggested_filename(url, mime_type)
    try:
        if kind == TEXT:
            return TextResponse(url=url, text=raw.text, filename=filename, mime_type=mime_type)
        if kind == BYTES:
            return BytesResponse(url=url, content=raw.content, filename=filename, mime_type=mime_type, charset=charset)
    except Exception as exc:  # noqa: BLE001
        raise TransportError(f"Failed to read body of {url}: {type(exc).__name__}: {exc}") from exc
    raise ValueError(f"Unknown materialization kind: {kind!r}")


def suggested_filename(url: str, mime_type: Optional[str]) -> str:
    """Path segments joined with '_', plus the mime subtype as extension."""
    segments = [_unquote(s) for s in _urlsplit(url).path.split("/") if s]
    filename = "_".join(segments) or "index"
    subtype = mime_type.split("/", 1)[1] if mime_type and "/" in mime_type else None
    if subtype and not filename.endswith(subtype):
        filename = f"{filename}.{subtype}"
    return filename


def _content_type(raw: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    if not raw:
        return None, None
    mime_type, _, params = raw.partition(";")
    charset = None
    for param in params.split(";"):
        key, _, value = param.strip().partition("=")
        if key.lower() == "charset" and value:
            charset = value.strip('"')
    return mime_type.strip().lower() or None, charset


def _parse_cookie_str(raw: str) -> dict[str, str]:
    cookies: dict[str, str] = {}
    for pair in raw.split(";"):
        part = pair.strip()
        if not part or "=" not in part:
            continue
        k, v = part.split("=", 1)
        cookies[k.strip()] = v.strip()
    return cookies


def parse_curl(curl_cmd: str) -> RequestDescriptor:
    """Build a request descriptor from a copied ``curl`` command line.

    The body is read as an urlencoded form, which is what login pages post.
    """
    try:
        tokens = _shlex.split(curl_cmd, posix=True)
    except ValueError as exc:
        raise ConfigError(f"Cannot tokenize curl command: {exc}") from exc
    if not tokens or tokens[0] != "curl":
        raise ConfigError("curl command must start with 'curl'.")

    method = "GET"
    raw_url = ""
    headers: Dict[str, str] = {}
    cookies: Dict[str, str] = {}
    body = ""

    i = 1
    while i < len(tokens):
        t = tokens[i]
        has_value = i + 1 < len(tokens)
        if t in ("-X", "--request") and has_value:
            method = tokens[i + 1].upper()
            i += 2
            continue
        if t in ("-H", "--header") and has_value:
            hv = tokens[i + 1]
            if ":" in hv:
                k, v = hv.split(":", 1)
                if k.strip().lower() != "cookie":
                    headers[k.strip()] = v.strip()
                else:
                    cookies.update(_parse_cookie_str(v.strip()))
            i += 2
            continue
        if t in ("-b", "--cookie") and has_value:
            cookies.update(_parse_cookie_str(tokens[i + 1].strip()))
            i += 2
            continue
        if t in ("--data", "--data-raw", "--data-binary", "--data-urlencode", "-d") and has_value:
            body = tokens[i + 1]
            if method == "GET":
                method = "POST"
            i += 2
            continue
        if t == "--url" and has_value:
            raw_url = tokens[i + 1]
            i += 2
            continue
        if t.startswith("http://") or t.startswith("https://"):
            raw_url = t
            i += 1
            continue
        i += 1

    if not raw_url:
        raise ConfigError("No URL found in curl command.")

    form = dict(_parse_qsl(body, keep_blank_values=True)) if body else {}
    return RequestDescriptor(method=method, url=raw_url, form=form, headers=headers, cookies=cookies)
