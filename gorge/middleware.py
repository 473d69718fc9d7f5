"""WSGI middleware: request statistics, User-Agent enforcement and proxy fallback."""

from __future__ import annotations

import http
import http.client
import io
import json
import logging
import threading
import time
import urllib.error
import urllib.request
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from werkzeug.datastructures import Headers
from werkzeug.wsgi import ClosingIterator

_log = logging.getLogger(__name__)

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

_UPSTREAM_TIMEOUT = 60.0
_PATH_SAFE = "/:@!$&'()*+,;=-._~"

WSGIApp = Callable[[dict, Callable], Iterable[bytes]]


def _request_path(environ: dict) -> str:
    return environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")


@dataclass
class Statistics:
    """Counters about the requests the server has handled."""

    active_connections: int = 0
    total_connections: int = 0
    total_response_time: float = 0.0
    total_cache_hits: int = 0
    total_cache_misses: int = 0
    connections_per_endpoint: Counter = field(default_factory=Counter)
    response_time_per_endpoint: defaultdict = field(
        default_factory=lambda: defaultdict(float)
    )
    cache_hits_per_endpoint: Counter = field(default_factory=Counter)
    cache_misses_per_endpoint: Counter = field(default_factory=Counter)
    proxied_connections: int = 0
    proxied_connections_per_endpoint: Counter = field(default_factory=Counter)
    lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def record_cache(self, path: str, hit: bool) -> None:
        """Count a cache hit or miss for *path*."""
        with self.lock:
            if hit:
                self.total_cache_hits += 1
                self.cache_hits_per_endpoint[path] += 1
            else:
                self.total_cache_misses += 1
                self.cache_misses_per_endpoint[path] += 1

    def record_proxied(self, path: str) -> None:
        """Count a request for *path* forwarded to an upstream forge."""
        with self.lock:
            self.proxied_connections += 1
            self.proxied_connections_per_endpoint[path] += 1

    def _begin(self, path: str) -> None:
        with self.lock:
            self.active_connections += 1
            self.total_connections += 1
            self.connections_per_endpoint[path] += 1

    def _end(self, path: str, duration: float) -> None:
        with self.lock:
            self.active_connections -= 1
            self.total_response_time += duration
            self.response_time_per_endpoint[path] += duration


class StatisticsMiddleware:
    """Counts connections and response times per request path."""

    def __init__(self, app: WSGIApp, stats: Statistics) -> None:
        self.app = app
        self.stats = stats

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        path = _request_path(environ)
        started = time.monotonic()
        self.stats._begin(path)
        finished = False

        def finish() -> None:
            nonlocal finished
            if not finished:
                finished = True
                self.stats._end(path, time.monotonic() - started)

        try:
            iterable = self.app(environ, start_response)
        except BaseException:
            finish()
            raise
        return ClosingIterator(iterable, finish)


class RequireUserAgent:
    """Rejects requests without a User-Agent header with a JSON 400 reply."""

    def __init__(self, app: WSGIApp) -> None:
        self.app = app

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        if environ.get("HTTP_USER_AGENT"):
            return self.app(environ, start_response)
        body = json.dumps(
            {
                "message": "User-Agent header is missing",
                "errors": ["User-Agent must have some value"],
            },
            separators=(",", ":"),
        ).encode("utf-8")
        start_response(
            "400 Bad Request",
            [("Content-Type", "application/json"), ("Content-Length", str(len(body)))],
        )
        return [body]


@dataclass
class _CapturedResponse:
    status: str = "200 OK"
    headers: list = field(default_factory=list)
    body: bytes = b""
    exc_info: Any = None

    @property
    def code(self) -> int:
        return int(self.status.split(None, 1)[0])

    def replay(self, start_response: Callable) -> list[bytes]:
        start_response(self.status, self.headers, self.exc_info)
        return [self.body]


@dataclass
class _ProxiedResponse:
    """What an upstream forge answered; callbacks may change headers and body."""

    path: str
    status: int
    reason: str
    headers: Headers
    body: bytes


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


def _buffer_input(environ: dict) -> bytes:
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    stream = environ.get("wsgi.input")
    data = stream.read(length) if stream is not None and length > 0 else b""
    environ["wsgi.input"] = io.BytesIO(data)
    return data


def _forward_headers(environ: dict) -> dict[str, str]:
    headers: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            name = key[5:].replace("_", "-").title()
        elif key in ("CONTENT_TYPE", "CONTENT_LENGTH"):
            name = key.replace("_", "-").title()
        else:
            continue
        if name.lower() in _HOP_BY_HOP or name.lower() == "host" or not value:
            continue
        headers[name] = value
    remote = environ.get("REMOTE_ADDR")
    if remote:
        prior = headers.get("X-Forwarded-For")
        headers["X-Forwarded-For"] = f"{prior}, {remote}" if prior else remote
    return headers


class ProxyFallback:
    """Forwards a request to *upstream* when the local answer calls for it.

    The wrapped application answers first. When ``should_proxy(environ,
    status)`` is true, the same request is sent to the upstream forge and
    its answer is returned instead, after ``on_response`` has been called
    with an object carrying ``path``, ``status``, ``reason``, ``headers``
    (mutable) and ``body``. If the upstream cannot be reached, the local
    answer is returned.
    """

    def __init__(
        self,
        app: WSGIApp,
        upstream: str,
        stats: Statistics,
        should_proxy: Callable[[dict, int], bool],
        on_response: Optional[Callable[[_ProxiedResponse], None]] = None,
    ) -> None:
        self.app = app
        self.upstream = upstream
        self.stats = stats
        self.should_proxy = should_proxy
        self.on_response = on_response
        self._opener = urllib.request.build_opener(
            urllib.request.ProxyHandler({}), _NoRedirect
        )

    def _capture(self, environ: dict) -> _CapturedResponse:
        captured = _CapturedResponse()
        chunks: list[bytes] = []

        def capture_start(status, headers, exc_info=None):
            captured.status = status
            captured.headers = list(headers)
            captured.exc_info = exc_info
            return chunks.append

        iterable = self.app(environ, capture_start)
        try:
            for chunk in iterable:
                chunks.append(chunk)
        finally:
            close = getattr(iterable, "close", None)
            if close is not None:
                close()
        captured.body = b"".join(chunks)
        return captured

    def _forward(self, environ: dict, body: bytes, target) -> _ProxiedResponse:
        path = _request_path(environ)
        raw_path = quote(path.encode("latin-1"), safe=_PATH_SAFE)
        url = urlunsplit(
            (target.scheme, target.netloc, raw_path, environ.get("QUERY_STRING", ""), "")
        )
        request = urllib.request.Request(
            url,
            data=body or None,
            headers=_forward_headers(environ),
            method=environ.get("REQUEST_METHOD", "GET"),
        )
        try:
            response = self._opener.open(request, timeout=_UPSTREAM_TIMEOUT)
        except urllib.error.HTTPError as exc:
            content = exc.read() if exc.fp is not None else b""
            return _ProxiedResponse(
                path=path,
                status=exc.code,
                reason=str(exc.reason or ""),
                headers=Headers(list(exc.headers.items()) if exc.headers else []),
                body=content,
            )
        with response:
            content = response.read()
            return _ProxiedResponse(
                path=path,
                status=response.status,
                reason=response.reason or "",
                headers=Headers(list(response.headers.items())),
                body=content,
            )

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        request_body = _buffer_input(environ)
        captured = self._capture(environ)
        environ["wsgi.input"] = io.BytesIO(request_body)

        if not self.should_proxy(environ, captured.code):
            return captured.replay(start_response)

        _log.info("Forwarding request to %s", self.upstream)
        try:
            target = urlsplit(self.upstream)
        except ValueError as exc:
            _log.error("%s", exc)
            return captured.replay(start_response)

        self.stats.record_proxied(_request_path(environ))

        try:
            proxied = self._forward(environ, request_body, target)
        except (OSError, http.client.HTTPException, ValueError) as exc:
            _log.error("%s", exc)
            return captured.replay(start_response)

        if self.on_response is not None:
            self.on_response(proxied)

        try:
            reason = http.HTTPStatus(proxied.status).phrase
        except ValueError:
            reason = proxied.reason
        headers = [
            (name, value)
            for name, value in proxied.headers.items()
            if name.lower() not in _HOP_BY_HOP and name.lower() != "content-length"
        ]
        headers.append(("Content-Length", str(len(proxied.body))))
        start_response(f"{proxied.status} {reason}".rstrip(), headers)
        return [proxied.body]