"""Blocking JSON-over-HTTP transport used by every outbound adapter."""

from __future__ import annotations

import json
import socket
from dataclasses import dataclass, field
from http.client import HTTPException
from typing import Any, Protocol
from urllib import error, parse, request


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        if not self.body:
            return {}
        return json.loads(self.body)


class HttpStatusError(RuntimeError):
    def __init__(self, status: int, body: str, url: str) -> None:
        super().__init__(f"HTTP {status} from {url}: {body[:200]}")
        self.status = status
        self.body = body
        self.url = url


class HttpTimeout(RuntimeError):
    pass


class HttpConnectionError(RuntimeError):
    pass


class HttpTransport(Protocol):
    def request(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout_s: float,
    ) -> HttpResponse: ...


class UrllibTransport:
    """urllib-backed transport; non-2xx answers raise HttpStatusError."""

    def request(
        self,
        method: str,
        url: str,
        *,
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout_s: float,
    ) -> HttpResponse:
        req = request.Request(url=url, data=body, method=method.upper(), headers=dict(headers or {}))
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                raw = response.read().decode("utf-8", errors="replace")
                return HttpResponse(
                    status=int(response.status),
                    body=raw,
                    headers={key: value for key, value in response.headers.items()},
                )
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise HttpStatusError(exc.code, raw_error, url) from exc
        except error.URLError as exc:
            if isinstance(exc.reason, (TimeoutError, socket.timeout)):
                raise HttpTimeout(f"Request to {url} timed out after {timeout_s}s") from exc
            raise HttpConnectionError(f"Request to {url} failed: {exc.reason}") from exc
        except (TimeoutError, socket.timeout) as exc:
            raise HttpTimeout(f"Request to {url} timed out after {timeout_s}s") from exc
        except (HTTPException, OSError) as exc:
            # Dropped or malformed responses surface from getresponse() outside URLError.
            raise HttpConnectionError(f"Request to {url} failed: {exc!r}") from exc


def with_query(url: str, params: dict[str, Any] | None) -> str:
    if not params:
        return url
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((f"{key}[]", _format_query_value(item)) for item in value)
        else:
            pairs.append((key, _format_query_value(value)))
    if not pairs:
        return url
    return f"{url}?{parse.urlencode(pairs)}"


def _format_query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
