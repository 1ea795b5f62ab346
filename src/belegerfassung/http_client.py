from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Mapping


class HttpRequestError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def credentials_rejected(self) -> bool:
        return self.status in (401, 403)


def post_form(url: str, fields: Mapping[str, str], *, headers: Mapping[str, str] | None = None, timeout_s: float = 30.0) -> dict:
    data = urllib.parse.urlencode(dict(fields)).encode("ascii")
    return _request(url, data, {"Content-Type": "application/x-www-form-urlencoded", **(headers or {})}, timeout_s)


def post_bytes(
    url: str,
    body: bytes,
    *,
    headers: Mapping[str, str] | None = None,
    params: Mapping[str, str] | None = None,
    timeout_s: float = 30.0,
) -> dict:
    if params:
        url = f"{url}?{urllib.parse.urlencode(dict(params))}"
    return _request(url, body, {"Content-Type": "application/octet-stream", **(headers or {})}, timeout_s)


def _request(url: str, data: bytes, headers: Mapping[str, str], timeout_s: float) -> dict:
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Accept": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            body = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        raise HttpRequestError(f"HTTP {exc.code} from {_origin(url)}: {body}", status=exc.code) from exc
    except urllib.error.URLError as exc:
        raise HttpRequestError(f"Request to {_origin(url)} failed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise HttpRequestError(f"Request to {_origin(url)} timed out after {timeout_s}s") from exc

    if not body:
        return {}
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as exc:
        raise HttpRequestError(f"Invalid JSON from {_origin(url)}: {body[:200]}") from exc
    if not isinstance(decoded, dict):
        raise HttpRequestError(f"Expected a JSON object from {_origin(url)}, got {type(decoded).__name__}")
    return decoded


def _origin(url: str) -> str:
    # Query strings may carry keys.
    parts = urllib.parse.urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"
