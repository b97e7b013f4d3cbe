from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_ROOT, DEFAULT_TIMEOUT_S


class ThreeBladesError(RuntimeError):
    pass


class ValidationError(ThreeBladesError):
    pass


class NotFoundError(ThreeBladesError):
    def __init__(self, kind: str, name: str, field: str = "name") -> None:
        super().__init__(f"There is no {kind} with {field}: '{name}'")
        self.kind = kind
        self.name = name


class TransportError(ThreeBladesError):
    pass


class HTTPError(TransportError):
    """Non-2xx answer from the API. ``body`` is the raw response text."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body

    def messages(self) -> list[str]:
        """
        Human-readable messages from a DRF error body.

        ``{"detail": "..."}`` gives one message; field errors such as
        ``{"name": ["This field is required."]}`` give ``"name: This field is required."``.
        A body that is not JSON is returned as-is.
        """
        text = self.body.strip()
        if not text:
            return []
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return [text]
        if isinstance(payload, list):
            return [str(item) for item in payload]
        if not isinstance(payload, dict):
            return [text]
        out: list[str] = []
        for key, value in payload.items():
            values = value if isinstance(value, list) else [value]
            for v in values:
                if key in ("detail", "non_field_errors", "message", "error"):
                    out.append(str(v))
                else:
                    out.append(f"{key}: {v}")
        return out


def api_path(template: str, **params: Any) -> str:
    """
    Fill ``{name}`` placeholders of a path template with URL-quoted values.

    Example:
        api_path("/{namespace}/hosts/{id}/", namespace="acme", id="h1") -> "/acme/hosts/h1/"
    """
    path = template
    for name, value in params.items():
        if value is None or value == "":
            raise ValidationError(f"Missing required path param: {name}")
        path = path.replace("{" + name + "}", quote(str(value), safe=""))
    return path


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if not params:
        return None
    cleaned = {k: v for k, v in params.items() if v is not None and v != ""}
    return cleaned or None


class ThreeBladesClient:
    """
    Thin httpx wrapper for the 3Blades REST API. Adds the auth header and turns
    transport failures and non-2xx responses into ThreeBladesError subclasses.
    """

    def __init__(
        self,
        *,
        root: str = DEFAULT_ROOT,
        token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.root = root.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s

        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ThreeBladesClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def auth_headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def request(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: bool = True,
    ) -> httpx.Response:
        if json_body is not None and (data is not None or files is not None):
            raise ThreeBladesError("Pass either json_body or data/files, not both.")
        if path.startswith(("http://", "https://")):
            url = path
        else:
            if not path.startswith("/"):
                path = "/" + path
            url = f"{self.root}{path}"

        req_headers: dict[str, str] = {}
        if auth:
            req_headers.update(self.auth_headers())
        if headers:
            req_headers.update(headers)

        try:
            resp = self._http.request(
                method.upper(),
                url,
                params=_clean_params(params),
                json=json_body,
                data=data,
                files=files,
                headers=req_headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            raise HTTPError(resp.status_code, resp.text)
        return resp

    def call(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self.request(method=method, path=path, **kwargs)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except json.JSONDecodeError:
            return resp.text

    def list(self, path: str, params: dict[str, Any] | None = None) -> list[Any]:
        payload = self.call("GET", path, params=params)
        if isinstance(payload, dict) and isinstance(payload.get("results"), list):
            # Paginated envelope: {"count": n, "next": ..., "results": [...]}
            return payload["results"]
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TransportError(f"Expected a list from GET {path}, got {type(payload).__name__}")
        return payload

    def read(self, path: str) -> Any:
        return self.call("GET", path)

    def create(self, path: str, body: Any | None = None) -> Any:
        return self.call("POST", path, json_body=body)

    def partial_update(self, path: str, body: Any) -> Any:
        return self.call("PATCH", path, json_body=body)

    def delete(self, path: str) -> None:
        self.call("DELETE", path)
