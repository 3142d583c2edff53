"""Base HTTP Client for the Generation Worker API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()


class WorkerAPIError(Exception):
    """Error returned by, or while reaching, the Generation Worker API"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


class APIClient:
    """
    Thin httpx wrapper that speaks the worker's response envelope.

    Paths are relative to ``/v1``. Successful envelopes are unwrapped to their
    ``data``; error envelopes and transport failures raise WorkerAPIError.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers or {},
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = self.client.request(method, f"/v1{path}", params=params, json=json)
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise WorkerAPIError(f"Connection failed: {e}") from None
        return self._handle_response(response)

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return self.request("POST", path, params=params, json=json)

    def _handle_response(self, response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            raise WorkerAPIError(
                f"Invalid JSON response: {response.status_code}",
                status_code=response.status_code,
            ) from None

        if not isinstance(body, dict) or "ok" not in body:
            if response.is_error:
                raise WorkerAPIError(
                    f"API Error {response.status_code}", status_code=response.status_code
                )
            return body

        if response.is_error or not body["ok"]:
            error = body.get("error") or {}
            message = error.get("message", "Request failed")
            console.print(Panel(f"[red]{message}[/red]", title="API Error"))
            raise WorkerAPIError(
                f"API Error {response.status_code}: {message}",
                status_code=response.status_code,
                details=error.get("details"),
            )

        return body.get("data")
