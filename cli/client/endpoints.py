"""API Endpoint Wrappers - Typed calls to the job endpoints"""

from typing import Any

from .base import APIClient, WorkerAPIError
from ..utils.config_manager import config

__all__ = ["WorkerClient", "WorkerAPIError"]


class WorkerClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=api_config.get("timeout", 30),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Job Endpoints
    def create_job(
        self,
        kind: str,
        input_data: dict[str, Any],
        owner_id: str | None = None,
        max_retries: int | None = None,
    ) -> dict[str, Any]:
        """Create a generation job"""
        data: dict[str, Any] = {"kind": kind, "input_data": input_data}
        if owner_id:
            data["owner_id"] = owner_id
        if max_retries is not None:
            data["max_retries"] = max_retries
        return self.api.post("/jobs", data)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get a job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def list_jobs(
        self,
        kind: str | None = None,
        status: str | None = None,
        owner_id: str | None = None,
        limit: int = 20,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit}
        if kind:
            params["kind"] = kind
        if status:
            params["status"] = status
        if owner_id:
            params["owner_id"] = owner_id
        return self.api.get("/jobs", params)

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Cancel a pending or processing job"""
        return self.api.post(f"/jobs/{job_id}/cancel")

    def job_stats(self, owner_id: str | None = None) -> dict[str, Any]:
        """Get job counts per status"""
        params = {"owner_id": owner_id} if owner_id else None
        return self.api.get("/jobs/stats", params)

    def cleanup_jobs(self, older_than_days: int | None = None) -> dict[str, Any]:
        """Delete old terminal jobs"""
        params = {"older_than_days": older_than_days} if older_than_days else None
        return self.api.post("/jobs/cleanup", params=params)
