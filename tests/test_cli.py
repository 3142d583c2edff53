"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from cli.client.base import APIClient, WorkerAPIError
from cli.main import app
from cli.utils.config_manager import ConfigManager


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


def make_client(**methods) -> Mock:
    """Mock WorkerClient usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    for name, value in methods.items():
        setattr(client, name, value)
    return client


SAMPLE_JOB = {
    "id": "job-123",
    "kind": "cartoonize",
    "status": "completed",
    "progress": 100,
    "current_step": "Completed successfully",
    "retry_count": 0,
    "max_retries": 3,
    "created_at": "2025-01-01T12:00:00+00:00",
    "completed_at": "2025-01-01T12:01:00+00:00",
    "result_data": {"kind": "cartoonize", "url": "https://cdn/fox.png", "cached": False},
}


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Generation Worker CLI" in result.stdout

    @patch("cli.main.WorkerClient")
    def test_status_success(self, mock_client_class, runner):
        """Test status command with successful connection"""
        mock_client_class.return_value = make_client(
            health_check=Mock(
                return_value={
                    "version": "1.0.0",
                    "environment": "development",
                    "database": {"connected": True},
                    "processor": {"status": "healthy", "active_jobs": 2, "capacity": 5},
                }
            )
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout
        assert "healthy" in result.stdout

    @patch("cli.main.WorkerClient")
    def test_status_failure(self, mock_client_class, runner):
        """Test status command with connection failure"""
        mock_client_class.return_value = make_client(
            health_check=Mock(side_effect=WorkerAPIError("Connection failed"))
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    """Test job commands"""

    @patch("cli.commands.jobs.WorkerClient")
    def test_create_job(self, mock_client_class, runner):
        client = make_client(create_job=Mock(return_value={"job_id": "job-1"}))
        mock_client_class.return_value = client

        result = runner.invoke(
            app, ["jobs", "create", "cartoonize", "--input", '{"prompt": "fox"}']
        )

        assert result.exit_code == 0
        assert "Created cartoonize job" in result.stdout
        client.create_job.assert_called_once_with("cartoonize", {"prompt": "fox"}, None, None)

    @patch("cli.commands.jobs.WorkerClient")
    def test_create_job_from_file(self, mock_client_class, runner, tmp_path):
        client = make_client(create_job=Mock(return_value={"job_id": "job-2"}))
        mock_client_class.return_value = client
        input_file = tmp_path / "scenes.json"
        input_file.write_text('{"story": "Once upon a time"}')

        result = runner.invoke(
            app,
            ["jobs", "create", "scenes", "--input-file", str(input_file), "--max-retries", "1"],
        )

        assert result.exit_code == 0
        client.create_job.assert_called_once_with(
            "scenes", {"story": "Once upon a time"}, None, 1
        )

    def test_create_job_unknown_kind(self, runner):
        result = runner.invoke(app, ["jobs", "create", "podcast"])
        assert result.exit_code == 1
        assert "Unknown job kind" in result.stdout

    def test_create_job_rejects_bad_json(self, runner):
        result = runner.invoke(app, ["jobs", "create", "cartoonize", "--input", "{not json"])
        assert result.exit_code != 0

    @patch("cli.commands.jobs.WorkerClient")
    def test_get_job(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(get_job=Mock(return_value=SAMPLE_JOB))

        result = runner.invoke(app, ["jobs", "get", "job-123", "--result"])

        assert result.exit_code == 0
        assert "job-123" in result.stdout
        assert "https://cdn/fox.png" in result.stdout

    @patch("cli.commands.jobs.WorkerClient")
    def test_list_jobs(self, mock_client_class, runner):
        client = make_client(list_jobs=Mock(return_value={"jobs": [SAMPLE_JOB], "count": 1}))
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "list", "--status", "completed"])

        assert result.exit_code == 0
        assert "Showing 1 jobs" in result.stdout
        client.list_jobs.assert_called_once_with(
            kind=None, status="completed", owner_id=None, limit=20
        )

    @patch("cli.commands.jobs.WorkerClient")
    def test_list_jobs_empty(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            list_jobs=Mock(return_value={"jobs": [], "count": 0})
        )

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert "No jobs found" in result.stdout

    @patch("cli.commands.jobs.WorkerClient")
    def test_cancel_job_error(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            cancel_job=Mock(side_effect=WorkerAPIError("API Error 404"))
        )

        result = runner.invoke(app, ["jobs", "cancel", "job-123"])

        assert result.exit_code == 1
        assert "Failed to cancel job" in result.stdout

    @patch("cli.commands.jobs.WorkerClient")
    def test_job_stats(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            job_stats=Mock(
                return_value={"total": 4, "pending": 1, "completed": 3, "by_kind": {"scenes": 4}}
            )
        )

        result = runner.invoke(app, ["jobs", "stats"])

        assert result.exit_code == 0
        assert "Job Statistics" in result.stdout
        assert "scenes: 4" in result.stdout

    @patch("cli.commands.jobs.WorkerClient")
    def test_cleanup_jobs(self, mock_client_class, runner):
        client = make_client(cleanup_jobs=Mock(return_value={"deleted": 7}))
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "cleanup", "--days", "10"])

        assert result.exit_code == 0
        assert "Deleted 7 old jobs" in result.stdout
        client.cleanup_jobs.assert_called_once_with(10)


class TestConfigCommands:
    """Test configuration commands"""

    @patch("cli.commands.config.config")
    def test_set_config(self, mock_config, runner):
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://localhost:9000"])
        assert result.exit_code == 0
        mock_config.set.assert_called_once_with("api.base_url", "http://localhost:9000")

    def test_set_config_invalid_url(self, runner):
        result = runner.invoke(app, ["config", "set", "api.base_url", "invalid-url"])
        assert result.exit_code == 1
        assert "must start with http" in result.stdout

    @patch("cli.commands.config.config")
    def test_get_config(self, mock_config, runner):
        mock_config.get.return_value = "http://localhost:8000"

        result = runner.invoke(app, ["config", "get", "api.base_url"])
        assert result.exit_code == 0
        assert "http://localhost:8000" in result.stdout


class TestConfigManager:
    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "cfg")

        assert manager.get("api.timeout") == 30
        assert manager.get("api.missing", "fallback") == "fallback"
        assert not manager.config_file.exists()

    def test_set_persists_nested_keys(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "cfg")

        manager.set("api.base_url", "http://worker:8000")
        manager.set("api.headers.X-Trace", "on")

        reloaded = ConfigManager(config_dir=tmp_path / "cfg")
        assert reloaded.get("api.base_url") == "http://worker:8000"
        assert reloaded.get("api.headers.X-Trace") == "on"

    def test_reset_restores_defaults(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "cfg")
        manager.set("display.jobs_per_page", 5)

        manager.reset()

        assert manager.get("display.jobs_per_page") == 20

    def test_file_values_merge_with_defaults(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "cfg")
        manager.set("api.timeout", 5)

        assert manager.get("api.timeout") == 5
        assert manager.get("api.base_url") is not None
        assert manager.get("display.jobs_per_page") == 20

    def test_environment_overrides_base_url(self, tmp_path, monkeypatch):
        manager = ConfigManager(config_dir=tmp_path / "cfg")
        manager.set("api.base_url", "http://from-file:8000")
        monkeypatch.setenv("GENERATION_WORKER_API_URL", "http://from-env:8000")

        assert manager.get("api.base_url") == "http://from-env:8000"


class TestErrorHandling:
    def test_invalid_command(self, runner):
        result = runner.invoke(app, ["invalid-command"])
        assert result.exit_code != 0


class TestAPIClient:
    def make_api(self, handler) -> APIClient:
        return APIClient(base_url="http://worker.test", transport=httpx.MockTransport(handler))

    def test_unwraps_success_envelope(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["limit"] = request.url.params.get("limit")
            return httpx.Response(200, json={"ok": True, "data": {"jobs": [], "count": 0}})

        with self.make_api(handler) as api:
            data = api.get("/jobs", {"limit": 5})

        assert data == {"jobs": [], "count": 0}
        assert seen == {"path": "/v1/jobs", "limit": "5"}

    def test_error_envelope_raises_with_details(self):
        def handler(request):
            return httpx.Response(
                422,
                json={
                    "ok": False,
                    "error": {"message": "Invalid input", "code": 422, "details": {"errors": []}},
                },
            )

        with self.make_api(handler) as api, pytest.raises(WorkerAPIError) as exc_info:
            api.post("/jobs", {"kind": "scenes", "input_data": {}})

        assert exc_info.value.status_code == 422
        assert exc_info.value.details == {"errors": []}
        assert "Invalid input" in str(exc_info.value)

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.make_api(handler) as api, pytest.raises(WorkerAPIError, match="Connection failed"):
            api.get("/healthz")
