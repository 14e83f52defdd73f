from __future__ import annotations
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from examsolver.core.settings import Settings
from examsolver.core.types import ModelListResult, RemoteModel
from examsolver.scripts.models import app

runner = CliRunner()


def _settings(api_key: str) -> Settings:
    return Settings.from_config(
        {"api_key": api_key, "modes": {"fast": {"model": "a", "models": ["a", "c"]}, "deep": {}}}
    )


def test_lists_models_and_marks_configured(tmp_path, monkeypatch):
    monkeypatch.setenv("EXAMSOLVER_LOG_DIR", str(tmp_path))
    result_value = ModelListResult(
        success=True, models=[RemoteModel("a", "a", owned_by="acme"), RemoteModel("b", "b")]
    )
    with (
        patch("examsolver.scripts.models.Settings.load", return_value=_settings("sk-test")),
        patch("examsolver.scripts.models.fetch", new=AsyncMock(return_value=result_value)),
    ):
        result = runner.invoke(app, ["--mode", "fast"])
    assert result.exit_code == 0
    assert "* a (acme)" in result.output
    assert "  b" in result.output


def test_failure_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setenv("EXAMSOLVER_LOG_DIR", str(tmp_path))
    failed = ModelListResult(success=False, response_body="HTTP 401")
    with (
        patch("examsolver.scripts.models.Settings.load", return_value=_settings("sk-test")),
        patch("examsolver.scripts.models.fetch", new=AsyncMock(return_value=failed)),
    ):
        result = runner.invoke(app, [])
    assert result.exit_code == 1


def test_missing_key_exits_nonzero(tmp_path, monkeypatch):
    monkeypatch.setenv("EXAMSOLVER_LOG_DIR", str(tmp_path))
    with patch("examsolver.scripts.models.Settings.load", return_value=_settings("")):
        result = runner.invoke(app, [])
    assert result.exit_code == 1
