from __future__ import annotations
import json
from unittest.mock import patch

import pytest
import typer
from typer.testing import CliRunner

from examsolver.core.answers import Answer
from examsolver.core.orchestrator import SolveOrchestrator
from examsolver.core.settings import Settings
from examsolver.core.types import Mode, Question
from examsolver.scripts.solve import app, load_questions, render

runner = CliRunner()


@pytest.fixture
def no_key(monkeypatch, tmp_path):
    for var in ("EXAMSOLVER_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("EXAMSOLVER_LOG_DIR", str(tmp_path / "logs"))
    with patch("examsolver.core.utils.load_dotenv", return_value=False):
        yield monkeypatch


def test_load_questions_from_file_and_options(tmp_path):
    path = tmp_path / "qs.json"
    path.write_text(
        json.dumps(["first", {"id": 5, "text": "fifth"}, {"id": 5, "text": "dup id"}, {"x": 1}, "  "]),
        encoding="utf-8",
    )
    qs = load_questions(["extra"], path)
    assert [(q.id, q.text) for q in qs] == [(1, "first"), (5, "fifth"), (2, "dup id"), (3, "extra")]


def test_render_lists_each_mode():
    settings = Settings.from_config(
        {"api_key": "sk-test", "modes": {"fast": {"base_url": "http://x"}, "deep": {"base_url": "http://x"}}}
    )
    orch = SolveOrchestrator(settings)
    q = Question(1, "What is 6*7?")
    orch.questions[1] = q
    orch.answers[Mode.FAST][1] = Answer(1, text="42", is_complete=True)
    orch.answers[Mode.DEEP][1] = Answer(
        1, text="", thinking_text="6*7", thinking_duration_ms=1500, is_complete=True, error="API error 500: boom"
    )
    out = render(orch, [q], show_thinking=True)
    assert "## Question 1" in out
    assert "### fast (done)\n42" in out
    assert "### deep (error, thought 1.5s)" in out
    assert "> 6*7" in out
    assert "Error: API error 500: boom" in out


def test_cli_requires_questions(no_key):
    result = runner.invoke(app, [])
    assert result.exit_code == 1
    assert "No questions" in result.output


def test_cli_missing_file(no_key, tmp_path):
    result = runner.invoke(app, ["--file", str(tmp_path / "nope.json")])
    assert result.exit_code == 1
    assert "Path not found" in result.output


def test_cli_malformed_file_is_usage_error(no_key, tmp_path):
    path = tmp_path / "qs.json"
    path.write_text("[\"unterminated", encoding="utf-8")
    result = runner.invoke(app, ["--file", str(path)])
    assert result.exit_code == 2
    assert not isinstance(result.exception, ValueError)
    with pytest.raises(typer.BadParameter, match="not valid JSON"):
        load_questions(None, path)


def test_load_questions_rejects_non_list(tmp_path):
    path = tmp_path / "qs.json"
    path.write_text('{"text": "x"}', encoding="utf-8")
    with pytest.raises(typer.BadParameter):
        load_questions(None, path)


def test_cli_without_api_key_is_configuration_error(no_key):
    result = runner.invoke(app, ["-q", "2+2?"])
    assert result.exit_code == 1
