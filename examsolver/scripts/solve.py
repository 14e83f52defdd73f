from __future__ import annotations
import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional, Set

import typer

from examsolver.core.errors import ConfigurationError
from examsolver.core.logging_setup import configure_logging, log_context_bind, log_context_clear
from examsolver.core.orchestrator import SolveListener, SolveOrchestrator
from examsolver.core.settings import Settings
from examsolver.core.types import Mode, Question

app = typer.Typer(help="Solve exam questions in fast and deep mode side by side.")


def load_questions(texts: Optional[List[str]], path: Optional[Path]) -> List[Question]:
    """Questions from repeated -q options and/or a JSON file.

    The file holds a list of strings or of ``{"id": int?, "text": str}``
    objects; missing ids are numbered in order starting at 1.
    """
    raw: List[Dict[str, object]] = []
    if path is not None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise typer.BadParameter(f"question file is not valid JSON: {e}", param_hint="--file") from e
        if not isinstance(data, list):
            raise typer.BadParameter("question file must contain a JSON list", param_hint="--file")
        for item in data:
            if isinstance(item, str):
                raw.append({"text": item})
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                raw.append(item)
    for text in texts or []:
        raw.append({"text": text})

    questions: List[Question] = []
    used: Set[int] = set()
    next_id = 1
    for item in raw:
        text = str(item["text"]).strip()
        if not text:
            continue
        qid = item.get("id")
        if not isinstance(qid, int) or qid <= 0 or qid in used:
            while next_id in used:
                next_id += 1
            qid = next_id
        used.add(qid)
        questions.append(Question(id=qid, text=text))
    return questions


class ConsoleListener(SolveListener):
    """Echo the watched mode's answer text as it streams."""

    def __init__(self, watch: Mode, echo: bool) -> None:
        self.watch = watch
        self.echo = echo

    def on_content_chunk(self, question_id: int, mode: Mode, text: str, first: bool) -> None:
        if not self.echo or mode is not self.watch:
            return
        if first:
            typer.echo(f"\n[Q{question_id} {mode.value}] ", nl=False)
        typer.echo(text, nl=False)

    def on_error(self, question_id: int, mode: Mode, error: str) -> None:
        typer.echo(f"\n[Q{question_id} {mode.value}] error: {error}", err=True)

    def on_all_complete(self) -> None:
        if self.echo:
            typer.echo("")


async def solve(
    settings: Settings,
    questions: List[Question],
    mode: Mode,
    overrides: Dict[Mode, str],
    listener: SolveListener,
) -> SolveOrchestrator:
    orch = SolveOrchestrator(settings, listener=listener, current_mode=mode)
    try:
        orch.begin_pass()
        for q in questions:
            for m, model_id in overrides.items():
                orch.set_model_override(q.id, m, model_id)
        orch.start_all(questions)
        await orch.wait_idle()
    finally:
        await orch.close()
    return orch


def render(orch: SolveOrchestrator, questions: List[Question], show_thinking: bool) -> str:
    lines: List[str] = []
    for q in questions:
        lines.append(f"## Question {q.id}")
        lines.append(q.text)
        for m in orch.required_modes():
            a = orch.answer(q.id, m)
            if a is None:
                continue
            status = "error" if a.error else ("stopped" if a.is_stopped else "done")
            header = f"### {m.value} ({status}"
            if a.thinking_duration_ms:
                header += f", thought {a.format_thinking_duration()}"
            lines.append(header + ")")
            if show_thinking and a.thinking_text:
                lines.append("> " + a.thinking_text.replace("\n", "\n> "))
            lines.append(f"Error: {a.error}" if a.error else a.text)
        lines.append("")
    return "\n".join(lines)


@app.command()
def main(
    question: Optional[List[str]] = typer.Option(None, "--question", "-q", help="Question text"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="JSON list of questions"),
    mode: Mode = typer.Option(Mode.FAST, help="Mode echoed while streaming"),
    model_fast: Optional[str] = typer.Option(None, help="Model id for fast mode"),
    model_deep: Optional[str] = typer.Option(None, help="Model id for deep mode"),
    stream: bool = typer.Option(False, help="Echo answer text as it arrives"),
    show_thinking: bool = typer.Option(False, help="Include reasoning text in the output"),
):
    configure_logging(env="cli")
    if file is not None and not file.exists():
        typer.echo(f"Path not found: {file}")
        raise typer.Exit(code=1)
    questions = load_questions(question, file)
    if not questions:
        typer.echo("No questions given; use --question or --file")
        raise typer.Exit(code=1)

    overrides: Dict[Mode, str] = {}
    if model_fast:
        overrides[Mode.FAST] = model_fast
    if model_deep:
        overrides[Mode.DEEP] = model_deep

    log_context_bind(entry="cli.solve", questions=len(questions))
    settings = Settings.load()
    try:
        orch = asyncio.run(
            solve(settings, questions, mode, overrides, ConsoleListener(mode, stream))
        )
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        log_context_clear()
    typer.echo(render(orch, questions, show_thinking))


if __name__ == "__main__":
    app()
