"""Test configuration for pytest."""
from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from foldertag.console import Logger
from foldertag.engine import open_engine
from foldertag.engine import TagEngine
from foldertag.models import MoveDecision
from foldertag.models import PendingMove


class FakeTimer:
    """Timer handle driven by ``FakeScheduler``."""

    def __init__(self, due: float, callback: Callable[..., Any], args: tuple) -> None:
        self.due = due
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler with a virtual clock that only moves on ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []
        self.sleeps: list[float] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def dispatch(self, callback: Callable[..., Any], *args: Any) -> Any:
        return callback(*args)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    @property
    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if timer.active]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.now + seconds
        while True:
            due = sorted((t for t in self.pending if t.due <= target + 1e-9), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self.now = max(self.now, timer.due)
            timer.fired = True
            timer.callback(*timer.args)
        self.now = target


class RecordingPrompt:
    """Move prompt that records batches and answers on demand."""

    def __init__(self, decision: MoveDecision | None = None) -> None:
        self.decision = decision
        self.calls: list[list[PendingMove]] = []
        self.responders: list[Callable[[MoveDecision], None]] = []

    def __call__(self, moves: list[PendingMove], respond: Callable[[MoveDecision], None]) -> None:
        self.calls.append(list(moves))
        self.responders.append(respond)
        if self.decision is not None:
            respond(self.decision)

    def answer(self, decision: MoveDecision) -> None:
        self.responders[-1](decision)


@pytest.fixture(autouse=True)
def change_to_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, Any, None]:
    """Change to temporary directory for each test."""
    original_dir = os.getcwd()
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("FOLDERTAG_"):
            monkeypatch.delenv(name)
    yield
    os.chdir(original_dir)


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    """Empty vault directory."""
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def write_doc(vault_dir: Path) -> Callable[..., Path]:
    """Create a markdown document, optionally with frontmatter tags."""

    def write(path: str, tags: Any = None, body: str = "Body text\n", **frontmatter: Any) -> Path:
        full_path = vault_dir / path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        if tags is not None:
            frontmatter["tags"] = tags
        if frontmatter:
            text = f"---\n{yaml.safe_dump(frontmatter, sort_keys=False)}---\n{body}"
        else:
            text = body
        full_path.write_text(text, encoding="utf-8")
        return full_path

    return write


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def prompt() -> RecordingPrompt:
    return RecordingPrompt()


@pytest.fixture
def engine(vault_dir: Path, scheduler: FakeScheduler, prompt: RecordingPrompt) -> Generator[TagEngine, Any, None]:
    """Engine over the temporary vault with a fake clock and prompt."""
    engine = open_engine(vault_dir, prompt=prompt, logger=Logger(verbose=True), scheduler=scheduler)
    yield engine
    engine.teardown()
