"""Tests for the move_handler module."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, TYPE_CHECKING

import pytest

from foldertag.config import StateStore
from foldertag.engine import TagEngine
from foldertag.models import MoveAction
from foldertag.models import MoveDecision
from foldertag.models import MovePolicy
from foldertag.models import OperationType
from foldertag.models import TagTrackingEntry
from foldertag.move_handler import BATCH_DELAY
from foldertag.move_handler import CLEANUP_DELAY
from foldertag.move_handler import InvalidTransition
from foldertag.move_handler import MoveState
from foldertag.move_handler import prune_empty_folders
from foldertag.move_handler import RenameOutcome
from foldertag.move_handler import SUPPRESSION_TTL

if TYPE_CHECKING:
    from conftest import FakeScheduler
    from conftest import RecordingPrompt


def move_file(vault_dir: Path, old_path: str, new_path: str) -> None:
    destination = vault_dir / new_path
    destination.parent.mkdir(parents=True, exist_ok=True)
    (vault_dir / old_path).rename(destination)


@pytest.fixture
def tracked_doc(engine: TagEngine, write_doc: Callable[..., Path]) -> Callable[..., str]:
    """Create a document whose tags are all tracked as auto tags."""

    def create(path: str, tags: list[str], manual: list[str] | None = None) -> str:
        write_doc(path, tags=(manual or []) + tags)
        engine.state.tag_tracking[path] = TagTrackingEntry(auto_tags=list(tags))
        return path

    return create


class TestPureRename:
    """Tests for renames within one folder."""

    def test_rekeys_tracking_and_history(
        self,
        engine: TagEngine,
        vault_dir: Path,
        write_doc: Callable[..., Path],
        prompt: RecordingPrompt,
    ) -> None:
        """Test tracking and history follow the document to its new name."""
        write_doc("Work/a.md")
        engine.tag_document("Work/a.md")
        move_file(vault_dir, "Work/a.md", "Work/b.md")

        outcome = engine.move_handler.handle_rename("Work/b.md", "Work/a.md")

        assert outcome is RenameOutcome.RENAMED
        assert engine.tag_io.tracked_tags("Work/b.md") == ["work"]
        assert "Work/a.md" not in engine.state.tag_tracking
        operation = engine.history.list()[0]
        assert operation.files[0].path == "Work/b.md"
        assert operation.description == "Tagged b.md"
        assert prompt.calls == []
        assert engine.move_handler.state_of("Work/b.md") is MoveState.IDLE


class TestClassification:
    """Tests for signals that are not queued."""

    def test_non_markdown(self, engine: TagEngine) -> None:
        """Test non-markdown files are skipped."""
        assert engine.move_handler.handle_rename("B/image.png", "A/image.png") is RenameOutcome.SKIPPED

    def test_ignored_destination(self, engine: TagEngine, tracked_doc: Callable[..., str], vault_dir: Path) -> None:
        """Test moves into an ignored folder are left alone."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Templates/note.md")

        outcome = engine.move_handler.handle_rename("Templates/note.md", "Work/note.md")

        assert outcome is RenameOutcome.IGNORED
        assert engine.move_handler.pending == {}

    def test_invalid_transition(self, engine: TagEngine) -> None:
        """Test unreachable states are rejected."""
        with pytest.raises(InvalidTransition):
            engine.move_handler._transition("x.md", MoveState.RESOLVED)


class TestBatchedMoves:
    """Tests for moves that wait for a decision."""

    def test_continue_with_no_rules_removes_auto_tags(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test retagging into a folder without rules removes the old auto tags."""
        tracked_doc("Work/note.md", ["x"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")

        outcome = engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")
        assert outcome is RenameOutcome.QUEUED
        assert engine.move_handler.state_of("Misc/note.md") is MoveState.PENDING_CONFIRMATION

        scheduler.advance(BATCH_DELAY)
        assert len(prompt.calls) == 1
        prompt.answer(MoveDecision(MoveAction.CONTINUE))

        assert engine.tag_io.read_tags("Misc/note.md") == []
        assert engine.state.tag_tracking == {}
        operations = engine.history.list()
        assert len(operations) == 1
        assert operations[0].type is OperationType.MOVE
        assert operations[0].files[0].tags_before == ["x"]
        assert operations[0].files[0].tags_after == []
        assert engine.move_handler.state_of("Misc/note.md") is MoveState.IDLE

    def test_continue_applies_destination_rules(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test old auto tags are swapped for the new folder's tags, keeping manual ones."""
        engine.set_rule("Projects", tags=["project"])
        tracked_doc("Work/note.md", ["work"], manual=["mine"])
        move_file(vault_dir, "Work/note.md", "Projects/note.md")

        engine.move_handler.handle_rename("Projects/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)
        prompt.answer(MoveDecision(MoveAction.CONTINUE))

        assert engine.tag_io.read_tags("Projects/note.md") == ["mine", "project"]
        assert engine.tag_io.tracked_tags("Projects/note.md") == ["project"]
        assert engine.history.list()[0].files[0].tracking_before == ["work"]

    def test_moves_coalesce_into_one_prompt(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test moves arriving within the quiet window share one prompt."""
        for name in ("a", "b", "c"):
            tracked_doc(f"Work/{name}.md", ["work"])
            move_file(vault_dir, f"Work/{name}.md", f"Misc/{name}.md")

        engine.move_handler.handle_rename("Misc/a.md", "Work/a.md")
        scheduler.advance(0.2)
        engine.move_handler.handle_rename("Misc/b.md", "Work/b.md")
        scheduler.advance(0.2)
        engine.move_handler.handle_rename("Misc/c.md", "Work/c.md")
        scheduler.advance(0.2)
        assert prompt.calls == []

        scheduler.advance(0.2)
        assert len(prompt.calls) == 1
        assert [move.path for move in prompt.calls[0]] == ["Misc/a.md", "Misc/b.md", "Misc/c.md"]

    def test_leave_rekeys_tracking(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test leaving tags keeps them and moves tracking to the new path."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")

        engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)
        prompt.answer(MoveDecision(MoveAction.LEAVE))

        assert engine.tag_io.read_tags("Misc/note.md") == ["work"]
        assert engine.tag_io.tracked_tags("Misc/note.md") == ["work"]
        assert "Work/note.md" not in engine.state.tag_tracking
        assert engine.history.list() == []

    def test_remember_persists_policy(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test a remembered answer becomes the move policy and is saved."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")

        engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)
        prompt.answer(MoveDecision(MoveAction.LEAVE, remember=True))

        assert engine.state.settings.move_policy is MovePolicy.ALWAYS_LEAVE
        stored = json.loads((vault_dir / ".foldertag" / "state.json").read_text(encoding="utf-8"))
        assert stored["settings"]["movePolicy"] == "always-leave"

    def test_excluded_documents_keep_tags(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test excluded documents are left as they are."""
        for name in ("a", "b"):
            tracked_doc(f"Work/{name}.md", ["work"])
            move_file(vault_dir, f"Work/{name}.md", f"Misc/{name}.md")
            engine.move_handler.handle_rename(f"Misc/{name}.md", f"Work/{name}.md")
        scheduler.advance(BATCH_DELAY)

        prompt.answer(MoveDecision(MoveAction.CONTINUE, excluded_paths=frozenset({"Misc/b.md"})))

        assert engine.tag_io.read_tags("Misc/a.md") == []
        assert engine.tag_io.read_tags("Misc/b.md") == ["work"]
        assert engine.tag_io.tracked_tags("Misc/b.md") == ["work"]
        assert len(engine.history.list()) == 1

    def test_only_first_answer_counts(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test a second answer to the same prompt is ignored."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")
        engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)

        prompt.answer(MoveDecision(MoveAction.LEAVE))
        prompt.answer(MoveDecision(MoveAction.CONTINUE))

        assert engine.tag_io.read_tags("Misc/note.md") == ["work"]

    def test_chained_move_keeps_original_origin(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test a document moved twice before the prompt is queued once from its first folder."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Tmp/note.md")
        engine.move_handler.handle_rename("Tmp/note.md", "Work/note.md")
        move_file(vault_dir, "Tmp/note.md", "Misc/note.md")
        engine.move_handler.handle_rename("Misc/note.md", "Tmp/note.md")

        scheduler.advance(BATCH_DELAY)

        assert len(prompt.calls) == 1
        (move,) = prompt.calls[0]
        assert (move.path, move.old_path) == ("Misc/note.md", "Work/note.md")
        assert engine.move_handler.state_of("Tmp/note.md") is MoveState.IDLE


class TestMovePolicies:
    """Tests for remembered move policies."""

    def test_always_retag(
        self, engine: TagEngine, tracked_doc: Callable[..., str], vault_dir: Path, prompt: RecordingPrompt
    ) -> None:
        """Test moves are retagged straight away without a prompt."""
        engine.state.settings.move_policy = MovePolicy.ALWAYS_RETAG
        engine.set_rule("Projects", tags=["project"])
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Projects/note.md")

        outcome = engine.move_handler.handle_rename("Projects/note.md", "Work/note.md")

        assert outcome is RenameOutcome.DIRECT_APPLIED
        assert engine.tag_io.read_tags("Projects/note.md") == ["project"]
        assert prompt.calls == []

    def test_always_leave(
        self, engine: TagEngine, tracked_doc: Callable[..., str], vault_dir: Path, prompt: RecordingPrompt
    ) -> None:
        """Test moves keep their tags without a prompt."""
        engine.state.settings.move_policy = MovePolicy.ALWAYS_LEAVE
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")

        outcome = engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")

        assert outcome is RenameOutcome.DIRECT_APPLIED
        assert engine.tag_io.read_tags("Misc/note.md") == ["work"]
        assert engine.tag_io.tracked_tags("Misc/note.md") == ["work"]
        assert prompt.calls == []


class TestCancel:
    """Tests for moving documents back."""

    def test_cancel_restores_and_suppresses(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test cancel moves documents back and swallows the echoed rename."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "New/Sub/note.md")
        (vault_dir / "New" / "Sub" / "desktop.ini").write_text("", encoding="utf-8")
        engine.move_handler.handle_rename("New/Sub/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)

        prompt.answer(MoveDecision(MoveAction.CANCEL))

        assert (vault_dir / "Work" / "note.md").is_file()
        assert engine.tag_io.read_tags("Work/note.md") == ["work"]
        assert "Work/note.md" in engine.move_handler.expected

        outcome = engine.move_handler.handle_rename("Work/note.md", "New/Sub/note.md")
        assert outcome is RenameOutcome.SUPPRESSED
        assert len(prompt.calls) == 1

        scheduler.advance(CLEANUP_DELAY)
        assert not (vault_dir / "New" / "Sub").exists()

    def test_cancel_does_not_remember(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test cancel never becomes the move policy."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")
        engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)

        prompt.answer(MoveDecision(MoveAction.CANCEL, remember=True))

        assert engine.state.settings.move_policy is MovePolicy.ASK

    def test_cancel_persists_excluded_tracking(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test excluded documents stay where they were moved with their tracking saved."""
        for name in ("a", "b"):
            tracked_doc(f"Work/{name}.md", ["work"])
            move_file(vault_dir, f"Work/{name}.md", f"Misc/{name}.md")
            engine.move_handler.handle_rename(f"Misc/{name}.md", f"Work/{name}.md")
        scheduler.advance(BATCH_DELAY)

        prompt.answer(MoveDecision(MoveAction.CANCEL, excluded_paths=frozenset({"Misc/b.md"})))

        assert (vault_dir / "Work" / "a.md").is_file()
        assert (vault_dir / "Misc" / "b.md").is_file()
        tracking = StateStore(vault_dir).load().tag_tracking
        assert tracking["Misc/b.md"].auto_tags == ["work"]
        assert "Work/b.md" not in tracking

    def test_expected_events_expire(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test a registered restore that never arrives is forgotten."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")
        engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)
        prompt.answer(MoveDecision(MoveAction.CANCEL))

        scheduler.advance(SUPPRESSION_TTL)

        assert len(engine.move_handler.expected) == 0


class TestTeardown:
    """Tests for shutting the handler down."""

    def test_cancels_batch_timer(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test queued moves are dropped and never prompted."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")
        engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")

        engine.teardown()
        scheduler.advance(BATCH_DELAY)

        assert prompt.calls == []
        assert engine.move_handler.pending == {}
        assert scheduler.pending == []

    def test_late_answer_is_ignored(
        self,
        engine: TagEngine,
        tracked_doc: Callable[..., str],
        vault_dir: Path,
        scheduler: FakeScheduler,
        prompt: RecordingPrompt,
    ) -> None:
        """Test an answer arriving after teardown changes nothing."""
        tracked_doc("Work/note.md", ["work"])
        move_file(vault_dir, "Work/note.md", "Misc/note.md")
        engine.move_handler.handle_rename("Misc/note.md", "Work/note.md")
        scheduler.advance(BATCH_DELAY)

        engine.teardown()
        prompt.answer(MoveDecision(MoveAction.CONTINUE))

        assert engine.tag_io.read_tags("Misc/note.md") == ["work"]
        assert engine.history.list() == []


class TestPruneEmptyFolders:
    """Tests for removing emptied folders."""

    def test_removes_nested_empty_folders(self, tmp_path: Path) -> None:
        """Test empty folders go deepest first and non-empty ones stay."""
        (tmp_path / "a" / "b" / "c").mkdir(parents=True)
        (tmp_path / "keep").mkdir()
        (tmp_path / "keep" / "note.md").write_text("x", encoding="utf-8")
        (tmp_path / "a" / "Thumbs.db").write_text("", encoding="utf-8")

        removed = prune_empty_folders(tmp_path, {"a", "a/b", "a/b/c", "keep"}, sleep=lambda _: None)

        assert removed == 3
        assert not (tmp_path / "a").exists()
        assert (tmp_path / "keep" / "note.md").exists()

    def test_missing_folder(self, tmp_path: Path) -> None:
        """Test folders that no longer exist are skipped."""
        assert prune_empty_folders(tmp_path, {"gone"}, sleep=lambda _: None) == 0
