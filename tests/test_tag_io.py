"""Tests for the tag_io module."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from foldertag.console import Logger
from foldertag.models import TagTrackingEntry
from foldertag.models import VaultState
from foldertag.tag_io import TagIO
from foldertag.vault import FrontmatterError
from foldertag.vault import split_frontmatter
from foldertag.vault import Vault


@pytest.fixture
def state() -> VaultState:
    return VaultState()


@pytest.fixture
def tag_io(vault_dir: Path, state: VaultState) -> TagIO:
    return TagIO(state, Vault(vault_dir), Logger())


class TestApplyTags:
    """Tests for adding tags."""

    def test_case_insensitive_merge(self, tag_io: TagIO, state: VaultState, write_doc: Callable[..., Path]) -> None:
        """Test a tag present in another case is not added twice."""
        write_doc("note.md", tags=["A"])

        added = tag_io.apply_tags("note.md", ["a", "b"])

        assert added == ["b"]
        assert tag_io.read_tags("note.md") == ["A", "b"]
        assert state.tag_tracking["note.md"].auto_tags == ["a", "b"]

    def test_idempotent(self, tag_io: TagIO, write_doc: Callable[..., Path]) -> None:
        """Test applying the same tags again leaves the document unchanged."""
        path = write_doc("note.md", tags=["x"])
        tag_io.apply_tags("note.md", ["y"])
        text = path.read_text(encoding="utf-8")

        assert tag_io.apply_tags("note.md", ["y", "#X"]) == []
        assert path.read_text(encoding="utf-8") == text

    def test_scalar_tags(self, tag_io: TagIO, write_doc: Callable[..., Path]) -> None:
        """Test a scalar tags value is read as a one-element list and extended."""
        path = write_doc("note.md", tags="solo")

        assert tag_io.read_tags("note.md") == ["solo"]
        assert tag_io.apply_tags("note.md", ["solo"]) == []
        assert "tags: solo" in path.read_text(encoding="utf-8")

        tag_io.apply_tags("note.md", ["duo"])
        assert tag_io.read_tags("note.md") == ["solo", "duo"]

    def test_adds_frontmatter_block(self, tag_io: TagIO, write_doc: Callable[..., Path]) -> None:
        """Test a document without frontmatter gains a block and keeps its body."""
        path = write_doc("note.md", body="# Heading\n\nText\n")

        tag_io.apply_tags("note.md", ["new"])

        frontmatter, body = split_frontmatter(path.read_text(encoding="utf-8"))
        assert frontmatter == {"tags": ["new"]}
        assert body == "# Heading\n\nText\n"

    def test_keeps_other_keys(self, tag_io: TagIO, write_doc: Callable[..., Path]) -> None:
        """Test unrelated frontmatter keys survive a tag write."""
        path = write_doc("note.md", tags=["a"], title="My note")

        tag_io.apply_tags("note.md", ["b"])

        frontmatter, _ = split_frontmatter(path.read_text(encoding="utf-8"))
        assert frontmatter == {"tags": ["a", "b"], "title": "My note"}

    def test_missing_document(self, tag_io: TagIO, state: VaultState) -> None:
        """Test a missing document is skipped without tracking."""
        assert tag_io.read_tags("nope.md") == []
        assert tag_io.apply_tags("nope.md", ["a"]) == []
        assert state.tag_tracking == {}

    def test_tracking_is_unioned(self, tag_io: TagIO, state: VaultState, write_doc: Callable[..., Path]) -> None:
        """Test new tags are merged into an existing tracking entry."""
        write_doc("note.md")
        state.tag_tracking["note.md"] = TagTrackingEntry(auto_tags=["old"])

        tag_io.apply_tags("note.md", ["new", "old"])

        assert state.tag_tracking["note.md"].auto_tags == ["old", "new"]

    def test_saves_state(self, tag_io: TagIO, state: VaultState, write_doc: Callable[..., Path]) -> None:
        """Test the state is persisted after a write."""
        saved = []
        state.saver = saved.append
        write_doc("note.md")

        tag_io.apply_tags("note.md", ["a"])

        assert saved == [state]

    def test_invalid_frontmatter(self, tag_io: TagIO, vault_dir: Path) -> None:
        """Test a frontmatter block that is not a mapping raises."""
        (vault_dir / "bad.md").write_text("---\n- just\n- a list\n---\nBody\n", encoding="utf-8")

        with pytest.raises(FrontmatterError):
            tag_io.apply_tags("bad.md", ["a"])


class TestRemoveTags:
    """Tests for removing tags."""

    def test_remove_syncs_tracking(self, tag_io: TagIO, state: VaultState, write_doc: Callable[..., Path]) -> None:
        """Test removed tags leave tracking, and an empty entry is deleted."""
        write_doc("note.md", tags=["keep", "auto"])
        state.tag_tracking["note.md"] = TagTrackingEntry(auto_tags=["auto"])

        removed = tag_io.remove_tags("note.md", ["auto"])

        assert removed == ["auto"]
        assert tag_io.read_tags("note.md") == ["keep"]
        assert "note.md" not in state.tag_tracking

    def test_remove_without_sync(self, tag_io: TagIO, state: VaultState, write_doc: Callable[..., Path]) -> None:
        """Test tracking is left alone when sync is off."""
        write_doc("note.md", tags=["auto"])
        state.tag_tracking["note.md"] = TagTrackingEntry(auto_tags=["auto"])

        tag_io.remove_tags("note.md", ["auto"], sync_tracking=False)

        assert state.tag_tracking["note.md"].auto_tags == ["auto"]

    def test_last_tag_removes_key(self, tag_io: TagIO, write_doc: Callable[..., Path]) -> None:
        """Test removing the last tag deletes the tags key."""
        path = write_doc("note.md", tags=["only"], title="T")

        tag_io.remove_tags("note.md", ["only"])

        frontmatter, _ = split_frontmatter(path.read_text(encoding="utf-8"))
        assert frontmatter == {"title": "T"}

    def test_protected_tags_survive(self, tag_io: TagIO, state: VaultState, write_doc: Callable[..., Path]) -> None:
        """Test protected tags are never removed."""
        state.settings.protected_tags = ["important"]
        write_doc("note.md", tags=["important", "x"])

        removed = tag_io.remove_tags("note.md", ["#Important", "x"])

        assert removed == ["x"]
        assert tag_io.read_tags("note.md") == ["important"]
        assert tag_io.removable(["important", "x"]) == ["x"]

    def test_missing_document(self, tag_io: TagIO) -> None:
        """Test removing from a missing document does nothing."""
        assert tag_io.remove_tags("nope.md", ["a"]) == []


class TestTracking:
    """Tests for tracking helpers."""

    def test_set_and_drop(self, tag_io: TagIO, state: VaultState) -> None:
        """Test replacing and deleting tracking entries."""
        tag_io.set_tracking("a.md", ["x", "x", "y"])
        assert tag_io.tracked_tags("a.md") == ["x", "y"]

        tag_io.set_tracking("a.md", [])
        assert "a.md" not in state.tag_tracking
        assert tag_io.drop_tracking("a.md") is False

    def test_rekey(self, tag_io: TagIO, state: VaultState) -> None:
        """Test an entry moves to its new path unchanged."""
        entry = TagTrackingEntry(auto_tags=["x"], last_updated="2024-01-01T00:00:00+00:00")
        state.tag_tracking["old.md"] = entry

        assert tag_io.rekey_tracking("old.md", "new.md") is True
        assert state.tag_tracking == {"new.md": entry}
        assert tag_io.rekey_tracking("old.md", "new.md") is False
