"""Tag reads and writes, kept in step with the tracking store.

Every tag this tool writes is also recorded in the document's tracking
entry, so later removals touch only those tags and never the ones a user
typed. Protected tags can be added but are never removed.
"""

from __future__ import annotations

from typing import Any

from foldertag.console import Logger
from foldertag.models import TagTrackingEntry
from foldertag.models import unique
from foldertag.models import utc_now
from foldertag.models import VaultState
from foldertag.vault import tags_from_frontmatter
from foldertag.vault import Vault


def _bare(tag: str) -> str:
    return tag.strip().lstrip("#").lower()


class TagIO:
    """Frontmatter tag operations for one vault."""

    def __init__(self, state: VaultState, vault: Vault, logger: Logger) -> None:
        self.state = state
        self.vault = vault
        self.logger = logger

    def read_tags(self, path: str) -> list[str]:
        """Current tags of a document (empty if it does not exist)."""
        if not self.vault.exists(path):
            return []
        return self.vault.read_tags(path)

    def apply_tags(self, path: str, tags: list[str]) -> list[str]:
        """Add tags to a document and union them into its tracking entry.

        Tags already present in any letter case are not added again. Returns
        the tags that were newly written.
        """
        if not self.vault.exists(path):
            self.logger.debug(f"Skipping missing document: {path}")
            return []

        new_tags = unique([_bare(tag) for tag in tags if _bare(tag)])
        if not new_tags:
            return []

        added: list[str] = []

        def merge(frontmatter: dict[str, Any]) -> None:
            existing = tags_from_frontmatter(frontmatter)
            present = {_bare(tag) for tag in existing}
            added.extend(tag for tag in new_tags if tag not in present)
            if added:
                frontmatter["tags"] = existing + added

        self.vault.process_frontmatter(path, merge)

        entry = self.state.tag_tracking.get(path)
        tracked = entry.auto_tags if entry else []
        self.state.tag_tracking[path] = TagTrackingEntry(auto_tags=unique(tracked + new_tags), last_updated=utc_now())
        self.state.save()

        if added:
            self.logger.debug(f"Tagged {path}: {', '.join('#' + tag for tag in added)}")
        return added

    def removable(self, tags: list[str]) -> list[str]:
        """Drop protected tags from a removal list."""
        protected = {_bare(tag) for tag in self.state.settings.protected_tags}
        return [tag for tag in tags if _bare(tag) not in protected]

    def remove_tags(self, path: str, tags: list[str], sync_tracking: bool = True) -> list[str]:
        """Remove tags from a document, never touching protected ones.

        With ``sync_tracking`` the removed tags are also dropped from the
        tracking entry, which is deleted once empty. Returns the tags that
        were actually taken off the document.
        """
        if not self.vault.exists(path):
            self.logger.debug(f"Skipping missing document: {path}")
            return []

        safe = self.removable(tags)
        if not safe:
            return []

        removed: list[str] = []

        def strip(frontmatter: dict[str, Any]) -> None:
            if "tags" not in frontmatter:
                return
            existing = tags_from_frontmatter(frontmatter)
            remaining = [tag for tag in existing if tag not in safe]
            removed.extend(tag for tag in existing if tag in safe)
            if not removed:
                return
            if remaining:
                frontmatter["tags"] = remaining
            else:
                del frontmatter["tags"]

        self.vault.process_frontmatter(path, strip)

        if sync_tracking:
            entry = self.state.tag_tracking.get(path)
            if entry:
                entry.auto_tags = [tag for tag in entry.auto_tags if tag not in safe]
                entry.last_updated = utc_now()
                if not entry.auto_tags:
                    del self.state.tag_tracking[path]
                self.state.save()

        return removed

    def tracked_tags(self, path: str) -> list[str]:
        entry = self.state.tag_tracking.get(path)
        return list(entry.auto_tags) if entry else []

    def set_tracking(self, path: str, tags: list[str]) -> None:
        """Replace the tracking entry of a document; an empty list deletes it."""
        if tags:
            self.state.tag_tracking[path] = TagTrackingEntry(auto_tags=unique(list(tags)), last_updated=utc_now())
        else:
            self.state.tag_tracking.pop(path, None)

    def drop_tracking(self, path: str) -> bool:
        return self.state.tag_tracking.pop(path, None) is not None

    def rekey_tracking(self, old_path: str, new_path: str) -> bool:
        """Move a tracking entry to a new path without touching its tags.

        Callers persist the state.
        """
        entry = self.state.tag_tracking.pop(old_path, None)
        if entry is None:
            return False
        self.state.tag_tracking[new_path] = entry
        return True
