"""Removal of auto-applied tags across the vault.

Only tracked tags are removed, so tags a user typed stay put. Protected
tags are never removed and stay tracked. Each run records one ``revert``
operation carrying the tracking snapshot of every document, so an undo puts
tags and tracking back exactly.

``revert_all_tags`` is the destructive variant: it clears every tag from
every document and forgets all tracking and folder rules.
"""

from __future__ import annotations

from foldertag.console import Logger
from foldertag.history import HistoryService
from foldertag.models import BatchResult
from foldertag.models import OperationFileState
from foldertag.models import OperationType
from foldertag.models import PROGRESS_INTERVAL
from foldertag.models import TagTrackingEntry
from foldertag.models import VaultState
from foldertag.tag_io import TagIO
from foldertag.vault import FrontmatterError
from foldertag.vault import parent_folder
from foldertag.vault import Vault


class RevertService:
    """Bulk removal of auto-applied tags."""

    def __init__(
        self, state: VaultState, vault: Vault, tag_io: TagIO, history: HistoryService, logger: Logger
    ) -> None:
        self.state = state
        self.vault = vault
        self.tag_io = tag_io
        self.history = history
        self.logger = logger

    def _revert_files(self, paths: list[str], description: str) -> BatchResult:
        result = BatchResult()
        files: list[OperationFileState] = []
        tracking = self.state.tag_tracking

        for index, path in enumerate(paths):
            if index and index % PROGRESS_INTERVAL == 0:
                self.logger.progress("Removing", index, len(paths))

            entry = tracking.get(path)
            if not entry or not entry.auto_tags:
                continue
            if not self.vault.exists(path):
                self.logger.debug(f"Skipping missing document: {path}")
                result.skipped += 1
                continue

            try:
                tags_before = self.tag_io.read_tags(path)
                to_remove = self.tag_io.removable(entry.auto_tags)
                kept = [tag for tag in entry.auto_tags if tag not in to_remove]
                if to_remove:
                    self.tag_io.remove_tags(path, to_remove, sync_tracking=False)
                tags_after = self.tag_io.read_tags(path)
            except (OSError, FrontmatterError) as e:
                self.logger.debug(f"Failed to revert {path}: {e}")
                result.errors += 1
                continue

            files.append(OperationFileState(path, tags_before, tags_after, list(entry.auto_tags)))
            if kept:
                tracking[path] = TagTrackingEntry(auto_tags=kept, last_updated=entry.last_updated)
            else:
                del tracking[path]
            result.processed += 1
            result.tags_removed += len(tags_before) - len(tags_after)

        if files:
            result.operation = self.history.record(
                OperationType.REVERT, description.format(count=result.processed), files
            )
        self.state.save()
        return result

    def revert_all_auto_tags(self) -> BatchResult:
        """Remove every tracked tag from every tracked document."""
        paths = list(self.state.tag_tracking)
        if not paths:
            self.logger.info("No auto-tags to revert")
            return BatchResult()

        result = self._revert_files(paths, "Removed auto-tags from {count} files")
        self.logger.summary(f"Reverted {result.processed} files", result.errors)
        return result

    def revert_dates(self) -> dict[str, list[str]]:
        """Tracked documents grouped by the UTC date they were last tagged, newest first."""
        dates: dict[str, list[str]] = {}
        for path, entry in self.state.tag_tracking.items():
            if not entry.last_updated:
                continue
            dates.setdefault(entry.last_updated.split("T")[0], []).append(path)
        return {date: dates[date] for date in sorted(dates, reverse=True)}

    def revert_by_dates(self, dates: list[str]) -> BatchResult:
        """Remove auto-tags from documents last tagged on the given dates."""
        by_date = self.revert_dates()
        paths = [path for date in dates for path in by_date.get(date, [])]
        if not paths:
            self.logger.info("No files to revert for selected dates")
            return BatchResult()

        result = self._revert_files(paths, "Removed auto-tags from {count} files (by date)")
        self.logger.summary(
            f"Removed auto-tags from {result.processed} files from {len(dates)} date(s)", result.errors
        )
        return result

    def tracked_folders(self) -> list[str]:
        """Folders containing tracked documents, with all their ancestors."""
        folders: set[str] = set()
        for path in self.state.tag_tracking:
            folder = parent_folder(path)
            if not folder:
                continue
            parts = folder.split("/")
            for depth in range(1, len(parts) + 1):
                folders.add("/".join(parts[:depth]))
        return sorted(folders)

    def revert_by_folder(self, folder: str, include_subdirs: bool = False) -> BatchResult:
        """Remove auto-tags from tracked documents in one folder."""
        folder = folder.strip("/")
        if include_subdirs:
            paths = [path for path in self.state.tag_tracking if path.startswith(f"{folder}/")]
        else:
            paths = [path for path in self.state.tag_tracking if parent_folder(path) == folder]

        if not paths:
            self.logger.info(f"No tracked files in {folder}")
            return BatchResult()

        result = self._revert_files(paths, "Removed auto-tags from {count} files in " + folder)
        self.logger.summary(f"Removed auto-tags from {result.processed} files in {folder}", result.errors)
        return result

    def revert_all_tags(self) -> BatchResult:
        """Clear every tag from every document and forget tracking and rules."""
        result = BatchResult()
        files: list[OperationFileState] = []
        paths = self.vault.markdown_files()

        for index, path in enumerate(paths):
            if index and index % PROGRESS_INTERVAL == 0:
                self.logger.progress("Clearing", index, len(paths))
            try:
                tags_before = self.tag_io.read_tags(path)
                if tags_before:
                    self.vault.process_frontmatter(path, lambda frontmatter: frontmatter.pop("tags", None))
                    files.append(OperationFileState(path, tags_before, [], self.tag_io.tracked_tags(path)))
                    result.tags_removed += len(tags_before)
            except (OSError, FrontmatterError) as e:
                self.logger.debug(f"Failed to clear tags from {path}: {e}")
                result.errors += 1
                continue
            result.processed += 1

        rule_count = len(self.state.folder_rules)
        if files:
            result.operation = self.history.record(
                OperationType.REVERT, f"Cleared all tags from {len(files)} files", files
            )
        self.state.tag_tracking.clear()
        self.state.folder_rules.clear()
        self.state.save()

        self.logger.summary(
            f"Cleared {result.processed} files and deleted {rule_count} folder rules", result.errors
        )
        return result
