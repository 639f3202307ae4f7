"""Bulk tagging of existing documents.

A bulk run has three steps: ``preview`` describes each document (current
tags, tracked tags, folder tags per level), ``plan`` turns a level
selection plus extra tags into per-document changes, and ``execute``
applies the changes and records them as one ``bulk`` operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from foldertag.console import Logger
from foldertag.history import HistoryService
from foldertag.models import ApplyScope
from foldertag.models import BatchResult
from foldertag.models import normalize_tag_list
from foldertag.models import OperationFileState
from foldertag.models import OperationType
from foldertag.models import PROGRESS_INTERVAL
from foldertag.models import unique
from foldertag.models import VaultState
from foldertag.resolver import RuleResolver
from foldertag.tag_io import TagIO
from foldertag.vault import FrontmatterError
from foldertag.vault import Vault


@dataclass
class PreviewItem:
    """What a bulk run knows about one document before changing it."""

    path: str
    current_tags: list[str] = field(default_factory=list)
    auto_tags: list[str] = field(default_factory=list)
    folder_tags_by_level: list[list[str]] = field(default_factory=list)

    @property
    def max_level(self) -> int:
        return len(self.folder_tags_by_level)

    def folder_tags(self, levels: set[int]) -> list[str]:
        """Folder tags at the enabled 1-based levels."""
        tags: list[str] = []
        for level, level_tags in enumerate(self.folder_tags_by_level, start=1):
            if level in levels:
                tags.extend(level_tags)
        return tags

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "path": self.path,
            "current_tags": list(self.current_tags),
            "auto_tags": list(self.auto_tags),
            "folder_tags_by_level": [list(tags) for tags in self.folder_tags_by_level],
        }


@dataclass
class BulkChange:
    """Tags to add to and remove from one document."""

    path: str
    tags_to_add: list[str] = field(default_factory=list)
    tags_to_remove: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {"path": self.path, "add": list(self.tags_to_add), "remove": list(self.tags_to_remove)}


class BulkOperations:
    """Vault- and folder-wide tagging."""

    def __init__(
        self,
        state: VaultState,
        vault: Vault,
        resolver: RuleResolver,
        tag_io: TagIO,
        history: HistoryService,
        logger: Logger,
    ) -> None:
        self.state = state
        self.vault = vault
        self.resolver = resolver
        self.tag_io = tag_io
        self.history = history
        self.logger = logger

    def files_in(self, folder: str | None = None, include_subdirs: bool = True) -> list[str]:
        """Markdown documents in the vault, or in one folder."""
        if not folder:
            return self.vault.markdown_files()
        return self.vault.markdown_files(folder.strip("/"), recursive=include_subdirs)

    def preview(self, paths: list[str], unreadable: list[str] | None = None) -> list[PreviewItem]:
        """Describe each non-ignored document.

        Documents whose tags cannot be read are left out and, when
        ``unreadable`` is given, appended to it.
        """
        items = []
        for path in paths:
            if self.resolver.is_ignored(path):
                continue
            try:
                current_tags = self.tag_io.read_tags(path)
            except (OSError, FrontmatterError) as e:
                self.logger.warn(f"Skipping {path}: {e}")
                if unreadable is not None:
                    unreadable.append(path)
                continue
            items.append(
                PreviewItem(
                    path=path,
                    current_tags=current_tags,
                    auto_tags=self.tag_io.tracked_tags(path),
                    folder_tags_by_level=self.resolver.folder_tags_by_level(path),
                )
            )
        return items

    def default_levels(self, items: list[PreviewItem]) -> set[int]:
        """Levels enabled by default: 1 up to the configured inherit depth."""
        max_level = max((item.max_level for item in items), default=0)
        return set(range(1, min(max_level, self.state.settings.inherit_depth) + 1))

    def plan(
        self,
        items: list[PreviewItem],
        levels: set[int] | None = None,
        additional_tags: list[str] | None = None,
        selected: set[str] | None = None,
        additional_to_selected_only: bool = False,
        deletions: dict[str, list[str]] | None = None,
    ) -> list[BulkChange]:
        """Compute per-document changes.

        Tags are only added to selected documents (all, when ``selected`` is
        None). Deletions apply whether or not a document is selected.
        """
        if levels is None:
            levels = self.default_levels(items)
        extra = normalize_tag_list(additional_tags or [])
        deletions = deletions or {}

        changes = []
        for item in items:
            is_selected = selected is None or item.path in selected
            wanted = item.folder_tags(levels)
            if extra and (is_selected or not additional_to_selected_only):
                wanted = wanted + extra
            tags_to_add = [tag for tag in unique(wanted) if tag not in item.current_tags] if is_selected else []
            tags_to_remove = list(deletions.get(item.path, []))
            if tags_to_add or tags_to_remove:
                changes.append(BulkChange(item.path, tags_to_add, tags_to_remove))
        return changes

    def execute(self, changes: list[BulkChange], failed: int = 0) -> BatchResult:
        """Apply planned changes: removals first, then additions.

        ``failed`` counts documents that already failed while planning.
        """
        result = BatchResult(errors=failed)
        files: list[OperationFileState] = []

        for index, change in enumerate(changes):
            if index and index % PROGRESS_INTERVAL == 0:
                self.logger.progress("Processing", index, len(changes))
            if not self.vault.exists(change.path):
                self.logger.debug(f"Skipping missing document: {change.path}")
                result.skipped += 1
                continue
            try:
                tags_before = self.tag_io.read_tags(change.path)
                tracking_before = self.tag_io.tracked_tags(change.path)
                if change.tags_to_remove:
                    self.tag_io.remove_tags(change.path, change.tags_to_remove)
                    result.tags_removed += len(change.tags_to_remove)
                if change.tags_to_add:
                    self.tag_io.apply_tags(change.path, change.tags_to_add)
                    result.tags_added += len(change.tags_to_add)
                tags_after = self.tag_io.read_tags(change.path)
            except (OSError, FrontmatterError) as e:
                self.logger.debug(f"Failed to modify {change.path}: {e}")
                result.errors += 1
                continue
            files.append(OperationFileState(change.path, tags_before, tags_after, tracking_before))
            result.processed += 1

        if files:
            if result.tags_removed:
                description = (
                    f"Bulk modified {result.processed} files "
                    f"({result.tags_added} added, {result.tags_removed} removed)"
                )
            else:
                description = f"Bulk applied tags to {result.processed} files"
            result.operation = self.history.record(OperationType.BULK, description, files)

        parts = []
        if result.tags_added:
            parts.append(f"{result.tags_added} tags added")
        if result.tags_removed:
            parts.append(f"{result.tags_removed} tags removed")
        message = f"Modified {result.processed} files"
        if parts:
            message += f" ({', '.join(parts)})"
        self.logger.summary(message, result.errors)
        return result

    def bulk_apply(
        self,
        folder: str | None = None,
        include_subdirs: bool = True,
        levels: set[int] | None = None,
        additional_tags: list[str] | None = None,
    ) -> BatchResult:
        """Preview, plan and execute folder tags for the vault or one folder."""
        if folder and self.resolver.is_ignored_folder(folder.strip("/")):
            self.logger.warn(f'"{folder}" is in the ignored paths list')
            return BatchResult()

        unreadable: list[str] = []
        items = self.preview(self.files_in(folder, include_subdirs), unreadable)
        if not items:
            self.logger.info("No files found (all files may be in ignored paths)")
            return BatchResult(errors=len(unreadable))

        changes = self.plan(items, levels=levels, additional_tags=additional_tags)
        if not changes:
            self.logger.info("Nothing to change")
            return BatchResult(errors=len(unreadable))
        return self.execute(changes, failed=len(unreadable))

    def apply_rule_to_existing_files(self, folder: str) -> BatchResult:
        """Give existing documents under a rule folder the rule's tags."""
        folder = folder.strip("/")
        rule = self.resolver.rule_for(folder)
        if rule is None:
            self.logger.warn(f"No rule for {folder or '(root)'}")
            return BatchResult()

        recursive = rule.apply_down.mode == ApplyScope.ALL_MODE
        changes = []
        failed = 0
        for path in self.vault.markdown_files(folder, recursive=recursive):
            tags = self.resolver.rule_tags_for(folder, path)
            try:
                present = {tag.lower() for tag in self.tag_io.read_tags(path)}
            except (OSError, FrontmatterError) as e:
                self.logger.warn(f"Skipping {path}: {e}")
                failed += 1
                continue
            missing = [tag for tag in tags if tag.lower() not in present]
            if missing:
                changes.append(BulkChange(path, missing))

        if not changes:
            self.logger.info("No files found to apply rule to")
            return BatchResult(errors=failed)
        return self.execute(changes, failed=failed)
