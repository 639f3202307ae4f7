"""Operation history with snapshot-based undo.

Each mutating operation stores, per document, the tags before and after and
the tracking entry before. Undo writes the before-state back exactly and
then drops the operation, so each operation can be undone once.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from foldertag.console import Logger
from foldertag.models import MAX_HISTORY_SIZE
from foldertag.models import OperationFileState
from foldertag.models import OperationType
from foldertag.models import TagOperation
from foldertag.models import TagTrackingEntry
from foldertag.models import utc_now
from foldertag.models import VaultState
from foldertag.vault import file_name
from foldertag.vault import FrontmatterError
from foldertag.vault import Vault


@dataclass
class UndoResult:
    """Outcome of undoing one operation."""

    operation: TagOperation
    undone: int = 0
    errors: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "operation_id": self.operation.id,
            "description": self.operation.description,
            "undone": self.undone,
            "errors": self.errors,
            "skipped": self.skipped,
        }


class HistoryService:
    """Bounded, most-recent-first log of tag operations."""

    def __init__(self, state: VaultState, vault: Vault, logger: Logger) -> None:
        self.state = state
        self.vault = vault
        self.logger = logger

    def record(self, op_type: OperationType, description: str, files: list[OperationFileState]) -> TagOperation:
        """Record an operation, evicting the oldest past the cap."""
        operation = TagOperation(
            id=uuid.uuid4().hex,
            type=op_type,
            description=description,
            timestamp=utc_now(),
            files=files,
        )
        self.state.operation_history.insert(0, operation)
        del self.state.operation_history[MAX_HISTORY_SIZE:]
        self.state.save()
        self.logger.debug(f"Recorded {op_type.value} operation {operation.id}: {description}")
        return operation

    def list(self) -> list[TagOperation]:
        return list(self.state.operation_history)

    def find(self, operation_id: str) -> TagOperation | None:
        for operation in self.state.operation_history:
            if operation.id == operation_id:
                return operation
        return None

    def undo(self, operation_id: str) -> UndoResult | None:
        """Restore every document of an operation to its before-state.

        Returns None if the operation is not (or no longer) in history.
        """
        operation = self.find(operation_id)
        if operation is None:
            return None

        result = UndoResult(operation=operation)
        for file_state in operation.files:
            if not self.vault.exists(file_state.path):
                self.logger.debug(f"Skipping missing document: {file_state.path}")
                result.skipped += 1
                continue
            try:
                self._restore(file_state)
                result.undone += 1
            except (OSError, FrontmatterError) as e:
                self.logger.debug(f"Failed to undo {file_state.path}: {e}")
                result.errors += 1

        self.state.operation_history = [op for op in self.state.operation_history if op.id != operation.id]
        self.state.save()

        self.logger.summary(f'Undone "{operation.description}": {result.undone} files restored', result.errors)
        return result

    def _restore(self, file_state: OperationFileState) -> None:
        tags_before = list(file_state.tags_before)

        def restore(frontmatter: dict) -> None:
            if tags_before:
                frontmatter["tags"] = list(tags_before)
            else:
                frontmatter.pop("tags", None)

        self.vault.process_frontmatter(file_state.path, restore)

        tracking = self.state.tag_tracking
        if file_state.tracking_before is not None:
            if file_state.tracking_before:
                tracking[file_state.path] = TagTrackingEntry(
                    auto_tags=list(file_state.tracking_before), last_updated=utc_now()
                )
            else:
                tracking.pop(file_state.path, None)
            return

        # Operations recorded without a tracking snapshot
        entry = tracking.get(file_state.path)
        tracked = entry.auto_tags if entry else []
        if not any(tag in tags_before for tag in tracked):
            tracking.pop(file_state.path, None)

    def rewrite_path(self, old_path: str, new_path: str) -> bool:
        """Point history at a renamed document. Callers persist the state."""
        changed = False
        old_name = file_name(old_path)
        new_name = file_name(new_path)
        for operation in self.state.operation_history:
            for file_state in operation.files:
                if file_state.path == old_path:
                    file_state.path = new_path
                    changed = True
            if old_name != new_name and old_name in operation.description:
                operation.description = operation.description.replace(old_name, new_name, 1)
                changed = True
        return changed
