"""Wiring of the tag services for one vault.

``TagEngine`` owns the shared state and builds every service around it.
Create and rename signals wait a short settle delay per document before
they are handled; a newer signal for the same document (or for the path it
was renamed from) replaces the waiting one.

Usage:
    engine = open_engine(Path("~/notes").expanduser())
    engine.set_rule("Health", tags=["medical"], inherit_from_ancestors=False)
    engine.bulk.bulk_apply(folder="Health")
    engine.undo()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from foldertag.bulk import BulkOperations
from foldertag.config import apply_config
from foldertag.config import ConfigDict
from foldertag.config import StateStore
from foldertag.console import Logger
from foldertag.history import HistoryService
from foldertag.history import UndoResult
from foldertag.models import ApplyScope
from foldertag.models import FolderRule
from foldertag.models import MARKDOWN_EXTENSION
from foldertag.models import MoveAction
from foldertag.models import MoveDecision
from foldertag.models import MovePrompt
from foldertag.models import OperationFileState
from foldertag.models import OperationType
from foldertag.models import PendingMove
from foldertag.models import TagOperation
from foldertag.models import VaultState
from foldertag.move_handler import MoveHandler
from foldertag.resolver import ROOT_RULE_KEYS
from foldertag.resolver import RuleResolver
from foldertag.revert import RevertService
from foldertag.scheduler import Scheduler
from foldertag.scheduler import TimerHandle
from foldertag.tag_io import TagIO
from foldertag.validation import ValidationService
from foldertag.vault import file_name
from foldertag.vault import FrontmatterError
from foldertag.vault import Vault

# Per-document wait before a create or rename signal is handled
SETTLE_DELAY = 0.1


def leave_tags_prompt(moves: list[PendingMove], respond: Callable[[MoveDecision], None]) -> None:
    """Non-interactive move prompt: keep tags as they are."""
    respond(MoveDecision(MoveAction.LEAVE))


@dataclass
class TagReport:
    """Which tags this tool manages and which ones users typed."""

    tracked_files: int = 0
    auto_tag_files: dict[str, list[str]] = field(default_factory=dict)
    manual_tags: list[str] = field(default_factory=list)

    @property
    def auto_tag_counts(self) -> list[tuple[str, int]]:
        """Auto tags with their document counts, most used first."""
        return sorted(
            ((tag, len(files)) for tag, files in self.auto_tag_files.items()), key=lambda item: (-item[1], item[0])
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "tracked_files": self.tracked_files,
            "auto_tags": {tag: sorted(files) for tag, files in self.auto_tag_files.items()},
            "manual_tags": list(self.manual_tags),
        }


class TagEngine:
    """Entry points for one vault."""

    def __init__(
        self,
        vault: Vault,
        state: VaultState,
        scheduler: Scheduler | None = None,
        prompt: MovePrompt | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.vault = vault
        self.state = state
        self.scheduler = scheduler or Scheduler()
        self.logger = logger or Logger()

        self.resolver = RuleResolver(state)
        self.tag_io = TagIO(state, vault, self.logger)
        self.history = HistoryService(state, vault, self.logger)
        self.move_handler = MoveHandler(
            state,
            vault,
            self.resolver,
            self.tag_io,
            self.history,
            self.scheduler,
            prompt or leave_tags_prompt,
            self.logger,
        )
        self.revert = RevertService(state, vault, self.tag_io, self.history, self.logger)
        self.bulk = BulkOperations(state, vault, self.resolver, self.tag_io, self.history, self.logger)
        self.validation = ValidationService(state, vault, self.tag_io, self.logger)

        self.settle_timers: dict[str, TimerHandle] = {}

    # -------------------------------------------------------------------------
    # Host signals
    # -------------------------------------------------------------------------

    def _cancel_settle(self, path: str) -> None:
        handle = self.settle_timers.pop(path, None)
        if handle is not None:
            handle.cancel()

    def on_create(self, path: str) -> None:
        """Handle a new document once it has settled."""
        self._cancel_settle(path)
        self.settle_timers[path] = self.scheduler.call_later(SETTLE_DELAY, self._settled_create, path)

    def on_rename(self, path: str, old_path: str) -> None:
        """Handle a renamed or moved document once it has settled."""
        self._cancel_settle(path)
        self._cancel_settle(old_path)
        self.settle_timers[path] = self.scheduler.call_later(SETTLE_DELAY, self._settled_rename, path, old_path)

    def _settled_create(self, path: str) -> None:
        self.settle_timers.pop(path, None)
        self.handle_file_create(path)

    def _settled_rename(self, path: str, old_path: str) -> None:
        self.settle_timers.pop(path, None)
        self.move_handler.handle_rename(path, old_path)

    def handle_file_create(self, path: str) -> TagOperation | None:
        """Tag a new document from the folder rules."""
        if not self.state.settings.auto_tag_enabled:
            return None
        if not path.lower().endswith(MARKDOWN_EXTENSION):
            return None

        tags = self.resolver.resolve(path)
        if not tags:
            return None
        if not self.vault.exists(path):
            self.logger.debug(f"Skipping missing document: {path}")
            return None

        try:
            operation = self._apply_and_record(path, tags, f"Auto-tagged {file_name(path)}")
        except (OSError, FrontmatterError) as e:
            self.logger.warn(f"Failed to tag {path}: {e}")
            return None
        self.logger.info(f"Auto-tagged {path}: {', '.join('#' + tag for tag in tags)}")
        return operation

    def _apply_and_record(self, path: str, tags: list[str], description: str) -> TagOperation:
        tags_before = self.tag_io.read_tags(path)
        tracking_before = self.tag_io.tracked_tags(path)
        self.tag_io.apply_tags(path, tags)
        tags_after = self.tag_io.read_tags(path)
        return self.history.record(
            OperationType.APPLY,
            description,
            [OperationFileState(path, tags_before, tags_after, tracking_before)],
        )

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def tag_document(self, path: str, use_rules: bool = False) -> TagOperation | None:
        """Tag one document from its folder names (or its folder rules)."""
        if not self.vault.exists(path):
            self.logger.warn(f"No such document: {path}")
            return None

        tags = self.resolver.resolve(path) if use_rules else self.resolver.resolve_legacy(path)
        if not tags:
            self.logger.info("No tags to apply for this location")
            return None

        operation = self._apply_and_record(path, tags, f"Tagged {file_name(path)}")
        self.logger.success(f"Applied tags: {', '.join('#' + tag for tag in tags)}")
        return operation

    def undo(self, operation_id: str | None = None) -> UndoResult | None:
        """Undo one operation, the most recent by default."""
        if operation_id is None:
            if not self.state.operation_history:
                return None
            operation_id = self.state.operation_history[0].id
        return self.history.undo(operation_id)

    @staticmethod
    def _rule_key(folder: str) -> str:
        folder = folder.strip()
        return "" if folder in ROOT_RULE_KEYS else folder.strip("/")

    def set_rule(
        self,
        folder: str,
        tags: list[str] | None = None,
        folder_tag_levels: list[int] | None = None,
        apply_down: ApplyScope | None = None,
        inherit_from_ancestors: bool = True,
        apply_to_new_files: bool = True,
    ) -> FolderRule:
        """Create or replace the rule of a folder."""
        key = self._rule_key(folder)
        existing = self.state.folder_rules.get(key)
        if key == "":
            existing = existing or self.state.folder_rules.pop("/", None)
        rule = FolderRule(
            tags=tags or [],
            folder_tag_levels=folder_tag_levels or [],
            apply_down=apply_down or ApplyScope.all(),
            inherit_from_ancestors=inherit_from_ancestors,
            apply_to_new_files=apply_to_new_files,
        )
        if existing is not None:
            rule.created_at = existing.created_at
        self.state.folder_rules[key] = rule
        self.state.save()
        self.logger.success(f"Folder rule saved for {key or '(root)'}")
        return rule

    def delete_rule(self, folder: str) -> bool:
        key = self._rule_key(folder)
        removed = self.state.folder_rules.pop(key, None)
        if key == "":
            removed = self.state.folder_rules.pop("/", None) or removed
        if removed is None:
            return False
        self.state.save()
        self.logger.success(f"Folder rule deleted for {key or '(root)'}")
        return True

    def report(self) -> TagReport:
        """Summarise tracked tags and the tags users added themselves."""
        report = TagReport(tracked_files=len(self.state.tag_tracking))
        for path, entry in self.state.tag_tracking.items():
            for tag in entry.auto_tags:
                report.auto_tag_files.setdefault(tag, []).append(path)

        vault_tags: set[str] = set()
        for path in self.vault.markdown_files():
            try:
                vault_tags.update(self.tag_io.read_tags(path))
            except (OSError, FrontmatterError) as e:
                self.logger.debug(f"Cannot read {path}: {e}")
        report.manual_tags = sorted(tag for tag in vault_tags if tag not in report.auto_tag_files)
        return report

    def teardown(self) -> None:
        """Cancel pending timers. The engine must not be used afterwards."""
        for handle in self.settle_timers.values():
            handle.cancel()
        self.settle_timers.clear()
        self.move_handler.teardown()


def open_engine(
    root: Path,
    config: ConfigDict | None = None,
    prompt: MovePrompt | None = None,
    logger: Logger | None = None,
    scheduler: Scheduler | None = None,
) -> TagEngine:
    """Load the state of a vault directory and build an engine for it."""
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Vault directory not found: {root}")
    state = StateStore(root).load()
    if config:
        apply_config(state.settings, config)
    return TagEngine(Vault(root), state, scheduler=scheduler, prompt=prompt, logger=logger)
