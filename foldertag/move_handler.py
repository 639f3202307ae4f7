"""Relocation handling for tagged documents.

Every rename signal runs through a small state machine:

    IDLE -> RENAME_OBSERVED -> DIRECT_APPLY         -> RESOLVED -> IDLE
                            -> PENDING_CONFIRMATION -> RESOLVED -> IDLE
                            -> IDLE (pure rename, ignored destination)

A rename inside the same folder only moves the tracking entry and history
references along. A move into another folder is handled straight away when
a move policy has been remembered. Otherwise it joins a batch: each arrival
re-arms a 300 ms timer, and when the timer fires the whole batch goes to
the move prompt as one decision (continue, leave or cancel).

Cancelling moves every document back. The renames this causes come back in
as rename signals, so each original path is registered as an expected event
first and the matching signal is swallowed. Emptied destination folders are
pruned a little later, best effort.
"""

from __future__ import annotations

import contextlib
import errno
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from foldertag.console import Logger
from foldertag.history import HistoryService
from foldertag.models import MARKDOWN_EXTENSION
from foldertag.models import MoveAction
from foldertag.models import MoveDecision
from foldertag.models import MovePolicy
from foldertag.models import MovePrompt
from foldertag.models import OperationFileState
from foldertag.models import OperationType
from foldertag.models import PendingMove
from foldertag.models import SYSTEM_JUNK_FILES
from foldertag.models import TagOperation
from foldertag.models import unique
from foldertag.models import VaultState
from foldertag.resolver import RuleResolver
from foldertag.scheduler import Scheduler
from foldertag.scheduler import TimerHandle
from foldertag.tag_io import TagIO
from foldertag.vault import file_name
from foldertag.vault import FrontmatterError
from foldertag.vault import parent_folder
from foldertag.vault import Vault

# Quiet window that closes a batch of moves
BATCH_DELAY = 0.3

# Delay before pruning folders emptied by a cancel
CLEANUP_DELAY = 0.5

# How long a registered corrective rename is waited for
SUPPRESSION_TTL = 1.0


class MoveState(Enum):
    """Lifecycle of one relocation."""

    IDLE = "idle"
    RENAME_OBSERVED = "rename-observed"
    DIRECT_APPLY = "direct-apply"
    PENDING_CONFIRMATION = "pending-confirmation"
    RESOLVED = "resolved"


TRANSITIONS: dict[MoveState, frozenset[MoveState]] = {
    MoveState.IDLE: frozenset({MoveState.RENAME_OBSERVED}),
    MoveState.RENAME_OBSERVED: frozenset({MoveState.IDLE, MoveState.DIRECT_APPLY, MoveState.PENDING_CONFIRMATION}),
    MoveState.DIRECT_APPLY: frozenset({MoveState.RESOLVED}),
    MoveState.PENDING_CONFIRMATION: frozenset({MoveState.RESOLVED, MoveState.IDLE}),
    MoveState.RESOLVED: frozenset({MoveState.IDLE}),
}


class InvalidTransition(RuntimeError):
    """A relocation tried to move to a state it cannot reach."""


class RenameOutcome(Enum):
    """What ``handle_rename`` did with a signal."""

    SKIPPED = "skipped"
    SUPPRESSED = "suppressed"
    RENAMED = "renamed"
    IGNORED = "ignored"
    DIRECT_APPLIED = "direct-applied"
    QUEUED = "queued"


class ExpectedEvents:
    """Paths whose next rename signal was caused by this handler.

    Each entry expires after ``ttl`` seconds in case the signal never comes.
    """

    def __init__(self, scheduler: Scheduler, ttl: float = SUPPRESSION_TTL) -> None:
        self.scheduler = scheduler
        self.ttl = ttl
        self._expiries: dict[str, TimerHandle] = {}

    def __contains__(self, path: str) -> bool:
        return path in self._expiries

    def __len__(self) -> int:
        return len(self._expiries)

    def expect(self, path: str) -> None:
        self.discard(path)
        self._expiries[path] = self.scheduler.call_later(self.ttl, self._expire, path)

    def consume(self, path: str) -> bool:
        """Remove ``path`` if expected. Returns whether it was."""
        handle = self._expiries.pop(path, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def discard(self, path: str) -> None:
        handle = self._expiries.pop(path, None)
        if handle is not None:
            handle.cancel()

    def clear(self) -> None:
        for handle in self._expiries.values():
            handle.cancel()
        self._expiries.clear()

    def _expire(self, path: str) -> None:
        self._expiries.pop(path, None)


@dataclass
class MoveBatchResult:
    """Outcome of resolving one batch of moves."""

    action: MoveAction
    processed: int = 0
    excluded: int = 0
    errors: int = 0
    operations: list[TagOperation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.errors == 0


def _remove_junk(folder: Path) -> None:
    with contextlib.suppress(OSError):
        for entry in folder.iterdir():
            if entry.name.lower() in SYSTEM_JUNK_FILES:
                with contextlib.suppress(OSError):
                    entry.unlink()


def _try_remove_folder(folder: Path, retries: int, retry_delay: float, sleep: Callable[[float], None]) -> bool:
    for attempt in range(retries):
        if not folder.is_dir():
            return False
        _remove_junk(folder)
        try:
            if any(folder.iterdir()):
                return False
            folder.rmdir()
            return True
        except OSError as e:
            # Directory listings can lag behind renames on synced drives
            if e.errno == errno.ENOTEMPTY and attempt < retries - 1:
                sleep(retry_delay)
                continue
            return False
    return False


def prune_empty_folders(
    root: Path,
    folders: set[str],
    retries: int = 3,
    retry_delay: float = 0.3,
    max_rounds: int = 10,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Remove folders that are empty apart from system junk files.

    Deepest folders go first, and rounds repeat while anything was removed
    so parents emptied by a removal are picked up. Returns the number of
    folders removed.
    """
    remaining = set(folders)
    total = 0
    for _ in range(max_rounds):
        removed = 0
        for folder in sorted(remaining, key=len, reverse=True):
            if _try_remove_folder(root / folder, retries, retry_delay, sleep):
                remaining.discard(folder)
                removed += 1
        total += removed
        if not removed:
            break
    return total


class MoveHandler:
    """Reacts to document renames and moves."""

    def __init__(
        self,
        state: VaultState,
        vault: Vault,
        resolver: RuleResolver,
        tag_io: TagIO,
        history: HistoryService,
        scheduler: Scheduler,
        prompt: MovePrompt,
        logger: Logger,
    ) -> None:
        self.state = state
        self.vault = vault
        self.resolver = resolver
        self.tag_io = tag_io
        self.history = history
        self.scheduler = scheduler
        self.prompt = prompt
        self.logger = logger

        self.pending: dict[str, PendingMove] = {}
        self.states: dict[str, MoveState] = {}
        self.expected = ExpectedEvents(scheduler)
        self.batch_timer: TimerHandle | None = None
        self.cleanup_timers: list[TimerHandle] = []
        self._generation = 0

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def state_of(self, path: str) -> MoveState:
        return self.states.get(path, MoveState.IDLE)

    def _transition(self, path: str, target: MoveState) -> None:
        current = self.state_of(path)
        if target not in TRANSITIONS[current]:
            raise InvalidTransition(f"{path}: {current.name} -> {target.name}")
        if target is MoveState.IDLE:
            self.states.pop(path, None)
        else:
            self.states[path] = target

    def _finish(self, path: str) -> None:
        self._transition(path, MoveState.RESOLVED)
        self._transition(path, MoveState.IDLE)

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    def handle_rename(self, path: str, old_path: str) -> RenameOutcome:
        """Classify and handle one rename signal."""
        if not path.lower().endswith(MARKDOWN_EXTENSION):
            return RenameOutcome.SKIPPED

        if self.expected.consume(path):
            self.logger.debug(f"Ignoring restore of {path}")
            return RenameOutcome.SUPPRESSED

        # Moved again before the batch was decided: keep the original origin
        earlier = self.pending.pop(old_path, None)
        if earlier is not None:
            self._transition(old_path, MoveState.IDLE)
            old_path = earlier.old_path
        if self.state_of(path) is MoveState.PENDING_CONFIRMATION:
            self.pending.pop(path, None)
            self._transition(path, MoveState.IDLE)

        self._transition(path, MoveState.RENAME_OBSERVED)
        old_folder = parent_folder(old_path)
        new_folder = parent_folder(path)

        if old_folder == new_folder:
            self._handle_pure_rename(path, old_path)
            self._transition(path, MoveState.IDLE)
            return RenameOutcome.RENAMED

        if self.resolver.is_ignored(path):
            self._transition(path, MoveState.IDLE)
            return RenameOutcome.IGNORED

        policy = self.state.settings.move_policy
        if policy is not MovePolicy.ASK:
            self._transition(path, MoveState.DIRECT_APPLY)
            if policy is MovePolicy.ALWAYS_RETAG:
                try:
                    self.apply_move_retag(path, old_path)
                except (OSError, FrontmatterError) as e:
                    self.logger.warn(f"Failed to retag {file_name(path)}: {e}")
            else:
                if self.tag_io.rekey_tracking(old_path, path):
                    self.state.save()
            self._finish(path)
            return RenameOutcome.DIRECT_APPLIED

        self.pending[path] = PendingMove(path=path, old_path=old_path, old_folder=old_folder, new_folder=new_folder)
        self._transition(path, MoveState.PENDING_CONFIRMATION)
        if self.batch_timer is not None:
            self.batch_timer.cancel()
        self.batch_timer = self.scheduler.call_later(BATCH_DELAY, self.flush)
        self.logger.debug(f"Queued move {old_path} -> {path}")
        return RenameOutcome.QUEUED

    def _handle_pure_rename(self, path: str, old_path: str) -> None:
        rekeyed = self.tag_io.rekey_tracking(old_path, path)
        rewritten = self.history.rewrite_path(old_path, path)
        if rekeyed or rewritten:
            self.state.save()

    def flush(self) -> None:
        """Hand every queued move to the prompt as one decision."""
        if self.batch_timer is not None:
            self.batch_timer.cancel()
            self.batch_timer = None
        moves = list(self.pending.values())
        self.pending.clear()
        if not moves:
            return

        generation = self._generation
        answered = False

        def on_decision(decision: MoveDecision) -> None:
            nonlocal answered
            if answered or generation != self._generation:
                return
            answered = True
            self.scheduler.dispatch(self.resolve_batch, moves, decision)

        self.prompt(moves, on_decision)

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def resolve_batch(self, moves: list[PendingMove], decision: MoveDecision) -> MoveBatchResult:
        """Apply a decision to a batch of moves."""
        result = MoveBatchResult(action=decision.action)
        try:
            self._resolve(moves, decision, result)
        finally:
            for move in moves:
                if self.state_of(move.path) is MoveState.PENDING_CONFIRMATION:
                    self._finish(move.path)
        return result

    def _resolve(self, moves: list[PendingMove], decision: MoveDecision, result: MoveBatchResult) -> None:
        if decision.remember and decision.action is not MoveAction.CANCEL:
            policy = MovePolicy.ALWAYS_RETAG if decision.action is MoveAction.CONTINUE else MovePolicy.ALWAYS_LEAVE
            self.state.settings.move_policy = policy
            self.state.save()
            self.logger.info(f'Will remember "{decision.action.value}" for future moves')

        to_process = [move for move in moves if move.path not in decision.excluded_paths]
        for move in moves:
            if move.path in decision.excluded_paths:
                self.tag_io.rekey_tracking(move.old_path, move.path)
                result.excluded += 1
        if result.excluded:
            self.state.save()

        if not to_process:
            self.logger.info("All files excluded - tags left unchanged")
            return

        if decision.action is MoveAction.CONTINUE:
            for move in to_process:
                try:
                    operation = self.apply_move_retag(move.path, move.old_path)
                except (OSError, FrontmatterError) as e:
                    self.logger.debug(f"Failed to retag {move.path}: {e}")
                    result.errors += 1
                    continue
                result.processed += 1
                if operation is not None:
                    result.operations.append(operation)
            self.logger.summary(f"Retagged {result.processed} files", result.errors)

        elif decision.action is MoveAction.LEAVE:
            for move in to_process:
                self.tag_io.rekey_tracking(move.old_path, move.path)
                result.processed += 1
            self.state.save()
            self.logger.summary(f"Left tags unchanged for {result.processed} files")

        else:
            self._cancel(to_process, result)

    def _cancel(self, moves: list[PendingMove], result: MoveBatchResult) -> None:
        for folder in sorted({move.old_folder for move in moves if move.old_folder}):
            try:
                self.vault.create_folder(folder)
            except OSError as e:
                self.logger.debug(f"Could not create {folder}: {e}")

        for move in moves:
            self.expected.expect(move.old_path)

        cleanup: set[str] = set()
        for move in moves:
            if move.new_folder:
                cleanup.add(move.new_folder)
                cleanup.update(self.vault.folders(move.new_folder))

        for move in moves:
            try:
                self.vault.rename(move.path, move.old_path)
                result.processed += 1
            except OSError as e:
                self.logger.debug(f"Failed to restore {move.path}: {e}")
                self.expected.discard(move.old_path)
                result.errors += 1

        if cleanup:
            self.cleanup_timers.append(self.scheduler.call_later(CLEANUP_DELAY, self._prune, cleanup))

        self.logger.summary(f"Restored {result.processed} files", result.errors)

    def _prune(self, folders: set[str]) -> None:
        self.cleanup_timers = [handle for handle in self.cleanup_timers if handle.active]
        removed = prune_empty_folders(self.vault.root, folders, sleep=self.scheduler.sleep)
        if removed:
            self.logger.info(f"Cleaned up {removed} empty folder{'s' if removed > 1 else ''}")

    def apply_move_retag(self, path: str, old_path: str) -> TagOperation | None:
        """Swap the tags from the old location for those of the new one."""
        if not self.vault.exists(path):
            self.logger.debug(f"Skipping missing document: {path}")
            return None

        name = file_name(path)
        tags_before = self.tag_io.read_tags(path)
        old_tracked = self.tag_io.tracked_tags(old_path)
        tracked_here = self.tag_io.tracked_tags(path)
        tracking_before = unique(old_tracked + tracked_here)

        if old_tracked:
            self.tag_io.remove_tags(path, old_tracked, sync_tracking=False)
            self.tag_io.drop_tracking(old_path)
            removable = self.tag_io.removable(old_tracked)
            kept = [tag for tag in old_tracked if tag not in removable]
            if kept:
                self.tag_io.set_tracking(path, unique(tracked_here + kept))

        new_tags = self.resolver.resolve(path)
        if new_tags:
            self.tag_io.apply_tags(path, new_tags)
            self.logger.info(f"Retagged {name} with: {', '.join('#' + tag for tag in new_tags)}")
        else:
            self.state.save()
            self.logger.info(f"Auto-tags removed from {name} (new location has no folder rules)")

        tags_after = self.tag_io.read_tags(path)
        return self.history.record(
            OperationType.MOVE,
            f"Retagged {name} after move",
            [OperationFileState(path, tags_before, tags_after, tracking_before)],
        )

    def teardown(self) -> None:
        """Cancel every timer and forget queued moves."""
        self._generation += 1
        if self.batch_timer is not None:
            self.batch_timer.cancel()
            self.batch_timer = None
        for handle in self.cleanup_timers:
            handle.cancel()
        self.cleanup_timers.clear()
        self.expected.clear()
        self.pending.clear()
        self.states.clear()
