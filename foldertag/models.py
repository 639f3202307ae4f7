"""Data model for foldertag.

Folder rules, tag tracking entries, operation history records and the
persisted vault state. Stored data is normalised here, at the load boundary,
so the services only ever see one canonical shape.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, TypedDict, Union

# Operation history is capped; older operations are evicted silently
MAX_HISTORY_SIZE = 50

# Long batch loops report progress every N documents
PROGRESS_INTERVAL = 50

# Platform junk that keeps an otherwise empty folder from being removed
SYSTEM_JUNK_FILES = frozenset({"desktop.ini", "thumbs.db", ".ds_store"})

MARKDOWN_EXTENSION = ".md"

DEFAULT_IGNORE_PATHS = ["Templates", ".obsidian"]


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def normalize_tag(tag: str) -> str:
    """Normalise user-entered tag text: strip '#', lowercase, kebab-case."""
    tag = str(tag).strip().lstrip("#").lower()
    tag = re.sub(r"[^a-z0-9-]", "-", tag)
    return tag.strip("-")


def normalize_tag_list(tags: object) -> list[str]:
    """Turn a scalar-or-list tag value into a clean, duplicate-free list."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = [tags]
    if not isinstance(tags, (list, tuple, set, frozenset)):
        return []
    result: list[str] = []
    for tag in tags:
        normalized = normalize_tag(tag)
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def unique(items: list[str]) -> list[str]:
    """Deduplicate a list, keeping first occurrences in order."""
    return list(dict.fromkeys(items))


class OperationType(Enum):
    """Kind of a recorded tag operation."""

    APPLY = "apply"
    REMOVE = "remove"
    BULK = "bulk"
    MOVE = "move"
    REVERT = "revert"


class MovePolicy(Enum):
    """Persisted default for documents moved between folders."""

    ASK = "ask"
    ALWAYS_RETAG = "always-retag"
    ALWAYS_LEAVE = "always-leave"


class MoveAction(Enum):
    """User decision for a batch of moved documents."""

    CONTINUE = "continue"
    LEAVE = "leave"
    CANCEL = "cancel"


class IssueType(Enum):
    """Kind of tracking integrity problem."""

    ORPHANED_TRACKING = "orphaned-tracking"
    MISSING_TAGS = "missing-tags"
    IGNORED_PATH_TRACKED = "ignored-path-tracked"


# =============================================================================
# Stored shapes
# =============================================================================


class FolderRuleDict(TypedDict, total=False):
    """Stored shape of a folder rule."""

    tags: list[str]
    folderTagLevels: list[int]
    applyDownLevels: Union[str, list[int]]
    inheritFromAncestors: bool
    applyToNewFiles: bool
    createdAt: str
    lastModified: str


class SettingsDict(TypedDict, total=False):
    """Stored shape of the settings block (legacy keys included)."""

    autoTagEnabled: bool
    inheritDepth: int
    movePolicy: str
    showMoveConfirmation: bool
    rememberedMoveAction: Union[str, None]
    folderMappings: dict[str, list[str]]
    folderAliases: dict[str, Union[str, list[str]]]
    ignorePaths: list[str]
    protectedTags: list[str]


class StateDict(TypedDict, total=False):
    """Stored shape of the whole persisted state."""

    settings: SettingsDict
    tagTracking: dict[str, dict]
    operationHistory: list[dict]
    folderRules: dict[str, FolderRuleDict]


# =============================================================================
# Rules
# =============================================================================


@dataclass(frozen=True)
class ApplyScope:
    """How far below its folder a rule reaches.

    Either every depth (``all``), only documents directly in the folder
    (``this_folder``), or an explicit set of depths below the rule folder.
    Documents directly in the rule folder are always covered.
    """

    mode: str = "all"
    levels: frozenset[int] = frozenset()

    ALL_MODE = "all"
    THIS_FOLDER_MODE = "this-folder"
    LEVELS_MODE = "levels"

    @classmethod
    def all(cls) -> ApplyScope:
        return cls(cls.ALL_MODE)

    @classmethod
    def this_folder(cls) -> ApplyScope:
        return cls(cls.THIS_FOLDER_MODE)

    @classmethod
    def at_levels(cls, levels: list[int] | set[int] | frozenset[int]) -> ApplyScope:
        levels = frozenset(int(level) for level in levels)
        if levels == frozenset({0}):
            return cls.this_folder()
        return cls(cls.LEVELS_MODE, levels)

    def covers(self, levels_down: int) -> bool:
        """Check whether a document ``levels_down`` below the rule is covered."""
        if levels_down == 0:
            return True
        if self.mode == self.ALL_MODE:
            return True
        if self.mode == self.LEVELS_MODE:
            return levels_down in self.levels
        return False

    def to_stored(self) -> str | list[int]:
        """Stored representation: ``"all"`` or a list of depths."""
        if self.mode == self.ALL_MODE:
            return "all"
        if self.mode == self.THIS_FOLDER_MODE:
            return [0]
        return sorted(self.levels)

    @classmethod
    def from_stored(cls, value: object) -> ApplyScope:
        """Parse the stored representation."""
        if value == "all" or value is None:
            return cls.all()
        if isinstance(value, (int, float)):
            value = [value]
        if isinstance(value, (list, tuple)):
            return cls.at_levels([int(v) for v in value])
        raise ValueError(f"Invalid applyDownLevels value: {value!r}")


@dataclass
class FolderRule:
    """Tags a folder pushes down to documents at or under it."""

    tags: list[str] = field(default_factory=list)
    folder_tag_levels: list[int] = field(default_factory=list)
    apply_down: ApplyScope = field(default_factory=ApplyScope.all)
    inherit_from_ancestors: bool = True
    apply_to_new_files: bool = True
    created_at: str = field(default_factory=utc_now)
    last_modified: str = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.tags = normalize_tag_list(self.tags)
        self.folder_tag_levels = sorted({int(level) for level in self.folder_tag_levels})

    @property
    def is_barrier(self) -> bool:
        return not self.inherit_from_ancestors

    def to_dict(self) -> FolderRuleDict:
        """Convert to dictionary for JSON serialization."""
        return {
            "tags": list(self.tags),
            "folderTagLevels": list(self.folder_tag_levels),
            "applyDownLevels": self.apply_down.to_stored(),
            "inheritFromAncestors": self.inherit_from_ancestors,
            "applyToNewFiles": self.apply_to_new_files,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: FolderRuleDict) -> FolderRule:
        """Create from dictionary."""
        now = utc_now()
        return cls(
            tags=data.get("tags", []),
            folder_tag_levels=data.get("folderTagLevels") or [],
            apply_down=ApplyScope.from_stored(data.get("applyDownLevels", "all")),
            inherit_from_ancestors=data.get("inheritFromAncestors", True) is not False,
            apply_to_new_files=bool(data.get("applyToNewFiles", True)),
            created_at=data.get("createdAt", now),
            last_modified=data.get("lastModified", now),
        )


# =============================================================================
# Tracking and history
# =============================================================================


@dataclass
class TagTrackingEntry:
    """Tags this tool wrote to one document."""

    auto_tags: list[str] = field(default_factory=list)
    last_updated: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"autoTags": list(self.auto_tags), "lastUpdated": self.last_updated}

    @classmethod
    def from_dict(cls, data: dict) -> TagTrackingEntry:
        """Create from dictionary."""
        auto_tags = data.get("autoTags") or []
        if isinstance(auto_tags, str):
            auto_tags = [auto_tags]
        return cls(auto_tags=unique([str(t) for t in auto_tags]), last_updated=data.get("lastUpdated", ""))


@dataclass
class OperationFileState:
    """Before/after snapshot of one document touched by an operation."""

    path: str
    tags_before: list[str] = field(default_factory=list)
    tags_after: list[str] = field(default_factory=list)
    tracking_before: list[str] | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "path": self.path,
            "tagsBefore": list(self.tags_before),
            "tagsAfter": list(self.tags_after),
        }
        if self.tracking_before is not None:
            data["trackingBefore"] = list(self.tracking_before)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> OperationFileState:
        """Create from dictionary."""
        tracking_before = data.get("trackingBefore")
        return cls(
            path=data["path"],
            tags_before=list(data.get("tagsBefore", [])),
            tags_after=list(data.get("tagsAfter", [])),
            tracking_before=list(tracking_before) if tracking_before is not None else None,
        )


@dataclass
class TagOperation:
    """One recorded, undoable tag operation."""

    id: str
    type: OperationType
    description: str
    timestamp: str
    files: list[OperationFileState] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "timestamp": self.timestamp,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: dict) -> TagOperation:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            type=OperationType(data["type"]),
            description=data.get("description", ""),
            timestamp=data.get("timestamp", ""),
            files=[OperationFileState.from_dict(f) for f in data.get("files", [])],
        )


# =============================================================================
# Moves
# =============================================================================


@dataclass
class PendingMove:
    """A relocation waiting for a batched decision."""

    path: str
    old_path: str
    old_folder: str
    new_folder: str

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass
class MoveDecision:
    """What the user chose for a batch of moves."""

    action: MoveAction
    remember: bool = False
    excluded_paths: frozenset[str] = frozenset()


# Interaction surface: shown every queued move, eventually calls back once
MovePrompt = Callable[[list[PendingMove], Callable[[MoveDecision], None]], None]


@dataclass
class ValidationIssue:
    """A tracking integrity problem found by the validation pass."""

    type: IssueType
    path: str
    description: str
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "type": self.type.value,
            "path": self.path,
            "description": self.description,
            "tags": list(self.tags),
        }


@dataclass
class BatchResult:
    """Counts reported at the end of a mutating command."""

    processed: int = 0
    errors: int = 0
    skipped: int = 0
    tags_added: int = 0
    tags_removed: int = 0
    operation: TagOperation | None = None

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "processed": self.processed,
            "errors": self.errors,
            "skipped": self.skipped,
            "tags_added": self.tags_added,
            "tags_removed": self.tags_removed,
            "operation_id": self.operation.id if self.operation else None,
        }


# =============================================================================
# Settings and state
# =============================================================================


@dataclass
class Settings:
    """User settings."""

    auto_tag_enabled: bool = True
    inherit_depth: int = 3
    move_policy: MovePolicy = MovePolicy.ASK
    folder_mappings: dict[str, list[str]] = field(default_factory=dict)
    folder_aliases: dict[str, list[str]] = field(default_factory=dict)
    ignore_paths: list[str] = field(default_factory=lambda: DEFAULT_IGNORE_PATHS.copy())
    protected_tags: list[str] = field(default_factory=list)

    def to_dict(self) -> SettingsDict:
        """Convert to dictionary for JSON serialization."""
        return {
            "autoTagEnabled": self.auto_tag_enabled,
            "inheritDepth": self.inherit_depth,
            "movePolicy": self.move_policy.value,
            # Legacy keys, kept so older readers see the same policy
            "showMoveConfirmation": self.move_policy != MovePolicy.ALWAYS_RETAG,
            "rememberedMoveAction": "leave" if self.move_policy == MovePolicy.ALWAYS_LEAVE else None,
            "folderMappings": {k: list(v) for k, v in self.folder_mappings.items()},
            "folderAliases": {k: list(v) for k, v in self.folder_aliases.items()},
            "ignorePaths": list(self.ignore_paths),
            "protectedTags": list(self.protected_tags),
        }

    @classmethod
    def from_dict(cls, data: SettingsDict) -> Settings:
        """Create from dictionary, normalising legacy shapes."""
        settings = cls()
        if "autoTagEnabled" in data:
            settings.auto_tag_enabled = bool(data["autoTagEnabled"])
        if "inheritDepth" in data:
            settings.inherit_depth = max(1, int(data["inheritDepth"]))
        settings.move_policy = _load_move_policy(data)
        if "folderMappings" in data:
            settings.folder_mappings = {
                folder: normalize_tag_list(tags) for folder, tags in (data["folderMappings"] or {}).items()
            }
        if "folderAliases" in data:
            # Older data stores a single alias as a bare string
            settings.folder_aliases = {
                folder: normalize_tag_list(tags) for folder, tags in (data["folderAliases"] or {}).items()
            }
        if "ignorePaths" in data:
            settings.ignore_paths = [p.strip().strip("/") for p in data["ignorePaths"] if p.strip().strip("/")]
        if "protectedTags" in data:
            settings.protected_tags = [
                t.strip().lstrip("#").lower() for t in data["protectedTags"] if t.strip().lstrip("#")
            ]
        return settings


def _load_move_policy(data: SettingsDict) -> MovePolicy:
    if data.get("movePolicy"):
        return MovePolicy(data["movePolicy"])
    if data.get("showMoveConfirmation") is False:
        return MovePolicy.ALWAYS_RETAG
    remembered = data.get("rememberedMoveAction")
    if remembered == "continue":
        return MovePolicy.ALWAYS_RETAG
    if remembered == "leave":
        return MovePolicy.ALWAYS_LEAVE
    return MovePolicy.ASK


@dataclass
class VaultState:
    """Shared mutable state handed to every service.

    ``saver`` persists the state; it is supplied by whoever owns storage.
    """

    settings: Settings = field(default_factory=Settings)
    tag_tracking: dict[str, TagTrackingEntry] = field(default_factory=dict)
    operation_history: list[TagOperation] = field(default_factory=list)
    folder_rules: dict[str, FolderRule] = field(default_factory=dict)
    saver: Callable[[VaultState], None] | None = field(default=None, repr=False, compare=False)

    def save(self) -> None:
        if self.saver is not None:
            self.saver(self)

    def to_dict(self) -> StateDict:
        """Convert to dictionary for JSON serialization."""
        return {
            "settings": self.settings.to_dict(),
            "tagTracking": {path: entry.to_dict() for path, entry in self.tag_tracking.items()},
            "operationHistory": [op.to_dict() for op in self.operation_history],
            "folderRules": {path: rule.to_dict() for path, rule in self.folder_rules.items()},
        }

    @classmethod
    def from_dict(cls, data: StateDict) -> VaultState:
        """Create from dictionary."""
        history = [TagOperation.from_dict(op) for op in data.get("operationHistory") or []]
        return cls(
            settings=Settings.from_dict(data.get("settings") or {}),
            tag_tracking={
                path: TagTrackingEntry.from_dict(entry)
                for path, entry in (data.get("tagTracking") or {}).items()
            },
            operation_history=history[:MAX_HISTORY_SIZE],
            folder_rules={
                path: FolderRule.from_dict(rule) for path, rule in (data.get("folderRules") or {}).items()
            },
        )
