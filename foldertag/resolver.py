"""Folder rule resolution.

A document's tags come from the folder rules at or above its folder. Rules
push tags down only. A rule with ``inherit_from_ancestors`` off is a
barrier: rules above it never reach its subtree, while its own tags still
apply per its scope.

Example:
    Root rule ``folder_tag_levels=[1]`` with ``apply_down="all"`` tags
    ``Health/Therapy/note.md`` with ``health``. Adding a barrier rule at
    ``Health`` with ``tags=["medical"]`` turns that into ``medical`` only.

The legacy resolver walks a fixed number of ancestor folders and turns each
folder name (or its alias) into a tag. It ignores rules entirely.
"""

from __future__ import annotations

import re

from foldertag.models import FolderRule
from foldertag.models import Settings
from foldertag.models import unique
from foldertag.models import VaultState

APOSTROPHE_RE = re.compile(r"['’]")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
ALNUM_RE = re.compile(r"[a-z0-9]")

# Keys that name the vault root in the rule table
ROOT_RULE_KEYS = ("", "/")


def slugify(name: str) -> str:
    """Convert a folder name to a lowercase kebab-case tag."""
    tag = APOSTROPHE_RE.sub("", name.lower())
    tag = NON_ALNUM_RE.sub("-", tag)
    return tag.strip("-")


def is_valid_tag(tag: str) -> bool:
    """A slug is usable if it has at least two characters and one alphanumeric."""
    return len(tag) > 1 and bool(ALNUM_RE.search(tag))


def folder_parts(path: str) -> list[str]:
    """Folder segments of a document path, without the file name."""
    parts = re.split(r"[/\\]", path)
    parts.pop()
    return parts


def is_ignored_path(path: str, ignore_paths: list[str]) -> bool:
    return any(path.startswith(f"{ignore}/") or path.startswith(f"{ignore}\\") for ignore in ignore_paths)


class RuleResolver:
    """Computes the tags a document should carry for its location."""

    def __init__(self, state: VaultState) -> None:
        self.state = state

    @property
    def settings(self) -> Settings:
        return self.state.settings

    def is_ignored(self, path: str) -> bool:
        """Check whether a document lives under an ignored folder."""
        return is_ignored_path(path, self.settings.ignore_paths)

    def is_ignored_folder(self, folder: str) -> bool:
        """Check whether a folder is, or lives under, an ignored folder."""
        return folder in self.settings.ignore_paths or is_ignored_path(folder, self.settings.ignore_paths)

    def rule_for(self, folder: str) -> FolderRule | None:
        """Rule stored for a folder, accepting either key for the root."""
        rules = self.state.folder_rules
        if folder in ROOT_RULE_KEYS:
            return rules.get("") or rules.get("/")
        return rules.get(folder)

    def _rule_tags(self, rule: FolderRule, parts: list[str]) -> list[str]:
        tags = list(rule.tags)
        for level in rule.folder_tag_levels:
            index = level - 1
            if 0 <= index < len(parts):
                tag = slugify(parts[index])
                if is_valid_tag(tag):
                    tags.append(tag)
        return tags

    def resolve(self, path: str) -> list[str]:
        """Resolve the rule tags for a document path."""
        if self.is_ignored(path):
            return []

        parts = folder_parts(path)
        if not parts:
            root_rule = self.rule_for("")
            if root_rule and root_rule.apply_to_new_files:
                return unique(list(root_rule.tags))
            return []

        # Deepest barrier wins; 0 means none
        barrier = 0
        for depth in range(len(parts), 0, -1):
            rule = self.rule_for("/".join(parts[:depth]))
            if rule and rule.is_barrier:
                barrier = depth
                break

        tags: list[str] = []
        for depth in range(len(parts) + 1):
            rule = self.rule_for("/".join(parts[:depth]))
            if not rule or not rule.apply_to_new_files:
                continue
            if barrier and depth < barrier:
                continue
            if rule.apply_down.covers(len(parts) - depth):
                tags.extend(self._rule_tags(rule, parts))

        return unique(tags)

    def resolve_legacy(self, path: str) -> list[str]:
        """Resolve tags from folder names up to ``inherit_depth`` levels deep."""
        if self.is_ignored(path):
            return []

        parts = folder_parts(path)
        tags: list[str] = []
        for index in range(min(len(parts), self.settings.inherit_depth)):
            if not parts[index]:
                continue
            alias = self.settings.folder_aliases.get("/".join(parts[: index + 1]))
            if alias:
                tags.extend(alias)
                continue
            tag = slugify(parts[index])
            if is_valid_tag(tag):
                tags.append(tag)

        tags.extend(self.settings.folder_mappings.get("/".join(parts), []))
        return unique(tags)

    def has_rules_for_path(self, path: str) -> bool:
        return bool(self.resolve(path))

    def folder_tags_by_level(self, path: str) -> list[list[str]]:
        """Folder-derived tags for each folder of a path, honouring aliases."""
        parts = folder_parts(path)
        levels: list[list[str]] = []
        for index, name in enumerate(parts):
            if not name:
                continue
            alias = self.settings.folder_aliases.get("/".join(parts[: index + 1]))
            if alias:
                levels.append(list(alias))
                continue
            tag = slugify(name)
            if is_valid_tag(tag):
                levels.append([tag])
        return levels

    def parent_rules_affecting(self, folder: str) -> list[tuple[str, FolderRule]]:
        """Ancestor rules whose scope reaches ``folder``, shallowest first."""
        parts = [part for part in folder.split("/") if part]
        result: list[tuple[str, FolderRule]] = []
        for depth in range(len(parts)):
            ancestor = "/".join(parts[:depth])
            rule = self.rule_for(ancestor)
            if rule and rule.apply_down.covers(len(parts) - depth):
                result.append((ancestor, rule))
        return result

    def rule_tags_for(self, folder: str, path: str) -> list[str]:
        """Tags the rule at ``folder`` gives ``path``, ignoring scope and barriers."""
        rule = self.rule_for(folder)
        if rule is None:
            return []
        return unique(self._rule_tags(rule, folder_parts(path)))
