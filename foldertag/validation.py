"""Integrity checks between the tracking store and the documents."""

from __future__ import annotations

from foldertag.console import Logger
from foldertag.models import IssueType
from foldertag.models import ValidationIssue
from foldertag.models import VaultState
from foldertag.tag_io import TagIO
from foldertag.vault import FrontmatterError
from foldertag.vault import tags_from_frontmatter
from foldertag.vault import Vault


class ValidationService:
    """Finds tracking entries that no longer match the vault."""

    def __init__(self, state: VaultState, vault: Vault, tag_io: TagIO, logger: Logger) -> None:
        self.state = state
        self.vault = vault
        self.tag_io = tag_io
        self.logger = logger

    def validate(self) -> list[ValidationIssue]:
        """Scan tracking for problems. Nothing is changed."""
        issues: list[ValidationIssue] = []
        ignore_paths = self.state.settings.ignore_paths

        # Tracked documents under ignored folders are reported only as that
        flagged: set[str] = set()
        for path in self.state.tag_tracking:
            for ignore in ignore_paths:
                if path.startswith(f"{ignore}/") or path.startswith(f"{ignore}\\"):
                    flagged.add(path)
                    issues.append(
                        ValidationIssue(
                            IssueType.IGNORED_PATH_TRACKED,
                            path,
                            f'File in ignored path "{ignore}" but still has tracking data',
                        )
                    )
                    break

        for path in self.state.tag_tracking:
            if path not in flagged and not self.vault.exists(path):
                issues.append(
                    ValidationIssue(IssueType.ORPHANED_TRACKING, path, "File no longer exists but is still tracked")
                )

        for path, entry in self.state.tag_tracking.items():
            if path in flagged or not self.vault.exists(path):
                continue
            try:
                current = {tag.lower() for tag in self.tag_io.read_tags(path)}
            except (OSError, FrontmatterError) as e:
                self.logger.debug(f"Cannot read {path}: {e}")
                continue
            missing = [tag for tag in entry.auto_tags if tag.lower() not in current]
            if missing:
                issues.append(
                    ValidationIssue(
                        IssueType.MISSING_TAGS,
                        path,
                        f"Tracked tags missing from file: {', '.join('#' + tag for tag in missing)}",
                        missing,
                    )
                )

        return issues

    def fix(self, issue: ValidationIssue) -> bool:
        """Fix one issue. Returns whether anything changed."""
        if issue.type in (IssueType.ORPHANED_TRACKING, IssueType.IGNORED_PATH_TRACKED):
            if not self.tag_io.drop_tracking(issue.path):
                return False
            self.state.save()
            self.logger.success(f"Removed tracking for: {issue.path}")
            return True

        if not issue.tags or not self.vault.exists(issue.path):
            return False

        def readd(frontmatter: dict) -> None:
            existing = tags_from_frontmatter(frontmatter)
            frontmatter["tags"] = existing + [tag for tag in issue.tags if tag not in existing]

        self.vault.process_frontmatter(issue.path, readd)
        self.logger.success(f"Re-applied missing tags to: {issue.path}")
        return True

    def fix_all(self, issues: list[ValidationIssue]) -> tuple[int, int]:
        """Fix every issue, tallying failures. Returns (fixed, errors)."""
        fixed = errors = 0
        for issue in issues:
            try:
                if self.fix(issue):
                    fixed += 1
            except (OSError, FrontmatterError) as e:
                self.logger.debug(f"Failed to fix {issue.path}: {e}")
                errors += 1
        return fixed, errors
