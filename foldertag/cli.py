"""foldertag - Keep document tags in step with their folders.

Applies tags to markdown documents from folder rules, remembers which tags
it applied, and can take exactly those tags off again. Every change is
recorded and can be undone.

Usage:
    foldertag [options]

Options:
    --vault DIR             Vault directory (default: current directory)
    --config PATH           Path to configuration file (default: .foldertagrc.json)
    --tag PATH              Tag one document from its folder names
    --use-rules             With --tag, use the folder rules instead
    --remove-auto           Remove every auto-applied tag
    --remove-all            Remove ALL tags and delete all folder rules
    --list-dates            List the dates auto-tags were applied on
    --remove-by-date DATES  Remove auto-tags applied on the given dates
    --remove-by-folder DIR  Remove auto-tags from documents in a folder
    --include-subdirs       Include subfolders for folder actions
    --bulk-apply            Apply folder tags to existing documents
    --folder DIR            Limit --bulk-apply to one folder
    --levels N,N            Folder levels used by --bulk-apply
    --add-tags TAGS         Extra tags added by --bulk-apply
    --undo [ID]             Undo an operation (default: the most recent)
    --history               List recorded operations
    --report                Show auto-applied and manual tags
    --validate              Check tracking data against the documents
    --fix                   With --validate, fix every issue found
    --list-rules            List folder rules
    --add-rule FOLDER       Create or replace a folder rule
    --delete-rule FOLDER    Delete a folder rule
    --apply-rule FOLDER     Apply a folder rule to existing documents
    --watch                 Tag new and moved documents as they appear
    --yes                   Do not ask for confirmation
    --verbose               Show detailed output
    --quiet                 Suppress all output except errors
    --json                  Output in JSON format
    --help                  Show this help message
    --version               Show version number

Configuration:
    See foldertag.config for the configuration file and environment
    variables.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable

import yaml

from foldertag import __version__
from foldertag.config import ConfigDict
from foldertag.config import load_config_file
from foldertag.config import load_env_config
from foldertag.console import Colors
from foldertag.console import Logger
from foldertag.engine import open_engine
from foldertag.engine import TagEngine
from foldertag.models import ApplyScope
from foldertag.models import MoveAction
from foldertag.models import MoveDecision
from foldertag.models import normalize_tag_list
from foldertag.models import PendingMove


def confirm(message: str, assume_yes: bool = False) -> bool:
    """Ask a yes/no question on the terminal."""
    if assume_yes:
        return True
    return input(f"{message} [y/N]: ").strip().lower() == "y"


class ConsolePrompt:
    """Asks on the terminal what to do with a batch of moved documents."""

    CHOICES = {"c": MoveAction.CONTINUE, "l": MoveAction.LEAVE, "x": MoveAction.CANCEL}

    def __init__(self, logger: Logger, ask: Callable[[str], str] = input) -> None:
        self.logger = logger
        self.ask = ask

    def __call__(self, moves: list[PendingMove], respond: Callable[[MoveDecision], None]) -> None:
        self.logger.header(f"{len(moves)} file{'s' if len(moves) != 1 else ''} moved")
        for index, move in enumerate(moves, start=1):
            print(f"  {index}. {move.old_path} -> {move.path}")

        answer = self.ask("[c]ontinue and retag, [l]eave tags, or [x] cancel the move? [l]: ").strip().lower()
        action = self.CHOICES.get(answer[:1], MoveAction.LEAVE)

        excluded: set[str] = set()
        if len(moves) > 1:
            picked = self.ask("Exclude files (numbers, comma-separated) [none]: ")
            for item in picked.split(","):
                item = item.strip()
                if item.isdigit() and 1 <= int(item) <= len(moves):
                    excluded.add(moves[int(item) - 1].path)

        remember = False
        if action is not MoveAction.CANCEL:
            remember = self.ask("Remember this choice for future moves? [y/N]: ").strip().lower() == "y"

        respond(MoveDecision(action, remember=remember, excluded_paths=frozenset(excluded)))


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _levels(value: str | None) -> list[int]:
    levels = []
    for item in _split(value):
        if not item.isdigit():
            raise ValueError(f"Invalid level: {item}")
        levels.append(int(item))
    return levels


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="foldertag",
        description="Keep document tags in step with their folders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  foldertag --add-rule Health --rule-tags medical --no-inherit
  foldertag --add-rule / --folder-levels 1   # root rule: first folder becomes a tag
  foldertag --bulk-apply --folder Projects   # tag existing documents
  foldertag --tag Projects/Alpha/notes.md    # tag one document
  foldertag --watch                          # tag new and moved documents
  foldertag --undo                           # undo the last operation
  foldertag --remove-auto --yes              # take auto-applied tags off again
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--vault",
        type=Path,
        help="Vault directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration file, relative to the vault (default: .foldertagrc.json)",
    )

    # Actions (mutually exclusive main commands)
    action_group = parser.add_mutually_exclusive_group()
    action_group.add_argument("--tag", metavar="PATH", help="Tag one document from its folder names")
    action_group.add_argument("--remove-auto", action="store_true", help="Remove every auto-applied tag")
    action_group.add_argument(
        "--remove-all", action="store_true", help="Remove ALL tags from ALL documents and delete all rules"
    )
    action_group.add_argument("--list-dates", action="store_true", help="List dates auto-tags were applied on")
    action_group.add_argument(
        "--remove-by-date", metavar="DATES", help="Remove auto-tags applied on these dates (YYYY-MM-DD,...)"
    )
    action_group.add_argument("--remove-by-folder", metavar="FOLDER", help="Remove auto-tags in a folder")
    action_group.add_argument("--bulk-apply", action="store_true", help="Apply folder tags to existing documents")
    action_group.add_argument(
        "--undo", nargs="?", const="", metavar="ID", help="Undo an operation (default: the most recent)"
    )
    action_group.add_argument("--history", action="store_true", help="List recorded operations")
    action_group.add_argument("--report", action="store_true", help="Show auto-applied and manual tags")
    action_group.add_argument("--validate", action="store_true", help="Check tracking data against documents")
    action_group.add_argument("--list-rules", action="store_true", help="List folder rules")
    action_group.add_argument("--add-rule", metavar="FOLDER", help="Create or replace a folder rule")
    action_group.add_argument("--delete-rule", metavar="FOLDER", help="Delete a folder rule")
    action_group.add_argument("--apply-rule", metavar="FOLDER", help="Apply a folder rule to existing documents")
    action_group.add_argument("--watch", action="store_true", help="Tag new and moved documents as they appear")

    # Action modifiers
    parser.add_argument("--use-rules", action="store_true", help="With --tag, resolve tags from folder rules")
    parser.add_argument("--include-subdirs", action="store_true", help="Include subfolders for folder actions")
    parser.add_argument("--folder", metavar="FOLDER", help="Limit --bulk-apply to one folder")
    parser.add_argument("--levels", metavar="N,N", help="Folder levels used by --bulk-apply")
    parser.add_argument("--add-tags", metavar="TAGS", help="Extra tags added by --bulk-apply")
    parser.add_argument("--fix", action="store_true", help="With --validate, fix every issue found")
    parser.add_argument("--rule-tags", metavar="TAGS", help="Static tags of a new rule")
    parser.add_argument("--folder-levels", metavar="N,N", help="Folder levels whose names become tags")
    parser.add_argument(
        "--apply-down", metavar="all|N,N", default="all", help="Depths below the rule folder it reaches"
    )
    parser.add_argument("--this-folder-only", action="store_true", help="Rule only covers its own folder")
    parser.add_argument("--no-inherit", action="store_true", help="Block tags from ancestor rules")
    parser.add_argument("--no-new-files", action="store_true", help="Do not apply the rule to new documents")
    parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show detailed output",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress all output except errors",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output in JSON format",
    )

    return parser.parse_args(argv)


def _document_path(engine: TagEngine, raw: str) -> str:
    path = Path(raw)
    if path.is_absolute():
        return engine.vault.relpath(path)
    return raw.replace("\\", "/").strip("/")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def _apply_scope(args: argparse.Namespace) -> ApplyScope:
    if args.this_folder_only:
        return ApplyScope.this_folder()
    if args.apply_down == "all":
        return ApplyScope.all()
    return ApplyScope.at_levels(_levels(args.apply_down))


def list_rules(engine: TagEngine, args: argparse.Namespace) -> int:
    rules = dict(sorted(engine.state.folder_rules.items()))
    if args.json_output:
        _print_json({folder: rule.to_dict() for folder, rule in rules.items()})
        return 0

    engine.logger.header("Folder Rules")
    if not rules:
        engine.logger.info("No folder rules. Use --add-rule to create one")
        return 0
    for folder, rule in rules.items():
        scope = rule.apply_down.to_stored()
        flags = []
        if rule.is_barrier:
            flags.append("barrier")
        if not rule.apply_to_new_files:
            flags.append("manual only")
        print(f"  {Colors.BOLD}{folder or '(root)'}{Colors.RESET}")
        print(f"    tags: {', '.join('#' + tag for tag in rule.tags) or '-'}")
        print(f"    folder levels: {', '.join(str(level) for level in rule.folder_tag_levels) or '-'}")
        print(f"    applies down: {scope if scope == 'all' else ', '.join(str(level) for level in scope)}")
        if flags:
            print(f"    {Colors.GRAY}{', '.join(flags)}{Colors.RESET}")
    return 0


def show_history(engine: TagEngine, args: argparse.Namespace) -> int:
    operations = engine.history.list()
    if args.json_output:
        _print_json([operation.to_dict() for operation in operations])
        return 0

    engine.logger.header("Operation History")
    if not operations:
        engine.logger.info("No operations recorded")
        return 0
    for operation in operations:
        print(
            f"  {Colors.CYAN}{operation.id[:12]}{Colors.RESET} {operation.timestamp[:19]} "
            f"[{operation.type.value}] {operation.description} ({len(operation.files)} files)"
        )
    return 0


def show_report(engine: TagEngine, args: argparse.Namespace) -> int:
    report = engine.report()
    if args.json_output:
        _print_json(report.to_dict())
        return 0

    engine.logger.header("Tag Report")
    print(f"  Tracked files: {report.tracked_files}")
    print(f"  Auto tags: {len(report.auto_tag_files)}")
    print(f"  Manual tags: {len(report.manual_tags)}")
    if report.auto_tag_counts:
        print()
        for tag, count in report.auto_tag_counts:
            print(f"  #{tag} {Colors.GRAY}({count} file{'s' if count != 1 else ''}){Colors.RESET}")
    if report.manual_tags:
        print()
        print(f"  {Colors.DIM}Manual: {', '.join('#' + tag for tag in report.manual_tags)}{Colors.RESET}")
    return 0


def validate(engine: TagEngine, args: argparse.Namespace) -> int:
    issues = engine.validation.validate()
    fixed = errors = 0
    if args.fix and issues:
        fixed, errors = engine.validation.fix_all(issues)

    if args.json_output:
        _print_json({"issues": [issue.to_dict() for issue in issues], "fixed": fixed, "errors": errors})
    elif not issues:
        engine.logger.success("No issues found!")
    else:
        engine.logger.header("Validation Issues")
        for issue in issues:
            print(f"  {Colors.YELLOW}{issue.type.value}{Colors.RESET} {issue.path}: {issue.description}")
        if args.fix:
            engine.logger.summary(f"Fixed {fixed} issue{'s' if fixed != 1 else ''}", errors)
        else:
            engine.logger.info("Run with --fix to fix these issues")

    if errors:
        return 1
    return 0 if not issues or args.fix else 1


def list_dates(engine: TagEngine, args: argparse.Namespace) -> int:
    dates = engine.revert.revert_dates()
    if args.json_output:
        _print_json(dates)
        return 0
    engine.logger.header("Auto-tag Dates")
    if not dates:
        engine.logger.info("No tracked auto-tags")
    for date, paths in dates.items():
        print(f"  {date}  {len(paths)} file{'s' if len(paths) != 1 else ''}")
    return 0


MUTATING_ACTIONS = (
    "tag",
    "remove_auto",
    "remove_all",
    "remove_by_date",
    "remove_by_folder",
    "bulk_apply",
    "apply_rule",
    "undo",
    "add_rule",
    "delete_rule",
)


def has_action(args: argparse.Namespace) -> bool:
    return any(getattr(args, name) not in (None, False) for name in MUTATING_ACTIONS)


def run_action(engine: TagEngine, args: argparse.Namespace) -> int:
    """Dispatch one command. Returns exit code."""
    logger = engine.logger

    if args.tag:
        path = _document_path(engine, args.tag)
        if not engine.vault.exists(path):
            logger.error(f"No such document: {path}")
            return 1
        operation = engine.tag_document(path, use_rules=args.use_rules)
        if args.json_output:
            _print_json(operation.to_dict() if operation else None)
        return 0

    if args.remove_auto:
        count = len(engine.state.tag_tracking)
        if count and not confirm(f"This will remove auto-applied tags from {count} files. Continue?", args.yes):
            logger.info("Cancelled")
            return 0
        result = engine.revert.revert_all_auto_tags()

    elif args.remove_all:
        files = len(engine.vault.markdown_files())
        rules = len(engine.state.folder_rules)
        warning = (
            f"This will remove ALL tags (auto and manual) from {files} files and delete {rules} folder rules. "
            "Continue?"
        )
        again = f"Are you really sure? Tags will be cleared from {files} files and {rules} rules deleted."
        if not confirm(warning, args.yes) or not confirm(again, args.yes):
            logger.info("Cancelled")
            return 0
        result = engine.revert.revert_all_tags()

    elif args.remove_by_date:
        result = engine.revert.revert_by_dates(_split(args.remove_by_date))

    elif args.remove_by_folder:
        folder = args.remove_by_folder.strip("/")
        if not confirm(
            f'Remove auto-tags from files in "{folder}"{" (including subdirectories)" if args.include_subdirs else ""}?',
            args.yes,
        ):
            logger.info("Cancelled")
            return 0
        result = engine.revert.revert_by_folder(folder, include_subdirs=args.include_subdirs)

    elif args.bulk_apply:
        levels = set(_levels(args.levels)) if args.levels else None
        result = engine.bulk.bulk_apply(
            folder=args.folder,
            include_subdirs=args.include_subdirs or not args.folder,
            levels=levels,
            additional_tags=_split(args.add_tags),
        )

    elif args.apply_rule is not None:
        result = engine.bulk.apply_rule_to_existing_files(args.apply_rule)

    elif args.undo is not None:
        operation_id = args.undo or None
        if operation_id:
            # History listings show shortened ids
            matches = [op.id for op in engine.history.list() if op.id.startswith(operation_id)]
            if len(matches) == 1:
                operation_id = matches[0]
        undo_result = engine.undo(operation_id)
        if undo_result is None:
            logger.error("No such operation in history" if args.undo else "Nothing to undo")
            return 1
        if args.json_output:
            _print_json(undo_result.to_dict())
        return 0 if undo_result.ok else 1

    elif args.add_rule is not None:
        rule = engine.set_rule(
            args.add_rule,
            tags=normalize_tag_list(_split(args.rule_tags)),
            folder_tag_levels=_levels(args.folder_levels),
            apply_down=_apply_scope(args),
            inherit_from_ancestors=not args.no_inherit,
            apply_to_new_files=not args.no_new_files,
        )
        if args.json_output:
            _print_json(rule.to_dict())
        return 0

    elif args.delete_rule is not None:
        if not engine.delete_rule(args.delete_rule):
            logger.error(f"No rule for {args.delete_rule}")
            return 1
        return 0

    else:
        return 0

    if args.json_output:
        _print_json(result.to_dict())
    return 0 if result.ok else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    env_config = load_env_config()
    root_dir = Path(args.vault or env_config.get("vault") or Path.cwd()).expanduser()

    # Load configuration
    try:
        file_config = load_config_file(args.config, root_dir)
    except FileNotFoundError as e:
        print(f"{Colors.RED}Error:{Colors.RESET} {e}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"{Colors.RED}Error:{Colors.RESET} Invalid JSON in config file: {e}", file=sys.stderr)
        return 1
    except (yaml.YAMLError, ValueError) as e:
        print(f"{Colors.RED}Error:{Colors.RESET} Invalid config file: {e}", file=sys.stderr)
        return 1

    merged_config: ConfigDict = {**file_config, **env_config}
    verbose = args.verbose or bool(merged_config.get("verbose"))
    logger = Logger(verbose, args.quiet, args.json_output)

    try:
        prompt = ConsolePrompt(logger) if args.watch else None
        engine = open_engine(root_dir, merged_config, prompt=prompt, logger=logger)
    except (FileNotFoundError, ValueError) as e:
        print(f"{Colors.RED}Error:{Colors.RESET} {e}", file=sys.stderr)
        return 1

    try:
        if args.watch:
            from foldertag.watcher import watch_vault

            watch_vault(engine, logger)
            return 0
        if args.list_rules:
            return list_rules(engine, args)
        if args.history:
            return show_history(engine, args)
        if args.report:
            return show_report(engine, args)
        if args.validate:
            return validate(engine, args)
        if args.list_dates:
            return list_dates(engine, args)
        if has_action(args):
            return run_action(engine, args)

        # Default action: show status
        if args.json_output:
            _print_json(
                {
                    "vault": str(engine.vault.root),
                    "rules": len(engine.state.folder_rules),
                    "tracked_files": len(engine.state.tag_tracking),
                    "operations": len(engine.state.operation_history),
                }
            )
            return 0
        logger.header("foldertag")
        logger.info(f"Vault: {engine.vault.root}")
        logger.info(f"Folder rules: {len(engine.state.folder_rules)}")
        logger.info(f"Tracked files: {len(engine.state.tag_tracking)}")
        logger.info(f"Operations in history: {len(engine.state.operation_history)}")
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}")
        if verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
