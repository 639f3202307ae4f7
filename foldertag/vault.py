"""Markdown document store backed by a directory.

Paths handed in and out are vault-relative and use forward slashes. Tag
writes go through ``process_frontmatter``, which parses the YAML
frontmatter block, lets the caller mutate it as a dict and writes it back,
leaving the document body untouched.
"""

from __future__ import annotations

import copy
import os
import re
from pathlib import Path
from typing import Any, Callable

import yaml

from foldertag.models import MARKDOWN_EXTENSION

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)


class FrontmatterError(ValueError):
    """Document text cannot be decoded, or its frontmatter is not a YAML mapping."""


def split_frontmatter(text: str) -> tuple[dict[str, Any] | None, str]:
    """Split document text into (frontmatter, body).

    Frontmatter is None when the document has no frontmatter block.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return None, text

    body = text[match.end():]
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise FrontmatterError(f"Invalid YAML frontmatter: {e}") from e

    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise FrontmatterError("Frontmatter is not a mapping")
    return data, body


def render_frontmatter(frontmatter: dict[str, Any] | None, body: str) -> str:
    """Join frontmatter and body back into document text."""
    if frontmatter is None:
        return body
    if not frontmatter:
        return f"---\n---\n{body}"
    dumped = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n{body}"


def tags_from_frontmatter(frontmatter: dict[str, Any] | None) -> list[str]:
    """Read the ``tags`` value as a list, whether stored as a scalar or a list."""
    if not frontmatter:
        return []
    value = frontmatter.get("tags")
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [str(tag) for tag in value if tag is not None and str(tag)]
    return [str(value)]


def parent_folder(path: str) -> str:
    """Folder part of a vault path ("" for the vault root)."""
    path = path.replace("\\", "/")
    return path.rsplit("/", 1)[0] if "/" in path else ""


def file_name(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1]


def read_document(full_path: Path) -> str:
    try:
        return full_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise FrontmatterError(f"Not valid UTF-8: {e}") from e


class Vault:
    """A directory of markdown documents."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()
        self._cache: dict[str, tuple[tuple[int, int], dict[str, Any] | None]] = {}

    def abspath(self, path: str) -> Path:
        return self.root / path.replace("\\", "/")

    def relpath(self, path: Path | str) -> str:
        """Vault-relative form of an absolute path."""
        return Path(path).resolve().relative_to(self.root).as_posix()

    def exists(self, path: str) -> bool:
        return self.abspath(path).is_file()

    def is_folder(self, path: str) -> bool:
        return self.abspath(path).is_dir()

    def markdown_files(self, folder: str = "", recursive: bool = True) -> list[str]:
        """List markdown documents, skipping hidden folders."""
        base = self.abspath(folder) if folder else self.root
        if not base.is_dir():
            return []
        files: list[str] = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in sorted(filenames):
                if filename.lower().endswith(MARKDOWN_EXTENSION):
                    files.append(self.relpath(Path(dirpath) / filename))
            if not recursive:
                break
        return files

    def folders(self, folder: str = "") -> list[str]:
        """List every non-hidden folder below ``folder``, sorted."""
        base = self.abspath(folder) if folder else self.root
        if not base.is_dir():
            return []
        result: list[str] = []
        for dirpath, dirnames, _ in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for dirname in dirnames:
                result.append(self.relpath(Path(dirpath) / dirname))
        return sorted(result)

    def create_folder(self, path: str) -> None:
        self.abspath(path).mkdir(parents=True, exist_ok=True)

    def rename(self, path: str, new_path: str) -> None:
        """Move a document, creating the destination folder if needed."""
        source = self.abspath(path)
        destination = self.abspath(new_path)
        if destination.exists():
            raise FileExistsError(f"Destination already exists: {new_path}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.rename(source, destination)
        self._cache.pop(path, None)
        self._cache.pop(new_path, None)

    def read_frontmatter(self, path: str) -> dict[str, Any] | None:
        """Parsed frontmatter, served from cache while the file is unchanged."""
        full_path = self.abspath(path)
        stat = full_path.stat()
        stamp = (stat.st_mtime_ns, stat.st_size)
        cached = self._cache.get(path)
        if cached and cached[0] == stamp:
            return cached[1]
        frontmatter, _ = split_frontmatter(read_document(full_path))
        self._cache[path] = (stamp, frontmatter)
        return frontmatter

    def read_tags(self, path: str) -> list[str]:
        return tags_from_frontmatter(self.read_frontmatter(path))

    def process_frontmatter(self, path: str, mutate: Callable[[dict[str, Any]], None]) -> None:
        """Read-modify-write the frontmatter of a document.

        The document is left untouched when ``mutate`` changes nothing, so a
        document without frontmatter only gains a block if ``mutate`` leaves
        something in it.
        """
        full_path = self.abspath(path)
        text = read_document(full_path)
        frontmatter, body = split_frontmatter(text)
        had_block = frontmatter is not None
        data = copy.deepcopy(frontmatter or {})

        mutate(data)

        if data == (frontmatter or {}):
            return
        new_text = render_frontmatter(data, body)
        if new_text == text:
            return

        tmp_path = full_path.with_name(f".{full_path.name}.foldertag-tmp")
        tmp_path.write_text(new_text, encoding="utf-8")
        os.replace(tmp_path, full_path)
        self._cache.pop(path, None)
