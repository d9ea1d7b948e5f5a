# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# MANIFEST EDITOR
# -----------------------------------------------------------------------------
# Responsibility: Remove whole tables (e.g. [dev-dependencies]) from a
# Cargo.toml without touching a single other byte, and put the original
# back afterwards.
#
# The manifest is treated as a sequence of table blocks. A block starts at
# a header line (first non-blank character is `[`) and runs up to the next
# header. This is not a TOML parser: comments, formatting and
# line endings outside removed blocks survive unchanged.
# -----------------------------------------------------------------------------

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cargo_matrix.domain.errors import ManifestFormatError, ManifestIOError

if TYPE_CHECKING:
    from cargo_matrix.core.restore import EditHandle, RestoreManager

DEV_DEPENDENCIES = "dev-dependencies"
# Legacy spelling still accepted by cargo.
DEV_DEPENDENCIES_LEGACY = "dev_dependencies"

_BARE_KEY_CHARS = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-")
_BLANK = " \t\r"


@dataclass(frozen=True)
class HeaderKey:
    text: str
    quoted: bool = False


@dataclass(frozen=True)
class Header:
    parts: tuple[HeaderKey, ...]
    array: bool = False


def _read_quoted(line: str, pos: int) -> tuple[str, int]:
    """Read a quoted key starting at line[pos]; return (text, index after)."""
    quote = line[pos]
    pos += 1
    chars = []
    while pos < len(line):
        ch = line[pos]
        if ch == quote:
            return "".join(chars), pos + 1
        if ch == "\\" and quote == '"':
            if pos + 1 >= len(line):
                break
            chars.append(line[pos + 1])
            pos += 2
            continue
        chars.append(ch)
        pos += 1
    raise ManifestFormatError("unterminated quoted key in table header", line=line)


def parse_header(line: str) -> Header | None:
    """
    Parse a table header line into its dotted key parts.

    Returns None when the line is not a header at all. Raises
    ManifestFormatError when it starts like one but is not well formed.
    """
    stripped = line.lstrip(_BLANK)
    if not stripped.startswith("["):
        return None

    array = stripped.startswith("[[")
    pos = 2 if array else 1
    closing = "]]" if array else "]"
    parts: list[HeaderKey] = []

    while True:
        while pos < len(stripped) and stripped[pos] in _BLANK:
            pos += 1
        if pos >= len(stripped):
            raise ManifestFormatError("unterminated table header", line=line)

        if stripped[pos] in "\"'":
            text, pos = _read_quoted(stripped, pos)
            parts.append(HeaderKey(text, quoted=True))
        else:
            start = pos
            while pos < len(stripped) and stripped[pos] in _BARE_KEY_CHARS:
                pos += 1
            if pos == start:
                raise ManifestFormatError("empty key in table header", line=line)
            parts.append(HeaderKey(stripped[start:pos]))

        while pos < len(stripped) and stripped[pos] in _BLANK:
            pos += 1
        if stripped.startswith(".", pos):
            pos += 1
            continue
        if stripped.startswith(closing, pos):
            pos += len(closing)
            break
        raise ManifestFormatError("unexpected character in table header", line=line)

    rest = stripped[pos:].strip()
    if rest and not rest.startswith("#"):
        raise ManifestFormatError("trailing content after table header", line=line)
    return Header(parts=tuple(parts), array=array)


def is_target_header(header: Header, section_name: str) -> bool:
    """
    [section], [section.sub], [target.<cfg>.section] and
    [target.<cfg>.section.sub] are targets; nothing else is.
    """
    if header.array or not header.parts:
        return False
    first = header.parts[0]
    if first.quoted:
        return False
    if first.text == section_name:
        return True
    return (
        first.text == "target"
        and len(header.parts) >= 3
        and header.parts[2].text == section_name
    )


def _split_lines(text: str) -> list[str]:
    # Only "\n" ends a line; a "\r" before it stays part of the line.
    pieces = text.split("\n")
    lines = [piece + "\n" for piece in pieces[:-1]]
    if pieces[-1]:
        lines.append(pieces[-1])
    return lines


def strip_sections(text: str, section_name: str = DEV_DEPENDENCIES) -> str:
    """
    Remove every table block named `section_name` from manifest text.

    Args:
        text: Manifest text
        section_name: Table name to remove, including its sub-tables and its
            platform-conditioned variants

    Returns:
        The text with matching blocks deleted; identical to the input when
        nothing matches.
    """
    kept = []
    removing = False
    for line in _split_lines(text):
        try:
            header = parse_header(line)
        except ManifestFormatError:
            # Not classifiable, e.g. a line of a multi-line array.
            header = None
        if header is not None:
            removing = is_target_header(header, section_name)
        if not removing:
            kept.append(line)
    return "".join(kept)


def read_text(path: Path) -> str:
    try:
        return path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestIOError(f"failed to read manifest {path}: {e}", path=path) from e


def write_text(path: Path, text: str) -> None:
    try:
        path.write_bytes(text.encode("utf-8"))
    except OSError as e:
        raise ManifestIOError(f"failed to update manifest {path}: {e}", path=path) from e


def read_manifest_metadata(path: Path | str) -> dict:
    """
    Read `package.rust-version` and `package.publish` directly.

    Used when the metadata source is too old to report them. publish is
    normalized to the metadata shape: None (unrestricted) or a list.
    """
    path = Path(path)
    try:
        data = tomllib.loads(read_text(path))
    except tomllib.TOMLDecodeError as e:
        raise ManifestIOError(f"failed to parse manifest {path}: {e}", path=path) from e

    package = data.get("package") or {}
    rust_version = package.get("rust-version")
    if not isinstance(rust_version, str):
        rust_version = None
    publish = package.get("publish")
    if publish is False:
        publish = []
    elif not isinstance(publish, list):
        publish = None
    return {"rust_version": rust_version, "publish": publish}


class ManifestEditor:
    """Edits one manifest file in place, with the original kept for restore."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._original: str | None = None

    def read(self) -> str:
        if self._original is None:
            self._original = read_text(self.path)
        return self._original

    def strip_dev_dependencies(self) -> str:
        text = strip_sections(self.read(), DEV_DEPENDENCIES)
        return strip_sections(text, DEV_DEPENDENCIES_LEGACY)

    def apply(self, restore: "RestoreManager", edited: str | None = None) -> "EditHandle":
        """
        Write the edited manifest, registering the original for restore first.

        Args:
            restore: The manager that owns the pending-restore slot
            edited: Replacement text; defaults to the manifest without
                dev-dependencies

        Returns:
            The handle whose close() writes the original back

        Raises:
            ManifestIOError: If the manifest cannot be read or written
        """
        original = self.read()
        if edited is None:
            edited = self.strip_dev_dependencies()
        handle = restore.begin_edit(original, self.path)
        try:
            write_text(self.path, edited)
        except ManifestIOError:
            handle.close()
            raise
        return handle
