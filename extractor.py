"""Reconstruct original source trees from source map documents.

A source map lists the original file paths in `sources` and, when the build
inlined them, their text in `sourcesContent`. The paths are taken from the
remote document as-is, so every one of them is treated as hostile: it is
rewritten by `sanitize` and joined by `destination_path`, which refuses to
return anything outside the output directory.
"""

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime
from json import JSONDecodeError
from typing import Optional, Tuple
from urllib.parse import urlparse

from printer import Printer


SUPPORTED_VERSION = 3
IS_WINDOWS = os.name == "nt"
ILLEGAL_WINDOWS_CHARS = re.compile(r'[?%*|:"<>]')
SEPARATORS = re.compile(r"[/\\]")

EMPTY_SOURCES = "No sources found."
EMPTY_SOURCES_CONTENT = "No source content found."


class SourceMapError(Exception):
    """Base class for source map errors"""


class SourceMapParseError(SourceMapError):
    """The document is not a usable source map"""


class UnsafePathError(SourceMapError, ValueError):
    """A source path does not resolve to a file inside the output directory"""


@dataclass(frozen=True)
class SourceMapDocument:
    version: int = 0
    sources: Tuple[Optional[str], ...] = ()
    sources_content: Tuple[Optional[str], ...] = ()


@dataclass(frozen=True)
class ExtractionTarget:
    raw_path: str
    sanitized_path: str
    destination: str
    content: Optional[str]

    @classmethod
    def build(cls, base_dir, raw_path, content, windows=IS_WINDOWS):
        sanitized = sanitize(raw_path, windows)
        return cls(
            raw_path=raw_path,
            sanitized_path=sanitized,
            destination=join_sanitized(base_dir, sanitized, raw_path),
            content=content,
        )


def _parse_version(value) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise SourceMapParseError(f"'version' is not a number: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise SourceMapParseError(f"'version' is not a number: {value!r}")


def _parse_list(data, key, allow_null=False) -> tuple:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise SourceMapParseError(f"'{key}' is not a list")
    for index, item in enumerate(value):
        if item is None and allow_null:
            continue
        if not isinstance(item, str):
            raise SourceMapParseError(f"'{key}[{index}]' is not a string")
    return tuple(value)


def parse(json_text) -> SourceMapDocument:
    """Deserialize a source map

    Only `version`, `sources` and `sourcesContent` are read, everything else
    is ignored. Missing fields default to `0` and empty sequences.

    Args:
        `json_text` (`str`): the source map JSON

    Raises:
        SourceMapParseError: malformed JSON or fields of the wrong type

    Returns:
        `SourceMapDocument`: the parsed document
    """
    if json_text[:1] == "\ufeff":
        json_text = json_text[1:]
    try:
        data = json.loads(json_text)
    except JSONDecodeError as e:
        raise SourceMapParseError(f"does not seem to be a JSON document: {e}") from e
    if not isinstance(data, dict):
        raise SourceMapParseError("top level JSON value is not an object")

    return SourceMapDocument(
        version=_parse_version(data.get("version")),
        sources=_parse_list(data, "sources", allow_null=True),
        sources_content=_parse_list(data, "sourcesContent", allow_null=True),
    )


def validate(doc) -> Optional[str]:
    """Returns the reason `doc` can't be extracted, or `None` when it can"""
    if not doc.sources:
        return EMPTY_SOURCES
    if not doc.sources_content:
        return EMPTY_SOURCES_CONTENT
    return None


def clean_windows(path) -> str:
    """Replace the characters Windows doesn't allow in paths with `-`"""
    return ILLEGAL_WINDOWS_CHARS.sub("-", path)


def sanitize(raw_path, windows=IS_WINDOWS) -> str:
    """Rewrite an untrusted source path so it can't climb out of its root

    Every `/..` is removed, again and again until none is left, so inputs
    like `/....//` can't rebuild a parent reference out of the leftovers.

    Args:
        `raw_path` (`str`): one entry of `sources`
        `windows` (`bool`, optional): also replace Windows-illegal characters.
            Defaults to the current platform.

    Returns:
        `str`: the sanitized path, always starting with `/`
    """
    path = f"/{raw_path}"
    while "/.." in path:
        path = path.replace("/..", "")
        if not path.startswith("/"):
            path = f"/{path}"
    if windows:
        path = clean_windows(path)
    return path


def destination_path(base_dir, raw_path, windows=IS_WINDOWS) -> str:
    """Join the sanitized `raw_path` onto `base_dir`

    Both `/` and `\\` separate segments; empty, `.` and `..` segments are
    dropped, so neither an absolute-looking path nor a leftover parent
    reference can move the result out of `base_dir`.

    Raises:
        UnsafePathError: nothing is left to name a file, or the joined path
            is not inside `base_dir`
    """
    return join_sanitized(base_dir, sanitize(raw_path, windows), raw_path)


def join_sanitized(base_dir, sanitized, raw_path) -> str:
    """Join a path already rewritten by `sanitize` onto `base_dir`

    `raw_path` is only used in error messages.
    """
    segments = [s for s in SEPARATORS.split(sanitized) if s not in ("", ".", "..")]
    if not segments:
        raise UnsafePathError(f"'{raw_path}' does not name a file")

    destination = os.path.join(base_dir, *segments)
    base = os.path.abspath(base_dir)
    try:
        inside = os.path.commonpath([base, os.path.abspath(destination)]) == base
    except ValueError as e:
        # paths on different drives
        raise UnsafePathError(f"'{raw_path}' resolves outside of '{base_dir}': {e}") from e
    if not inside:
        raise UnsafePathError(f"'{raw_path}' resolves outside of '{base_dir}'")
    return destination


def top_directory_name(url, windows=IS_WINDOWS) -> str:
    """Returns the file name of `url` without its extension, `""` if there's none

    `https://example.com/app.js.map` gives `app.js`.
    """
    name = os.path.splitext(os.path.basename(urlparse(url).path))[0]
    if windows:
        name = clean_windows(name)
    if not name.strip() or name in (".", ".."):
        return ""
    return name


def ensure_directory(path, printer) -> bool:
    """Creates `path` if it does not exist

    Returns:
        `bool`: whether `path` is now an existing directory
    """
    if os.path.isdir(path):
        return True
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        printer.error(f"Failed to create directory '{path}': {e}")
        return False
    return True


def write_file(filepath, content):
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(filepath, "w", encoding="utf-8", newline="") as file:
        file.write(content)


def extract(
    doc,
    url,
    output_path,
    create_top_directory=False,
    cancel_event=None,
    printer=None,
    windows=IS_WINDOWS,
) -> bool:
    """Write every source embedded in the source map `doc` below `output_path`

    Args:
        `doc` (`str`): the source map JSON text
        `url` (`str`): where `doc` came from, used to name the top directory
        `output_path` (`str`): the output directory
        `create_top_directory` (`bool`, optional): nest the files in a directory
            named after `url`. Defaults to `False`.
        `cancel_event` (`threading.Event`, optional): stops the loop between entries once set
        `printer` (`Printer`, optional): output sink
        `windows` (`bool`, optional): apply Windows path rules. Defaults to the current platform.

    Returns:
        `bool`: `True` when extraction of this document was aborted
    """
    printer = printer or Printer()
    try:
        sm = parse(doc)
    except SourceMapParseError as e:
        printer.error(f"Failed to retrieve Sourcemap from '{url}': {e}")
        return True

    printer.out(
        f"Retrieved Sourcemap with version {sm.version}, "
        f"containing {len(sm.sources)} entries."
    )

    reason = validate(sm)
    if reason:
        printer.error(reason)
        return True

    if sm.version != SUPPORTED_VERSION:
        printer.warn(f"Sourcemap is not version {SUPPORTED_VERSION}. This is untested!")

    if not ensure_directory(output_path, printer):
        return True

    base_dir = output_path
    if create_top_directory:
        name = top_directory_name(url, windows)
        if not name:
            name = datetime.now().strftime("sourcemap_%Y%m%d_%H%M%S")
            printer.warn(
                f"Failed to parse filename from URL, creating temporary directory {name}."
            )
        base_dir = os.path.join(base_dir, name)
        if not ensure_directory(base_dir, printer):
            return True

    count = min(len(sm.sources), len(sm.sources_content))
    if len(sm.sources) != len(sm.sources_content):
        printer.warn(
            f"sources ({len(sm.sources)}) and sourcesContent ({len(sm.sources_content)}) "
            f"differ in length, skipping {max(len(sm.sources), len(sm.sources_content)) - count} entries"
        )

    written = 0
    for i in range(count):
        if cancel_event is not None and cancel_event.is_set():
            printer.warn("Extraction canceled.")
            break

        raw_path = sm.sources[i]
        if raw_path is None:
            printer.warn(f"Source {i} has no path, skipping")
            continue
        try:
            target = ExtractionTarget.build(base_dir, raw_path, sm.sources_content[i], windows)
        except UnsafePathError as e:
            printer.error(f"Skipping source: {e}")
            continue

        if target.content is None:
            printer.warn(f"No content embedded for '{raw_path}', skipping")
            continue

        printer.verbose(f"\t{raw_path} -> {target.sanitized_path}")
        printer.out(f"Creating {target.destination}.")
        try:
            write_file(target.destination, target.content)
        except (OSError, ValueError) as e:
            printer.error(f"Error writing {target.destination} file: {e}")
            continue
        written += 1

    printer.info(f"Extracted {written} of {len(sm.sources)} entries into '{base_dir}'")
    return False
