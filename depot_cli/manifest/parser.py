"""
Parsing of Valve KeyValues text (ACF/VDF) into manifest records.

Two independent strategies produce the same `ManifestRecord` fields:
a structured tokenizer/parser and a regex scanner that tolerates files the
structured parser rejects (truncated writes, stray braces). `parse_manifest`
tries them in order and keeps the first usable result.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from depot_cli.models.manifest import DepotManifestInfo, ManifestRecord

log = logging.getLogger(__name__)

KeyValues = Dict[str, Any]
ParseStrategy = Callable[[str], Tuple[Optional[ManifestRecord], bool]]

_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"'}
_OPEN, _CLOSE, _STRING = "open", "close", "string"


class KeyValuesError(ValueError):
    """Raised when text is not well-formed KeyValues."""


def _tokenize(text: str) -> Iterator[Tuple[str, str]]:
    """Yields (kind, value) tokens. Comments and `[$PLATFORM]` guards are dropped."""
    i, length = 0, len(text)
    while i < length:
        ch = text[i]
        if ch.isspace():
            i += 1
        elif ch == "/" and text.startswith("//", i):
            newline = text.find("\n", i)
            i = length if newline == -1 else newline + 1
        elif ch == "{":
            yield _OPEN, ch
            i += 1
        elif ch == "}":
            yield _CLOSE, ch
            i += 1
        elif ch == "[":
            end = text.find("]", i)
            if end == -1:
                raise KeyValuesError(f"Unterminated conditional at offset {i}")
            i = end + 1
        elif ch == '"':
            i += 1
            chars: List[str] = []
            while True:
                if i >= length:
                    raise KeyValuesError("Unterminated quoted string")
                ch = text[i]
                if ch == "\\" and i + 1 < length:
                    chars.append(_ESCAPES.get(text[i + 1], text[i + 1]))
                    i += 2
                elif ch == '"':
                    i += 1
                    break
                else:
                    chars.append(ch)
                    i += 1
            yield _STRING, "".join(chars)
        else:
            start = i
            while i < length and not text[i].isspace() and text[i] not in '{}"':
                i += 1
            yield _STRING, text[start:i]


def loads(text: str) -> KeyValues:
    """
    Parses KeyValues text into nested dicts. Later duplicate keys win.

    Raises:
        KeyValuesError: On unbalanced braces, dangling keys or bad strings.
    """
    tokens = _tokenize(text.lstrip("\ufeff"))
    stack: List[KeyValues] = [{}]
    pending_key: Optional[str] = None

    for kind, value in tokens:
        if kind == _STRING:
            if pending_key is None:
                pending_key = value
            else:
                stack[-1][pending_key] = value
                pending_key = None
        elif kind == _OPEN:
            if pending_key is None:
                raise KeyValuesError("Block opened without a key")
            child: KeyValues = {}
            stack[-1][pending_key] = child
            stack.append(child)
            pending_key = None
        else:
            if pending_key is not None:
                raise KeyValuesError(f"Key '{pending_key}' has no value")
            if len(stack) == 1:
                raise KeyValuesError("Unbalanced closing brace")
            stack.pop()

    if pending_key is not None:
        raise KeyValuesError(f"Key '{pending_key}' has no value")
    if len(stack) != 1:
        raise KeyValuesError("Unexpected end of input inside a block")
    return stack[0]


def get_ci(data: KeyValues, key: str, default: Any = None) -> Any:
    """Case-insensitive dict lookup; KeyValues keys are not case-stable."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for candidate, value in data.items():
        if candidate.lower() == lowered:
            return value
    return default


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _depot_from_fields(depot_id: str, fields: Dict[str, Any]) -> DepotManifestInfo:
    return DepotManifestInfo(
        depot_id=depot_id,
        manifest_id=str(get_ci(fields, "manifest", "") or "").strip(),
        size=_to_int(get_ci(fields, "size")),
        last_updated=_to_int(get_ci(fields, "lastupdated")),
    )


def _find_beta_key(root: KeyValues) -> Optional[str]:
    for container in (root, get_ci(root, "UserConfig"), get_ci(root, "MountedConfig")):
        if isinstance(container, dict):
            value = get_ci(container, "betakey")
            if isinstance(value, str):
                return value
    return None


def parse_structured(raw: str) -> Tuple[Optional[ManifestRecord], bool]:
    """Strategy 1: full KeyValues grammar, `AppState` root if present."""
    try:
        tree = loads(raw)
    except KeyValuesError as e:
        log.debug(f"Structured manifest parse failed: {e}")
        return None, False

    root = get_ci(tree, "AppState")
    if not isinstance(root, dict):
        root = tree

    depots: Dict[str, DepotManifestInfo] = {}
    installed = get_ci(root, "InstalledDepots")
    if isinstance(installed, dict):
        for depot_id, fields in installed.items():
            if isinstance(fields, dict):
                depots[depot_id] = _depot_from_fields(depot_id, fields)

    name = get_ci(root, "name")
    app_id = get_ci(root, "appid")
    record = ManifestRecord(
        build_id=_to_int(get_ci(root, "buildid")),
        name=name if isinstance(name, str) else None,
        state_flags=_to_int(get_ci(root, "StateFlags")),
        last_updated=_to_int(get_ci(root, "LastUpdated")),
        app_id=app_id if isinstance(app_id, str) else None,
        beta_key=_find_beta_key(root),
        installed_depots=depots,
    )
    if record.is_empty:
        return None, False
    return record, True


_BUILD_ID = re.compile(r'"buildid"\s+"(\d+)"', re.IGNORECASE)
_NAME = re.compile(r'"name"\s+"([^"]+)"', re.IGNORECASE)
_STATE_FLAGS = re.compile(r'"StateFlags"\s+"(\d+)"', re.IGNORECASE)
_LAST_UPDATED = re.compile(r'"LastUpdated"\s+"(\d+)"', re.IGNORECASE)
_APP_ID = re.compile(r'"appid"\s+"(\d+)"', re.IGNORECASE)
_BETA_KEY = re.compile(r'"betakey"\s+"([^"]*)"', re.IGNORECASE)
_INSTALLED_DEPOTS = re.compile(r'"InstalledDepots"\s*\{', re.IGNORECASE)
_DEPOT_BLOCK = re.compile(r'"(\d+)"\s*\{([^{}]*)\}')
_DEPOT_FIELD = re.compile(r'"(manifest|size|lastupdated)"\s+"([^"]*)"', re.IGNORECASE)


def _balanced_block(text: str, open_index: int) -> str:
    """Body of the block whose '{' is at `open_index`; runs to EOF if unclosed."""
    depth = 0
    for i in range(open_index, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return text[open_index + 1 : i]
    return text[open_index + 1 :]


def parse_with_regex(raw: str) -> Tuple[Optional[ManifestRecord], bool]:
    """Strategy 2: independent field scan, no grammar required."""

    def first(pattern: re.Pattern) -> Optional[str]:
        match = pattern.search(raw)
        return match.group(1) if match else None

    depots: Dict[str, DepotManifestInfo] = {}
    if match := _INSTALLED_DEPOTS.search(raw):
        block = _balanced_block(raw, match.end() - 1)
        for depot_match in _DEPOT_BLOCK.finditer(block):
            fields = {
                key.lower(): value
                for key, value in _DEPOT_FIELD.findall(depot_match.group(2))
            }
            depot_id = depot_match.group(1)
            depots[depot_id] = _depot_from_fields(depot_id, fields)

    build_id = first(_BUILD_ID)
    state_flags = first(_STATE_FLAGS)
    last_updated = first(_LAST_UPDATED)
    record = ManifestRecord(
        build_id=int(build_id) if build_id else None,
        name=first(_NAME),
        state_flags=int(state_flags) if state_flags else None,
        last_updated=int(last_updated) if last_updated else None,
        app_id=first(_APP_ID),
        beta_key=first(_BETA_KEY),
        installed_depots=depots,
    )
    if record.is_empty:
        return None, False
    return record, True


PARSE_STRATEGIES: Tuple[ParseStrategy, ...] = (parse_structured, parse_with_regex)


def parse_manifest(
    raw: str, strategies: Tuple[ParseStrategy, ...] = PARSE_STRATEGIES
) -> ManifestRecord:
    """
    Runs each strategy in order and returns the first usable record.

    Args:
        raw: The manifest file contents.
        strategies: Ordered parse strategies, each returning (record, ok).

    Returns:
        The parsed record, or an empty `ManifestRecord` when nothing matched.
    """
    for strategy in strategies:
        record, ok = strategy(raw)
        if ok and record is not None:
            log.debug(f"Manifest parsed with {strategy.__name__}")
            return record
    log.debug("No manifest strategy produced a usable record")
    return ManifestRecord()


_LIBRARY_PATH = re.compile(r'"path"\s+"([^"]+)"', re.IGNORECASE)


def parse_library_folders(raw: str) -> List[str]:
    """
    Returns the library `path` entries of a `libraryfolders.vdf` file, in
    file order. Backslash escapes are decoded.
    """
    try:
        tree = loads(raw)
    except KeyValuesError:
        return [p.replace("\\\\", "\\") for p in _LIBRARY_PATH.findall(raw)]

    root = get_ci(tree, "libraryfolders", tree)
    paths: List[str] = []
    if isinstance(root, dict):
        for entry in root.values():
            if isinstance(entry, dict):
                path = get_ci(entry, "path")
                if isinstance(path, str) and path:
                    paths.append(path)
    return paths
