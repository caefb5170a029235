"""Target-scoped, lossless editing of Xcode ``project.pbxproj`` manifests.

Build configuration blocks are attributed to targets by resolving the object
graph, never by matching setting text::

    PBX*Target.name -> buildConfigurationList
        -> XCConfigurationList.buildConfigurations -> XCBuildConfiguration

When a target's reference chain does not resolve, the configuration list is
matched by its annotation comment
(``Build configuration list for PBXNativeTarget "Runner"``) instead.  Both
strategies are identity-scoped: a test target carrying the same
``PRODUCT_BUNDLE_IDENTIFIER`` as the app is never touched by an edit aimed at
the app.

Mutations rewrite one entry's value, or insert a new entry just before the
block's closing brace.  Every other byte of the document is preserved.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from appship.core.pbx_scanner import (
    ManifestParseError,
    RawEntry,
    find_matching,
    root_span,
    split_array,
    split_entries,
    strip_comments,
)
from appship.models.manifest import (
    ConfigurationBlock,
    ManifestDocument,
    Region,
    SettingEntry,
    TextRegion,
    unquote,
)

logger = logging.getLogger(__name__)

TARGET_ISAS = frozenset({"PBXNativeTarget", "PBXAggregateTarget", "PBXLegacyTarget"})

_LIST_ANNOTATION = re.compile(r'Build configuration list for (PBX\w*Target) "([^"]*)"')
_NAME_ANNOTATION = re.compile(r"/\*\s*(.*?)\s*\*/")
_BARE_VALUE = re.compile(r"[A-Za-z0-9_$/:.\-]+")

__all__ = [
    "ConfigurationNotFoundError",
    "ManifestParseError",
    "SharedConfigurationError",
    "TargetNotFoundError",
    "configurations",
    "get_target_setting",
    "load",
    "parse_manifest",
    "quote_value",
    "save",
    "set_target_setting",
    "set_target_settings",
    "targets",
]


class TargetNotFoundError(RuntimeError):
    """Raised when the named target has no configuration block."""


class ConfigurationNotFoundError(RuntimeError):
    """Raised when the target exists but lacks the named configuration tier."""


class SharedConfigurationError(RuntimeError):
    """Raised when a mutation addresses a block owned by several targets."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _PbxObject:
    """Scanned view of one entry of the ``objects`` dictionary."""

    def __init__(self, text: str, entry: RawEntry) -> None:
        self.object_id = unquote(entry.key(text))
        self.annotation = text[entry.key_end:entry.value_start]
        self.raw: dict[str, RawEntry] = {}
        self.attrs: dict[str, Any] = {}
        value_start = entry.value_start
        if text[value_start] != "{":
            raise ManifestParseError(f"Object {self.object_id} is not a dictionary")
        close = find_matching(text, value_start)
        body, _ = split_entries(text, value_start + 1, close)
        for attr in body:
            name = unquote(attr.key(text))
            self.raw[name] = attr
            raw_value = attr.value(text)
            if raw_value.startswith("("):
                array_close = find_matching(text, attr.value_start)
                items = split_array(text, attr.value_start + 1, array_close)
                self.attrs[name] = [unquote(item) for item in items]
            elif raw_value.startswith("{"):
                self.attrs[name] = raw_value
            else:
                self.attrs[name] = unquote(strip_comments(raw_value))

    @property
    def isa(self) -> str:
        return str(self.attrs.get("isa", ""))

    def annotated_name(self) -> str | None:
        match = _NAME_ANNOTATION.search(self.annotation)
        return match.group(1) if match else None


def _scan_objects(text: str) -> dict[str, _PbxObject]:
    open_pos, close_pos = root_span(text)
    root_entries, _ = split_entries(text, open_pos + 1, close_pos)
    for entry in root_entries:
        if unquote(entry.key(text)) == "objects":
            if text[entry.value_start] != "{":
                raise ManifestParseError("'objects' is not a dictionary")
            objects_close = find_matching(text, entry.value_start)
            object_entries, _ = split_entries(text, entry.value_start + 1, objects_close)
            objects: dict[str, _PbxObject] = {}
            for object_entry in object_entries:
                obj = _PbxObject(text, object_entry)
                objects[obj.object_id] = obj
            return objects
    raise ManifestParseError("Manifest has no 'objects' dictionary")


def _attribute_configurations(
    objects: dict[str, _PbxObject],
) -> tuple[list[str], dict[str, list[str]]]:
    """Map configuration object ids to the targets that own them.

    Returns the declared target names in document order and
    ``{config_id: [target, ...]}``.
    """
    lists_by_annotation: dict[str, str] = {}
    for obj in objects.values():
        if obj.isa != "XCConfigurationList":
            continue
        match = _LIST_ANNOTATION.search(obj.annotation)
        if match:
            lists_by_annotation.setdefault(match.group(2), obj.object_id)

    target_names: list[str] = []
    owners: dict[str, list[str]] = {}

    def _claim(target: str, list_id: str) -> None:
        config_list = objects[list_id]
        for config_id in config_list.attrs.get("buildConfigurations", []):
            if config_id in objects and objects[config_id].isa == "XCBuildConfiguration":
                bucket = owners.setdefault(config_id, [])
                if target not in bucket:
                    bucket.append(target)

    for obj in objects.values():
        if obj.isa not in TARGET_ISAS:
            continue
        name = str(obj.attrs.get("name") or obj.annotated_name() or obj.object_id)
        target_names.append(name)
        list_id = obj.attrs.get("buildConfigurationList")
        if isinstance(list_id, str) and list_id in objects and (
            objects[list_id].isa == "XCConfigurationList"
        ):
            _claim(name, list_id)
        elif name in lists_by_annotation:
            logger.debug("Target %s: resolved configuration list by annotation", name)
            _claim(name, lists_by_annotation[name])
        else:
            logger.warning("Target %s has no resolvable configuration list", name)

    # Recovery: configuration lists annotated for targets whose object is absent.
    for name, list_id in lists_by_annotation.items():
        if name not in target_names:
            logger.debug("Target %s: recovered from configuration list annotation", name)
            target_names.append(name)
            _claim(name, list_id)

    return target_names, owners


def parse_manifest(text: str) -> ManifestDocument:
    """Parse manifest *text* into a lossless ``ManifestDocument``."""
    objects = _scan_objects(text)
    target_names, owners = _attribute_configurations(objects)

    spans: list[tuple[int, int, ConfigurationBlock]] = []
    for obj in objects.values():
        if obj.isa != "XCBuildConfiguration":
            continue
        settings = obj.raw.get("buildSettings")
        if settings is None or text[settings.value_start] != "{":
            continue
        open_pos = settings.value_start
        close_pos = find_matching(text, open_pos)
        raw_entries, trailer_start = split_entries(text, open_pos + 1, close_pos)
        entries = tuple(
            SettingEntry(
                leading=text[e.leading_start:e.key_start],
                raw_key=text[e.key_start:e.key_end],
                separator=text[e.key_end:e.value_start],
                raw_value=text[e.value_start:e.value_end],
                terminator=";",
            )
            for e in raw_entries
        )
        block_owners = tuple(owners.get(obj.object_id, []))
        block = ConfigurationBlock(
            target=block_owners[0] if block_owners else "",
            owners=block_owners,
            configuration=str(obj.attrs.get("name") or obj.annotated_name() or ""),
            object_id=obj.object_id,
            head=text[open_pos],
            entries=entries,
            trailer=text[trailer_start:close_pos],
            tail=text[close_pos],
        )
        spans.append((open_pos, close_pos + 1, block))

    spans.sort(key=lambda span: span[0])
    regions: list[Region] = []
    cursor = 0
    for start, end, block in spans:
        if start > cursor:
            regions.append(TextRegion(text=text[cursor:start]))
        regions.append(block)
        cursor = end
    if cursor < len(text):
        regions.append(TextRegion(text=text[cursor:]))

    doc = ManifestDocument(regions=tuple(regions), targets=tuple(target_names))
    logger.debug(
        "Parsed manifest: %d targets, %d configuration blocks",
        len(doc.targets),
        len(spans),
    )
    return doc


def load(path: Path | str) -> ManifestDocument:
    """Read and parse a manifest file."""
    path = Path(path)
    try:
        text = path.read_bytes().decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ManifestParseError(f"{path}: not valid UTF-8 ({exc})") from exc
    try:
        return parse_manifest(text)
    except ManifestParseError as exc:
        raise ManifestParseError(f"{path}: {exc}") from exc


def save(doc: ManifestDocument, path: Path | str) -> None:
    """Write *doc* to *path* atomically."""
    path = Path(path)
    data = doc.render().encode("utf-8")
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        if path.exists():
            os.chmod(tmp_name, path.stat().st_mode & 0o7777)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def targets(doc: ManifestDocument) -> list[str]:
    return list(doc.targets)


def _target_blocks(doc: ManifestDocument, target: str) -> list[ConfigurationBlock]:
    blocks = [b for b in doc.blocks if target in b.owners]
    if not blocks:
        if target in doc.targets:
            raise ConfigurationNotFoundError(
                f"Target {target!r} has no build configurations"
            )
        raise TargetNotFoundError(
            f"Target {target!r} not found in manifest "
            f"(targets: {', '.join(doc.targets) or 'none'})"
        )
    return blocks


def configurations(doc: ManifestDocument, target: str) -> list[str]:
    """Configuration tier names of *target*, in document order."""
    return [b.configuration for b in _target_blocks(doc, target)]


def _select_blocks(
    doc: ManifestDocument, target: str, configuration: str | None
) -> list[ConfigurationBlock]:
    blocks = _target_blocks(doc, target)
    if configuration is None:
        return blocks
    selected = [b for b in blocks if b.configuration == configuration]
    if not selected:
        raise ConfigurationNotFoundError(
            f"Target {target!r} has no configuration {configuration!r} "
            f"(available: {', '.join(b.configuration for b in blocks)})"
        )
    return selected


def get_target_setting(
    doc: ManifestDocument, target: str, configuration: str, key: str
) -> str | None:
    """Value of *key* in one target configuration, or ``None`` if unset."""
    block = _select_blocks(doc, target, configuration)[0]
    return block.get(key)


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------


def quote_value(value: str | bool | int) -> str:
    """Render *value* as a pbxproj scalar, quoting when required."""
    if isinstance(value, bool):
        text = "YES" if value else "NO"
    else:
        text = str(value)
    if _BARE_VALUE.fullmatch(text) and "//" not in text:
        return text
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _indent_for(block: ConfigurationBlock) -> str:
    if block.entries:
        leading = block.entries[-1].leading
        newline = leading.rfind("\n")
        if newline >= 0:
            indent = leading[newline + 1:]
            if not indent.strip():
                return "\n" + indent
        return " "
    newline = block.trailer.rfind("\n")
    if newline >= 0:
        return "\n" + block.trailer[newline + 1:] + "\t"
    return " "


def _with_setting(block: ConfigurationBlock, key: str, raw_value: str) -> ConfigurationBlock:
    entries = list(block.entries)
    found = False
    for index, entry in enumerate(entries):
        if entry.key == key:
            found = True
            if entry.raw_value != raw_value:
                entries[index] = entry.model_copy(update={"raw_value": raw_value})
    if not found:
        entries.append(
            SettingEntry(
                leading=_indent_for(block),
                raw_key=quote_value(key),
                separator=" = ",
                raw_value=raw_value,
                terminator=";",
            )
        )
    return block.model_copy(update={"entries": tuple(entries)})


def set_target_setting(
    doc: ManifestDocument,
    target: str,
    key: str,
    value: str | bool | int,
    configuration: str | None = None,
) -> ManifestDocument:
    """Return a copy of *doc* with *key* set in *target*'s configuration blocks.

    Parameters
    ----------
    target:
        Target name, e.g. ``"Runner"``.
    key:
        Build setting name, e.g. ``"PRODUCT_BUNDLE_IDENTIFIER"``.
    value:
        New value; quoted as needed.  Booleans become ``YES``/``NO``.
    configuration:
        A single tier (``"Release"``), or ``None`` for every tier.

    Raises
    ------
    TargetNotFoundError, ConfigurationNotFoundError
        When the addressed block does not exist.
    SharedConfigurationError
        When an addressed block is shared with another target.
    """
    selected = _select_blocks(doc, target, configuration)
    for block in selected:
        if block.shared:
            raise SharedConfigurationError(
                f"Configuration {block.configuration!r} ({block.object_id}) is shared "
                f"by targets {', '.join(block.owners)}; refusing to change {key}"
            )
    raw_value = quote_value(value)
    selected_ids = {b.object_id for b in selected}
    regions: list[Region] = []
    for region in doc.regions:
        if isinstance(region, ConfigurationBlock) and region.object_id in selected_ids:
            regions.append(_with_setting(region, key, raw_value))
        else:
            regions.append(region)
    return doc.model_copy(update={"regions": tuple(regions)})


def set_target_settings(
    doc: ManifestDocument,
    target: str,
    settings: dict[str, str | bool | int],
    configurations: Iterable[str] | None = None,
) -> ManifestDocument:
    """Apply several settings across the given tiers (all tiers if ``None``)."""
    tiers: list[str | None] = list(configurations) if configurations else [None]
    for tier in tiers:
        for key, value in settings.items():
            doc = set_target_setting(doc, target, key, value, configuration=tier)
    return doc
