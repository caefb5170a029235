"""Manifest document models — lossless region model of a ``project.pbxproj``.

A ``ManifestDocument`` is an ordered tuple of regions.  Text regions are
opaque and reproduced verbatim; configuration blocks are the ``buildSettings``
dictionaries of ``XCBuildConfiguration`` objects, attributed to their owning
target(s).  Every region keeps its raw bytes, so ``render()`` of an unmodified
document equals the source exactly.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict


def unquote(raw: str) -> str:
    """Decode a pbxproj scalar: strip quotes and resolve escapes."""
    text = raw.strip()
    if len(text) < 2 or not (text.startswith('"') and text.endswith('"')):
        return text
    body = text[1:-1]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append({"n": "\n", "t": "\t", "r": "\r"}.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


class TextRegion(BaseModel):
    """Bytes the store does not interpret."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str

    def render(self) -> str:
        return self.text


class SettingEntry(BaseModel):
    """One ``KEY = VALUE;`` line of a buildSettings dictionary.

    ``leading`` holds the whitespace and comments before the key and
    ``separator`` everything between the key and the value, so the entry
    renders back to its exact source text.
    """

    model_config = ConfigDict(frozen=True)

    leading: str
    raw_key: str
    separator: str = " = "
    raw_value: str
    terminator: str = ";"

    @property
    def key(self) -> str:
        return unquote(self.raw_key)

    @property
    def value(self) -> str:
        return unquote(_strip_trailing_comment(self.raw_value))

    def render(self) -> str:
        return f"{self.leading}{self.raw_key}{self.separator}{self.raw_value}{self.terminator}"


class ConfigurationBlock(BaseModel):
    """The ``buildSettings`` dictionary of one build configuration.

    ``owners`` lists every target whose configuration list references this
    configuration object.  Project-level configurations have no owner.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["configuration"] = "configuration"
    target: str
    owners: tuple[str, ...] = ()
    configuration: str
    object_id: str
    head: str = "{"
    entries: tuple[SettingEntry, ...] = ()
    trailer: str = ""
    tail: str = "}"

    @property
    def shared(self) -> bool:
        return len(self.owners) > 1

    def get(self, key: str) -> str | None:
        for entry in self.entries:
            if entry.key == key:
                return entry.value
        return None

    def settings(self) -> dict[str, str]:
        return {entry.key: entry.value for entry in self.entries}

    def render(self) -> str:
        body = "".join(entry.render() for entry in self.entries)
        return f"{self.head}{body}{self.trailer}{self.tail}"


Region = Union[TextRegion, ConfigurationBlock]


class ManifestDocument(BaseModel):
    """Ordered regions of a manifest plus the targets it declares."""

    model_config = ConfigDict(frozen=True)

    regions: tuple[Region, ...] = ()
    targets: tuple[str, ...] = ()

    @property
    def blocks(self) -> list[ConfigurationBlock]:
        return [r for r in self.regions if isinstance(r, ConfigurationBlock)]

    def render(self) -> str:
        return "".join(region.render() for region in self.regions)


def _strip_trailing_comment(raw: str) -> str:
    text = raw.rstrip()
    if text.endswith("*/"):
        start = text.rfind("/*")
        prefix = text[:start]
        # Only strip when the comment sits outside any quoted string.
        if start > 0 and (prefix.count('"') - prefix.count('\\"')) % 2 == 0:
            return prefix.rstrip()
    return text
