"""Resolved configuration snapshot — created once per run, never mutated."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, PrivateAttr

from appship.models.variables import ValueKind

MASK = "***"


class Provenance(str, Enum):
    """Which kind of source supplied a resolved value."""

    OVERRIDE = "override"
    DEFAULT = "default"
    ABSENT = "absent"


class ResolvedValue(BaseModel):
    """A single resolved variable with its declared kind and origin."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: str | bool | int
    kind: ValueKind = ValueKind.STRING
    provenance: Provenance = Provenance.OVERRIDE
    source: str = ""  # provider name
    secret: bool = False

    @property
    def display(self) -> str:
        """The value as it may appear in logs and summaries."""
        return MASK if self.secret else str(self.value)


class Rejection(BaseModel):
    """A provider candidate that failed to parse or validate."""

    model_config = ConfigDict(frozen=True)

    key: str
    source: str
    reason: str


class ConfigSnapshot(BaseModel):
    """Immutable mapping of variable name to resolved value.

    Every stage reads the same snapshot.  Lookups of keys that no provider
    supplied return the caller's default; ``provenance()`` reports them as
    ``absent``.
    """

    model_config = ConfigDict(frozen=True)

    entries: tuple[ResolvedValue, ...] = ()
    rejections: tuple[Rejection, ...] = ()

    _index: dict[str, ResolvedValue] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._index.update({entry.key: entry for entry in self.entries})

    # ------------------------------------------------------------------
    # Mapping-style access
    # ------------------------------------------------------------------

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __getitem__(self, key: str) -> str | bool | int:
        return self._index[key].value

    def keys(self) -> list[str]:
        return sorted(self._index)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._index.get(key)
        return entry.value if entry is not None else default

    def get_str(self, key: str, default: str = "") -> str:
        value = self.get(key)
        return default if value is None else str(value)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        return default if value is None else bool(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        return default if value is None else int(value)

    def entry(self, key: str) -> ResolvedValue | None:
        return self._index.get(key)

    def provenance(self, key: str) -> Provenance:
        entry = self._index.get(key)
        return entry.provenance if entry is not None else Provenance.ABSENT

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def secret_values(self) -> list[str]:
        """Raw values of every secret entry, for redaction."""
        return [str(e.value) for e in self.entries if e.secret and str(e.value)]

    def as_dict(self, *, mask_secrets: bool = True) -> dict[str, str | bool | int]:
        """Plain dict view; secrets are masked unless explicitly requested."""
        return {
            e.key: (MASK if (mask_secrets and e.secret) else e.value)
            for e in sorted(self.entries, key=lambda e: e.key)
        }

    def describe(self) -> list[dict[str, str]]:
        """Rows of ``key / value / provenance / source`` for summaries."""
        return [
            {
                "key": e.key,
                "value": e.display,
                "provenance": e.provenance.value,
                "source": e.source,
            }
            for e in sorted(self.entries, key=lambda e: e.key)
        ]
