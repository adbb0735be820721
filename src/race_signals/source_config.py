from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(frozen=True)
class SourceConfig:
    source_id: str
    aliases: tuple[str, ...] = field(default_factory=tuple)
    primary: bool = False

    def matches(self, label: str) -> bool:
        needle = label.strip().lower()
        return needle == self.source_id.lower() or needle in (a.lower() for a in self.aliases)

    def preference(self, label: str) -> int:
        """Lower is preferred: aliases in listed order, then the bare id."""
        needle = label.strip().lower()
        for i, alias in enumerate(self.aliases):
            if alias.lower() == needle:
                return i
        return len(self.aliases)


def load_sources(path: str = "config/sources.yml") -> list[SourceConfig]:
    p = Path(path)
    if not p.exists():
        return []
    doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    out: list[SourceConfig] = []
    for row in doc.get("sources", []):
        out.append(
            SourceConfig(
                source_id=str(row["id"]),
                aliases=tuple(str(a) for a in row.get("aliases", [])),
                primary=bool(row.get("primary", False)),
            )
        )
    return out


def resolve_source(label: str | None, sources: list[SourceConfig]) -> SourceConfig | None:
    """Map a feed's bookmaker label to a configured source, or None."""
    if not label:
        return None
    for s in sources:
        if s.matches(label):
            return s
    return None


def primary_source(sources: list[SourceConfig]) -> str | None:
    for s in sources:
        if s.primary:
            return s.source_id
    return sources[0].source_id if sources else None
