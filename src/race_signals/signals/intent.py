"""Participant-intent: handlers running a single competitor at a meeting."""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, NamedTuple

from race_signals.schemas import CompetitorEntry, EventMeta


class EntryRef(NamedTuple):
    venue_id: str
    handler_id: str | None
    event_id: str
    competitor_id: str


@dataclass(frozen=True)
class IntentFlag:
    venue_id: str
    handler_id: str
    entries: tuple[tuple[str, str], ...]

    @property
    def is_sole_entry(self) -> bool:
        return len(self.entries) == 1


def intent_flags(refs: Iterable[EntryRef]) -> list[IntentFlag]:
    """One flag per (venue, handler) with the distinct entries it covers.

    Callers pass the entries of a single race day. Entries without a handler
    cannot be attributed and are ignored.
    """
    groups: dict[tuple[str, str], set[tuple[str, str]]] = defaultdict(set)
    for r in refs:
        if not r.handler_id:
            continue
        groups[(r.venue_id, r.handler_id)].add((r.event_id, r.competitor_id))
    return [
        IntentFlag(venue_id=venue, handler_id=handler, entries=tuple(sorted(members)))
        for (venue, handler), members in sorted(groups.items())
    ]


def detect_sole_entries(refs: Iterable[EntryRef]) -> set[tuple[str, str]]:
    """(event_id, competitor_id) of every handler's only entry at a venue."""
    return {flag.entries[0] for flag in intent_flags(refs) if flag.is_sole_entry}


def entry_refs(entries: Iterable[CompetitorEntry], events: Mapping[str, EventMeta]) -> list[EntryRef]:
    """Attach venues to entries; entries of unknown events are dropped."""
    out: list[EntryRef] = []
    for e in entries:
        ev = events.get(e.event_id)
        if ev is None:
            continue
        out.append(EntryRef(ev.venue_id, e.handler_id, e.event_id, e.competitor_id))
    return out
