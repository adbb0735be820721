"""Fuse price movement, estimator agreement and intent into ranked signals.

The engine is a pure read path. Each request issues the same three bulk reads
(shortening price states, the day's events, entries of the venues involved)
and computes everything else in memory, so it can be called concurrently and
often. If any read fails the whole request fails; a half-built list would
misrepresent the market.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, Sequence

import structlog

from race_signals.config import Settings, settings as default_settings
from race_signals.errors import FusionReadError
from race_signals.market_hours import market_today
from race_signals.normalization import group_by_event, normalize, top_pick, top_picks_by_competitor
from race_signals.odds import decimal_to_fractional
from race_signals.schemas import (
    CompetitorEntry,
    ConsensusPick,
    EventMeta,
    MarketMover,
    MoverGroup,
    Movement,
    PriceState,
    SignalStrength,
    SmartSignal,
)
from race_signals.signals.intent import detect_sole_entries, entry_refs
from race_signals.signals.value_edge import ValueEdge, event_edges, rank_edges
from race_signals.tracking.catalog import InMemoryCatalog
from race_signals.tracking.price_state import InMemoryPriceStateStore

log = structlog.get_logger(__name__)

_STRENGTH_ORDER = {SignalStrength.STRONG: 0, SignalStrength.MEDIUM: 1}


class SignalReader(ABC):
    """Bulk reads backing the fusion engine."""

    @abstractmethod
    async def fetch_movers(self, min_movement_pct: float, source_id: str | None = None) -> list[PriceState]:
        """Active shortening states with ``movement_pct <= -min_movement_pct``."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_events(self, race_date: date) -> list[EventMeta]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_entries(self, event_ids: Sequence[str]) -> list[CompetitorEntry]:
        raise NotImplementedError


class InMemorySignalReader(SignalReader):
    def __init__(self, store: InMemoryPriceStateStore, catalog: InMemoryCatalog):
        self.store = store
        self.catalog = catalog

    async def fetch_movers(self, min_movement_pct: float, source_id: str | None = None) -> list[PriceState]:
        return [
            s for s in self.store.active_states()
            if s.movement is Movement.SHORTENING
            and s.movement_pct is not None
            and s.movement_pct <= -min_movement_pct
            and (source_id is None or s.source_id == source_id)
        ]

    async def fetch_events(self, race_date: date) -> list[EventMeta]:
        return [e for e in self.catalog.events.values() if e.race_date == race_date]

    async def fetch_entries(self, event_ids: Sequence[str]) -> list[CompetitorEntry]:
        wanted = set(event_ids)
        return [e for e in self.catalog.entries.values() if e.event_id in wanted]


@dataclass
class FusionInputs:
    movers: list[PriceState] = field(default_factory=list)
    events: list[EventMeta] = field(default_factory=list)
    entries: list[CompetitorEntry] = field(default_factory=list)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def upcoming_events(events: Iterable[EventMeta], as_of: datetime, race_date: date) -> dict[str, EventMeta]:
    """Events on ``race_date`` whose start is strictly after ``as_of``.

    Events without a resolvable start time cannot be placed relative to
    ``as_of`` and are left out.
    """
    as_of = _aware(as_of)
    return {
        e.event_id: e
        for e in events
        if e.race_date == race_date and e.start_at is not None and _aware(e.start_at) > as_of
    }


def qualifying_movers(
    movers: Iterable[PriceState],
    upcoming: dict[str, EventMeta],
    min_movement_pct: float,
    source_id: str | None = None,
) -> dict[tuple[str, str], PriceState]:
    """Best shortening state per (event, competitor) among upcoming events."""
    best: dict[tuple[str, str], PriceState] = {}
    for m in movers:
        if m.movement is not Movement.SHORTENING or m.movement_pct is None:
            continue
        if abs(m.movement_pct) < min_movement_pct or not m.is_active:
            continue
        if source_id is not None and m.source_id != source_id:
            continue
        if m.event_id not in upcoming:
            continue
        key = (m.event_id, m.competitor_id)
        held = best.get(key)
        if held is None or m.movement_pct < held.movement_pct:
            best[key] = m
    return best


def build_signals(
    movers: Iterable[PriceState],
    events: Iterable[EventMeta],
    entries: Iterable[CompetitorEntry],
    as_of: datetime,
    *,
    race_date: date,
    estimators: Sequence[str],
    min_movement_pct: float,
    source_id: str | None = None,
    ensemble_estimator: str = "ensemble",
    probability_scale: float = 1.0,
) -> list[SmartSignal]:
    """Fused signals for the upcoming events of ``race_date``.

    ``ensemble_probability`` is reported on ``probability_scale`` (1.0 or 100.0).
    """
    events = list(events)
    entries = list(entries)
    events_by_id = {e.event_id: e for e in events if e.race_date == race_date}
    upcoming = upcoming_events(events, as_of, race_date)
    chosen = qualifying_movers(movers, upcoming, min_movement_pct, source_id)
    if not chosen:
        return []

    by_event = group_by_event(entries)
    lookup = {(e.event_id, e.competitor_id): e for e in entries}
    sole = detect_sole_entries(entry_refs(entries, events_by_id))

    top_cache: dict[str, dict[str, list[str]]] = {}
    ensemble_cache: dict[str, dict[str, float]] = {}

    rows: list[dict] = []
    for (event_id, competitor_id), state in chosen.items():
        entry = lookup.get((event_id, competitor_id))
        if entry is None:
            log.debug("signal_entry_missing", event_id=event_id, competitor_id=competitor_id)
            continue
        event = upcoming[event_id]
        field_entries = by_event.get(event_id, [])
        if event_id not in top_cache:
            top_cache[event_id] = top_picks_by_competitor(
                field_entries, estimators, tie_estimator=ensemble_estimator
            )
            ensemble_cache[event_id] = normalize(field_entries, ensemble_estimator, probability_scale)

        agreeing = top_cache[event_id].get(competitor_id, [])
        is_sole = (event_id, competitor_id) in sole
        strength = SignalStrength.STRONG if agreeing or is_sole else SignalStrength.MEDIUM

        rows.append(
            {
                "competitor_id": competitor_id,
                "competitor_name": entry.name or f"Competitor {competitor_id}",
                "event_id": event_id,
                "venue_id": event.venue_id,
                "venue_name": event.venue_name or event.venue_id,
                "start_at": event.start_at,
                "source_id": state.source_id,
                "current_price": state.current_price,
                "current_price_label": decimal_to_fractional(state.current_price),
                "initial_price": state.initial_price,
                "movement_pct": state.movement_pct,
                "change_count": state.change_count,
                "last_updated": state.last_change_at,
                "is_top_estimator_pick": bool(agreeing),
                "estimators_agreeing": list(agreeing),
                "ensemble_probability": ensemble_cache[event_id].get(competitor_id, 0.0),
                "is_sole_entry": is_sole,
                "handler_name": entry.handler_name,
                "rider_name": entry.rider_name,
                "strength": strength,
                "silk_url": entry.silk_url,
                "number": entry.number,
            }
        )

    rows.sort(
        key=lambda r: (
            _STRENGTH_ORDER[r["strength"]],
            r["movement_pct"],
            _aware(r["start_at"]),
            r["event_id"],
            r["competitor_id"],
        )
    )
    return [SmartSignal(rank=i, **r) for i, r in enumerate(rows, start=1)]


def group_movers(
    chosen: dict[tuple[str, str], PriceState],
    upcoming: dict[str, EventMeta],
    entries: Iterable[CompetitorEntry],
) -> list[MoverGroup]:
    lookup = {(e.event_id, e.competitor_id): e for e in entries}
    groups: dict[str, MoverGroup] = {}
    for (event_id, competitor_id), state in chosen.items():
        event = upcoming[event_id]
        entry = lookup.get((event_id, competitor_id))
        group = groups.setdefault(
            event_id,
            MoverGroup(event_id=event_id, venue_name=event.venue_name or event.venue_id, start_at=event.start_at),
        )
        group.movers.append(
            MarketMover(
                competitor_id=competitor_id,
                competitor_name=(entry.name if entry and entry.name else f"Competitor {competitor_id}"),
                source_id=state.source_id,
                initial_price=state.initial_price,
                current_price=state.current_price,
                movement_pct=state.movement_pct,
                change_count=state.change_count,
                last_updated=state.last_change_at,
                handler_name=entry.handler_name if entry else None,
                rider_name=entry.rider_name if entry else None,
            )
        )
    for g in groups.values():
        g.movers.sort(key=lambda m: (m.movement_pct, m.competitor_id))
    return sorted(groups.values(), key=lambda g: (_aware(g.start_at), g.event_id))


class SignalFusionEngine:
    def __init__(self, reader: SignalReader, config: Settings | None = None):
        self.reader = reader
        self.config = config or default_settings

    def _as_of(self, as_of: datetime | None) -> datetime:
        return _aware(as_of) if as_of is not None else datetime.now(timezone.utc)

    async def _read(self, race_date: date, min_movement_pct: float | None) -> FusionInputs:
        """The three bulk reads; ``min_movement_pct=None`` skips the mover read."""
        cfg = self.config
        try:
            movers: list[PriceState] = []
            if min_movement_pct is not None:
                movers = await self.reader.fetch_movers(min_movement_pct, cfg.signal_source_id)
            events = await self.reader.fetch_events(race_date)
            if min_movement_pct is not None:
                mover_events = {m.event_id for m in movers}
                venues = {e.venue_id for e in events if e.event_id in mover_events}
                event_ids = [e.event_id for e in events if e.venue_id in venues]
            else:
                event_ids = [e.event_id for e in events]
            entries = await self.reader.fetch_entries(event_ids) if event_ids else []
        except FusionReadError:
            raise
        except Exception as e:
            log.error("fusion_read_failed", race_date=str(race_date), error=str(e))
            raise FusionReadError(str(e)) from e
        return FusionInputs(movers=movers, events=events, entries=entries)

    async def fuse(self, as_of: datetime | None = None) -> list[SmartSignal]:
        as_of = self._as_of(as_of)
        cfg = self.config
        race_date = market_today(as_of, cfg.market_timezone)
        inputs = await self._read(race_date, cfg.mover_threshold_pct)
        signals = build_signals(
            inputs.movers,
            inputs.events,
            inputs.entries,
            as_of,
            race_date=race_date,
            estimators=cfg.estimators,
            min_movement_pct=cfg.mover_threshold_pct,
            source_id=cfg.signal_source_id,
            ensemble_estimator=cfg.edge_estimator,
            probability_scale=cfg.probability_scale,
        )
        log.info(
            "fusion_done",
            movers=len(inputs.movers),
            signals=len(signals),
            strong=sum(1 for s in signals if s.strength is SignalStrength.STRONG),
        )
        return signals

    async def movers(self, as_of: datetime | None = None, min_pct: float | None = None) -> list[MoverGroup]:
        as_of = self._as_of(as_of)
        cfg = self.config
        threshold = cfg.persistent_mover_threshold_pct if min_pct is None else min_pct
        race_date = market_today(as_of, cfg.market_timezone)
        inputs = await self._read(race_date, threshold)
        upcoming = upcoming_events(inputs.events, as_of, race_date)
        chosen = qualifying_movers(inputs.movers, upcoming, threshold, cfg.signal_source_id)
        return group_movers(chosen, upcoming, inputs.entries)

    async def value_candidates(
        self,
        as_of: datetime | None = None,
        estimator: str | None = None,
        threshold: float | None = None,
    ) -> list[ValueEdge]:
        as_of = self._as_of(as_of)
        cfg = self.config
        estimator = estimator or cfg.edge_estimator
        threshold = cfg.value_edge_threshold if threshold is None else threshold
        race_date = market_today(as_of, cfg.market_timezone)
        inputs = await self._read(race_date, None)
        upcoming = upcoming_events(inputs.events, as_of, race_date)
        edges: list[ValueEdge] = []
        for event_id, field_entries in group_by_event(inputs.entries).items():
            if event_id in upcoming:
                edges.extend(event_edges(field_entries, estimator))
        return rank_edges(edges, threshold)

    async def top_picks(
        self,
        as_of: datetime | None = None,
        min_agree: int | None = None,
        min_prob: float = 0.0,
    ) -> list[ConsensusPick]:
        as_of = self._as_of(as_of)
        cfg = self.config
        n_estimators = len(cfg.estimators)
        wanted = cfg.top_pick_min_agree if min_agree is None else min_agree
        wanted = max(1, min(n_estimators, wanted))
        race_date = market_today(as_of, cfg.market_timezone)
        inputs = await self._read(race_date, None)
        upcoming = upcoming_events(inputs.events, as_of, race_date)

        picks: list[ConsensusPick] = []
        for event_id, field_entries in group_by_event(inputs.entries).items():
            event = upcoming.get(event_id)
            if event is None:
                continue
            lookup = {e.competitor_id: e for e in field_entries}
            best_prob: dict[str, float] = {}
            agreeing: dict[str, list[str]] = {}
            # min_prob is on the unit scale whatever the reporting scale
            for name in cfg.estimators:
                pick = top_pick(field_entries, name, min_prob=min_prob, tie_estimator=cfg.edge_estimator)
                if pick is None:
                    continue
                agreeing.setdefault(pick.competitor_id, []).append(name)
                best_prob[pick.competitor_id] = max(best_prob.get(pick.competitor_id, 0.0), pick.probability)
            for competitor_id, names in agreeing.items():
                if len(names) < wanted:
                    continue
                entry = lookup[competitor_id]
                picks.append(
                    ConsensusPick(
                        event_id=event_id,
                        venue_name=event.venue_name or event.venue_id,
                        start_at=event.start_at,
                        competitor_id=competitor_id,
                        competitor_name=entry.name or f"Competitor {competitor_id}",
                        estimators=sorted(names),
                        top_probability=round(best_prob[competitor_id] * cfg.probability_scale, 6),
                        current_price=entry.current_price,
                        handler_name=entry.handler_name,
                        number=entry.number,
                    )
                )
        picks.sort(key=lambda p: (_aware(p.start_at), -p.agreement, -p.top_probability, p.competitor_id))
        return picks


def signal_counts(signals: Sequence[SmartSignal]) -> dict[str, int]:
    strong = sum(1 for s in signals if s.strength is SignalStrength.STRONG)
    return {"total": len(signals), "strong_count": strong, "medium_count": len(signals) - strong}


__all__ = [
    "FusionInputs",
    "InMemorySignalReader",
    "SignalFusionEngine",
    "SignalReader",
    "build_signals",
    "group_movers",
    "qualifying_movers",
    "signal_counts",
    "upcoming_events",
]
