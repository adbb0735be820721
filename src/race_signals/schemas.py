from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class Movement(str, Enum):
    SHORTENING = "shortening"
    LENGTHENING = "lengthening"
    STABLE = "stable"


class SignalStrength(str, Enum):
    STRONG = "strong"
    MEDIUM = "medium"


# --- inbound feed -----------------------------------------------------------


class FeedQuote(BaseModel):
    """One bookmaker's quote for a runner, as published by the feed."""

    source: str
    fractional: str | None = None
    decimal: str | float | None = None
    updated_at: datetime | None = None


class FeedCompetitor(BaseModel):
    competitor_id: str
    name: str | None = None
    handler_id: str | None = None
    handler_name: str | None = None
    rider_name: str | None = None
    number: int | None = None
    silk_url: str | None = None
    quotes: list[FeedQuote] = Field(default_factory=list)


class FeedEvent(BaseModel):
    event_id: str
    venue_id: str
    venue_name: str | None = None
    race_date: date
    start_at: datetime | None = None
    competitors: list[FeedCompetitor] = Field(default_factory=list)
    raw: dict = Field(default_factory=dict, repr=False)


class PriceQuote(BaseModel):
    """A validated observation handed to the price state store."""

    event_id: str
    competitor_id: str
    source_id: str
    price: float = Field(..., gt=0.0)
    fractional: str | None = None
    observed_at: datetime

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.event_id, self.competitor_id, self.source_id)


# --- persisted state --------------------------------------------------------


class PriceState(BaseModel):
    event_id: str
    competitor_id: str
    source_id: str

    initial_price: float
    previous_price: float | None = None
    current_price: float
    change_count: int = 0
    last_change_at: datetime | None = None
    movement: Movement = Movement.STABLE
    movement_pct: float | None = None
    is_active: bool = True

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.event_id, self.competitor_id, self.source_id)


class PriceChangeEvent(BaseModel):
    id: int | None = None
    event_id: str
    competitor_id: str
    source_id: str
    from_price: float
    to_price: float
    change_abs: float
    change_pct: float
    direction: Movement
    source_ts: datetime


class EventMeta(BaseModel):
    event_id: str
    venue_id: str
    venue_name: str | None = None
    race_date: date
    start_at: datetime | None = None


class CompetitorEntry(BaseModel):
    event_id: str
    competitor_id: str
    name: str | None = None
    handler_id: str | None = None
    handler_name: str | None = None
    rider_name: str | None = None
    number: int | None = None
    silk_url: str | None = None
    current_price: float | None = None
    probabilities: dict[str, float] = Field(default_factory=dict)


# --- outbound ---------------------------------------------------------------


class SmartSignal(BaseModel):
    rank: int
    competitor_id: str
    competitor_name: str
    event_id: str
    venue_id: str
    venue_name: str
    start_at: datetime
    source_id: str

    current_price: float
    current_price_label: str
    initial_price: float
    movement_pct: float
    change_count: int
    last_updated: datetime | None = None

    is_top_estimator_pick: bool
    estimators_agreeing: list[str] = Field(default_factory=list)
    ensemble_probability: float = 0.0

    is_sole_entry: bool
    handler_name: str | None = None
    rider_name: str | None = None

    strength: SignalStrength
    silk_url: str | None = None
    number: int | None = None


class MarketMover(BaseModel):
    competitor_id: str
    competitor_name: str
    source_id: str
    initial_price: float
    current_price: float
    movement_pct: float
    change_count: int
    last_updated: datetime | None = None
    handler_name: str | None = None
    rider_name: str | None = None


class MoverGroup(BaseModel):
    event_id: str
    venue_name: str
    start_at: datetime
    movers: list[MarketMover] = Field(default_factory=list)


class ConsensusPick(BaseModel):
    event_id: str
    venue_name: str
    start_at: datetime
    competitor_id: str
    competitor_name: str
    estimators: list[str]
    top_probability: float
    current_price: float | None = None
    handler_name: str | None = None
    number: int | None = None

    @property
    def agreement(self) -> int:
        return len(self.estimators)


class IngestSummary(BaseModel):
    status: str
    started_at: datetime
    events: int = 0
    processed: int = 0
    created: int = 0
    changed: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    message: str | None = None
