from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StockTier(str, Enum):
    PENNY = "penny"
    LOW_VALUE = "low_value"
    MID_VALUE = "mid_value"
    BLUE_CHIP = "blue_chip"


class TrendDirection(str, Enum):
    BULL = "bull"
    BEAR = "bear"
    NEUTRAL = "neutral"


class StockSector(str, Enum):
    NONE = "none"
    TECH = "tech"
    ENERGY = "energy"
    HEALTH = "health"
    FINANCE = "finance"
    CONSUMER = "consumer"
    INDUSTRIAL = "industrial"
    CRYPTO = "crypto"


class MarketEventType(str, Enum):
    EARNINGS_BEAT = "earnings_beat"
    EARNINGS_MISS = "earnings_miss"
    PUMP_AND_DUMP = "pump_and_dump"
    SEC_INVESTIGATION = "sec_investigation"
    MERGER_RUMOR = "merger_rumor"
    MARKET_CRASH = "market_crash"
    BULL_RUN = "bull_run"
    FLASH_CRASH = "flash_crash"
    SHORT_SQUEEZE = "short_squeeze"


class ForceCurve(str, Enum):
    """Shape of an event's force over its normalized duration.

    Every shape is 0 at both ends and peaks at 1.0 at mid-duration.
    """

    TRIANGLE = "triangle"   # linear rise, linear fall
    SINE = "sine"           # sin(pi * u)
    PLATEAU = "plateau"     # fast rise, held peak, fast fall
    BELL = "bell"           # sin^2(pi * u), narrow peak


class TierConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_price: float
    max_price: float
    base_volatility: float
    min_trend_strength: float
    max_trend_strength: float
    min_stocks_per_round: int
    max_stocks_per_round: int
    noise_amplitude: float
    noise_frequency: float
    mean_reversion_speed: float
    event_frequency_modifier: float

    @field_validator("min_price", "max_price")
    @classmethod
    def price_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("noise_amplitude", "noise_frequency", "event_frequency_modifier")
    @classmethod
    def positive_values(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("mean_reversion_speed")
    @classmethod
    def reversion_range(cls, v):
        if v < 0 or v > 1:
            raise ValueError("mean_reversion_speed must be in [0, 1]")
        return v

    @field_validator("base_volatility", "min_trend_strength", "max_trend_strength")
    @classmethod
    def non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    @field_validator("min_stocks_per_round")
    @classmethod
    def min_stocks_range(cls, v):
        if v < 2:
            raise ValueError("min_stocks_per_round must be >= 2")
        return v

    def model_post_init(self, __context):
        if self.max_price <= self.min_price:
            raise ValueError(
                f"max_price ({self.max_price}) must be greater than min_price ({self.min_price})"
            )
        if self.max_trend_strength < self.min_trend_strength:
            raise ValueError(
                f"max_trend_strength ({self.max_trend_strength}) must be >= "
                f"min_trend_strength ({self.min_trend_strength})"
            )
        if self.max_stocks_per_round < self.min_stocks_per_round:
            raise ValueError(
                f"max_stocks_per_round ({self.max_stocks_per_round}) must be >= "
                f"min_stocks_per_round ({self.min_stocks_per_round})"
            )


class MarketEventConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: MarketEventType
    min_price_effect: float
    max_price_effect: float
    duration: float
    tier_availability: Tuple[StockTier, ...]
    rarity: float
    force_curve: ForceCurve = ForceCurve.TRIANGLE

    @field_validator("min_price_effect", "max_price_effect")
    @classmethod
    def effect_non_zero(cls, v, info):
        if v == 0 or v <= -1:
            raise ValueError(f"{info.field_name} must be non-zero and > -1")
        return v

    @field_validator("duration", "rarity")
    @classmethod
    def positive_values(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("tier_availability")
    @classmethod
    def tiers_non_empty(cls, v):
        if not v:
            raise ValueError("tier_availability must list at least one tier")
        return v

    def model_post_init(self, __context):
        if (self.min_price_effect > 0) != (self.max_price_effect > 0):
            raise ValueError(
                f"Event '{self.event_type.value}': min_price_effect and max_price_effect must share a sign"
            )

    @property
    def is_positive(self) -> bool:
        return self.min_price_effect > 0


class StockDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    display_name: str
    tier: StockTier
    sector: StockSector = StockSector.NONE
    flavor_text: str = ""


class ScheduledEvent(BaseModel):
    """One entry of a round's pre-decided event plan."""

    model_config = ConfigDict(frozen=True)

    fire_time: float
    event_type: MarketEventType
    magnitude: float
    target_stock_id: int
    duration: float

    @field_validator("fire_time")
    @classmethod
    def fire_time_non_negative(cls, v):
        if v < 0:
            raise ValueError("fire_time must be >= 0")
        return v

    @field_validator("duration")
    @classmethod
    def duration_positive(cls, v):
        if v <= 0:
            raise ValueError("duration must be > 0")
        return v


class StockDebugInfo(BaseModel):
    ticker: str
    current_price: float
    trend_line_price: float
    trend_direction: TrendDirection
    trend_per_second: float
    noise_amplitude: float
    segment_slope: float
    segment_time_remaining: float
    reversion_speed: float
    has_active_event: bool = False
    active_event_type: Optional[MarketEventType] = None
    event_time_remaining: float = 0.0


class SimulationContext(BaseModel):
    """Everything the shadow simulator needs about one stock's upcoming round."""

    stock_id: int = 0
    starting_price: float
    trend_direction: TrendDirection = TrendDirection.NEUTRAL
    trend_rate: float = 0.0
    tier_config: TierConfig
    scheduled_events: List[ScheduledEvent] = Field(default_factory=list)
    round_duration: float = 60.0

    @field_validator("starting_price")
    @classmethod
    def price_positive(cls, v):
        if v <= 0:
            raise ValueError("starting_price must be > 0")
        return v

    @field_validator("trend_rate")
    @classmethod
    def rate_non_negative(cls, v):
        if v < 0:
            raise ValueError("trend_rate must be >= 0 (direction carries the sign)")
        return v

    @classmethod
    def from_stock(cls, stock, scheduled_events, round_duration: float) -> "SimulationContext":
        return cls(
            stock_id=stock.stock_id,
            starting_price=stock.starting_price,
            trend_direction=stock.trend_direction,
            trend_rate=abs(stock.trend_rate),
            tier_config=stock.tier_config,
            scheduled_events=list(scheduled_events),
            round_duration=round_duration,
        )


class SimulationResult(BaseModel):
    min_price: float
    max_price: float
    min_price_normalized_time: float
    max_price_normalized_time: float
    closing_price: float
    average_price: float
    event_count: int
    event_times: List[float] = Field(default_factory=list)
    closing_direction: int = 0
