from typing import Optional

from bullrun_engine.config import HARD_PRICE_FLOOR, get_tier_config
from bullrun_engine.schemas import StockSector, StockTier, TierConfig, TrendDirection
from bullrun_engine.utils.numeric_safety import safe_ratio


def signed_trend_rate(direction: TrendDirection, strength: float) -> float:
    """Direction carries the sign; neutral stocks have no drift."""
    if direction == TrendDirection.BULL:
        return abs(strength)
    if direction == TrendDirection.BEAR:
        return -abs(strength)
    return 0.0


class StockState:
    """Mutable per-round state of one tradeable stock.

    Prices are in dollars. Segment slope and drift are fractions of the
    current price per second; trend_per_second is in dollars per second and
    fixed for the round.
    """

    def __init__(
        self,
        stock_id: int,
        ticker: str,
        tier: StockTier,
        starting_price: float,
        trend_direction: TrendDirection = TrendDirection.NEUTRAL,
        trend_rate: float = 0.0,
        tier_config: Optional[TierConfig] = None,
        sector: StockSector = StockSector.NONE,
        display_name: str = "",
    ):
        self.stock_id = stock_id
        self.ticker = ticker
        self.display_name = display_name or ticker
        self.tier = tier
        self.tier_config = tier_config if tier_config is not None else get_tier_config(tier)
        self.sector = sector

        self.starting_price = starting_price
        self.current_price = starting_price
        self.trend_line_price = starting_price
        self.trend_direction = trend_direction
        self.trend_rate = signed_trend_rate(trend_direction, trend_rate)
        self.trend_per_second = self.trend_rate * starting_price

        # ── Noise segment ──
        self.segment_slope = 0.0
        self.segment_drift = 0.0
        self.segment_duration = 0.0
        self.segment_time_remaining = 0.0

        self.time_into_trading = 0.0
        self.flat_frame_count = 0

        # ── Event override ──
        self.active_event = None
        self.event_target_price = 0.0
        self.event_start_price = 0.0

    def __repr__(self):
        return (
            f"StockState({self.ticker!r}, tier={self.tier.value}, price={self.current_price:.4f}, "
            f"trend={self.trend_direction.value})"
        )

    @property
    def has_active_event(self) -> bool:
        return self.active_event is not None

    def apply_event(self, event, target_price: float) -> None:
        self.active_event = event
        self.event_start_price = self.current_price
        self.event_target_price = max(HARD_PRICE_FLOOR, target_price)

    def clear_event(self) -> None:
        """Drop the active event and absorb its effect into the trend line."""
        self.active_event = None
        self.event_target_price = 0.0
        self.event_start_price = 0.0
        self.trend_line_price = self.current_price
        # next tick draws a fresh segment from the new reference
        self.segment_time_remaining = 0.0

    @property
    def effective_trend_per_second(self) -> float:
        """Trend rate acting on price; a bear trend stops once its line has hit the floor."""
        if self.trend_per_second < 0 and self.trend_line_price <= HARD_PRICE_FLOOR:
            return 0.0
        return self.trend_per_second

    def update_trend_line(self, dt: float) -> None:
        self.trend_line_price = max(HARD_PRICE_FLOOR, self.trend_line_price + self.effective_trend_per_second * dt)

    def reset_trading_clock(self) -> None:
        self.time_into_trading = 0.0

    def deviation_from_trend(self) -> float:
        return safe_ratio(self.current_price - self.trend_line_price, self.trend_line_price)
