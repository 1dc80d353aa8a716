import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from bullrun_engine.config import (
    EVENT_PULL_RATE,
    FLAT_CHANGE_PCT,
    HARD_PRICE_FLOOR,
    MAX_PULL_RATE,
    MAX_SIGN_BIAS,
    MIN_SLOPE_PCT,
    NOISE_MAGNITUDE_RANGE,
    NOISE_RAMP_SECONDS,
    REVERSION_PULL_GAIN,
    SEGMENT_DURATION_RANGE,
    SIGN_BIAS_GAIN,
    TREND_DIRECTION_WEIGHTS,
    get_stock_pool,
    get_tier_config,
    get_tier_for_act,
)
from bullrun_engine.notifications import EventBus, PriceUpdated
from bullrun_engine.schemas import StockDebugInfo, StockDefinition, StockSector, StockTier, TrendDirection
from bullrun_engine.services.event_effects import EventEffects
from bullrun_engine.services.stock_state import StockState
from bullrun_engine.utils.numeric_safety import clamp, sanitize_floats

logger = logging.getLogger(__name__)

_TREND_DIRECTIONS = (TrendDirection.BULL, TrendDirection.BEAR, TrendDirection.NEUTRAL)
# Tiers whose stocks move together with their sector
_SECTOR_CORRELATED_TIERS = (StockTier.MID_VALUE, StockTier.BLUE_CHIP)


# ── Slope distribution ──

@dataclass(frozen=True)
class SlopeDistribution:
    """Noise segment slope law; slopes and drift are fractions of price per second."""
    p_up: float
    magnitude_low: float
    magnitude_high: float
    drift: float

    @property
    def expected_slope(self) -> float:
        mean_mag = 0.5 * (self.magnitude_low + self.magnitude_high)
        return (2.0 * self.p_up - 1.0) * mean_mag + self.drift


def slope_distribution(displacement: float, mean_reversion_speed: float, noise_amplitude: float) -> SlopeDistribution:
    """Weighted slope law for a stock displaced `displacement` (fraction) from its trend line.

    The sign is biased toward the trend line with strength proportional to
    displacement × reversion speed; the drift term pulls back deterministically.
    """
    pull = min(REVERSION_PULL_GAIN * mean_reversion_speed, MAX_PULL_RATE) * displacement
    if noise_amplitude > 0:
        bias = clamp(SIGN_BIAS_GAIN * displacement * mean_reversion_speed / noise_amplitude, -MAX_SIGN_BIAS, MAX_SIGN_BIAS)
    else:
        bias = 0.0
    low, high = NOISE_MAGNITUDE_RANGE
    return SlopeDistribution(
        p_up=0.5 * (1.0 - bias),
        magnitude_low=low * noise_amplitude,
        magnitude_high=high * noise_amplitude,
        drift=-pull,
    )


def sample_slope(dist: SlopeDistribution, rng: np.random.Generator) -> float:
    sign = 1.0 if rng.random() < dist.p_up else -1.0
    return sign * float(rng.uniform(dist.magnitude_low, dist.magnitude_high))


def noise_ramp(time_into_trading: float) -> float:
    if NOISE_RAMP_SECONDS <= 0:
        return 1.0
    return clamp(time_into_trading / NOISE_RAMP_SECONDS, 0.0, 1.0)


class PriceSimulator:
    """Per-frame price engine for the active round's stocks.

    Each tick either pulls the price toward an active event's target or
    follows trend + segment noise + mean reversion. Randomness comes only
    from the injected generator.
    """

    def __init__(
        self,
        rng: Optional[np.random.Generator] = None,
        event_effects: Optional[EventEffects] = None,
        bus: Optional[EventBus] = None,
    ):
        self._rng = rng if rng is not None else np.random.default_rng()
        self._event_effects = event_effects
        self._bus = bus
        self.active_stocks: List[StockState] = []
        self.current_tier = StockTier.PENNY

    def set_event_effects(self, effects: Optional[EventEffects]) -> None:
        self._event_effects = effects

    # ── Round setup ──

    def initialize_round(self, act: int, round_number: int) -> List[StockState]:
        tier = get_tier_for_act(act)
        cfg = get_tier_config(tier)
        self.current_tier = tier

        sector_trends: Dict[StockSector, TrendDirection] = {}
        stocks = []
        for i, definition in enumerate(self.select_stocks_for_round(tier)):
            price = float(self._rng.uniform(cfg.min_price, cfg.max_price))
            direction = self._roll_trend_direction()
            if tier in _SECTOR_CORRELATED_TIERS and definition.sector != StockSector.NONE:
                direction = sector_trends.setdefault(definition.sector, direction)
            strength = float(self._rng.uniform(cfg.min_trend_strength, cfg.max_trend_strength))
            stocks.append(StockState(
                stock_id=i,
                ticker=definition.ticker,
                tier=tier,
                starting_price=price,
                trend_direction=direction,
                trend_rate=strength,
                tier_config=cfg,
                sector=definition.sector,
                display_name=definition.display_name,
            ))

        self.active_stocks = stocks
        if self._event_effects is not None:
            self._event_effects.set_active_stocks(stocks)
        logger.info(
            "Act %d round %d: %s tier, %d stocks [%s]",
            act, round_number, tier.value, len(stocks), ", ".join(s.ticker for s in stocks),
        )
        return stocks

    def _roll_trend_direction(self) -> TrendDirection:
        idx = int(self._rng.choice(len(_TREND_DIRECTIONS), p=TREND_DIRECTION_WEIGHTS))
        return _TREND_DIRECTIONS[idx]

    def select_stocks_for_round(self, tier: StockTier) -> List[StockDefinition]:
        """Unique picks from the tier's named pool."""
        pool = get_stock_pool(tier)
        cfg = get_tier_config(tier)
        count = int(self._rng.integers(cfg.min_stocks_per_round, cfg.max_stocks_per_round + 1))
        count = min(count, len(pool))
        picks = self._rng.choice(len(pool), size=count, replace=False)
        return [pool[int(i)] for i in picks]

    # ── Per-frame update ──

    def update_price(self, stock: Optional[StockState], dt: float) -> None:
        if stock is None or dt <= 0:
            return
        previous = stock.current_price

        event = self._active_event_for(stock)
        if event is not None:
            self._apply_event_pull(stock, event, dt)
        else:
            self._apply_trend_and_noise(stock, dt)

        if stock.current_price < HARD_PRICE_FLOOR:
            stock.current_price = HARD_PRICE_FLOOR
            stock.trend_line_price = HARD_PRICE_FLOOR
            if stock.segment_slope < 0:
                stock.segment_slope = -stock.segment_slope
            stock.segment_drift = max(stock.segment_drift, 0.0)

        stock.time_into_trading += dt
        self._track_flat_frames(stock, previous, dt)

        if self._bus is not None:
            self._bus.publish(PriceUpdated(
                stock_id=stock.stock_id,
                previous_price=previous,
                new_price=stock.current_price,
                delta_time=dt,
            ))

    def _active_event_for(self, stock: StockState):
        if self._event_effects is not None:
            evt = self._event_effects.get_active_event(stock.stock_id)
            if evt is not None:
                return evt
        return stock.active_event

    def _apply_event_pull(self, stock: StockState, event, dt: float) -> None:
        force = event.current_force()
        gap = stock.event_target_price - stock.current_price
        step = gap * min(1.0, force * EVENT_PULL_RATE * dt)
        min_step = MIN_SLOPE_PCT * stock.current_price * dt
        if abs(step) < min_step:
            # may step past the target; the next frame heads back
            step = math.copysign(min_step, gap) if gap != 0 else min_step
        stock.current_price += step

    def _apply_trend_and_noise(self, stock: StockState, dt: float) -> None:
        if stock.segment_time_remaining <= 0:
            self._start_segment(stock)
        stock.segment_time_remaining -= dt
        stock.update_trend_line(dt)

        price = stock.current_price
        ramp = noise_ramp(stock.time_into_trading)
        velocity = stock.effective_trend_per_second + (ramp * stock.segment_slope + stock.segment_drift) * price

        min_velocity = MIN_SLOPE_PCT * price
        if abs(velocity) < min_velocity:
            direction = velocity if velocity != 0 else (stock.segment_slope or 1.0)
            velocity = math.copysign(min_velocity, direction)

        stock.current_price = price + velocity * dt

    def _start_segment(self, stock: StockState) -> None:
        cfg = stock.tier_config
        dist = slope_distribution(stock.deviation_from_trend(), cfg.mean_reversion_speed, cfg.noise_amplitude)
        low, high = SEGMENT_DURATION_RANGE
        stock.segment_duration = float(self._rng.uniform(low, high)) / cfg.noise_frequency
        stock.segment_time_remaining = stock.segment_duration
        stock.segment_slope = sample_slope(dist, self._rng)
        stock.segment_drift = dist.drift

    def _track_flat_frames(self, stock: StockState, previous: float, dt: float) -> None:
        if abs(stock.current_price - previous) < FLAT_CHANGE_PCT * previous:
            stock.flat_frame_count += 1
            if stock.flat_frame_count > 2 and stock.current_price > HARD_PRICE_FLOOR:
                logger.debug(
                    "Flat price on %s: $%.4f for %d frames (slope=%.5f, trend line=$%.4f, event=%s, dt=%.4f)",
                    stock.ticker, stock.current_price, stock.flat_frame_count, stock.segment_slope,
                    stock.trend_line_price, stock.has_active_event, dt,
                )
        else:
            stock.flat_frame_count = 0

    # ── Diagnostics ──

    def get_debug_info(self) -> List[dict]:
        rows = []
        for stock in self.active_stocks:
            evt = self._active_event_for(stock)
            info = StockDebugInfo(
                ticker=stock.ticker,
                current_price=stock.current_price,
                trend_line_price=stock.trend_line_price,
                trend_direction=stock.trend_direction,
                trend_per_second=stock.trend_per_second,
                noise_amplitude=stock.tier_config.noise_amplitude,
                segment_slope=stock.segment_slope,
                segment_time_remaining=stock.segment_time_remaining,
                reversion_speed=stock.tier_config.mean_reversion_speed,
                has_active_event=evt is not None,
                active_event_type=evt.event_type if evt is not None else None,
                event_time_remaining=evt.time_remaining if evt is not None else 0.0,
            )
            rows.append(sanitize_floats(info.model_dump(mode="json")))
        return rows
