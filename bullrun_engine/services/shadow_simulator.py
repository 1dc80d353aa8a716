"""Cheap forward projection of one stock's round from its event plan.

Planned facts (event count, fire times) are copied from the plan. The price
path is a coarse deterministic one: a linear trend that freezes while an
event pulls the price toward its target, with events integrated in closed
form. Noise is represented only by widening the extrema.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from bullrun_engine.config import (
    EVENT_PULL_RATE,
    HARD_PRICE_FLOOR,
    SHADOW_NOISE_ENVELOPE,
    SHADOW_SAMPLE_STEP_SECONDS,
    get_event_config,
)
from bullrun_engine.schemas import ForceCurve, SimulationContext, SimulationResult, TrendDirection
from bullrun_engine.services.market_events import build_phases, event_fraction
from bullrun_engine.utils.numeric_safety import safe_ratio

logger = logging.getLogger(__name__)

_DIRECTION_SIGN = {TrendDirection.BULL: 1.0, TrendDirection.BEAR: -1.0, TrendDirection.NEUTRAL: 0.0}
# Closing moves smaller than this fraction of the start price count as unchanged
_FLAT_CLOSE_PCT = 1e-9


def _trend_slope(trend: float, price: float) -> float:
    # a bear trend stops once the path has hit the floor
    if trend < 0 and price <= HARD_PRICE_FLOOR:
        return 0.0
    return trend


@dataclass(frozen=True)
class _PathPiece:
    start: float
    end: float
    start_price: float
    slope: float = 0.0                      # $/s, trend pieces only
    target: Optional[float] = None          # event pieces only
    curve: ForceCurve = ForceCurve.TRIANGLE
    phase_seconds: float = 0.0

    def price_at(self, t):
        if self.target is None:
            return np.maximum(HARD_PRICE_FLOOR, self.start_price + self.slope * (t - self.start))
        u = safe_ratio(1.0, self.phase_seconds) * (t - self.start)
        frac = event_fraction(self.curve, self.phase_seconds, u, EVENT_PULL_RATE)
        return np.maximum(HARD_PRICE_FLOOR, self.start_price + (self.target - self.start_price) * frac)


class ShadowSimulator:
    def __init__(self, sample_step: float = SHADOW_SAMPLE_STEP_SECONDS):
        self.sample_step = sample_step

    def simulate_round(self, context: SimulationContext) -> SimulationResult:
        duration = context.round_duration
        start_price = context.starting_price
        event_times = sorted(
            min(1.0, max(0.0, safe_ratio(e.fire_time, duration))) for e in context.scheduled_events
        )

        if duration <= 0:
            return SimulationResult(
                min_price=start_price,
                max_price=start_price,
                min_price_normalized_time=0.0,
                max_price_normalized_time=0.0,
                closing_price=start_price,
                average_price=start_price,
                event_count=len(context.scheduled_events),
                event_times=event_times,
                closing_direction=0,
            )

        pieces = self._build_path(context)
        times = self._sample_times(pieces, duration)
        prices = np.full(times.shape, start_price, dtype=float)
        for piece in pieces:
            mask = (times >= piece.start) & (times <= piece.end)
            if mask.any():
                prices[mask] = piece.price_at(times[mask])

        envelope = SHADOW_NOISE_ENVELOPE * context.tier_config.noise_amplitude
        i_max = int(np.argmax(prices))
        i_min = int(np.argmin(prices))
        closing = float(prices[-1])
        average = float(np.sum(0.5 * (prices[1:] + prices[:-1]) * np.diff(times)) / duration)

        change = closing - start_price
        if abs(change) <= _FLAT_CLOSE_PCT * start_price:
            direction = 0
        else:
            direction = 1 if change > 0 else -1

        result = SimulationResult(
            min_price=max(HARD_PRICE_FLOOR, float(prices[i_min]) * (1.0 - envelope)),
            max_price=float(prices[i_max]) * (1.0 + envelope),
            min_price_normalized_time=safe_ratio(float(times[i_min]), duration),
            max_price_normalized_time=safe_ratio(float(times[i_max]), duration),
            closing_price=closing,
            average_price=average,
            event_count=len(context.scheduled_events),
            event_times=event_times,
            closing_direction=direction,
        )
        logger.debug(
            "Shadow stock %d: close $%.4f (%+d), range $%.4f-$%.4f, %d pieces",
            context.stock_id, result.closing_price, direction, result.min_price, result.max_price, len(pieces),
        )
        return result

    def _build_path(self, context: SimulationContext) -> List[_PathPiece]:
        duration = context.round_duration
        trend = _DIRECTION_SIGN[context.trend_direction] * context.trend_rate * context.starting_price
        events = sorted(
            (e for e in context.scheduled_events
             if e.target_stock_id == context.stock_id and e.fire_time < duration),
            key=lambda e: e.fire_time,
        )

        pieces: List[_PathPiece] = []
        t = 0.0
        price = context.starting_price
        for i, scheduled in enumerate(events):
            fire = max(scheduled.fire_time, t)
            if fire > t:
                piece = _PathPiece(start=t, end=fire, start_price=price, slope=_trend_slope(trend, price))
                pieces.append(piece)
                price = float(piece.price_at(fire))
                t = fire

            # a later event on the same stock cuts this one short
            next_fire = events[i + 1].fire_time if i + 1 < len(events) else duration
            end = min(fire + scheduled.duration, next_fire, duration)
            curve = get_event_config(scheduled.event_type).force_curve
            event_start_price = price
            phase_start = fire
            for phase in build_phases(scheduled.event_type, scheduled.magnitude):
                if phase_start >= end:
                    break
                phase_seconds = phase.duration_fraction * scheduled.duration
                phase_end = min(phase_start + phase_seconds, end)
                piece = _PathPiece(
                    start=phase_start,
                    end=phase_end,
                    start_price=price,
                    target=max(HARD_PRICE_FLOOR, event_start_price * phase.target_ratio),
                    curve=curve,
                    phase_seconds=phase_seconds,
                )
                pieces.append(piece)
                price = float(piece.price_at(phase_end))
                phase_start = phase_start + phase_seconds
            t = end

        if t < duration:
            pieces.append(_PathPiece(start=t, end=duration, start_price=price, slope=_trend_slope(trend, price)))
        return pieces

    def _sample_times(self, pieces: List[_PathPiece], duration: float) -> np.ndarray:
        grid = np.arange(0.0, duration, self.sample_step) if self.sample_step > 0 else np.array([0.0])
        breaks = [p.start for p in pieces] + [p.end for p in pieces] + [duration]
        times = np.unique(np.concatenate([grid, np.array(breaks, dtype=float)]))
        return times[(times >= 0.0) & (times <= duration)]
