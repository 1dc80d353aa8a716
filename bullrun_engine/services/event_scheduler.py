import logging
import math
from typing import Dict, Iterable, List, Optional

import numpy as np

from bullrun_engine.config import (
    EARLY_BUFFER_SECONDS,
    LATE_BUFFER_SECONDS,
    LATE_ROUND_FIRST_ACT,
    MAX_EVENTS_EARLY_ROUNDS,
    MAX_EVENTS_LATE_ROUNDS,
    MAX_RARE_EVENTS_PER_ROUND,
    MIN_EVENTS_EARLY_ROUNDS,
    MIN_EVENTS_LATE_ROUNDS,
    MIN_EVENT_EFFECT,
    RARE_EVENT_RARITY,
    ROUND_DURATION_SECONDS,
    get_events_for_tier,
    get_tier_config,
)
from bullrun_engine.schemas import MarketEventConfig, ScheduledEvent, StockTier
from bullrun_engine.services.event_effects import EventEffects
from bullrun_engine.services.market_events import MarketEvent
from bullrun_engine.services.stock_state import StockState

logger = logging.getLogger(__name__)

# An event may not push a target price below this fraction of the current price
_MIN_MAGNITUDE = -0.95


class EventScheduler:
    """Decides a round's event plan up front and fires it as the clock passes each entry.

    The plan is drawn once per round from the injected generator, so the
    shadow simulator can read the same entries the live run will fire.
    """

    def __init__(self, effects: Optional[EventEffects] = None, rng: Optional[np.random.Generator] = None):
        self._effects = effects
        self._rng = rng if rng is not None else np.random.default_rng()

        # External modifiers; kept across rounds
        self.event_count_multiplier = 1.0
        self.impact_multiplier = 1.0
        self.positive_impact_multiplier = 1.0

        self._plan: List[ScheduledEvent] = []
        self._fired: List[bool] = []
        self._stocks: Dict[int, StockState] = {}
        self._last_tier = StockTier.PENNY
        self.current_round = 0
        self.current_act = 0
        self.round_duration = ROUND_DURATION_SECONDS

    @property
    def scheduled_events(self) -> List[ScheduledEvent]:
        return list(self._plan)

    @property
    def scheduled_event_count(self) -> int:
        return len(self._plan)

    @property
    def fired_event_count(self) -> int:
        return sum(self._fired)

    def set_event_effects(self, effects: Optional[EventEffects]) -> None:
        self._effects = effects

    def initialize_round(
        self,
        round_number: int,
        act: int,
        tier: StockTier,
        stocks: Optional[Iterable[StockState]],
        duration: float = ROUND_DURATION_SECONDS,
    ) -> List[ScheduledEvent]:
        stock_list = list(stocks or [])
        self.current_round = round_number
        self.current_act = act
        self.round_duration = duration
        self._last_tier = tier
        self._stocks = {s.stock_id: s for s in stock_list}
        self._plan = []
        self._fired = []

        if self._effects is not None:
            self._effects.clear()
            self._effects.set_active_stocks(stock_list)

        if not stock_list:
            logger.info("Round %d: no active stocks, no events scheduled", round_number)
            return []

        count = self._roll_event_count(act, tier)
        fire_times = self._spread_fire_times(count, duration)

        rare_count = 0
        for fire_time in fire_times:
            target = stock_list[int(self._rng.integers(len(stock_list)))]
            cfg = self._pick_event_config(tier, rare_count)
            if cfg.rarity < RARE_EVENT_RARITY:
                rare_count += 1
            self._plan.append(ScheduledEvent(
                fire_time=fire_time,
                event_type=cfg.event_type,
                magnitude=self._roll_magnitude(cfg),
                target_stock_id=target.stock_id,
                duration=cfg.duration,
            ))
        self._fired = [False] * len(self._plan)

        logger.info(
            "Round %d (act %d, %s): scheduled %d events over %.1fs",
            round_number, act, tier.value, len(self._plan), duration,
        )
        return list(self._plan)

    def _roll_event_count(self, act: int, tier: StockTier) -> int:
        if act >= LATE_ROUND_FIRST_ACT:
            lo, hi = MIN_EVENTS_LATE_ROUNDS, MAX_EVENTS_LATE_ROUNDS
        else:
            lo, hi = MIN_EVENTS_EARLY_ROUNDS, MAX_EVENTS_EARLY_ROUNDS
        # Base draw first so a multiplier change never shifts the rest of the stream
        base = int(self._rng.integers(lo, hi + 1))
        scaled = base * get_tier_config(tier).event_frequency_modifier * self.event_count_multiplier
        return max(1, int(math.floor(scaled + 0.5)))

    def _spread_fire_times(self, count: int, duration: float) -> List[float]:
        """One uniform draw per equal slice of the buffered window."""
        start = EARLY_BUFFER_SECONDS
        end = duration - LATE_BUFFER_SECONDS
        if end <= start:
            start, end = 0.0, max(duration, 0.0)
        width = (end - start) / count
        return [start + width * (i + float(self._rng.random())) for i in range(count)]

    def _pick_event_config(self, tier: StockTier, rare_count: int) -> MarketEventConfig:
        candidates = get_events_for_tier(tier)
        if rare_count >= MAX_RARE_EVENTS_PER_ROUND:
            common = [c for c in candidates if c.rarity >= RARE_EVENT_RARITY]
            if common:
                candidates = common
        weights = np.array([c.rarity for c in candidates], dtype=float)
        idx = int(self._rng.choice(len(candidates), p=weights / weights.sum()))
        return candidates[idx]

    def _roll_magnitude(self, cfg: MarketEventConfig) -> float:
        lo, hi = sorted((cfg.min_price_effect, cfg.max_price_effect))
        magnitude = float(self._rng.uniform(lo, hi)) * self.impact_multiplier
        if cfg.is_positive:
            magnitude *= self.positive_impact_multiplier
        # keeps the catalog sign even if a multiplier is zero or negative
        sign = 1.0 if cfg.is_positive else -1.0
        magnitude = math.copysign(max(abs(magnitude), MIN_EVENT_EFFECT), sign)
        return max(_MIN_MAGNITUDE, magnitude)

    def update(
        self,
        elapsed: float,
        dt: float,
        stocks: Optional[Iterable[StockState]] = None,
        tier: Optional[StockTier] = None,
    ) -> None:
        if stocks is not None:
            stock_list = list(stocks)
            self._stocks = {s.stock_id: s for s in stock_list}
            if self._effects is not None:
                self._effects.set_active_stocks(stock_list)
        if tier is not None:
            self._last_tier = tier

        for i, scheduled in enumerate(self._plan):
            if self._fired[i] or scheduled.fire_time > elapsed:
                continue
            self._fired[i] = True
            if scheduled.target_stock_id not in self._stocks:
                logger.debug("Scheduled %s skipped: stock %s gone", scheduled.event_type.value, scheduled.target_stock_id)
                continue
            self._fire(MarketEvent(
                event_type=scheduled.event_type,
                target_stock_id=scheduled.target_stock_id,
                magnitude_percent=scheduled.magnitude,
                duration_seconds=scheduled.duration,
            ))

        if self._effects is not None:
            self._effects.update_active_events(dt)

    def force_fire_random_event(self) -> Optional[MarketEvent]:
        """Start one unplanned event on a random active stock; None when there are no stocks."""
        if not self._stocks:
            return None
        stock_ids = sorted(self._stocks)
        target_id = stock_ids[int(self._rng.integers(len(stock_ids)))]
        cfg = self._pick_event_config(self._last_tier, rare_count=0)
        evt = MarketEvent(
            event_type=cfg.event_type,
            target_stock_id=target_id,
            magnitude_percent=self._roll_magnitude(cfg),
            duration_seconds=cfg.duration,
        )
        self._fire(evt)
        return evt

    def _fire(self, evt: MarketEvent) -> None:
        if self._effects is None:
            logger.debug("No event effects attached; %s not applied", evt.event_type.value)
            return
        self._effects.start_event(evt)
