import logging
from typing import Dict, Iterable, Optional

from bullrun_engine.notifications import EventBus, MarketEventEnded, MarketEventFired
from bullrun_engine.services.market_events import MarketEvent
from bullrun_engine.services.stock_state import StockState

logger = logging.getLogger(__name__)


class EventEffects:
    """Tracks the active shock on each stock of the round.

    At most one event per stock: a new event supersedes the current one,
    absorbing the old effect into the trend line first.
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self._bus = bus
        self._stocks: Dict[int, StockState] = {}
        self._active: Dict[int, MarketEvent] = {}

    def set_active_stocks(self, stocks: Optional[Iterable[StockState]]) -> None:
        self._stocks = {s.stock_id: s for s in (stocks or [])}

    @property
    def active_event_count(self) -> int:
        return len(self._active)

    def get_active_event(self, stock_id: int) -> Optional[MarketEvent]:
        return self._active.get(stock_id)

    def get_current_force(self, stock_id: int) -> float:
        evt = self._active.get(stock_id)
        if evt is None:
            return 0.0
        return evt.current_force()

    def start_event(self, evt: MarketEvent) -> bool:
        stock = self._stocks.get(evt.target_stock_id)
        if stock is None:
            logger.debug("Skipping %s: stock %s not in round", evt.event_type.value, evt.target_stock_id)
            return False

        if evt.target_stock_id in self._active:
            self._end_event(stock, self._active.pop(evt.target_stock_id))

        target = stock.current_price * evt.phases[0].target_ratio
        stock.apply_event(evt, target)
        self._active[evt.target_stock_id] = evt
        logger.debug(
            "Event %s fired on %s: %+.1f%% over %.1fs (target $%.4f)",
            evt.event_type.value, stock.ticker, evt.magnitude_percent * 100, evt.duration_seconds, target,
        )
        if self._bus is not None:
            self._bus.publish(MarketEventFired(
                event_type=evt.event_type,
                target_stock_id=evt.target_stock_id,
                price_effect_percent=evt.magnitude_percent,
                duration=evt.duration_seconds,
            ))
        return True

    def update_active_events(self, dt: float) -> None:
        for stock_id, evt in list(self._active.items()):
            prev_phase = evt.phase_index
            evt.advance(dt)
            stock = self._stocks.get(stock_id)

            if not evt.is_active:
                del self._active[stock_id]
                self._end_event(stock, evt)
                continue

            if stock is not None and evt.phase_index != prev_phase:
                stock.event_target_price = stock.event_start_price * evt.current_phase.target_ratio
                logger.debug(
                    "Event %s on %s entered phase %d (target $%.4f)",
                    evt.event_type.value, stock.ticker, evt.phase_index, stock.event_target_price,
                )

    def _end_event(self, stock: Optional[StockState], evt: MarketEvent) -> None:
        if stock is not None and stock.active_event is evt:
            stock.clear_event()
        logger.debug("Event %s ended on stock %s", evt.event_type.value, evt.target_stock_id)
        if self._bus is not None:
            self._bus.publish(MarketEventEnded(event_type=evt.event_type, target_stock_id=evt.target_stock_id))

    def clear(self) -> None:
        for stock_id in list(self._active):
            stock = self._stocks.get(stock_id)
            if stock is not None:
                stock.clear_event()
        self._active.clear()
