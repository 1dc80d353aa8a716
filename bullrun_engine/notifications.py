from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Type

from bullrun_engine.schemas import MarketEventType


@dataclass(frozen=True)
class PriceUpdated:
    stock_id: int
    previous_price: float
    new_price: float
    delta_time: float


@dataclass(frozen=True)
class MarketEventFired:
    event_type: MarketEventType
    target_stock_id: int
    price_effect_percent: float
    duration: float


@dataclass(frozen=True)
class MarketEventEnded:
    event_type: MarketEventType
    target_stock_id: int


Handler = Callable[[object], None]


class EventBus:
    """In-process publish/subscribe bus, one per round owner.

    Handlers run synchronously in subscription order. Publishing a message
    type nobody listens to is a no-op.
    """

    def __init__(self):
        self._handlers: DefaultDict[type, List[Handler]] = defaultdict(list)

    def subscribe(self, message_type: Type, handler: Handler) -> None:
        self._handlers[message_type].append(handler)

    def publish(self, message) -> None:
        for handler in list(self._handlers.get(type(message), ())):
            handler(message)

    def clear(self) -> None:
        self._handlers.clear()
