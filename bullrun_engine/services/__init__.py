from bullrun_engine.services.event_effects import EventEffects
from bullrun_engine.services.event_scheduler import EventScheduler
from bullrun_engine.services.market_events import MarketEvent, cumulative_force, force_at
from bullrun_engine.services.price_simulator import PriceSimulator, SlopeDistribution, sample_slope, slope_distribution
from bullrun_engine.services.shadow_simulator import ShadowSimulator
from bullrun_engine.services.stock_state import StockState

__all__ = [
    "EventEffects",
    "EventScheduler",
    "MarketEvent",
    "PriceSimulator",
    "ShadowSimulator",
    "SlopeDistribution",
    "StockState",
    "cumulative_force",
    "force_at",
    "sample_slope",
    "slope_distribution",
]
