from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from bullrun_engine.config import DUMP_TARGET_RATIO, PUMP_PHASE_FRACTION, get_event_config
from bullrun_engine.schemas import ForceCurve, MarketEventType
from bullrun_engine.utils.numeric_safety import safe_ratio


# ── Force curves ──
# f(u) on u ∈ [0, 1]: f(0) = f(1) = 0, f(0.5) = 1.
# F(u) = ∫₀ᵘ f(s) ds, used by the shadow simulator to integrate an event in closed form.

def force_at(curve: ForceCurve, u):
    """Instantaneous force at normalized progress u (scalar or array)."""
    u = np.clip(u, 0.0, 1.0)
    if curve == ForceCurve.TRIANGLE:
        f = 1.0 - np.abs(2.0 * u - 1.0)
    elif curve == ForceCurve.SINE:
        f = np.sin(np.pi * u)
    elif curve == ForceCurve.PLATEAU:
        f = np.minimum(1.0, np.minimum(4.0 * u, 4.0 * (1.0 - u)))
    elif curve == ForceCurve.BELL:
        f = np.sin(np.pi * u) ** 2
    else:
        raise ValueError(f"Unknown force curve: {curve}")
    return np.maximum(f, 0.0)


def cumulative_force(curve: ForceCurve, u):
    """Integral of force_at from 0 to u (scalar or array)."""
    u = np.clip(u, 0.0, 1.0)
    if curve == ForceCurve.TRIANGLE:
        return np.where(u <= 0.5, u * u, 2.0 * u - u * u - 0.5)
    if curve == ForceCurve.SINE:
        return (1.0 - np.cos(np.pi * u)) / np.pi
    if curve == ForceCurve.PLATEAU:
        return np.where(
            u <= 0.25,
            2.0 * u * u,
            np.where(u <= 0.75, 0.125 + (u - 0.25), 4.0 * u - 2.0 * u * u - 1.25),
        )
    if curve == ForceCurve.BELL:
        return u / 2.0 - np.sin(2.0 * np.pi * u) / (4.0 * np.pi)
    raise ValueError(f"Unknown force curve: {curve}")


@dataclass(frozen=True)
class EventPhase:
    duration_fraction: float   # share of the event's total duration
    target_ratio: float        # target price / price when the event started


def build_phases(event_type: MarketEventType, magnitude: float) -> Tuple[EventPhase, ...]:
    if event_type == MarketEventType.PUMP_AND_DUMP:
        return (
            EventPhase(PUMP_PHASE_FRACTION, 1.0 + magnitude),
            EventPhase(1.0 - PUMP_PHASE_FRACTION, DUMP_TARGET_RATIO),
        )
    return (EventPhase(1.0, 1.0 + magnitude),)


class MarketEvent:
    """A live shock on one stock; active while elapsed_time < duration_seconds."""

    def __init__(
        self,
        event_type: MarketEventType,
        target_stock_id: int,
        magnitude_percent: float,
        duration_seconds: float,
        force_curve: Optional[ForceCurve] = None,
    ):
        self.event_type = event_type
        self.target_stock_id = target_stock_id
        self.magnitude_percent = magnitude_percent
        self.duration_seconds = duration_seconds
        self.force_curve = force_curve if force_curve is not None else get_event_config(event_type).force_curve
        self.phases: List[EventPhase] = list(build_phases(event_type, magnitude_percent))
        self.elapsed_time = 0.0

    def __repr__(self):
        return (
            f"MarketEvent({self.event_type.value}, stock={self.target_stock_id}, "
            f"magnitude={self.magnitude_percent:+.3f}, {self.elapsed_time:.2f}/{self.duration_seconds:.2f}s)"
        )

    @property
    def is_active(self) -> bool:
        return self.elapsed_time < self.duration_seconds

    @property
    def is_positive(self) -> bool:
        return self.magnitude_percent > 0

    @property
    def progress(self) -> float:
        return min(1.0, max(0.0, safe_ratio(self.elapsed_time, self.duration_seconds, default=1.0)))

    @property
    def time_remaining(self) -> float:
        return max(0.0, self.duration_seconds - self.elapsed_time)

    def _phase_bounds(self) -> Tuple[int, float, float]:
        """(index, start, length) of the phase containing the current progress."""
        start = 0.0
        p = self.progress
        for i, phase in enumerate(self.phases):
            end = start + phase.duration_fraction
            if p < end or i == len(self.phases) - 1:
                return i, start, phase.duration_fraction
            start = end
        return 0, 0.0, 1.0

    @property
    def phase_index(self) -> int:
        return self._phase_bounds()[0]

    @property
    def current_phase(self) -> EventPhase:
        return self.phases[self.phase_index]

    @property
    def phase_progress(self) -> float:
        _, start, length = self._phase_bounds()
        return min(1.0, max(0.0, safe_ratio(self.progress - start, length, default=1.0)))

    def current_force(self) -> float:
        if not self.is_active:
            return 0.0
        return float(force_at(self.force_curve, self.phase_progress))

    def advance(self, dt: float) -> None:
        self.elapsed_time += dt


def event_fraction(curve: ForceCurve, phase_seconds: float, u, pull_rate: float):
    """Share of the gap to target closed after progress u through one phase.

    Solves dP/dt = (T - P) * f(t / D) * rate exactly.
    """
    return 1.0 - np.exp(-pull_rate * phase_seconds * cumulative_force(curve, u))


def curve_area(curve: ForceCurve) -> float:
    return float(cumulative_force(curve, 1.0))
