"""
Market Event Tests
==================
Force curves, live event phases, EventEffects bookkeeping and the
EventScheduler round plan.
Run with: python3 -m pytest tests/test_market_events.py -v

Or directly: python3 tests/test_market_events.py
"""

import math
import sys
import os

import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bullrun_engine.config import (
    DUMP_TARGET_RATIO,
    MAX_RARE_EVENTS_PER_ROUND,
    MIN_EVENT_EFFECT,
    RARE_EVENT_RARITY,
    get_event_config,
    get_events_for_tier,
    get_tier_config,
)
from bullrun_engine.notifications import EventBus, MarketEventEnded, MarketEventFired
from bullrun_engine.schemas import ForceCurve, MarketEventType, StockTier, TrendDirection
from bullrun_engine.services.event_effects import EventEffects
from bullrun_engine.services.event_scheduler import EventScheduler
from bullrun_engine.services.market_events import MarketEvent, cumulative_force, curve_area, force_at
from bullrun_engine.services.stock_state import StockState


DT = 1.0 / 60.0
ALL_TIERS = [StockTier.PENNY, StockTier.LOW_VALUE, StockTier.MID_VALUE, StockTier.BLUE_CHIP]
ACT_FOR_TIER = {StockTier.PENNY: 1, StockTier.LOW_VALUE: 2, StockTier.MID_VALUE: 3, StockTier.BLUE_CHIP: 4}


# ── Helpers ──────────────────────────────────────────────────────────────────

def make_stocks(tier=StockTier.PENNY, n=3, price=None):
    cfg = get_tier_config(tier)
    price = price if price is not None else 0.5 * (cfg.min_price + cfg.max_price)
    return [StockState(i, f"T{i}", tier, price, TrendDirection.NEUTRAL, 0.0) for i in range(n)]


def make_scheduler(seed, tier=StockTier.PENNY, n=3, bus=None):
    stocks = make_stocks(tier, n)
    effects = EventEffects(bus=bus)
    effects.set_active_stocks(stocks)
    scheduler = EventScheduler(effects, rng=np.random.default_rng(seed))
    return scheduler, effects, stocks


def expected_count_bounds(act, tier, multiplier=1.0):
    lo, hi = (7, 10) if act >= 3 else (5, 7)
    mod = get_tier_config(tier).event_frequency_modifier * multiplier
    return max(1, math.floor(lo * mod + 0.5)), max(1, math.floor(hi * mod + 0.5))


# ── Test 1: Force Curves ──────────────────────────────────────────────────────

def test_force_curves_zero_at_ends_peak_at_middle():
    for curve in ForceCurve:
        assert abs(force_at(curve, 0.0)) < 1e-9, f"{curve.value}: f(0) should be 0"
        assert abs(force_at(curve, 1.0)) < 1e-9, f"{curve.value}: f(1) should be 0"
        assert abs(force_at(curve, 0.5) - 1.0) < 1e-9, f"{curve.value}: f(0.5) should be 1"
        u = np.linspace(0.0, 1.0, 101)
        f = force_at(curve, u)
        assert f.min() >= 0.0 and f.max() <= 1.0 + 1e-12
    print("  [Test 1 PASS] Every curve is 0 at both ends and 1.0 at mid-duration")


def test_cumulative_force_matches_numeric_integral():
    n = 20_000
    mid = (np.arange(n) + 0.5) / n
    for curve in ForceCurve:
        numeric = float(np.mean(force_at(curve, mid)))
        assert abs(curve_area(curve) - numeric) < 1e-4, f"{curve.value}: {curve_area(curve)} vs {numeric}"
        partial = float(np.mean(force_at(curve, mid * 0.3)) * 0.3)
        assert abs(float(cumulative_force(curve, 0.3)) - partial) < 1e-4
        grid = cumulative_force(curve, np.linspace(0, 1, 51))
        assert np.all(np.diff(grid) >= 0), f"{curve.value}: integral must be non-decreasing"
    print("  [Test 1b PASS] Closed-form integrals agree with numeric integration")


# ── Test 2: MarketEvent ───────────────────────────────────────────────────────

def test_pump_and_dump_has_two_phases():
    evt = MarketEvent(MarketEventType.PUMP_AND_DUMP, 0, 0.6, 6.0)
    assert len(evt.phases) == 2
    assert evt.force_curve == get_event_config(MarketEventType.PUMP_AND_DUMP).force_curve

    evt.advance(1.8)   # middle of the 3.6s pump
    assert evt.phase_index == 0
    assert abs(evt.current_force() - 1.0) < 1e-9
    evt.advance(3.0)   # 4.8s: middle of the 2.4s dump
    assert evt.phase_index == 1
    assert abs(evt.current_force() - 1.0) < 1e-9
    evt.advance(1.5)
    assert not evt.is_active and evt.current_force() == 0.0
    print("  [Test 2 PASS] PumpAndDump runs a 60% pump phase then a 40% dump phase")


def test_single_phase_event_progress():
    evt = MarketEvent(MarketEventType.EARNINGS_MISS, 1, -0.2, 4.0)
    assert len(evt.phases) == 1 and abs(evt.phases[0].target_ratio - 0.8) < 1e-12
    evt.advance(1.0)
    assert abs(evt.progress - 0.25) < 1e-12
    assert abs(evt.time_remaining - 3.0) < 1e-12
    assert not evt.is_positive
    print("  [Test 2b PASS] Single-phase progress and remaining time")


# ── Test 3: EventEffects ──────────────────────────────────────────────────────

def test_start_event_sets_signed_target_and_publishes():
    bus = EventBus()
    fired = []
    bus.subscribe(MarketEventFired, fired.append)
    effects = EventEffects(bus=bus)
    stocks = make_stocks(StockTier.LOW_VALUE, 2, price=20.0)
    effects.set_active_stocks(stocks)

    assert effects.start_event(MarketEvent(MarketEventType.FLASH_CRASH, 1, -0.25, 3.0))
    assert abs(stocks[1].event_target_price - 15.0) < 1e-9
    assert effects.get_active_event(1) is stocks[1].active_event
    assert effects.get_current_force(1) == 0.0, "force is zero at the very start"
    assert effects.get_current_force(0) == 0.0
    assert effects.active_event_count == 1
    assert len(fired) == 1 and fired[0].price_effect_percent == -0.25 and fired[0].target_stock_id == 1

    assert not effects.start_event(MarketEvent(MarketEventType.FLASH_CRASH, 9, -0.25, 3.0)), "unknown stock"
    print("  [Test 3 PASS] Event target = price × (1 + magnitude); unknown stocks skipped")


def test_expiry_absorbs_into_trend_line():
    bus = EventBus()
    ended = []
    bus.subscribe(MarketEventEnded, ended.append)
    effects = EventEffects(bus=bus)
    stocks = make_stocks(StockTier.MID_VALUE, 1, price=100.0)
    effects.set_active_stocks(stocks)
    effects.start_event(MarketEvent(MarketEventType.MERGER_RUMOR, 0, 0.3, 5.0))

    stocks[0].current_price = 118.0   # as if the price engine had moved it
    for _ in range(int(5.0 / DT) + 2):
        effects.update_active_events(DT)

    assert effects.active_event_count == 0
    assert not stocks[0].has_active_event
    assert stocks[0].trend_line_price == 118.0, "shock is absorbed, not reverted"
    assert stocks[0].segment_time_remaining == 0.0
    assert len(ended) == 1 and ended[0].event_type == MarketEventType.MERGER_RUMOR
    print("  [Test 4 PASS] Expired event folds into the trend line and publishes MarketEventEnded")


def test_new_event_supersedes_active_one():
    effects = EventEffects()
    stocks = make_stocks(StockTier.PENNY, 1, price=2.0)
    effects.set_active_stocks(stocks)
    effects.start_event(MarketEvent(MarketEventType.BULL_RUN, 0, 0.5, 6.0))
    stocks[0].current_price = 2.4
    second = MarketEvent(MarketEventType.SEC_INVESTIGATION, 0, -0.3, 6.0)
    effects.start_event(second)

    assert effects.active_event_count == 1
    assert effects.get_active_event(0) is second
    assert stocks[0].trend_line_price == 2.4, "old event absorbed before the new one starts"
    assert abs(stocks[0].event_target_price - 2.4 * 0.7) < 1e-9
    print("  [Test 5 PASS] Second event on a stock supersedes the first")


def test_pump_and_dump_retargets_at_phase_boundary():
    effects = EventEffects()
    stocks = make_stocks(StockTier.PENNY, 1, price=1.0)
    effects.set_active_stocks(stocks)
    effects.start_event(MarketEvent(MarketEventType.PUMP_AND_DUMP, 0, 0.8, 6.0))
    assert abs(stocks[0].event_target_price - 1.8) < 1e-9

    for _ in range(int(3.7 / DT)):
        effects.update_active_events(DT)
    assert abs(stocks[0].event_target_price - DUMP_TARGET_RATIO) < 1e-9, (
        f"dump phase should target {DUMP_TARGET_RATIO} × pre-event price, got {stocks[0].event_target_price}"
    )
    print("  [Test 6 PASS] PumpAndDump retargets to 80% of the pre-event price")


def test_clear_drops_all_events():
    effects = EventEffects()
    stocks = make_stocks(StockTier.PENNY, 3)
    effects.set_active_stocks(stocks)
    for s in stocks:
        effects.start_event(MarketEvent(MarketEventType.EARNINGS_BEAT, s.stock_id, 0.3, 4.0))
    effects.clear()
    assert effects.active_event_count == 0
    assert not any(s.has_active_event for s in stocks)
    print("  [Test 6b PASS] clear() leaves no active events")


# ── Test 7: Scheduler Plan ────────────────────────────────────────────────────

def test_plan_respects_catalog_and_window():
    for tier in ALL_TIERS:
        act = ACT_FOR_TIER[tier]
        lo, hi = expected_count_bounds(act, tier)
        available = {c.event_type for c in get_events_for_tier(tier)}
        for seed in range(10):
            scheduler, _, stocks = make_scheduler(seed, tier)
            plan = scheduler.initialize_round(1, act, tier, stocks, 60.0)
            assert lo <= len(plan) <= hi, f"{tier.value} seed {seed}: {len(plan)} events not in [{lo}, {hi}]"
            times = [e.fire_time for e in plan]
            assert times == sorted(times)
            assert all(2.0 <= t <= 58.0 for t in times), f"fire times outside buffers: {times}"
            ids = {s.stock_id for s in stocks}
            for e in plan:
                cfg = get_event_config(e.event_type)
                assert e.event_type in available
                assert e.target_stock_id in ids
                assert e.duration == cfg.duration
                low, high = sorted((cfg.min_price_effect, cfg.max_price_effect))
                assert low <= e.magnitude <= high and e.magnitude != 0
    print("  [Test 7 PASS] Plans stay within count bounds, buffers and the tier catalog")


def test_rare_events_capped():
    for seed in range(40):
        scheduler, _, stocks = make_scheduler(seed, StockTier.PENNY)
        scheduler.event_count_multiplier = 3.0
        plan = scheduler.initialize_round(1, 1, StockTier.PENNY, stocks, 60.0)
        rare = [e for e in plan if get_event_config(e.event_type).rarity < RARE_EVENT_RARITY]
        assert len(rare) <= MAX_RARE_EVENTS_PER_ROUND, f"seed {seed}: {len(rare)} rare events"
    print(f"  [Test 8 PASS] At most {MAX_RARE_EVENTS_PER_ROUND} rare events per round")


def test_count_multiplier_strictly_increases_events():
    for tier in ALL_TIERS:
        act = ACT_FOR_TIER[tier]
        for seed in range(5):
            base, _, stocks = make_scheduler(seed, tier)
            doubled, _, stocks2 = make_scheduler(seed, tier)
            doubled.event_count_multiplier = 2.0
            n1 = len(base.initialize_round(1, act, tier, stocks, 60.0))
            n2 = len(doubled.initialize_round(1, act, tier, stocks2, 60.0))
            assert n2 > n1, f"{tier.value} seed {seed}: x2 gave {n2}, x1 gave {n1}"
    print("  [Test 9 PASS] event_count_multiplier=2 schedules strictly more events")


def test_impact_multipliers_scale_magnitudes_and_persist():
    base, _, stocks = make_scheduler(8, StockTier.LOW_VALUE)
    scaled, _, stocks2 = make_scheduler(8, StockTier.LOW_VALUE)
    scaled.impact_multiplier = 1.5
    scaled.positive_impact_multiplier = 1.2
    plan1 = base.initialize_round(1, 2, StockTier.LOW_VALUE, stocks, 60.0)
    plan2 = scaled.initialize_round(1, 2, StockTier.LOW_VALUE, stocks2, 60.0)
    assert len(plan1) == len(plan2)
    for a, b in zip(plan1, plan2):
        assert a.event_type == b.event_type and a.fire_time == b.fire_time
        factor = 1.5 * 1.2 if a.magnitude > 0 else 1.5
        assert abs(b.magnitude - a.magnitude * factor) < 1e-9

    scaled.initialize_round(2, 2, StockTier.LOW_VALUE, stocks2, 60.0)
    assert scaled.impact_multiplier == 1.5
    assert scaled.positive_impact_multiplier == 1.2
    print("  [Test 10 PASS] Impact multipliers scale magnitudes and survive initialize_round")


def test_plan_reproducible_for_seed():
    a, _, sa = make_scheduler(77, StockTier.MID_VALUE)
    b, _, sb = make_scheduler(77, StockTier.MID_VALUE)
    assert a.initialize_round(1, 3, StockTier.MID_VALUE, sa, 60.0) == b.initialize_round(1, 3, StockTier.MID_VALUE, sb, 60.0)
    print("  [Test 11 PASS] Same seed → same plan")


# ── Test 12: Firing ───────────────────────────────────────────────────────────

def test_update_fires_plan_in_order():
    bus = EventBus()
    fired = []
    bus.subscribe(MarketEventFired, fired.append)
    scheduler, effects, stocks = make_scheduler(4, StockTier.PENNY, bus=bus)
    plan = scheduler.initialize_round(1, 1, StockTier.PENNY, stocks, 60.0)

    first = plan[0]
    scheduler.update(first.fire_time - 0.01, DT, stocks, StockTier.PENNY)
    assert scheduler.fired_event_count == 0
    scheduler.update(first.fire_time, DT, stocks, StockTier.PENNY)
    assert scheduler.fired_event_count >= 1
    target = stocks[first.target_stock_id]
    assert target.has_active_event
    assert fired[0].event_type == first.event_type

    scheduler.update(60.0, DT, stocks, StockTier.PENNY)
    assert scheduler.fired_event_count == len(plan)
    assert len(fired) == len(plan), "every plan entry publishes MarketEventFired"
    assert effects.active_event_count <= len(stocks)
    print(f"  [Test 12 PASS] {len(plan)} planned events fired on schedule")


def test_force_fire_random_event():
    scheduler, effects, stocks = make_scheduler(6, StockTier.BLUE_CHIP)
    scheduler.initialize_round(1, 4, StockTier.BLUE_CHIP, stocks, 60.0)
    available = {c.event_type for c in get_events_for_tier(StockTier.BLUE_CHIP)}
    for _ in range(20):
        evt = scheduler.force_fire_random_event()
        assert evt is not None
        assert evt.event_type in available
        assert evt.magnitude_percent != 0
        assert effects.get_active_event(evt.target_stock_id) is evt
    print("  [Test 13 PASS] Force-fired events are catalog events with non-zero effect")


def test_zero_impact_multiplier_keeps_event_effect():
    scheduler, effects, stocks = make_scheduler(9, StockTier.PENNY)
    scheduler.initialize_round(1, 1, StockTier.PENNY, stocks, 60.0)
    scheduler.impact_multiplier = 0.0
    for _ in range(20):
        evt = scheduler.force_fire_random_event()
        cfg = get_event_config(evt.event_type)
        assert abs(evt.magnitude_percent) >= MIN_EVENT_EFFECT, (
            f"{evt.event_type.value}: effect {evt.magnitude_percent} collapsed to zero"
        )
        assert (evt.magnitude_percent > 0) == cfg.is_positive, f"{evt.event_type.value}: sign flipped"
        stock = stocks[evt.target_stock_id]
        assert stock.event_target_price != stock.event_start_price, "target must differ from the start price"

    scheduler.impact_multiplier = 1.0
    scheduler.positive_impact_multiplier = 0.0
    plan = scheduler.initialize_round(2, 1, StockTier.PENNY, stocks, 60.0)
    assert all(abs(e.magnitude) >= MIN_EVENT_EFFECT for e in plan), "planned events keep a non-zero effect"
    print("  [Test 13b PASS] Zero impact multipliers still yield signed non-zero events")


def test_empty_round_is_noop():
    effects = EventEffects()
    scheduler = EventScheduler(effects, rng=np.random.default_rng(0))
    assert scheduler.initialize_round(1, 1, StockTier.PENNY, [], 60.0) == []
    scheduler.update(10.0, DT, [], StockTier.PENNY)
    assert scheduler.force_fire_random_event() is None

    detached = EventScheduler(None, rng=np.random.default_rng(0))
    stocks = make_stocks()
    plan = detached.initialize_round(1, 1, StockTier.PENNY, stocks, 60.0)
    detached.update(60.0, DT, stocks, StockTier.PENNY)
    assert detached.fired_event_count == len(plan)
    assert not any(s.has_active_event for s in stocks)
    print("  [Test 14 PASS] No stocks / no effects are safe no-ops")


def test_short_round_uses_full_window():
    scheduler, _, stocks = make_scheduler(2, StockTier.PENNY)
    plan = scheduler.initialize_round(1, 1, StockTier.PENNY, stocks, 3.0)
    assert plan and all(0.0 <= e.fire_time <= 3.0 for e in plan)
    print("  [Test 15 PASS] Buffers dropped when the round is too short")


# ── Runner ────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    tests = [
        test_force_curves_zero_at_ends_peak_at_middle,
        test_cumulative_force_matches_numeric_integral,
        test_pump_and_dump_has_two_phases,
        test_single_phase_event_progress,
        test_start_event_sets_signed_target_and_publishes,
        test_expiry_absorbs_into_trend_line,
        test_new_event_supersedes_active_one,
        test_pump_and_dump_retargets_at_phase_boundary,
        test_clear_drops_all_events,
        test_plan_respects_catalog_and_window,
        test_rare_events_capped,
        test_count_multiplier_strictly_increases_events,
        test_impact_multipliers_scale_magnitudes_and_persist,
        test_plan_reproducible_for_seed,
        test_update_fires_plan_in_order,
        test_force_fire_random_event,
        test_zero_impact_multiplier_keeps_event_effect,
        test_empty_round_is_noop,
        test_short_round_uses_full_window,
    ]

    passed = 0
    failed = 0
    print("\n" + "="*60)
    print("Market Events - Validation Tests")
    print("="*60)
    for test_fn in tests:
        name = test_fn.__name__
        print(f"\n{name}:")
        try:
            test_fn()
            passed += 1
        except AssertionError as e:
            print(f"  [FAIL] {e}")
            failed += 1
        except Exception as e:
            print(f"  [ERROR] {type(e).__name__}: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("\n" + "="*60)
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    print("="*60)
    sys.exit(0 if failed == 0 else 1)
