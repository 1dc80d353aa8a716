import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Union

from bullrun_engine.schemas import (
    ForceCurve,
    MarketEventConfig,
    MarketEventType,
    StockDefinition,
    StockSector,
    StockTier,
    TierConfig,
)

# ── Round / clock ──
ROUND_DURATION_SECONDS = 60.0
FRAME_RATE = 60
HARD_PRICE_FLOOR = 0.01

# Act number (1-based) → tier traded during that act
ACT_TIERS: Dict[int, StockTier] = {
    1: StockTier.PENNY,
    2: StockTier.LOW_VALUE,
    3: StockTier.MID_VALUE,
    4: StockTier.BLUE_CHIP,
}

# ── Price engine tuning ──
# All slopes are expressed as a fraction of the current price per second.
NOISE_RAMP_SECONDS = 2.0             # noise fades in over this much trading time
SEGMENT_DURATION_RANGE = (0.5, 1.5)  # segment length = U(range) / noise_frequency
NOISE_MAGNITUDE_RANGE = (0.5, 1.0)   # |noise slope| = U(range) * noise_amplitude
MIN_SLOPE_PCT = 0.002                # movement floor: 0.2% of price per second
FLAT_CHANGE_PCT = 0.00001            # a frame moving less than 0.001% counts as flat

# Mean reversion: drift pull = min(GAIN * speed, MAX) * displacement
REVERSION_PULL_GAIN = 3.0
MAX_PULL_RATE = 0.8                  # < 1 so one segment can never carry price past the line
# Sign bias: how strongly displacement tilts the coin toward the trend line
SIGN_BIAS_GAIN = 10.0
MAX_SIGN_BIAS = 0.8                  # at most 90/10 odds

# Event pull: per-second fraction of the remaining gap closed at force 1.0
EVENT_PULL_RATE = 1.0

# Trend direction odds when rolling a new stock: 40% bull, 40% bear, 20% neutral
TREND_DIRECTION_WEIGHTS = (0.40, 0.40, 0.20)

# ── Event scheduler ──
MIN_EVENTS_EARLY_ROUNDS = 5
MAX_EVENTS_EARLY_ROUNDS = 7
MIN_EVENTS_LATE_ROUNDS = 7
MAX_EVENTS_LATE_ROUNDS = 10
LATE_ROUND_FIRST_ACT = 3
EARLY_BUFFER_SECONDS = 2.0
LATE_BUFFER_SECONDS = 2.0
MAX_RARE_EVENTS_PER_ROUND = 2
RARE_EVENT_RARITY = 0.2              # rarity below this counts as a rare event
MIN_EVENT_EFFECT = 0.01              # scaled magnitudes never shrink below 1%

# PumpAndDump: pump for 60% of the duration, then dump to 80% of the pre-event price
PUMP_PHASE_FRACTION = 0.6
DUMP_TARGET_RATIO = 0.80

# ── Shadow simulator ──
SHADOW_SAMPLE_STEP_SECONDS = 0.25
SHADOW_NOISE_ENVELOPE = 0.5          # extrema widened by this many noise amplitudes


# ── Tier table ──
# Penny: very high volatility, slow reversion, frequent events.
# Blue Chip: low volatility, fast reversion, rare events.
_RAW_TIER_CONFIGS: Dict[str, Dict[str, float]] = {
    "penny": {
        "min_price": 0.10, "max_price": 5.0,
        "base_volatility": 0.15,
        "min_trend_strength": 0.004, "max_trend_strength": 0.015,
        "min_stocks_per_round": 3, "max_stocks_per_round": 4,
        "noise_amplitude": 0.050, "noise_frequency": 3.0,
        "mean_reversion_speed": 0.05,
        "event_frequency_modifier": 1.5,
    },
    "low_value": {
        "min_price": 5.0, "max_price": 50.0,
        "base_volatility": 0.10,
        "min_trend_strength": 0.003, "max_trend_strength": 0.012,
        "min_stocks_per_round": 3, "max_stocks_per_round": 4,
        "noise_amplitude": 0.035, "noise_frequency": 2.5,
        "mean_reversion_speed": 0.15,
        "event_frequency_modifier": 1.2,
    },
    "mid_value": {
        "min_price": 50.0, "max_price": 500.0,
        "base_volatility": 0.06,
        "min_trend_strength": 0.002, "max_trend_strength": 0.008,
        "min_stocks_per_round": 2, "max_stocks_per_round": 3,
        "noise_amplitude": 0.025, "noise_frequency": 2.0,
        "mean_reversion_speed": 0.30,
        "event_frequency_modifier": 1.0,
    },
    "blue_chip": {
        "min_price": 500.0, "max_price": 5000.0,
        "base_volatility": 0.03,
        "min_trend_strength": 0.001, "max_trend_strength": 0.005,
        "min_stocks_per_round": 2, "max_stocks_per_round": 3,
        "noise_amplitude": 0.012, "noise_frequency": 1.5,
        "mean_reversion_speed": 0.60,
        "event_frequency_modifier": 0.5,
    },
}


def load_tier_configs(raw: Mapping[str, Mapping[str, float]]) -> Dict[StockTier, TierConfig]:
    """Build a validated tier table; raises pydantic.ValidationError on bad values."""
    configs = {}
    for key, values in raw.items():
        tier = StockTier(str(key).lower().strip())
        configs[tier] = TierConfig(**values)
    missing = [t.value for t in StockTier if t not in configs]
    if missing:
        raise ValueError(f"Tier table is missing tiers: {', '.join(missing)}")
    return configs


def load_tier_configs_file(path: Union[str, Path]) -> Dict[StockTier, TierConfig]:
    with open(path, "r", encoding="utf-8") as f:
        return load_tier_configs(json.load(f))


TIER_CONFIGS: Dict[StockTier, TierConfig] = load_tier_configs(_RAW_TIER_CONFIGS)


def get_tier_config(tier: StockTier) -> TierConfig:
    return TIER_CONFIGS[tier]


def get_tier_for_act(act: int) -> StockTier:
    # Acts past the last configured one keep trading the top tier
    if act <= 1:
        return ACT_TIERS[1]
    return ACT_TIERS.get(act, ACT_TIERS[max(ACT_TIERS)])


# ── Event catalog ──
_ALL_TIERS = (StockTier.PENNY, StockTier.LOW_VALUE, StockTier.MID_VALUE, StockTier.BLUE_CHIP)

EVENT_CATALOG: Dict[MarketEventType, MarketEventConfig] = {
    cfg.event_type: cfg
    for cfg in (
        MarketEventConfig(
            event_type=MarketEventType.EARNINGS_BEAT,
            min_price_effect=0.25, max_price_effect=0.50, duration=4.0,
            tier_availability=_ALL_TIERS, rarity=0.50, force_curve=ForceCurve.SINE,
        ),
        MarketEventConfig(
            event_type=MarketEventType.EARNINGS_MISS,
            min_price_effect=-0.15, max_price_effect=-0.30, duration=4.0,
            tier_availability=_ALL_TIERS, rarity=0.50, force_curve=ForceCurve.SINE,
        ),
        MarketEventConfig(
            event_type=MarketEventType.PUMP_AND_DUMP,
            min_price_effect=0.45, max_price_effect=0.90, duration=6.0,
            tier_availability=(StockTier.PENNY,), rarity=0.30, force_curve=ForceCurve.TRIANGLE,
        ),
        MarketEventConfig(
            event_type=MarketEventType.SEC_INVESTIGATION,
            min_price_effect=-0.20, max_price_effect=-0.40, duration=6.0,
            tier_availability=(StockTier.PENNY, StockTier.LOW_VALUE), rarity=0.30,
            force_curve=ForceCurve.PLATEAU,
        ),
        MarketEventConfig(
            event_type=MarketEventType.MERGER_RUMOR,
            min_price_effect=0.30, max_price_effect=0.60, duration=5.0,
            tier_availability=(StockTier.MID_VALUE, StockTier.BLUE_CHIP), rarity=0.30,
            force_curve=ForceCurve.SINE,
        ),
        MarketEventConfig(
            event_type=MarketEventType.MARKET_CRASH,
            min_price_effect=-0.20, max_price_effect=-0.40, duration=6.0,
            tier_availability=_ALL_TIERS, rarity=0.15, force_curve=ForceCurve.BELL,
        ),
        MarketEventConfig(
            event_type=MarketEventType.BULL_RUN,
            min_price_effect=0.35, max_price_effect=0.65, duration=6.0,
            tier_availability=_ALL_TIERS, rarity=0.15, force_curve=ForceCurve.PLATEAU,
        ),
        MarketEventConfig(
            event_type=MarketEventType.FLASH_CRASH,
            min_price_effect=-0.15, max_price_effect=-0.30, duration=3.0,
            tier_availability=(StockTier.LOW_VALUE, StockTier.MID_VALUE), rarity=0.25,
            force_curve=ForceCurve.BELL,
        ),
        MarketEventConfig(
            event_type=MarketEventType.SHORT_SQUEEZE,
            min_price_effect=0.45, max_price_effect=1.00, duration=3.0,
            tier_availability=_ALL_TIERS, rarity=0.25, force_curve=ForceCurve.TRIANGLE,
        ),
    )
}


def get_event_config(event_type: MarketEventType) -> MarketEventConfig:
    return EVENT_CATALOG[event_type]


def get_events_for_tier(tier: StockTier) -> List[MarketEventConfig]:
    return [cfg for cfg in EVENT_CATALOG.values() if tier in cfg.tier_availability]


# ── Named stock pools ──
STOCK_POOLS: Dict[StockTier, List[StockDefinition]] = {
    StockTier.PENNY: [
        StockDefinition(ticker="MEME", display_name="MemeCoin Inc.", tier=StockTier.PENNY, sector=StockSector.CRYPTO),
        StockDefinition(ticker="YOLO", display_name="YOLO Ventures", tier=StockTier.PENNY),
        StockDefinition(ticker="PUMP", display_name="PumpCo Holdings", tier=StockTier.PENNY),
        StockDefinition(ticker="FOMO", display_name="FOMO Financial", tier=StockTier.PENNY, sector=StockSector.FINANCE),
        StockDefinition(ticker="MOON", display_name="Moonshot Labs", tier=StockTier.PENNY, sector=StockSector.TECH),
        StockDefinition(ticker="HODL", display_name="HODL Corp", tier=StockTier.PENNY, sector=StockSector.CRYPTO),
        StockDefinition(ticker="DOGE", display_name="DogeChain Ltd", tier=StockTier.PENNY, sector=StockSector.CRYPTO),
        StockDefinition(ticker="RICK", display_name="Rick's Picks", tier=StockTier.PENNY, sector=StockSector.CONSUMER),
    ],
    StockTier.LOW_VALUE: [
        StockDefinition(ticker="BREW", display_name="BrewTech Distillery", tier=StockTier.LOW_VALUE, sector=StockSector.CONSUMER),
        StockDefinition(ticker="GEAR", display_name="GearWorks Mfg", tier=StockTier.LOW_VALUE, sector=StockSector.INDUSTRIAL),
        StockDefinition(ticker="BOLT", display_name="Bolt Electric", tier=StockTier.LOW_VALUE, sector=StockSector.ENERGY),
        StockDefinition(ticker="NEON", display_name="Neon Dynamics", tier=StockTier.LOW_VALUE, sector=StockSector.TECH),
        StockDefinition(ticker="GRID", display_name="GridLine Power", tier=StockTier.LOW_VALUE, sector=StockSector.ENERGY),
        StockDefinition(ticker="FLUX", display_name="Flux Capacitors", tier=StockTier.LOW_VALUE, sector=StockSector.INDUSTRIAL),
    ],
    StockTier.MID_VALUE: [
        StockDefinition(ticker="NOVA", display_name="Nova Systems", tier=StockTier.MID_VALUE, sector=StockSector.TECH),
        StockDefinition(ticker="VOLT", display_name="Volt Power Corp", tier=StockTier.MID_VALUE, sector=StockSector.ENERGY),
        StockDefinition(ticker="MDCR", display_name="MedCore Health", tier=StockTier.MID_VALUE, sector=StockSector.HEALTH),
        StockDefinition(ticker="TRDE", display_name="TradeLane Logistics", tier=StockTier.MID_VALUE, sector=StockSector.INDUSTRIAL),
        StockDefinition(ticker="CHIP", display_name="ChipForge Semi", tier=StockTier.MID_VALUE, sector=StockSector.TECH),
        StockDefinition(ticker="SOLR", display_name="Solar Flare Energy", tier=StockTier.MID_VALUE, sector=StockSector.ENERGY),
        StockDefinition(ticker="GENX", display_name="GenX Biotech", tier=StockTier.MID_VALUE, sector=StockSector.HEALTH),
    ],
    StockTier.BLUE_CHIP: [
        StockDefinition(ticker="APEX", display_name="Apex Global", tier=StockTier.BLUE_CHIP, sector=StockSector.FINANCE),
        StockDefinition(ticker="TITN", display_name="Titan Industries", tier=StockTier.BLUE_CHIP, sector=StockSector.INDUSTRIAL),
        StockDefinition(ticker="OMNI", display_name="OmniCorp International", tier=StockTier.BLUE_CHIP, sector=StockSector.TECH),
        StockDefinition(ticker="VALT", display_name="Vault Financial", tier=StockTier.BLUE_CHIP, sector=StockSector.FINANCE),
        StockDefinition(ticker="CRWN", display_name="Crown Pharma", tier=StockTier.BLUE_CHIP, sector=StockSector.HEALTH),
        StockDefinition(ticker="FRGE", display_name="Forge Dynamics", tier=StockTier.BLUE_CHIP, sector=StockSector.INDUSTRIAL),
    ],
}


def get_stock_pool(tier: StockTier) -> List[StockDefinition]:
    return STOCK_POOLS[tier]


def configure_logging(*, level: int = logging.INFO) -> None:
    """Configure a simple root logger that writes to stderr.

    Library modules only create loggers; the embedding game or test harness
    decides whether anything is printed.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        root.setLevel(level)
