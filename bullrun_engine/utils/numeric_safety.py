import math

# Denominators smaller than this are treated as zero
_EPSILON = 1e-9


def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    """numerator / denominator, or `default` when the denominator is ~0 or the result is not finite."""
    if not math.isfinite(denominator) or abs(denominator) < _EPSILON:
        return default
    result = numerator / denominator
    if not math.isfinite(result):
        return default
    return result


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def sanitize_floats(obj):
    """Recursively replace NaN/Infinity with None in nested structures."""
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return obj
    if isinstance(obj, dict):
        return {k: sanitize_floats(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_floats(v) for v in obj]
    return obj
