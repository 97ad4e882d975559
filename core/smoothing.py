"""Per-frame number smoothing. No shared state; callable from any render loop."""


def ease_out_cubic(t: float) -> float:
    return 1 - (1 - t) ** 3


def interpolate(start: float, end: float, elapsed_ms: float, duration_ms: float) -> float:
    if duration_ms <= 0:
        return end
    t = max(0.0, min(1.0, elapsed_ms / duration_ms))
    return start + (end - start) * ease_out_cubic(t)
