"""Color mapping: divergence time to RGB via five palettes.

Every channel is floored, never rounded, so a palette evaluated at the
same divergence time always yields the same bytes.
"""

import math

PALETTE_RAINBOW = 0
PALETTE_HEATMAP = 1
PALETTE_VIRIDIS = 2
PALETTE_GRAYSCALE = 3
PALETTE_CYCLIC = 4

PALETTE_NAMES = {
    "rainbow": PALETTE_RAINBOW,
    "heatmap": PALETTE_HEATMAP,
    "viridis": PALETTE_VIRIDIS,
    "grayscale": PALETTE_GRAYSCALE,
    "cyclic": PALETTE_CYCLIC,
}

BLACK = (0, 0, 0)


def hsl_to_rgb(h: float, s: float, l: float) -> tuple[int, int, int]:
    """Convert HSL (hue in degrees) to floored 0-255 RGB.

    Standard 6-sector hue decomposition; hue wraps at 360.
    """
    h = h % 360.0
    c = (1.0 - abs(2.0 * l - 1.0)) * s
    x = c * (1.0 - abs((h / 60.0) % 2.0 - 1.0))
    m = l - c / 2.0

    sector = int(h // 60.0)
    if sector == 0:
        r, g, b = c, x, 0.0
    elif sector == 1:
        r, g, b = x, c, 0.0
    elif sector == 2:
        r, g, b = 0.0, c, x
    elif sector == 3:
        r, g, b = 0.0, x, c
    elif sector == 4:
        r, g, b = x, 0.0, c
    else:
        r, g, b = c, 0.0, x

    return (
        math.floor((r + m) * 255),
        math.floor((g + m) * 255),
        math.floor((b + m) * 255),
    )


def heatmap_color(t: float) -> tuple[int, int, int]:
    """Black -> red -> yellow -> white, one channel ramping per third of t."""
    r = min(255, math.floor(t * 3 * 255))
    g = 0 if t < 1 / 3 else min(255, math.floor((t - 1 / 3) * 3 * 255))
    b = 0 if t < 2 / 3 else min(255, math.floor((t - 2 / 3) * 3 * 255))
    return r, g, b


def viridis_color(t: float) -> tuple[int, int, int]:
    """Quadratic viridis approximation (not a LUT), clamped to 255."""
    r = math.floor(68 + 72 * t + 109 * t * t)
    g = math.floor(1 + 128 * t + 120 * t * t)
    b = math.floor(84 + 53 * t + 119 * t * t)
    return min(255, r), min(255, g), min(255, b)


def grayscale_color(t: float) -> tuple[int, int, int]:
    v = math.floor(t * 255)
    return v, v, v


def divergence_color(
    diverged: bool,
    divergence_time: int,
    max_iter: int,
    palette: int,
    cycle_period: int,
) -> tuple[int, int, int]:
    """Map a classification result to an RGB triple.

    Args:
        diverged: Whether the pair diverged before max_iter.
        divergence_time: Iteration of divergence (ignored if not diverged).
        max_iter: Iteration cap, normalizes divergence_time to t in [0, 1].
        palette: 0 rainbow, 1 heatmap, 2 viridis, 3 grayscale, 4 cyclic.
        cycle_period: Period in iterations of the cyclic palette.

    Returns:
        (r, g, b) ints in [0, 255]. Non-divergent points are black in
        every palette.

    Raises:
        ValueError: for an unknown palette id.
    """
    if isinstance(palette, bool) or palette not in PALETTE_NAMES.values():
        raise ValueError(f"Unknown palette id {palette!r}")
    if not diverged:
        return BLACK

    t = divergence_time / max_iter

    if palette == PALETTE_RAINBOW:
        return hsl_to_rgb(t * 360.0, 1.0, 0.5)
    if palette == PALETTE_HEATMAP:
        return heatmap_color(t)
    if palette == PALETTE_VIRIDIS:
        return viridis_color(t)
    if palette == PALETTE_GRAYSCALE:
        return grayscale_color(t)
    # Cyclic: hue repeats every cycle_period iterations
    return hsl_to_rgb((divergence_time % cycle_period) / cycle_period * 360.0, 1.0, 0.5)
