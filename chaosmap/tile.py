"""Tile renderer: the per-pixel map -> classify -> color pipeline.

Each pixel builds its baseline/perturbed pair with map_pixel(), runs the
compiled divergence classifier (which releases the GIL) and writes one
RGBA8 pixel. The cancel_check callable is polled before every pixel, so
a stop request takes effect within one pixel's integration.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np

from chaosmap.coloring import divergence_color
from chaosmap.compute import (
    MapSlice, RenderConfig, TileRequest, TileResult, map_pixel,
)
from simulation import PendulumState, simulate_to_divergence

logger = logging.getLogger(__name__)


def _fill_pixels(
    pixels: np.ndarray,
    offset_x: int,
    offset_y: int,
    width: int,
    height: int,
    resolution: int,
    basis: PendulumState,
    map_slice: MapSlice,
    config: RenderConfig,
    cancel_check: Callable[[], bool] | None,
) -> bool:
    """Render into *pixels*. Returns False if cancelled part way through."""
    integ = config.integrator_config
    integrator = integ.integrator_code
    perturbation = config.perturbation
    palette = config.color_mapping
    cycle_period = config.cycle_period

    for py in range(height):
        ny = (offset_y + py) / resolution
        for px in range(width):
            if cancel_check is not None and cancel_check():
                return False

            nx = (offset_x + px) / resolution
            s1, s2 = map_pixel(nx, ny, basis, map_slice, perturbation)

            _, diverged, divergence_time = simulate_to_divergence(
                float(s1.theta1), float(s1.theta2), float(s1.omega1), float(s1.omega2),
                float(s2.theta1), float(s2.theta2), float(s2.omega1), float(s2.omega2),
                float(s1.l1), float(s1.l2), float(s1.m1), float(s1.m2),
                integ.g, integ.dt, integ.max_iter, integ.threshold, integrator,
            )
            r, g, b = divergence_color(
                diverged, divergence_time, integ.max_iter, palette, cycle_period,
            )

            idx = (py * width + px) * 4
            pixels[idx] = r
            pixels[idx + 1] = g
            pixels[idx + 2] = b
            pixels[idx + 3] = 255

    return True


def render_tile(
    offset_x: int,
    offset_y: int,
    width: int,
    height: int,
    resolution: int,
    basis: PendulumState,
    map_slice: MapSlice,
    config: RenderConfig,
    cancel_check: Callable[[], bool] | None = None,
) -> np.ndarray:
    """Render one tile synchronously.

    Pixel (px, py) samples the grid at
    ((offset_x + px) / resolution, (offset_y + py) / resolution).

    Args:
        offset_x, offset_y: Tile origin in image pixels.
        width, height: Tile size in pixels.
        resolution: Side length of the full image.
        basis: State supplying the six non-mapped fields.
        map_slice: Mapped dimensions and their affine ranges.
        config: Render options.
        cancel_check: Optional callable returning True to abort.

    Returns:
        Flat (width*height*4,) uint8 RGBA buffer, row-major. If cancelled,
        the buffer is only partly filled and must be discarded.

    Raises:
        ConfigError: if the inputs are invalid (checked before any work).
    """
    request = TileRequest(
        offset_x, offset_y, width, height, resolution, basis, map_slice, config,
    )
    return render_request(request, cancel_check).pixels


def render_request(
    request: TileRequest,
    cancel_check: Callable[[], bool] | None = None,
) -> TileResult:
    """Render a TileRequest into a TileResult carrying the cancelled flag."""
    request.validate()

    pixels = np.zeros(request.width * request.height * 4, dtype=np.uint8)
    completed = _fill_pixels(
        pixels,
        request.offset_x, request.offset_y,
        request.width, request.height,
        request.resolution,
        request.basis, request.map_slice, request.config,
        cancel_check,
    )
    if not completed:
        logger.debug(
            "Tile (%d, %d) cancelled", request.offset_x, request.offset_y,
        )

    return TileResult(
        offset_x=request.offset_x,
        offset_y=request.offset_y,
        width=request.width,
        height=request.height,
        pixels=pixels,
        cancelled=not completed,
    )
