"""Full chaos map assembly and PNG export.

render_map() splits the image into tiles, feeds them to a
WorkerCoordinator and pastes results back by offset as they arrive.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

import numpy as np
import PIL.Image

from chaosmap.compute import (
    MapSlice, RenderConfig, TileRequest, TileResult, split_tiles, validate_basis,
)
from chaosmap.worker import WorkerCoordinator
from simulation import PendulumState

logger = logging.getLogger(__name__)


def render_map(
    basis: PendulumState,
    map_slice: MapSlice,
    config: RenderConfig,
    coordinator: WorkerCoordinator | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
) -> np.ndarray | None:
    """Render the full resolution x resolution chaos map.

    Args:
        basis: State supplying the non-mapped fields.
        map_slice: Mapped dimensions and ranges.
        config: Render options (resolution, tile_size, workers, ...).
        coordinator: Pool to use. If None, a pool of config.workers
            threads is created for this call and closed afterwards.
        progress_callback: Called with (tiles_done, total_tiles) from
            worker threads as tiles complete.

    Returns:
        (resolution, resolution, 4) uint8 RGBA image, or None if the render
        was stopped before every tile completed.

    Raises:
        ConfigError: if any input is invalid (before dispatching anything).
    """
    config.validate()
    map_slice.validate()
    validate_basis(basis)

    if coordinator is None:
        with WorkerCoordinator(config.workers) as pool:
            return render_map(basis, map_slice, config, pool, progress_callback)

    res = config.resolution
    tiles = split_tiles(res, config.tile_size)
    total = len(tiles)
    image = np.zeros((res, res, 4), dtype=np.uint8)

    lock = threading.Lock()
    state = {"done": 0, "cancelled": 0}

    def on_complete(result: TileResult) -> None:
        with lock:
            if result.cancelled:
                state["cancelled"] += 1
            else:
                oy, ox = result.offset_y, result.offset_x
                image[oy:oy + result.height, ox:ox + result.width] = result.as_image()
            state["done"] += 1
            done = state["done"]
        if progress_callback is not None:
            progress_callback(done, total)

    logger.info(
        "Rendering %dx%d map in %d tiles on %d workers",
        res, res, total, coordinator.size,
    )
    t0 = time.monotonic()

    for offset_x, offset_y, width, height in tiles:
        if coordinator.stopped:
            break
        request = TileRequest(
            offset_x, offset_y, width, height, res, basis, map_slice, config,
        )
        coordinator.submit_tile(request, on_complete)

    coordinator.wait_idle()

    if coordinator.stopped or state["cancelled"] or state["done"] < total:
        logger.info(
            "Render stopped after %d/%d tiles", state["done"] - state["cancelled"], total,
        )
        return None

    logger.info("Map complete in %.1f s", time.monotonic() - t0)
    return image


def save_png(path: str | Path, image: np.ndarray) -> Path:
    """Write an (H, W, 4) uint8 RGBA image as PNG. Returns the path."""
    path = Path(path)
    if image.ndim != 3 or image.shape[2] != 4 or image.dtype != np.uint8:
        raise ValueError(
            f"Expected (H, W, 4) uint8 image, got {image.shape} {image.dtype}"
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    PIL.Image.fromarray(image).save(path)
    logger.info("Saved chaos map to %s", path)
    return path
