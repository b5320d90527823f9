"""Tests for chaosmap/image.py: map assembly and PNG export."""

import numpy as np
import PIL.Image
import pytest

from chaosmap.compute import ConfigError, MapSlice, RenderConfig
from chaosmap.image import render_map, save_png
from chaosmap.tile import render_tile
from chaosmap.worker import WorkerCoordinator
from simulation import PendulumState

SLICE = MapSlice.from_ranges("theta1", "theta2", -3.14, 3.14, -3.14, 3.14)
CONFIG = RenderConfig(resolution=6, max_iter=150, tile_size=4, workers=2,
                      perturb_scale=1000.0)


class TestRenderMap:
    """Test tile assembly into the full image."""

    def test_assembled_equals_single_tile(self):
        image = render_map(PendulumState(), SLICE, CONFIG)
        assert image.shape == (6, 6, 4)
        whole = render_tile(0, 0, 6, 6, 6, PendulumState(), SLICE, CONFIG)
        assert np.array_equal(image, whole.reshape(6, 6, 4))

    def test_progress_reaches_total(self):
        calls = []
        render_map(PendulumState(), SLICE, CONFIG,
                   progress_callback=lambda done, total: calls.append((done, total)))
        # 6x6 with tile_size 4 is a 2x2 grid of clipped tiles
        assert len(calls) == 4
        assert max(calls) == (4, 4)

    def test_uses_given_coordinator(self):
        with WorkerCoordinator(n_workers=1) as pool:
            image = render_map(PendulumState(), SLICE, CONFIG, coordinator=pool)
            assert pool.running
        assert image is not None

    def test_coordinator_reusable_after_close(self):
        pool = WorkerCoordinator(n_workers=2)
        try:
            first = render_map(PendulumState(), SLICE, CONFIG, coordinator=pool)
            pool.close()
            second = render_map(PendulumState(), SLICE, CONFIG, coordinator=pool)
        finally:
            pool.close()
        assert second is not None
        assert np.array_equal(first, second)

    def test_stopped_coordinator_returns_none(self):
        with WorkerCoordinator(n_workers=1) as pool:
            pool.stop()
            assert render_map(PendulumState(), SLICE, CONFIG, coordinator=pool) is None

    def test_invalid_slice_raises(self):
        bad = MapSlice.from_ranges("m1", "m2", -1.0, 1.0, 0.5, 1.0)
        with pytest.raises(ConfigError):
            render_map(PendulumState(), bad, CONFIG)


class TestSavePng:

    def test_round_trip(self, tmp_path):
        rng = np.random.default_rng(0)
        image = rng.integers(0, 256, size=(5, 7, 4), dtype=np.uint8)
        path = save_png(tmp_path / "out" / "map.png", image)
        assert path.exists()
        with PIL.Image.open(path) as loaded:
            assert loaded.size == (7, 5)
            assert loaded.mode == "RGBA"
            assert np.array_equal(np.asarray(loaded), image)

    @pytest.mark.parametrize("shape, dtype", [
        ((5, 5, 3), np.uint8),
        ((5, 5), np.uint8),
        ((5, 5, 4), np.float64),
    ])
    def test_rejects_bad_images(self, tmp_path, shape, dtype):
        with pytest.raises(ValueError):
            save_png(tmp_path / "bad.png", np.zeros(shape, dtype=dtype))
