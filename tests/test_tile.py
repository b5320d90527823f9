"""Tests for chaosmap/tile.py: the per-pixel render pipeline."""

import numpy as np
import pytest

from chaosmap.coloring import divergence_color
from chaosmap.compute import (
    ConfigError, MapSlice, PerturbationSpec, RenderConfig, TileRequest, map_pixel,
)
from chaosmap.tile import render_request, render_tile
from simulation import PendulumState, classify_pair

FAST = RenderConfig(resolution=8, max_iter=200, perturb_scale=1000.0)
STILL = RenderConfig(resolution=8, max_iter=50, perturb_fixed=PerturbationSpec.zero())
SLICE = MapSlice.from_ranges("theta1", "theta2", -3.14, 3.14, -3.14, 3.14)


class _CancelAfter:
    """cancel_check that starts returning True after n calls."""

    def __init__(self, n):
        self.n = n
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.calls > self.n


class TestRenderTile:
    """Test render_tile output layout and values."""

    def test_buffer_shape_and_dtype(self):
        pixels = render_tile(0, 0, 3, 2, 8, PendulumState(), SLICE, FAST)
        assert pixels.dtype == np.uint8
        assert pixels.shape == (3 * 2 * 4,)

    def test_zero_perturbation_is_black(self):
        """Identical pairs never diverge, so every pixel is opaque black."""
        pixels = render_tile(0, 0, 4, 4, 8, PendulumState(), SLICE, STILL)
        image = pixels.reshape(4, 4, 4)
        assert np.all(image[..., :3] == 0)
        assert np.all(image[..., 3] == 255)

    def test_alpha_always_opaque(self):
        pixels = render_tile(2, 2, 4, 4, 8, PendulumState(), SLICE, FAST)
        assert np.all(pixels[3::4] == 255)

    def test_pixel_matches_classifier(self):
        """Pixel (px, py) samples grid point ((ox + px) / res, (oy + py) / res)."""
        ox, oy, res = 3, 1, 8
        pixels = render_tile(ox, oy, 2, 2, res, PendulumState(), SLICE, FAST)
        image = pixels.reshape(2, 2, 4)
        for py in range(2):
            for px in range(2):
                s1, s2 = map_pixel(
                    (ox + px) / res, (oy + py) / res,
                    PendulumState(), SLICE, FAST.perturbation,
                )
                result = classify_pair(s1, s2, FAST.integrator_config)
                expected = divergence_color(
                    result.diverged, result.divergence_time, FAST.max_iter,
                    FAST.color_mapping, FAST.cycle_period,
                )
                assert tuple(image[py, px, :3]) == expected

    def test_deterministic(self):
        a = render_tile(0, 0, 4, 4, 8, PendulumState(), SLICE, FAST)
        b = render_tile(0, 0, 4, 4, 8, PendulumState(), SLICE, FAST)
        assert np.array_equal(a, b)

    def test_invalid_config_raises_before_work(self):
        check = _CancelAfter(0)
        with pytest.raises(ConfigError):
            render_tile(0, 0, 4, 4, 8, PendulumState(), SLICE,
                        RenderConfig(dt=-0.1), cancel_check=check)
        assert check.calls == 0

    def test_invalid_basis_raises(self):
        with pytest.raises(ConfigError):
            render_tile(0, 0, 4, 4, 8, PendulumState(l1=-1.0), SLICE, FAST)


class TestRenderRequest:
    """Test TileResult construction and cancellation."""

    def _request(self, config=FAST, **overrides):
        fields = dict(offset_x=4, offset_y=0, width=4, height=4, resolution=8,
                      basis=PendulumState(), map_slice=SLICE, config=config)
        fields.update(overrides)
        return TileRequest(**fields)

    def test_result_carries_offsets(self):
        result = render_request(self._request())
        assert result.key == (4, 0)
        assert (result.width, result.height) == (4, 4)
        assert result.cancelled is False

    def test_matches_render_tile(self):
        result = render_request(self._request())
        pixels = render_tile(4, 0, 4, 4, 8, PendulumState(), SLICE, FAST)
        assert np.array_equal(result.pixels, pixels)

    def test_cancel_part_way(self):
        check = _CancelAfter(5)
        result = render_request(self._request(), cancel_check=check)
        assert result.cancelled is True
        assert np.all(result.pixels[3:5 * 4:4] == 255)
        assert np.all(result.pixels[5 * 4:] == 0)

    def test_cancel_before_first_pixel(self):
        result = render_request(self._request(), cancel_check=lambda: True)
        assert result.cancelled is True
        assert not result.pixels.any()

    def test_cancel_check_polled_per_pixel(self):
        check = _CancelAfter(1000)
        result = render_request(self._request(width=3, height=2), cancel_check=check)
        assert result.cancelled is False
        assert check.calls == 6
