"""Tests for chaosmap/coloring.py: palettes and HSL conversion."""

import numpy as np
import pytest

from chaosmap.coloring import (
    BLACK, PALETTE_CYCLIC, PALETTE_GRAYSCALE, PALETTE_HEATMAP, PALETTE_NAMES,
    PALETTE_RAINBOW, PALETTE_VIRIDIS, divergence_color, grayscale_color,
    heatmap_color, hsl_to_rgb, viridis_color,
)


class TestHslToRgb:
    """Test the 6-sector HSL conversion."""

    @pytest.mark.parametrize("hue, expected", [
        (0.0, (255, 0, 0)),
        (120.0, (0, 255, 0)),
        (180.0, (0, 255, 255)),
        (240.0, (0, 0, 255)),
        (360.0, (255, 0, 0)),
    ])
    def test_primary_hues(self, hue, expected):
        assert hsl_to_rgb(hue, 1.0, 0.5) == expected

    def test_zero_saturation_is_gray(self):
        r, g, b = hsl_to_rgb(200.0, 0.0, 0.5)
        assert r == g == b == 127

    def test_channels_in_range(self):
        for hue in np.linspace(0, 720, 97):
            rgb = hsl_to_rgb(hue, 1.0, 0.5)
            assert all(0 <= c <= 255 for c in rgb)


class TestPalettes:
    """Test the individual palette ramps."""

    def test_heatmap_endpoints(self):
        assert heatmap_color(0.0) == (0, 0, 0)
        assert heatmap_color(1.0) == (255, 255, 255)

    def test_heatmap_middle_is_orange(self):
        assert heatmap_color(0.5) == (255, 127, 0)

    def test_heatmap_clamps_above_one(self):
        assert heatmap_color(1.5) == (255, 255, 255)

    def test_viridis_endpoints(self):
        assert viridis_color(0.0) == (68, 1, 84)
        # blue would reach 256 without the clamp
        assert viridis_color(1.0) == (249, 249, 255)

    def test_grayscale_floors(self):
        assert grayscale_color(0.5) == (127, 127, 127)
        assert grayscale_color(1.0) == (255, 255, 255)


class TestDivergenceColor:
    """Test divergence_color across palettes."""

    @pytest.mark.parametrize("palette", sorted(PALETTE_NAMES.values()))
    def test_non_divergent_black(self, palette):
        assert divergence_color(False, 0, 1000, palette, 500) == BLACK

    def test_rainbow_hue_follows_fraction(self):
        assert divergence_color(True, 0, 100, PALETTE_RAINBOW, 500) == (255, 0, 0)
        assert divergence_color(True, 50, 100, PALETTE_RAINBOW, 500) == (0, 255, 255)

    def test_heatmap(self):
        assert divergence_color(True, 50, 100, PALETTE_HEATMAP, 500) == (255, 127, 0)

    def test_viridis(self):
        assert divergence_color(True, 0, 100, PALETTE_VIRIDIS, 500) == (68, 1, 84)

    def test_grayscale_equal_channels(self):
        for time in range(0, 1000, 37):
            r, g, b = divergence_color(True, time, 1000, PALETTE_GRAYSCALE, 500)
            assert r == g == b

    def test_cyclic_repeats_every_period(self):
        a = divergence_color(True, 130, 20000, PALETTE_CYCLIC, 500)
        b = divergence_color(True, 630, 20000, PALETTE_CYCLIC, 500)
        assert a == b
        assert divergence_color(True, 250, 20000, PALETTE_CYCLIC, 500) == (0, 255, 255)

    def test_cyclic_ignores_max_iter(self):
        a = divergence_color(True, 100, 1000, PALETTE_CYCLIC, 400)
        b = divergence_color(True, 100, 50000, PALETTE_CYCLIC, 400)
        assert a == b

    @pytest.mark.parametrize("palette", [-1, 5, 99])
    def test_unknown_palette_raises(self, palette):
        with pytest.raises(ValueError):
            divergence_color(True, 10, 100, palette, 500)
        with pytest.raises(ValueError):
            divergence_color(False, 0, 100, palette, 500)

    def test_deterministic(self):
        for palette in PALETTE_NAMES.values():
            first = divergence_color(True, 1234, 20000, palette, 500)
            assert divergence_color(True, 1234, 20000, palette, 500) == first

    @pytest.mark.parametrize("palette", [True, False])
    def test_bool_palette_rejected(self, palette):
        with pytest.raises(ValueError):
            divergence_color(True, 10, 100, palette, 500)
