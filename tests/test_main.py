"""Tests for the main.py command line."""

import argparse

import PIL.Image
import pytest

from main import build_slice, main, parse_basis
from chaosmap.compute import ConfigError
from simulation import PendulumState


class TestParseBasis:

    def test_empty_is_null_state(self):
        assert parse_basis([]) == PendulumState()

    def test_assignments(self):
        basis = parse_basis(["l1=2.5", "omega2=-1"])
        assert basis.l1 == 2.5
        assert basis.omega2 == -1.0

    @pytest.mark.parametrize("item", ["l1", "phi=1", "m1=heavy"])
    def test_bad_entries(self, item):
        with pytest.raises(ConfigError):
            parse_basis([item])


class TestBuildSlice:

    def _args(self, dims, range_=None):
        return argparse.Namespace(dims=dims, range=range_, delta_mode=False)

    def test_default_ranges(self):
        s = build_slice(self._args(["omega1", "l2"]))
        assert (s.dim1, s.dim2) == (2, 5)
        assert s.values_at(0.0, 1.0) == pytest.approx((-10.0, 3.0))

    def test_explicit_range(self):
        s = build_slice(self._args(["theta1", "theta2"], [-1.0, 1.0, 0.0, 2.0]))
        assert s.center_y == 1.0

    def test_unknown_dimension(self):
        with pytest.raises(ConfigError):
            build_slice(self._args(["theta1", "phi"]))


class TestMain:
    """Test the render and inspect commands end to end."""

    def test_inspect(self, capsys):
        status = main(["inspect", "--max-iter", "200", "--at", "0.25", "0.75"])
        assert status == 0
        out = capsys.readouterr().out
        assert "grid point      (0.25, 0.75)" in out
        assert "diverged" in out
        assert "energy drift" in out

    def test_render_writes_png(self, tmp_path):
        output = tmp_path / "map.png"
        status = main([
            "render", "--resolution", "4", "--max-iter", "50",
            "--workers", "2", "--tile-size", "2", "--output", str(output),
        ])
        assert status == 0
        with PIL.Image.open(output) as image:
            assert image.size == (4, 4)

    def test_render_from_config_file(self, tmp_path):
        config = tmp_path / "render.json"
        config.write_text('{"resolution": 3, "maxIter": 30, "colorMapping": 3}')
        output = tmp_path / "gray.png"
        status = main(["render", "--config", str(config), "--workers", "1",
                       "--output", str(output)])
        assert status == 0
        with PIL.Image.open(output) as image:
            assert image.size == (3, 3)

    def test_invalid_option_returns_2(self, tmp_path):
        status = main(["render", "--dt", "-0.5", "--output",
                       str(tmp_path / "never.png")])
        assert status == 2
        assert not (tmp_path / "never.png").exists()

    def test_invalid_basis_returns_2(self):
        assert main(["inspect", "--basis", "m2=0"]) == 2

    def test_interrupt_stops_and_returns_130(self, monkeypatch, tmp_path):
        def interrupted(*args, **kwargs):
            raise KeyboardInterrupt

        monkeypatch.setattr("main.render_map", interrupted)
        output = tmp_path / "never.png"
        status = main(["render", "--resolution", "4", "--workers", "1",
                       "--output", str(output)])
        assert status == 130
        assert not output.exists()
