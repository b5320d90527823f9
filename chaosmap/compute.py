"""Chaos map compute inputs: configuration, map slices, tile messages.

RenderConfig carries every recognized render option and validates them
before anything is dispatched. MapSlice and map_pixel() turn a grid
coordinate into the baseline/perturbed state pair that the divergence
classifier consumes. TileRequest and TileResult are the in-process
messages exchanged with the worker pool.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import NamedTuple

import numpy as np

from simulation import FIELD_NAMES, INTEGRATORS, IntegratorConfig, PendulumState

logger = logging.getLogger(__name__)

# Default worker count when the hardware concurrency is unknown
DEFAULT_WORKERS = 4

# Number of color palettes understood by coloring.divergence_color()
N_PALETTES = 5

# Perturbation applied to every field unless overridden
DEFAULT_PERTURBATION = 1e-5

# Default [min, max] range per mapped dimension
DEFAULT_RANGES = {
    "theta1": (-3.14, 3.14),
    "theta2": (-3.14, 3.14),
    "omega1": (-10.0, 10.0),
    "omega2": (-10.0, 10.0),
    "l1": (0.1, 3.0),
    "l2": (0.1, 3.0),
    "m1": (0.1, 5.0),
    "m2": (0.1, 5.0),
}

# camelCase option names used by the UI layer -> RenderConfig fields
_OPTION_ALIASES = {
    "maxIter": "max_iter",
    "colorMapping": "color_mapping",
    "cyclePeriod": "cycle_period",
    "perturbFixed": "perturb_fixed",
    "perturbScale": "perturb_scale",
    "tileSize": "tile_size",
}


class ConfigError(ValueError):
    """Raised when render configuration is invalid. Always raised before dispatch."""


@dataclass(frozen=True)
class PerturbationSpec:
    """Deltas that turn the baseline state into the perturbed one.

    All 8 fields are accepted, but only the dynamical ones (theta1,
    theta2, omega1, omega2) are ever applied: both pendulums of a pair
    share their lengths and masses.
    """

    theta1: float = DEFAULT_PERTURBATION
    theta2: float = DEFAULT_PERTURBATION
    omega1: float = DEFAULT_PERTURBATION
    omega2: float = DEFAULT_PERTURBATION
    l1: float = DEFAULT_PERTURBATION
    l2: float = DEFAULT_PERTURBATION
    m1: float = DEFAULT_PERTURBATION
    m2: float = DEFAULT_PERTURBATION

    @classmethod
    def from_dict(cls, values: dict) -> PerturbationSpec:
        unknown = set(values) - set(FIELD_NAMES)
        if unknown:
            raise ConfigError(f"Unknown perturbation fields: {sorted(unknown)}")
        return cls(**{k: float(v) for k, v in values.items()})

    @classmethod
    def zero(cls) -> PerturbationSpec:
        return cls(**{name: 0.0 for name in FIELD_NAMES})

    def scaled(self, scale: float) -> PerturbationSpec:
        return PerturbationSpec(
            **{name: getattr(self, name) * scale for name in FIELD_NAMES}
        )


@dataclass(frozen=True)
class RenderConfig:
    """Every option that affects a chaos map render.

    Frozen, so one instance is shared read-only by all tile workers.
    """

    resolution: int = 1024
    max_iter: int = 20000
    threshold: float = 0.05
    dt: float = 0.002
    g: float = 9.81
    integrator: str = "rk4"
    color_mapping: int = 0
    cycle_period: int = 500
    perturb_fixed: PerturbationSpec = field(default_factory=PerturbationSpec)
    perturb_scale: float = 1.0
    tile_size: int = 64
    workers: int | None = None

    @classmethod
    def from_dict(cls, options: dict) -> RenderConfig:
        """Build a config from an options mapping (snake_case or camelCase keys).

        Raises:
            ConfigError: on unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown render option: {key!r}")
            kwargs[name] = value

        perturb = kwargs.get("perturb_fixed")
        if isinstance(perturb, dict):
            kwargs["perturb_fixed"] = PerturbationSpec.from_dict(perturb)

        try:
            config = cls(**kwargs)
        except TypeError as exc:
            raise ConfigError(str(exc)) from exc
        config.validate()
        return config

    @property
    def integrator_config(self) -> IntegratorConfig:
        return IntegratorConfig(
            dt=float(self.dt),
            g=float(self.g),
            integrator=self.integrator,
            max_iter=int(self.max_iter),
            threshold=float(self.threshold),
        )

    @property
    def perturbation(self) -> PerturbationSpec:
        """Fixed perturbation with perturb_scale applied."""
        return self.perturb_fixed.scaled(self.perturb_scale)

    def validate(self) -> None:
        """Check every option. Raises ConfigError on the first problem found."""
        _require_int("resolution", self.resolution, minimum=1)
        _require_int("max_iter", self.max_iter, minimum=0)
        _require_int("cycle_period", self.cycle_period, minimum=1)
        _require_int("tile_size", self.tile_size, minimum=1)
        if self.workers is not None:
            _require_int("workers", self.workers, minimum=1)

        _require_positive("threshold", self.threshold)
        _require_positive("dt", self.dt)
        if not _is_finite_number(self.g):
            raise ConfigError(f"g must be a finite number, got {self.g!r}")
        if not _is_finite_number(self.perturb_scale):
            raise ConfigError(
                f"perturb_scale must be a finite number, got {self.perturb_scale!r}"
            )

        if self.integrator not in INTEGRATORS:
            raise ConfigError(
                f"Unknown integrator {self.integrator!r}; "
                f"expected one of {sorted(INTEGRATORS)}"
            )
        if (
            isinstance(self.color_mapping, bool)
            or not isinstance(self.color_mapping, int)
            or not 0 <= self.color_mapping < N_PALETTES
        ):
            raise ConfigError(
                f"color_mapping must be an int in [0, {N_PALETTES - 1}], "
                f"got {self.color_mapping!r}"
            )
        if not isinstance(self.perturb_fixed, PerturbationSpec):
            raise ConfigError("perturb_fixed must be a PerturbationSpec or mapping")
        for name in FIELD_NAMES:
            if not _is_finite_number(getattr(self.perturb_fixed, name)):
                raise ConfigError(f"perturb_fixed.{name} must be a finite number")


def load_config(path: str | Path) -> RenderConfig:
    """Read a JSON options file into a validated RenderConfig."""
    path = Path(path)
    try:
        options = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(options, dict):
        raise ConfigError(f"{path}: expected a JSON object of render options")
    config = RenderConfig.from_dict(options)
    logger.info("Loaded render config from %s", path)
    return config


def _is_finite_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _require_int(name: str, value, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"{name} must be an int >= {minimum}, got {value!r}")


def _require_positive(name: str, value) -> None:
    if not _is_finite_number(value) or value <= 0:
        raise ConfigError(f"{name} must be a finite number > 0, got {value!r}")


# ---------------------------------------------------------------------------
# Parameter mapping
# ---------------------------------------------------------------------------

def dimension_index(dim: int | str) -> int:
    """Resolve a dimension name ('theta1'..'m2') or index to an index in [0, 7]."""
    if isinstance(dim, str):
        try:
            return FIELD_NAMES.index(dim)
        except ValueError:
            raise ConfigError(
                f"Unknown dimension {dim!r}; expected one of {FIELD_NAMES}"
            ) from None
    if isinstance(dim, bool) or not isinstance(dim, (int, np.integer)):
        raise ConfigError(f"Dimension must be a name or int, got {dim!r}")
    if not 0 <= dim < len(FIELD_NAMES):
        raise ConfigError(f"Dimension index must be in [0, 7], got {dim}")
    return int(dim)


@dataclass(frozen=True)
class MapSlice:
    """A 2D slice through the 8D state space.

    The x axis drives field *dim1*, the y axis field *dim2*; the other six
    fields come from the basis state. Grid coordinates in [0, 1] map
    affinely onto center +- scale.

    delta_mode is recorded for callers composing slices on top of a
    sampled basis; it does not change how values are assigned.
    """

    dim1: int = 0
    dim2: int = 1
    scale_x: float = 3.14
    scale_y: float = 3.14
    center_x: float = 0.0
    center_y: float = 0.0
    delta_mode: bool = False

    @classmethod
    def from_ranges(
        cls,
        dim1: int | str,
        dim2: int | str,
        min1: float,
        max1: float,
        min2: float,
        max2: float,
        delta_mode: bool = False,
    ) -> MapSlice:
        """Build a slice from [min, max] ranges on each axis."""
        return cls(
            dim1=dimension_index(dim1),
            dim2=dimension_index(dim2),
            scale_x=(max1 - min1) / 2,
            scale_y=(max2 - min2) / 2,
            center_x=(min1 + max1) / 2,
            center_y=(min2 + max2) / 2,
            delta_mode=delta_mode,
        )

    def values_at(self, nx: float, ny: float) -> tuple[float, float]:
        """Field values driven by grid coordinate (nx, ny)."""
        val_x = self.center_x + (nx - 0.5) * 2 * self.scale_x
        val_y = self.center_y + (ny - 0.5) * 2 * self.scale_y
        return val_x, val_y

    def validate(self) -> None:
        """Check dimension indices and that mapped l/m ranges stay positive."""
        dimension_index(self.dim1)
        dimension_index(self.dim2)
        for name in ("scale_x", "scale_y", "center_x", "center_y"):
            if not _is_finite_number(getattr(self, name)):
                raise ConfigError(f"{name} must be a finite number")

        axes = ((self.dim1, self.center_x, self.scale_x),
                (self.dim2, self.center_y, self.scale_y))
        for dim, center, scale in axes:
            if dim >= 4 and center - abs(scale) <= 0:
                raise ConfigError(
                    f"Mapped range for {FIELD_NAMES[dim]} reaches "
                    f"{center - abs(scale):g}; lengths and masses must stay > 0"
                )


def validate_basis(basis: PendulumState) -> None:
    """Require finite fields and positive lengths and masses."""
    for name in FIELD_NAMES:
        if not _is_finite_number(getattr(basis, name)):
            raise ConfigError(f"Basis {name} must be a finite number")
    for name in ("l1", "l2", "m1", "m2"):
        if getattr(basis, name) <= 0:
            raise ConfigError(f"Basis {name} must be > 0, got {getattr(basis, name)}")


def map_pixel(
    nx: float,
    ny: float,
    basis: PendulumState,
    map_slice: MapSlice,
    perturbation: PerturbationSpec,
) -> tuple[PendulumState, PendulumState]:
    """Map a grid coordinate to a (baseline, perturbed) state pair.

    The x value is written to dim1 first, then the y value to dim2, so
    dim2 wins when both name the same field. The perturbation touches only
    the dynamical fields of the second state.
    """
    val_x, val_y = map_slice.values_at(nx, ny)
    state1 = basis.with_field(map_slice.dim1, val_x).with_field(map_slice.dim2, val_y)
    state2 = state1._replace(
        theta1=state1.theta1 + perturbation.theta1,
        theta2=state1.theta2 + perturbation.theta2,
        omega1=state1.omega1 + perturbation.omega1,
        omega2=state1.omega2 + perturbation.omega2,
    )
    return state1, state2


# ---------------------------------------------------------------------------
# Tile messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TileRequest:
    """One unit of dispatched work: a rectangle of the output image."""

    offset_x: int
    offset_y: int
    width: int
    height: int
    resolution: int
    basis: PendulumState
    map_slice: MapSlice
    config: RenderConfig

    def validate(self) -> None:
        """Check the whole request. Raises ConfigError before any dispatch."""
        self.config.validate()
        self.map_slice.validate()
        validate_basis(self.basis)
        _require_int("resolution", self.resolution, minimum=1)
        _require_int("width", self.width, minimum=1)
        _require_int("height", self.height, minimum=1)
        _require_int("offset_x", self.offset_x, minimum=0)
        _require_int("offset_y", self.offset_y, minimum=0)


class TileResult(NamedTuple):
    """A rendered tile.

    pixels is a flat uint8 RGBA buffer, row-major, length width*height*4.
    When cancelled is True the buffer is partial and must be discarded.
    """

    offset_x: int
    offset_y: int
    width: int
    height: int
    pixels: np.ndarray
    cancelled: bool = False

    @property
    def key(self) -> tuple[int, int]:
        return (self.offset_x, self.offset_y)

    def as_image(self) -> np.ndarray:
        """View the buffer as a (height, width, 4) array (no copy)."""
        return self.pixels.reshape(self.height, self.width, 4)


def split_tiles(resolution: int, tile_size: int) -> list[tuple[int, int, int, int]]:
    """Cover a resolution x resolution image with tiles, row by row.

    Returns (offset_x, offset_y, width, height) tuples; edge tiles are
    clipped to the image.
    """
    tiles = []
    for offset_y in range(0, resolution, tile_size):
        for offset_x in range(0, resolution, tile_size):
            tiles.append((
                offset_x,
                offset_y,
                min(tile_size, resolution - offset_x),
                min(tile_size, resolution - offset_y),
            ))
    return tiles


def default_worker_count() -> int:
    """Pool size: hardware concurrency, or DEFAULT_WORKERS if unknown."""
    return os.cpu_count() or DEFAULT_WORKERS
