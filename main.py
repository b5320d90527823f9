"""Entry point for the chaos map renderer.

Supports two commands:
- render: compute a full chaos map over a 2D slice and save it as PNG
- inspect: classify a single grid point and report its energy drift

Usage:
    python main.py render --dims theta1 theta2 --output map.png
    python main.py inspect --dims omega1 omega2 --at 0.25 0.75
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys

from chaosmap.compute import (
    DEFAULT_RANGES, ConfigError, MapSlice, RenderConfig, load_config, map_pixel,
    validate_basis,
)
from chaosmap.image import render_map, save_png
from chaosmap.worker import WorkerCoordinator
from simulation import (
    FIELD_NAMES, INTEGRATORS, PendulumState, classify_pair,
    simulate_fixed_step, total_energy,
)

logger = logging.getLogger(__name__)

# Exit status after Ctrl-C (128 + SIGINT)
_EXIT_INTERRUPTED = 130

# Upper bound on waiting for in-flight tiles to notice a stop (seconds)
_STOP_TIMEOUT = 5.0


def parse_basis(assignments: list[str]) -> PendulumState:
    """Build a basis state from 'name=value' strings over the null state."""
    basis = PendulumState()
    for item in assignments:
        name, sep, value = item.partition("=")
        if not sep or name not in FIELD_NAMES:
            raise ConfigError(
                f"Basis entries must look like name=value with name in "
                f"{FIELD_NAMES}, got {item!r}"
            )
        try:
            basis = basis._replace(**{name: float(value)})
        except ValueError:
            raise ConfigError(f"Basis value for {name} is not a number: {value!r}") from None
    validate_basis(basis)
    return basis


def build_slice(args: argparse.Namespace) -> MapSlice:
    """MapSlice from --dims and --range (per-dimension defaults if omitted)."""
    dim1, dim2 = args.dims
    if args.range is not None:
        min1, max1, min2, max2 = args.range
    else:
        for dim in (dim1, dim2):
            if dim not in DEFAULT_RANGES:
                raise ConfigError(f"Unknown dimension {dim!r}")
        min1, max1 = DEFAULT_RANGES[dim1]
        min2, max2 = DEFAULT_RANGES[dim2]
    map_slice = MapSlice.from_ranges(
        dim1, dim2, min1, max1, min2, max2, delta_mode=args.delta_mode,
    )
    map_slice.validate()
    return map_slice


def build_config(args: argparse.Namespace) -> RenderConfig:
    """Config file (if any) with command-line overrides applied."""
    config = load_config(args.config) if args.config else RenderConfig()
    overrides = {
        "resolution": args.resolution,
        "max_iter": args.max_iter,
        "threshold": args.threshold,
        "dt": args.dt,
        "integrator": args.integrator,
        "color_mapping": args.palette,
        "perturb_scale": args.perturb_scale,
        "tile_size": getattr(args, "tile_size", None),
        "workers": getattr(args, "workers", None),
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    config = dataclasses.replace(config, **overrides)
    config.validate()
    return config


def cmd_render(args: argparse.Namespace) -> int:
    config = build_config(args)
    map_slice = build_slice(args)
    basis = parse_basis(args.basis)

    def report(done: int, total: int) -> None:
        if done == total or done % max(1, total // 10) == 0:
            logger.info("  %d/%d tiles", done, total)

    pool = WorkerCoordinator(config.workers)
    try:
        image = render_map(basis, map_slice, config, pool, report)
    except KeyboardInterrupt:
        logger.warning("Interrupted, stopping workers")
        pool.stop()
        if not pool.wait_idle(timeout=_STOP_TIMEOUT):
            logger.warning("%d tiles still pending after stop", pool.pending_tiles)
        return _EXIT_INTERRUPTED
    finally:
        pool.close()

    if image is None:
        logger.error("Render did not complete; nothing saved")
        return 1
    save_png(args.output, image)
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    config = build_config(args)
    map_slice = build_slice(args)
    basis = parse_basis(args.basis)
    nx, ny = args.at

    state1, state2 = map_pixel(nx, ny, basis, map_slice, config.perturbation)
    integ = config.integrator_config
    result = classify_pair(state1, state2, integ)

    trajectory = simulate_fixed_step(
        state1, integ, n_steps=integ.max_iter,
        sample_every=max(1, integ.max_iter // 100),
    )
    energies = total_energy(trajectory, state1, integ.g)
    drift = float(abs(energies - energies[0]).max())

    print(f"grid point      ({nx:g}, {ny:g})")
    print("state           " + " ".join(
        f"{name}={getattr(state1, name):.4f}" for name in FIELD_NAMES
    ))
    if result.diverged:
        print(f"diverged        yes, at iteration {result.divergence_time} "
              f"(t = {result.divergence_time * integ.dt:.3f} s)")
    else:
        print(f"diverged        no, within {result.iterations} iterations")
    print(f"energy drift    {drift:.3e} ({integ.integrator})")
    return 0


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, default=None,
                        help="JSON file of render options")
    parser.add_argument("--dims", nargs=2, default=["theta1", "theta2"],
                        metavar=("X_DIM", "Y_DIM"),
                        help=f"Dimensions driven by the grid, from {FIELD_NAMES}")
    parser.add_argument("--range", nargs=4, type=float, default=None,
                        metavar=("MIN1", "MAX1", "MIN2", "MAX2"),
                        help="Value ranges of the two mapped dimensions")
    parser.add_argument("--basis", action="append", default=[],
                        metavar="NAME=VALUE",
                        help="Basis value for a non-mapped field (repeatable)")
    parser.add_argument("--delta-mode", action="store_true",
                        help="Mark the slice as composed on a sampled basis")
    parser.add_argument("--resolution", type=int, default=None)
    parser.add_argument("--max-iter", type=int, default=None)
    parser.add_argument("--threshold", type=float, default=None)
    parser.add_argument("--dt", type=float, default=None)
    parser.add_argument("--integrator", choices=sorted(INTEGRATORS), default=None)
    parser.add_argument("--palette", type=int, choices=range(5), default=None,
                        help="0 rainbow, 1 heatmap, 2 viridis, 3 grayscale, 4 cyclic")
    parser.add_argument("--perturb-scale", type=float, default=None)
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Double pendulum chaos map renderer.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Render a chaos map to PNG")
    _add_common_options(render)
    render.add_argument("--output", type=str, default="chaos_map.png",
                        help="Output PNG path (default: chaos_map.png)")
    render.add_argument("--tile-size", type=int, default=None)
    render.add_argument("--workers", type=int, default=None,
                        help="Worker threads (default: CPU count)")
    render.set_defaults(func=cmd_render)

    inspect = sub.add_parser("inspect", help="Classify a single grid point")
    _add_common_options(inspect)
    inspect.add_argument("--at", nargs=2, type=float, default=[0.5, 0.5],
                         metavar=("NX", "NY"),
                         help="Grid coordinate in [0, 1]^2 (default: center)")
    inspect.set_defaults(func=cmd_inspect)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    try:
        return args.func(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
