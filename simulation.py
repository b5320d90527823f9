"""Double pendulum physics engine.

Implements the Lagrangian equations of motion for a double pendulum and
the two fixed-step integrators used by the chaos map (velocity Verlet and
classic RK4), together with the phase-space divergence metric and the
lockstep divergence classifier.

Every integrator and the SciPy reference derivatives call the single
compute_accelerations() below, so the acceleration model is identical at
every call site.

The hot-path functions are Numba-compiled with nogil=True: tile workers
running in threads integrate in parallel. They take and return plain
floats (not arrays) so per-pixel work never allocates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
from numba import njit
from scipy.integrate import solve_ivp

logger = logging.getLogger(__name__)

# Integrator codes passed into the compiled kernels
INTEGRATOR_RK4 = 0
INTEGRATOR_VERLET = 1
INTEGRATORS = {"rk4": INTEGRATOR_RK4, "verlet": INTEGRATOR_VERLET}

# Dimension index order used by the map slices (0..7)
FIELD_NAMES = ("theta1", "theta2", "omega1", "omega2", "l1", "l2", "m1", "m2")

_TWO_PI = 2.0 * math.pi


class PendulumState(NamedTuple):
    """Full 8-parameter double pendulum configuration.

    Defaults are the null state: hanging at rest with unit arms and masses.
    """

    theta1: float = 0.0
    theta2: float = 0.0
    omega1: float = 0.0
    omega2: float = 0.0
    l1: float = 1.0
    l2: float = 1.0
    m1: float = 1.0
    m2: float = 1.0

    def with_field(self, index: int, value: float) -> PendulumState:
        """Return a copy with the field at dimension *index* replaced."""
        return self._replace(**{FIELD_NAMES[index]: value})

    @property
    def dynamical(self) -> tuple[float, float, float, float]:
        """The integrated part of the state: (theta1, theta2, omega1, omega2)."""
        return (self.theta1, self.theta2, self.omega1, self.omega2)


@dataclass(frozen=True)
class IntegratorConfig:
    """Integration settings shared read-only by every worker in a render."""

    dt: float = 0.002
    g: float = 9.81
    integrator: str = "rk4"
    max_iter: int = 20000
    threshold: float = 0.05

    @property
    def integrator_code(self) -> int:
        return INTEGRATORS[self.integrator]


class Classification(NamedTuple):
    """Outcome of driving a state pair to divergence or the iteration cap."""

    iterations: int
    diverged: bool
    divergence_time: int


@njit(cache=True, nogil=True)
def compute_accelerations(theta1, theta2, omega1, omega2, l1, l2, m1, m2, g):
    """Angular accelerations (alpha1, alpha2) for a single state."""
    big_m = m1 + m2
    delta = theta1 - theta2
    sin_delta = np.sin(delta)
    cos_delta = np.cos(delta)
    denom = m1 + m2 * sin_delta * sin_delta

    alpha1 = (
        -m2 * l1 * omega1 * omega1 * sin_delta * cos_delta
        - m2 * l2 * omega2 * omega2 * sin_delta
        - big_m * g * np.sin(theta1)
        + m2 * g * np.sin(theta2) * cos_delta
    ) / (l1 * denom)

    alpha2 = (
        big_m * l1 * omega1 * omega1 * sin_delta
        + m2 * l2 * omega2 * omega2 * sin_delta * cos_delta
        + big_m * g * np.sin(theta1) * cos_delta
        - big_m * g * np.sin(theta2)
    ) / (l2 * denom)

    return alpha1, alpha2


@njit(cache=True, nogil=True)
def step_verlet(theta1, theta2, omega1, omega2, l1, l2, m1, m2, dt, g):
    """Velocity Verlet step (symplectic). Returns the next dynamical state."""
    half_dt = 0.5 * dt

    a1, a2 = compute_accelerations(
        theta1, theta2, omega1, omega2, l1, l2, m1, m2, g,
    )
    omega1_half = omega1 + half_dt * a1
    omega2_half = omega2 + half_dt * a2

    theta1 = theta1 + dt * omega1_half
    theta2 = theta2 + dt * omega2_half

    a1, a2 = compute_accelerations(
        theta1, theta2, omega1_half, omega2_half, l1, l2, m1, m2, g,
    )
    omega1 = omega1_half + half_dt * a1
    omega2 = omega2_half + half_dt * a2

    return theta1, theta2, omega1, omega2


@njit(cache=True, nogil=True)
def step_rk4(theta1, theta2, omega1, omega2, l1, l2, m1, m2, dt, g):
    """Classic fourth-order Runge-Kutta step. Returns the next dynamical state."""
    ht = 0.5 * dt

    k1_a1, k1_a2 = compute_accelerations(
        theta1, theta2, omega1, omega2, l1, l2, m1, m2, g,
    )
    k1_t1, k1_t2 = omega1, omega2

    k2_t1 = omega1 + ht * k1_a1
    k2_t2 = omega2 + ht * k1_a2
    k2_a1, k2_a2 = compute_accelerations(
        theta1 + ht * k1_t1, theta2 + ht * k1_t2, k2_t1, k2_t2,
        l1, l2, m1, m2, g,
    )

    k3_t1 = omega1 + ht * k2_a1
    k3_t2 = omega2 + ht * k2_a2
    k3_a1, k3_a2 = compute_accelerations(
        theta1 + ht * k2_t1, theta2 + ht * k2_t2, k3_t1, k3_t2,
        l1, l2, m1, m2, g,
    )

    k4_t1 = omega1 + dt * k3_a1
    k4_t2 = omega2 + dt * k3_a2
    k4_a1, k4_a2 = compute_accelerations(
        theta1 + dt * k3_t1, theta2 + dt * k3_t2, k4_t1, k4_t2,
        l1, l2, m1, m2, g,
    )

    dt6 = dt / 6.0
    theta1 = theta1 + dt6 * (k1_t1 + 2 * k2_t1 + 2 * k3_t1 + k4_t1)
    theta2 = theta2 + dt6 * (k1_t2 + 2 * k2_t2 + 2 * k3_t2 + k4_t2)
    omega1 = omega1 + dt6 * (k1_a1 + 2 * k2_a1 + 2 * k3_a1 + k4_a1)
    omega2 = omega2 + dt6 * (k1_a2 + 2 * k2_a2 + 2 * k3_a2 + k4_a2)

    return theta1, theta2, omega1, omega2


@njit(cache=True, nogil=True)
def step_state(theta1, theta2, omega1, omega2, l1, l2, m1, m2, dt, g, integrator):
    """Advance one step with the integrator selected by *integrator* code."""
    if integrator == INTEGRATOR_VERLET:
        return step_verlet(theta1, theta2, omega1, omega2, l1, l2, m1, m2, dt, g)
    return step_rk4(theta1, theta2, omega1, omega2, l1, l2, m1, m2, dt, g)


@njit(cache=True, nogil=True)
def wrap_angle(delta):
    """Normalize an angle difference into (-pi, pi]."""
    return delta - _TWO_PI * np.ceil((delta - math.pi) / _TWO_PI)


@njit(cache=True, nogil=True)
def phase_distance(a_theta1, a_theta2, a_omega1, a_omega2,
                   b_theta1, b_theta2, b_omega1, b_omega2):
    """Euclidean phase-space distance with wrapped angle differences."""
    d_theta1 = wrap_angle(a_theta1 - b_theta1)
    d_theta2 = wrap_angle(a_theta2 - b_theta2)
    d_omega1 = a_omega1 - b_omega1
    d_omega2 = a_omega2 - b_omega2
    return np.sqrt(
        d_theta1 * d_theta1 + d_theta2 * d_theta2
        + d_omega1 * d_omega1 + d_omega2 * d_omega2
    )


@njit(cache=True, nogil=True)
def simulate_to_divergence(
    a_theta1, a_theta2, a_omega1, a_omega2,
    b_theta1, b_theta2, b_omega1, b_omega2,
    l1, l2, m1, m2,
    g, dt, max_iter, threshold, integrator,
):
    """Step two pendulums in lockstep until they diverge.

    Both pendulums share the physical parameters (l1, l2, m1, m2).
    Returns (iterations, diverged, divergence_time). A NaN distance
    compares false against the threshold, so blown-up trajectories are
    reported as non-divergent.
    """
    iteration = 0
    while iteration < max_iter:
        a_theta1, a_theta2, a_omega1, a_omega2 = step_state(
            a_theta1, a_theta2, a_omega1, a_omega2,
            l1, l2, m1, m2, dt, g, integrator,
        )
        b_theta1, b_theta2, b_omega1, b_omega2 = step_state(
            b_theta1, b_theta2, b_omega1, b_omega2,
            l1, l2, m1, m2, dt, g, integrator,
        )
        iteration += 1

        dist = phase_distance(
            a_theta1, a_theta2, a_omega1, a_omega2,
            b_theta1, b_theta2, b_omega1, b_omega2,
        )
        if dist > threshold:
            return iteration, True, iteration

    return iteration, False, 0


def classify_pair(
    state1: PendulumState,
    state2: PendulumState,
    config: IntegratorConfig,
) -> Classification:
    """Run simulate_to_divergence on two PendulumStates.

    The physical parameters of *state1* are used for both pendulums.
    """
    iterations, diverged, divergence_time = simulate_to_divergence(
        float(state1.theta1), float(state1.theta2),
        float(state1.omega1), float(state1.omega2),
        float(state2.theta1), float(state2.theta2),
        float(state2.omega1), float(state2.omega2),
        float(state1.l1), float(state1.l2),
        float(state1.m1), float(state1.m2),
        float(config.g), float(config.dt), int(config.max_iter),
        float(config.threshold), config.integrator_code,
    )
    return Classification(int(iterations), bool(diverged), int(divergence_time))


@njit(cache=True, nogil=True)
def _integrate_trajectory(
    theta1, theta2, omega1, omega2,
    l1, l2, m1, m2, g, dt, integrator,
    n_steps, sample_every,
):
    """Fixed-step integration storing every sample_every-th state.

    Row 0 is the initial state; the final state is always stored.
    """
    n_samples = n_steps // sample_every + 1
    if n_steps % sample_every != 0:
        n_samples += 1
    out = np.empty((n_samples, 4), dtype=np.float64)
    out[0, 0] = theta1
    out[0, 1] = theta2
    out[0, 2] = omega1
    out[0, 3] = omega2

    sample_idx = 1
    for step in range(1, n_steps + 1):
        theta1, theta2, omega1, omega2 = step_state(
            theta1, theta2, omega1, omega2,
            l1, l2, m1, m2, dt, g, integrator,
        )
        if step % sample_every == 0 or step == n_steps:
            out[sample_idx, 0] = theta1
            out[sample_idx, 1] = theta2
            out[sample_idx, 2] = omega1
            out[sample_idx, 3] = omega2
            sample_idx += 1

    return out


def simulate_fixed_step(
    state: PendulumState,
    config: IntegratorConfig,
    n_steps: int,
    sample_every: int = 1,
) -> np.ndarray:
    """Integrate one pendulum with the configured fixed-step integrator.

    Returns:
        (n_samples, 4) float64 array of [theta1, theta2, omega1, omega2].
        Row 0 is the initial state, the last row the state after n_steps.
    """
    if sample_every < 1:
        raise ValueError(f"sample_every must be >= 1, got {sample_every}")
    return _integrate_trajectory(
        float(state.theta1), float(state.theta2),
        float(state.omega1), float(state.omega2),
        float(state.l1), float(state.l2), float(state.m1), float(state.m2),
        float(config.g), float(config.dt), config.integrator_code,
        int(n_steps), int(sample_every),
    )


def derivatives(t, y, pendulum: PendulumState, g: float):
    """First-order ODE right-hand side for SciPy.

    State vector: [theta1, theta2, omega1, omega2]
    Returns: [d_theta1/dt, d_theta2/dt, d_omega1/dt, d_omega2/dt]
    """
    theta1, theta2, omega1, omega2 = y
    alpha1, alpha2 = compute_accelerations(
        float(theta1), float(theta2), float(omega1), float(omega2),
        float(pendulum.l1), float(pendulum.l2),
        float(pendulum.m1), float(pendulum.m2), float(g),
    )
    return [omega1, omega2, alpha1, alpha2]


def simulate(state: PendulumState, g: float = 9.81, t_end: float = 10.0,
             dt: float = 0.005):
    """Reference trajectory via SciPy's adaptive DOP853 at tight tolerance.

    Used to cross-check the fixed-step integrators.

    Returns:
        t_array: 1D array of time values at uniform dt spacing
        state_array: 2D array of shape (len(t_array), 4)
    """
    t_eval = np.arange(0, t_end, dt)

    sol = solve_ivp(
        fun=lambda t, y: derivatives(t, y, state, g),
        t_span=(0, t_end),
        y0=list(state.dynamical),
        method="DOP853",
        t_eval=t_eval,
        rtol=1e-12,
        atol=1e-12,
    )
    if not sol.success:
        logger.warning("Reference integration stopped early: %s", sol.message)

    return sol.t, sol.y.T  # shape: (n_steps, 4)


def positions(state, pendulum: PendulumState):
    """Convert [theta1, theta2, ...] to Cartesian coordinates.

    Returns (x1, y1, x2, y2) where y points downward from the pivot.
    """
    theta1, theta2 = state[0], state[1]
    l1, l2 = pendulum.l1, pendulum.l2

    x1 = l1 * np.sin(theta1)
    y1 = -l1 * np.cos(theta1)

    x2 = x1 + l2 * np.sin(theta2)
    y2 = y1 - l2 * np.cos(theta2)

    return x1, y1, x2, y2


def total_energy(state, pendulum: PendulumState, g: float = 9.81):
    """Total mechanical energy (T + V) of [theta1, theta2, omega1, omega2].

    Works on a single state or on an (N, 4) array of states.
    Potential energy is measured from the pivot point (y=0).
    """
    state = np.asarray(state, dtype=np.float64)
    theta1, theta2, omega1, omega2 = state[..., 0], state[..., 1], state[..., 2], state[..., 3]
    m1, m2, l1, l2 = pendulum.m1, pendulum.m2, pendulum.l1, pendulum.l2

    # Kinetic energy
    T = (
        0.5 * (m1 + m2) * l1**2 * omega1**2
        + 0.5 * m2 * l2**2 * omega2**2
        + m2 * l1 * l2 * omega1 * omega2 * np.cos(theta1 - theta2)
    )

    # Potential energy (from pivot)
    V = -(m1 + m2) * g * l1 * np.cos(theta1) - m2 * g * l2 * np.cos(theta2)

    return T + V


def warmup() -> None:
    """Trigger JIT compilation of the divergence kernels.

    Called once before a worker pool starts so threads do not all block
    on the first compile.
    """
    for code in (INTEGRATOR_RK4, INTEGRATOR_VERLET):
        simulate_to_divergence(
            0.1, 0.1, 0.0, 0.0,
            0.1 + 1e-5, 0.1, 0.0, 0.0,
            1.0, 1.0, 1.0, 1.0,
            9.81, 0.01, 10, 0.05, code,
        )
    logger.debug("Numba divergence kernels compiled")
