# fehlberg/examples/simple_sir.py
"""Single-location SIR driven by the allocating RKF45 stepper.

This example demonstrates the allocating API:

- rkf45_step(...) returns StepResult(increment, dt, next_dt); the caller owns
  the state and the clock and applies the increment itself.
- next_dt is fed back as the next initial guess, clipped so the loop lands
  exactly on each output time.
- StepperSettings keeps tolerance, metric and step bounds in one validated
  object.

We model a normalized SIR system with state y = (S, I, R) and S + I + R ≈ 1.

This script saves a plot to disk (no interactive windows).
"""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from fehlberg import StepperSettings

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "sir"


def sir_rhs(
    state: np.ndarray,
    t: float,  # noqa: ARG001 (no explicit time dependence here)
    *,
    beta: float,
    gamma: float,
) -> np.ndarray:
    """RHS for a normalized SIR model.

    Args:
        state: State vector (S, I, R).
        t: Current time (unused; included for API compatibility).
        beta: Transmission rate.
        gamma: Recovery rate.

    Returns:
        (dS/dt, dI/dt, dR/dt).
    """
    s, i, _r = state
    new_inf = beta * s * i
    recov = gamma * i
    return np.array([-new_inf, new_inf - recov, recov])


def compute_conservation_drift(states: np.ndarray) -> float:
    """Compute max |S+I+R-1| over stored times.

    Args:
        states: State history, shape (n_outputs, 3).

    Returns:
        Maximum absolute conservation drift.
    """
    return float(np.max(np.abs(states.sum(axis=1) - 1.0)))


def run_sir(
    time_grid: np.ndarray,
    *,
    beta: float,
    gamma: float,
    initial_infected: float,
    settings: StepperSettings,
) -> tuple[np.ndarray, int]:
    """Integrate SIR and store the state at every output time.

    Args:
        time_grid: Increasing output times; the first is the initial time.
        beta: Transmission rate.
        gamma: Recovery rate.
        initial_infected: Initial infected fraction.
        settings: Controller settings.

    Returns:
        (states, n_steps): history of shape (len(time_grid), 3) and the number
        of accepted steps taken.
    """

    def rhs(y: np.ndarray, t: float) -> np.ndarray:
        return sir_rhs(y, t, beta=beta, gamma=gamma)

    y = np.array([1.0 - initial_infected, initial_infected, 0.0])
    states = np.empty((time_grid.size, 3))
    states[0] = y

    t = float(time_grid[0])
    dt = settings.max_next_dt
    n_steps = 0
    for k, t_out in enumerate(time_grid[1:], start=1):
        while t < t_out:
            increment, used_dt, dt = settings.step(rhs, y, t, min(dt, t_out - t))
            y = y + increment
            t = float(t_out) if used_dt == t_out - t else t + used_dt
            n_steps += 1
        states[k] = y
    return states, n_steps


def save_sir_plot(
    time: np.ndarray,
    states: np.ndarray,
    *,
    title: str,
    out_path: Path,
) -> None:
    """Plot S, I, R trajectories and save to disk.

    Args:
        time: Output times.
        states: State history, shape (n_outputs, 3).
        title: Figure title.
        out_path: Destination PNG path.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(8, 4.5))
    for idx, label in enumerate(("S", "I", "R")):
        ax.plot(time, states[:, idx], label=label)
    ax.set_xlabel("time")
    ax.set_ylabel("fraction")
    ax.set_title(title)
    ax.legend()
    fig.tight_layout()
    fig.savefig(out_path, dpi=120)
    plt.close(fig)


def main() -> None:
    """Run SIR at two tolerances and save one plot per run.

    Files are written to: examples/output/sir/
    """
    # ---------------------------------------------------------------------
    # Model parameters
    # ---------------------------------------------------------------------
    beta = 0.30
    gamma = 1.0 / 7.0
    initial_infected = 0.01
    time_grid = np.linspace(0.0, 160.0, 161)

    # ---------------------------------------------------------------------
    # Loose and tight tolerances on the same output grid
    # ---------------------------------------------------------------------
    for tolerance in (1e-4, 1e-9):
        settings = StepperSettings(tolerance=tolerance, max_next_dt=5.0)
        states, n_steps = run_sir(
            time_grid,
            beta=beta,
            gamma=gamma,
            initial_infected=initial_infected,
            settings=settings,
        )
        drift = compute_conservation_drift(states)
        print(  # noqa: T201
            f"tolerance={tolerance:g}: {n_steps} steps, conservation drift={drift:.2e}"
        )
        save_sir_plot(
            time_grid,
            states,
            title=f"SIR via rkf45_step (tolerance={tolerance:g}, {n_steps} steps)",
            out_path=_OUTPUT_DIR / f"simple_sir_tol_{tolerance:g}.png",
        )


if __name__ == "__main__":
    main()
