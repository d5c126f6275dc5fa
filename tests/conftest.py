"""Global pytest configuration and shared fixtures for fehlberg."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pytest
from scipy.sparse import csr_matrix, diags

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Shared problem definitions
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class DiffusionProblem:
    """1D diffusion u_t = D u_xx on [0, 1] with absorbing boundaries.

    Attributes:
        grid: Interior grid points.
        laplacian: Sparse D * Laplacian (CSR).
        u0: Initial field.
    """

    grid: FloatArray
    laplacian: csr_matrix
    u0: FloatArray

    def rhs(self, u: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        """Value-returning derivative."""
        return self.laplacian @ u

    def rhs_into(self, u: FloatArray, t: float, out: FloatArray) -> None:  # noqa: ARG002
        """In-place derivative."""
        out[...] = self.laplacian @ u


def build_diffusion_problem(n: int = 64, diffusivity: float = 0.05) -> DiffusionProblem:
    """Build a small diffusion problem with a two-mode initial condition.

    Args:
        n: Number of interior grid points.
        diffusivity: Diffusion coefficient D.

    Returns:
        DiffusionProblem instance.
    """
    dx = 1.0 / (n + 1)
    grid = np.linspace(dx, 1.0 - dx, n)
    main = -2.0 * np.ones(n)
    off = np.ones(n - 1)
    laplacian = diags([off, main, off], [-1, 0, 1], shape=(n, n)) * (
        diffusivity / dx**2
    )
    u0 = np.sin(np.pi * grid) + 0.3 * np.sin(3 * np.pi * grid)
    return DiffusionProblem(grid=grid, laplacian=csr_matrix(laplacian), u0=u0)


def nonlinear_rhs(x: FloatArray, t: float) -> FloatArray:
    """Smooth nonlinear, time-dependent vector field."""
    return np.sin(x) * np.cos(t) - 0.5 * x**2 + x[::-1]


def nonlinear_rhs_into(x: FloatArray, t: float, out: FloatArray) -> None:
    """In-place twin of nonlinear_rhs."""
    out[...] = np.sin(x) * np.cos(t) - 0.5 * x**2 + x[::-1]


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def diffusion_problem() -> DiffusionProblem:
    """Return a fresh 1D diffusion problem."""
    return build_diffusion_problem()


@pytest.fixture
def rng() -> np.random.Generator:
    """Return a seeded random generator."""
    return np.random.default_rng(20240611)


@pytest.fixture
def nonlinear_pair() -> tuple[
    Callable[[FloatArray, float], FloatArray],
    Callable[[FloatArray, float, FloatArray], None],
]:
    """Return (value-returning, in-place) versions of the same vector field."""
    return nonlinear_rhs, nonlinear_rhs_into
