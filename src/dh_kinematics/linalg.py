"""Dense linear solves for the resolved-rate controller."""

from typing import Tuple

import jax
import jax.numpy as jnp
from jax import Array

PIVOT_EPS = 1e-9


@jax.jit
def solve_linear_system(A: Array, b: Array, eps: float = PIVOT_EPS) -> Tuple[Array, Array]:
    """Solve A x = b by Gauss-Jordan elimination with partial pivoting.

    Works for any square system size. If the largest available pivot in a
    column falls below eps the system is treated as degenerate and the zero
    vector is returned.

    Args:
        A: (n, n) matrix
        b: (n,) right-hand side
        eps: Pivot magnitude threshold

    Returns:
        Tuple (x, degenerate) with x of shape (n,) and a boolean scalar that
        is True when the zero solution was substituted.
    """
    n = A.shape[0]
    M = jnp.concatenate([A, b[:, None]], axis=1)
    rows = jnp.arange(n)

    def eliminate(k, carry):
        M, degenerate = carry

        # Partial pivot among rows k..n-1; first maximum wins ties
        column = jnp.where(rows >= k, jnp.abs(M[:, k]), -1.0)
        piv = jnp.argmax(column)
        degenerate = degenerate | (column[piv] < eps)

        row_k, row_piv = M[k], M[piv]
        M = M.at[k].set(row_piv).at[piv].set(row_k)

        diag = M[k, k]
        M = M.at[k].set(M[k] / jnp.where(jnp.abs(diag) < eps, 1.0, diag))

        factors = M[:, k].at[k].set(0.0)
        M = M - factors[:, None] * M[k][None, :]
        return M, degenerate

    M, degenerate = jax.lax.fori_loop(0, n, eliminate, (M, jnp.array(False)))
    x = jnp.where(degenerate, jnp.zeros(n, dtype=M.dtype), M[:, n])
    return x, degenerate


@jax.jit
def damped_least_squares(J: Array, e: Array, damping: float) -> Tuple[Array, Array]:
    """Joint step dq = J^T (J J^T + damping^2 I)^-1 e.

    Args:
        J: (m, n) Jacobian
        e: (m,) task-space error
        damping: Damping factor lambda

    Returns:
        Tuple (dq, degenerate) with dq of shape (n,).
    """
    m = J.shape[0]
    A = J @ J.T + (damping * damping) * jnp.eye(m, dtype=J.dtype)
    y, degenerate = solve_linear_system(A, e)
    return J.T @ y, degenerate
