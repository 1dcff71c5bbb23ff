'''
Tests of TriCG on symmetric quasi-definite block systems

    [ tau E   A  ] [x]   [b]
    [  A^T  nu F ] [y] = [c].
'''

import pytest
import numpy as np

from krysolve.algebra.solver import SolverError, SolverErrorMsg, SolverStatus
from krysolve.algebra.solvers.tricg import TriCGSolver
from krysolve.algebra.preconditioners import IdentityPreconditioner

# -----------------------------------------------------------------------------

def _block_solution(A, b, c, tau, nu, e=None, f=None):
    """Dense reference solution of the block system."""
    m, n    = A.shape
    e       = np.eye(m) if e is None else np.diag(e)
    f       = np.eye(n) if f is None else np.diag(f)
    K       = np.block([[tau * e, A], [A.T, nu * f]])
    sol     = np.linalg.solve(K, np.concatenate([b, c]))
    return sol[:m], sol[m:]

def _problem(m, n, seed, scale=None):
    rng = np.random.RandomState(seed)
    A   = rng.randn(m, n)
    if scale is not None:
        A = scale * A / np.linalg.norm(A, 2)
    return A, rng.randn(m), rng.randn(n)

def _check(result, x_ref, y_ref, tol=1e-6):
    err = np.linalg.norm(np.concatenate([result.x - x_ref, result.y - y_ref]))
    ref = np.linalg.norm(np.concatenate([x_ref, y_ref]))
    assert err / ref < tol, f"relative error {err / ref:.2e}"

# -----------------------------------------------------------------------------

class TestTriCG:

    def test_sqd_default(self):
        """Default tau = 1, nu = -1."""
        A, b, c = _problem(8, 5, seed=0)
        result = TriCGSolver.solve(A, b, c=c)
        assert result.converged
        assert result.flag == SolverStatus.SOLVED
        assert result.x.shape == (8,) and result.y.shape == (5,)
        _check(result, *_block_solution(A, b, c, 1.0, -1.0))

    def test_explicit_diagonal_scalars(self):
        A, b, c = _problem(6, 9, seed=1)
        result = TriCGSolver.solve(A, b, c=c, tau=2.0, nu=-3.0)
        assert result.converged
        _check(result, *_block_solution(A, b, c, 2.0, -3.0))

    def test_flip(self):
        A, b, c = _problem(7, 4, seed=2)
        result = TriCGSolver.solve(A, b, c=c, flip=True)
        assert result.converged
        _check(result, *_block_solution(A, b, c, -1.0, 1.0))

    def test_spd(self):
        """[I A; A^T I] is positive definite for ||A|| < 1."""
        A, b, c = _problem(6, 6, seed=3, scale=0.5)
        result = TriCGSolver.solve(A, b, c=c, spd=True)
        assert result.converged
        _check(result, *_block_solution(A, b, c, 1.0, 1.0))

    def test_snd(self):
        A, b, c = _problem(5, 7, seed=4, scale=0.5)
        result = TriCGSolver.solve(A, b, c=c, snd=True)
        assert result.converged
        _check(result, *_block_solution(A, b, c, -1.0, -1.0))

    def test_preconditioned_blocks(self):
        """
        M and N apply E^{-1} and F^{-1}, so the blocks become tau E and nu F.
        """
        A, b, c = _problem(8, 6, seed=5)
        e = np.linspace(1.0, 4.0, 8)
        f = np.linspace(0.5, 2.0, 6)
        result = TriCGSolver.solve(A, b, c=c, precond_apply=lambda r: r / e, N=lambda r: r / f)
        assert result.converged
        _check(result, *_block_solution(A, b, c, 1.0, -1.0, e=e, f=f), tol=1e-5)

    def test_warm_restart(self):
        A, b, c = _problem(6, 4, seed=6)
        x_ref, y_ref = _block_solution(A, b, c, 1.0, -1.0)
        rng = np.random.RandomState(7)

        result = TriCGSolver.solve(A, b, rng.randn(6), c=c, y0=rng.randn(4))
        assert result.converged
        _check(result, x_ref, y_ref)

        # restart from the solution stops at once
        result = TriCGSolver.solve(A, b, x_ref, c=c, y0=y_ref)
        assert result.converged
        assert result.iterations == 0

    @pytest.mark.parametrize("m, n", [(8, 5), (10, 4), (12, 3), (20, 2), (5, 8), (3, 11)])
    def test_unbalanced_blocks(self, m, n):
        """
        The shorter basis is exhausted first and stops growing, the solve ends
        once the other one follows.
        """
        A, b, c = _problem(m, n, seed=m * n)
        result = TriCGSolver.solve(A, b, c=c)
        assert result.flag == SolverStatus.SOLVED
        assert result.iterations <= min(m, n) + 1
        _check(result, *_block_solution(A, b, c, 1.0, -1.0))

    def test_unbalanced_blocks_flip(self):
        A, b, c = _problem(11, 3, seed=15)
        result = TriCGSolver.solve(A, b, c=c, flip=True)
        assert result.converged
        _check(result, *_block_solution(A, b, c, -1.0, 1.0))

    def test_identity_preconditioners_match_none(self):
        A, b, c = _problem(9, 5, seed=16)
        plain = TriCGSolver.solve(A, b, c=c)
        ident = TriCGSolver.solve(A, b, c=c, precond_apply=lambda r: r, N=IdentityPreconditioner(backend='numpy'))
        assert ident.converged
        assert ident.iterations == plain.iterations
        np.testing.assert_allclose(ident.x, plain.x, rtol=1e-8, atol=1e-12)
        np.testing.assert_allclose(ident.y, plain.y, rtol=1e-8, atol=1e-12)

    def test_restart_from_own_result(self):
        A, b, c = _problem(10, 6, seed=17)
        first = TriCGSolver.solve(A, b, c=c)
        assert first.converged
        again = TriCGSolver.solve(A, b, first.x, c=c, y0=first.y)
        assert again.converged
        assert again.iterations <= 1
        np.testing.assert_allclose(again.x, first.x, rtol=1e-6, atol=1e-10)
        np.testing.assert_allclose(again.y, first.y, rtol=1e-6, atol=1e-10)

    def test_matrix_free(self):
        A, b, c = _problem(9, 3, seed=8)
        result = TriCGSolver.solve(lambda v: A @ v, b, c=c, rmatvec=lambda u: A.T @ u, shape=A.shape)
        assert result.converged
        _check(result, *_block_solution(A, b, c, 1.0, -1.0))

    def test_history(self):
        A, b, c = _problem(5, 5, seed=9)
        result = TriCGSolver.solve(A, b, c=c, history=True)
        assert len(result.residuals) == result.iterations + 1
        assert result.residuals[0] == pytest.approx(np.hypot(np.linalg.norm(b), np.linalg.norm(c)))
        assert result.residuals[-1] == pytest.approx(result.residual_norm)

    def test_zero_tau_breaks_down(self):
        """The first pivot is tau."""
        A, b, c = _problem(4, 3, seed=10)
        result = TriCGSolver.solve(A, b, c=c, tau=0.0)
        assert result.flag == SolverStatus.BREAKDOWN
        assert not result.converged
        assert result.iterations == 0

class TestTriCGInputs:

    @pytest.mark.parametrize("flags", [
        {"spd": True, "flip": True},
        {"snd": True, "flip": True},
        {"spd": True, "snd": True},
    ])
    def test_conflicting_presets(self, flags):
        A, b, c = _problem(3, 2, seed=0)
        with pytest.raises(SolverError) as err:
            TriCGSolver.solve(A, b, c=c, **flags)
        assert err.value.code == SolverErrorMsg.INVALID_INPUT

    def test_zero_rhs_blocks_raise(self):
        A, b, c = _problem(3, 2, seed=0)
        with pytest.raises(SolverError):
            TriCGSolver.solve(A, np.zeros(3), c=c)
        with pytest.raises(SolverError):
            TriCGSolver.solve(A, b, c=np.zeros(2))

    def test_restart_with_preconditioner_raises(self):
        A, b, c = _problem(3, 2, seed=0)
        with pytest.raises(SolverError) as err:
            TriCGSolver.solve(A, b, np.ones(3), c=c, precond_apply=lambda r: r)
        assert err.value.code == SolverErrorMsg.PRECOND_INVALID

    def test_block_length_mismatch(self):
        A, b, c = _problem(3, 2, seed=0)
        with pytest.raises(SolverError) as err:
            TriCGSolver.solve(A, b, c=np.ones(3))
        assert err.value.code == SolverErrorMsg.DIM_MISMATCH
