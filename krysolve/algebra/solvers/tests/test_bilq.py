'''
Tests of the BiLQ solver for square unsymmetric systems.
'''

import pytest
import numpy as np
import scipy.sparse as sps

from krysolve.algebra.solver import SolverError, SolverErrorMsg, SolverStatus
from krysolve.algebra.solvers.bilq import BiLQSolver
from krysolve.algebra.preconditioners import IdentityPreconditioner

# -----------------------------------------------------------------------------

def _unsymmetric(n, seed=0):
    """Well conditioned unsymmetric matrix, eigenvalues clustered around 3."""
    rng = np.random.RandomState(seed)
    return 3.0 * np.eye(n) + rng.randn(n, n) / np.sqrt(n)

def _relative_residual(a, x, b):
    return np.linalg.norm(b - a @ x) / np.linalg.norm(b)

# -----------------------------------------------------------------------------

class TestBiLQ:

    def test_unsymmetric_converges(self):
        n = 20
        np.random.seed(0)
        A = _unsymmetric(n)
        b = np.random.randn(n)

        result = BiLQSolver.solve(A, b)
        assert result.converged
        assert result.flag in (SolverStatus.SOLVED_CG, SolverStatus.SOLVED_LQ)
        assert _relative_residual(A, result.x, b) < 1e-6

    def test_lq_iterate_without_transfer(self):
        n = 20
        np.random.seed(1)
        A = _unsymmetric(n, seed=1)
        b = np.random.randn(n)

        result = BiLQSolver.solve(A, b, transfer_to_bicg=False)
        assert result.converged
        assert result.flag == SolverStatus.SOLVED_LQ
        assert _relative_residual(A, result.x, b) < 1e-6

    def test_transfer_agrees_with_lq(self):
        """Both stopping points approximate the same solution."""
        n = 16
        np.random.seed(2)
        A = _unsymmetric(n, seed=2)
        b = np.random.randn(n)
        x_true = np.linalg.solve(A, b)

        cg = BiLQSolver.solve(A, b, rtol=1e-10)
        lq = BiLQSolver.solve(A, b, rtol=1e-10, transfer_to_bicg=False)
        np.testing.assert_allclose(cg.x, x_true, rtol=1e-5, atol=1e-7)
        np.testing.assert_allclose(lq.x, x_true, rtol=1e-5, atol=1e-7)

    def test_explicit_shadow_vector(self):
        n = 18
        np.random.seed(3)
        A = _unsymmetric(n, seed=3)
        b = np.random.randn(n)
        c = np.random.randn(n)

        result = BiLQSolver.solve(A, b, c=c)
        assert result.converged
        assert _relative_residual(A, result.x, b) < 1e-6

    def test_sparse_operator(self):
        n = 50
        A = sps.diags([-1.0, 3.0, -0.5], [-1, 0, 1], shape=(n, n)).tocsr()
        b = np.ones(n)

        result = BiLQSolver.solve(A, b)
        assert result.converged
        assert _relative_residual(A.toarray(), result.x, b) < 1e-6

    def test_matrix_free_with_adjoint(self):
        n = 12
        np.random.seed(4)
        A = _unsymmetric(n, seed=4)
        b = np.random.randn(n)

        result = BiLQSolver.solve(lambda v: A @ v, b, rmatvec=lambda u: A.T @ u)
        assert result.converged
        assert _relative_residual(A, result.x, b) < 1e-6

    def test_warm_restart(self):
        n = 15
        np.random.seed(5)
        A = _unsymmetric(n, seed=5)
        b = np.random.randn(n)
        x_true = np.linalg.solve(A, b)

        result = BiLQSolver.solve(A, b, x0=np.random.randn(n), rtol=1e-10)
        assert result.converged
        np.testing.assert_allclose(result.x, x_true, rtol=1e-5, atol=1e-7)

    def test_restart_from_own_result(self):
        """A converged iterate passed back as x0 is accepted as it is."""
        n = 20
        np.random.seed(14)
        A = _unsymmetric(n, seed=14)
        b = np.random.randn(n)

        first = BiLQSolver.solve(A, b)
        assert first.converged
        again = BiLQSolver.solve(A, b, x0=first.x)
        assert again.converged
        assert again.iterations <= 1
        np.testing.assert_allclose(again.x, first.x, rtol=1e-6, atol=1e-10)

    def test_history(self):
        n = 10
        np.random.seed(6)
        A = _unsymmetric(n, seed=6)
        b = np.random.randn(n)

        result = BiLQSolver.solve(A, b, history=True)
        assert len(result.residuals) == result.iterations + 1
        assert result.residuals[0] == pytest.approx(np.linalg.norm(b))
        assert result.aresiduals == ()

    def test_maxiter(self):
        n = 30
        np.random.seed(7)
        A = _unsymmetric(n, seed=7)
        b = np.random.randn(n)

        result = BiLQSolver.solve(A, b, maxiter=2)
        assert result.flag == SolverStatus.MAX_ITER
        assert result.iterations == 2
        assert not result.converged

class TestBiLQEdgeCases:

    def test_zero_rhs(self):
        result = BiLQSolver.solve(np.eye(3), np.zeros(3))
        assert result.converged
        assert result.flag == SolverStatus.ZERO_RESIDUAL
        assert result.iterations == 0
        np.testing.assert_array_equal(result.x, np.zeros(3))

    def test_orthogonal_shadow_vector_breaks_down(self):
        """b^T c = 0 stops before the first iteration."""
        A = np.diag([1.0, 2.0, 3.0])
        b = np.array([1.0, 0.0, 0.0])
        c = np.array([0.0, 1.0, 0.0])

        result = BiLQSolver.solve(A, b, c=c)
        assert result.flag == SolverStatus.BREAKDOWN
        assert result.status == "Breakdown bᵀc = 0"
        assert result.iterations == 0
        assert not result.converged
        np.testing.assert_array_equal(result.x, np.zeros(3))

    def test_preconditioner_rejected(self):
        with pytest.raises(SolverError) as err:
            BiLQSolver.solve(np.eye(3), np.ones(3), precond_apply=IdentityPreconditioner(backend='numpy'))
        assert err.value.code == SolverErrorMsg.PRECOND_INVALID

    def test_missing_adjoint_raises(self):
        with pytest.raises(SolverError) as err:
            BiLQSolver.solve(lambda v: v, np.ones(3))
        assert err.value.code == SolverErrorMsg.MATVEC_FUNC_NOT_SET

    def test_shadow_vector_length_mismatch(self):
        with pytest.raises(SolverError) as err:
            BiLQSolver.solve(np.eye(3), np.ones(3), c=np.ones(2))
        assert err.value.code == SolverErrorMsg.DIM_MISMATCH
