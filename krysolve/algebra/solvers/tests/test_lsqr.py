'''
Tests of LSQR on consistent, overdetermined, damped, weighted and
trust-region constrained least-squares problems.
'''

import pytest
import numpy as np

from krysolve.algebra.solver import SolverError, SolverErrorMsg, SolverStatus
from krysolve.algebra.solvers.lsqr import LsqrSolver
from krysolve.algebra.preconditioners import IdentityPreconditioner

# -----------------------------------------------------------------------------

def _rel(x, ref):
    return np.linalg.norm(x - ref) / np.linalg.norm(ref)

# -----------------------------------------------------------------------------

def test_lsqr_small_spd_history():
    """
    4x4 SPD system: the residual history is monotone and ends small.
    """
    A = np.array([[4.0, 1.0, 0.0, 0.0],
                  [1.0, 4.0, 1.0, 0.0],
                  [0.0, 1.0, 4.0, 1.0],
                  [0.0, 0.0, 1.0, 4.0]])
    b = np.array([1.0, 2.0, 3.0, 4.0])

    result = LsqrSolver.solve(A, b, history=True)
    assert result.converged
    assert len(result.residuals) == result.iterations + 1
    assert len(result.aresiduals) == result.iterations + 1
    assert result.residuals[0] == pytest.approx(np.linalg.norm(b))
    assert all(r1 <= r0 * (1.0 + 1e-12) for r0, r1 in zip(result.residuals, result.residuals[1:]))
    assert _rel(result.x, np.linalg.solve(A, b)) < 1e-6

def test_lsqr_overdetermined():
    """
    Inconsistent overdetermined problem against numpy's lstsq.
    """
    np.random.seed(0)
    A = np.random.randn(30, 10)
    b = np.random.randn(30)
    x_ls = np.linalg.lstsq(A, b, rcond=None)[0]

    result = LsqrSolver.solve(A, b)
    print(f"LSQR: {result.status} after {result.iterations} iterations")
    assert result.converged
    assert result.inconsistent
    assert _rel(result.x, x_ls) < 1e-5
    assert result.residual_norm == pytest.approx(np.linalg.norm(b - A @ x_ls), rel=1e-6)

def test_lsqr_underdetermined_minimum_norm():
    np.random.seed(1)
    A = np.random.randn(6, 15)
    b = np.random.randn(6)
    x_mn = np.linalg.pinv(A) @ b

    result = LsqrSolver.solve(A, b)
    assert result.converged
    assert _rel(result.x, x_mn) < 1e-5

def test_lsqr_damped():
    """
    min ||b - A x||^2 + lam^2 ||x||^2 against the regularized normal equations.
    """
    np.random.seed(2)
    A = np.random.randn(25, 8)
    b = np.random.randn(25)
    lam = 0.7
    x_ref = np.linalg.solve(A.T @ A + lam ** 2 * np.eye(8), A.T @ b)

    result = LsqrSolver.solve(A, b, lam=lam)
    assert result.converged
    assert _rel(result.x, x_ref) < 1e-5

def test_lsqr_sqd_is_unit_damping():
    np.random.seed(3)
    A = np.random.randn(12, 7)
    b = np.random.randn(12)

    sqd = LsqrSolver.solve(A, b, sqd=True)
    damped = LsqrSolver.solve(A, b, lam=1.0)
    np.testing.assert_allclose(sqd.x, damped.x, rtol=1e-12, atol=1e-14)

def test_lsqr_weighted_residual():
    """
    The preconditioner M weights the residual norm, N leaves the unique
    least-squares solution unchanged.
    """
    np.random.seed(4)
    A = np.random.randn(20, 6)
    b = np.random.randn(20)
    w = np.linspace(0.5, 2.0, 20)
    x_ref = np.linalg.solve(A.T @ (w[:, None] * A), A.T @ (w * b))

    result = LsqrSolver.solve(A, b, precond_apply=lambda r: w * r, N=lambda r: r / 3.0)
    assert result.converged
    assert _rel(result.x, x_ref) < 1e-5

def test_lsqr_trust_region():
    """
    The step is clipped to ||x|| = radius.
    """
    A = np.eye(4)
    b = 10.0 * np.ones(4)

    result = LsqrSolver.solve(A, b, radius=1.0)
    assert result.flag == SolverStatus.ON_BOUNDARY
    assert result.converged
    assert np.linalg.norm(result.x) == pytest.approx(1.0)
    np.testing.assert_allclose(result.x, 0.5 * np.ones(4))

def test_lsqr_zero_least_squares():
    """
    A^T b = 0: x = 0 is a least-squares solution and no iteration runs.
    """
    A = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]])
    b = np.array([0.0, 0.0, 1.0])

    result = LsqrSolver.solve(A, b)
    assert result.flag == SolverStatus.ZERO_LEAST_SQUARES
    assert result.converged
    assert result.iterations == 0
    assert result.residual_norm == pytest.approx(1.0)
    np.testing.assert_array_equal(result.x, np.zeros(2))

def test_lsqr_zero_rhs():
    result = LsqrSolver.solve(np.ones((3, 2)), np.zeros(3), history=True)
    assert result.flag == SolverStatus.ZERO_RESIDUAL
    assert result.residuals == (0.0,)
    assert result.aresiduals == (0.0,)
    np.testing.assert_array_equal(result.x, np.zeros(2))

def test_lsqr_warm_restart():
    np.random.seed(5)
    A = np.random.randn(18, 9)
    b = np.random.randn(18)
    x_ls = np.linalg.lstsq(A, b, rcond=None)[0]

    result = LsqrSolver.solve(A, b, x0=np.random.randn(9))
    assert result.converged
    assert _rel(result.x, x_ls) < 1e-5

def test_lsqr_restart_from_own_result():
    """
    Three distinct singular values: Golub-Kahan terminates after three steps,
    and the converged iterate passed back as x0 passes the ||b|| based test.
    """
    rng = np.random.RandomState(9)
    u, _ = np.linalg.qr(rng.randn(15, 9))
    v, _ = np.linalg.qr(rng.randn(9, 9))
    A = (u * np.repeat([1.0, 2.0, 3.0], 3)) @ v.T
    b = A @ rng.randn(9)

    first = LsqrSolver.solve(A, b)
    assert first.converged
    again = LsqrSolver.solve(A, b, x0=first.x)
    assert again.converged
    assert again.iterations <= 1
    np.testing.assert_allclose(again.x, first.x, rtol=1e-6, atol=1e-10)

def test_lsqr_identity_preconditioners_match_none():
    np.random.seed(10)
    A = np.random.randn(16, 7)
    b = np.random.randn(16)

    plain = LsqrSolver.solve(A, b)
    ident = LsqrSolver.solve(A, b, precond_apply=IdentityPreconditioner(backend='numpy'), N=lambda r: r)
    assert ident.converged
    assert ident.iterations == plain.iterations
    np.testing.assert_allclose(ident.x, plain.x, rtol=1e-10, atol=1e-12)

def test_lsqr_matrix_free():
    np.random.seed(6)
    A = np.random.randn(14, 5)
    b = np.random.randn(14)

    result = LsqrSolver.solve(lambda v: A @ v, b, rmatvec=lambda u: A.T @ u, shape=A.shape)
    assert result.converged
    assert _rel(result.x, np.linalg.lstsq(A, b, rcond=None)[0]) < 1e-5

def test_lsqr_instance():
    np.random.seed(7)
    A = np.random.randn(16, 4)
    b = np.random.randn(16)

    solver = LsqrSolver(a=A, verbose=1)
    result = solver.solve_instance(b)
    assert solver.converged
    assert result.x.shape == (4,)

def test_lsqr_maxiter():
    np.random.seed(8)
    A = np.random.randn(40, 20)
    b = np.random.randn(40)

    result = LsqrSolver.solve(A, b, maxiter=2)
    assert result.flag == SolverStatus.MAX_ITER
    assert result.iterations == 2
    assert not result.converged

class TestLsqrInputs:

    @pytest.mark.parametrize("kwargs", [{"lam": -1.0}, {"radius": -1.0}, {"window": 0}])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(SolverError) as err:
            LsqrSolver.solve(np.ones((3, 2)), np.ones(3), **kwargs)
        assert err.value.code == SolverErrorMsg.INVALID_INPUT

    def test_rhs_length_mismatch(self):
        with pytest.raises(SolverError) as err:
            LsqrSolver.solve(np.ones((3, 2)), np.ones(2))
        assert err.value.code == SolverErrorMsg.DIM_MISMATCH

    def test_missing_adjoint(self):
        with pytest.raises(SolverError) as err:
            LsqrSolver.solve(lambda v: v, np.ones(3), shape=(3, 3))
        assert err.value.code == SolverErrorMsg.MATVEC_FUNC_NOT_SET
