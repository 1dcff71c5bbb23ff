import math
import pytest
import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spsla

from krysolve.algebra.solver import (Solver, SolverError, SolverErrorMsg, SolverStatus, LinearOperator,
                                     VectorWindow, sym_ortho, roots_quadratic, to_boundary)
from krysolve.common.flog import Logger

# -----------------------------------------------------------------------------
#! Givens reflection
# -----------------------------------------------------------------------------

class TestSymOrtho:

    @pytest.mark.parametrize("a, b", [
        (3.0, 4.0), (-3.0, 4.0), (3.0, -4.0), (4.0, 3.0), (-4.0, -3.0),
        (1.0, 1e-20), (1e-20, 1.0), (1e300, 1e300), (-1e300, 1e299), (1e-300, -1e-300),
    ])
    def test_reflection_annihilates_second_entry(self, a, b):
        """[c s; s -c] [a; b] = [rho; 0] with c^2 + s^2 = 1 and no overflow."""
        c, s, rho = sym_ortho(a, b)
        assert math.isfinite(rho) and rho > 0
        assert math.isclose(c * c + s * s, 1.0, rel_tol=1e-14)
        assert math.isclose(c * a + s * b, rho, rel_tol=1e-14)
        assert abs(s * a - c * b) <= 1e-14 * rho

    def test_hypotenuse_matches(self):
        c, s, rho = sym_ortho(3.0, 4.0)
        assert rho == pytest.approx(5.0)
        assert c == pytest.approx(0.6)
        assert s == pytest.approx(0.8)

    @pytest.mark.parametrize("a, b, expected", [
        (0.0, 0.0, (1.0, 0.0, 0.0)),
        (2.5, 0.0, (1.0, 0.0, 2.5)),
        (-2.5, 0.0, (-1.0, 0.0, 2.5)),
        (0.0, 7.0, (0.0, 1.0, 7.0)),
        (0.0, -7.0, (0.0, -1.0, 7.0)),
    ])
    def test_degenerate_inputs(self, a, b, expected):
        """A zero entry gives the documented sign conventions."""
        assert sym_ortho(a, b) == expected

    def test_returns_python_floats(self):
        out = sym_ortho(np.float32(1.0), np.float64(2.0))
        assert all(type(v) is float for v in out)

# -----------------------------------------------------------------------------
#! Quadratic roots
# -----------------------------------------------------------------------------

class TestRootsQuadratic:

    def test_two_real_roots(self):
        roots = sorted(roots_quadratic(1.0, -3.0, 2.0))
        np.testing.assert_allclose(roots, [1.0, 2.0], rtol=1e-14)

    def test_no_real_roots(self):
        assert roots_quadratic(1.0, 0.0, 1.0) == ()

    def test_linear_case(self):
        assert roots_quadratic(0.0, 2.0, -4.0) == (2.0,)

    def test_constant_cases(self):
        assert roots_quadratic(0.0, 0.0, 1.0) == ()
        assert roots_quadratic(0.0, 0.0, 0.0) == (0.0,)

    def test_ill_conditioned_small_root_is_refined(self):
        """x^2 - 1e8 x + 1 keeps its tiny root after the Newton refinement."""
        roots = sorted(roots_quadratic(1.0, -1e8, 1.0))
        assert roots[0] == pytest.approx(1e-8, rel=1e-6)
        assert roots[1] == pytest.approx(1e8, rel=1e-12)

    def test_roots_satisfy_polynomial(self):
        q2, q1, q0 = 2.0, 3.0, -7.0
        for r in roots_quadratic(q2, q1, q0):
            assert abs((q2 * r + q1) * r + q0) < 1e-12

# -----------------------------------------------------------------------------
#! Trust-region step
# -----------------------------------------------------------------------------

class TestToBoundary:

    def test_from_origin(self):
        x = np.zeros(3)
        d = np.array([1.0, 0.0, 0.0])
        t1, t2 = to_boundary(x, d, 2.0)
        assert sorted((t1, t2)) == pytest.approx([-2.0, 2.0])

    def test_interior_point(self):
        x = np.array([1.0, 0.0])
        d = np.array([1.0, 0.0])
        t1, t2 = to_boundary(x, d, 2.0)
        assert sorted((t1, t2)) == pytest.approx([-3.0, 1.0])
        for t in (t1, t2):
            assert np.linalg.norm(x + t * d) == pytest.approx(2.0)

    def test_flip_reverses_direction(self):
        x = np.array([1.0, 0.0])
        d = np.array([1.0, 0.0])
        t1, t2 = to_boundary(x, d, 2.0, flip=True)
        assert sorted((t1, t2)) == pytest.approx([-1.0, 3.0])
        for t in (t1, t2):
            assert np.linalg.norm(x - t * d) == pytest.approx(2.0)

    def test_precomputed_norms(self):
        np.random.seed(3)
        x = 0.1 * np.random.randn(5)
        d = np.random.randn(5)
        ref = to_boundary(x, d, 1.5)
        out = to_boundary(x, d, 1.5, xnorm2=float(x @ x), dnorm2=float(d @ d))
        np.testing.assert_allclose(sorted(out), sorted(ref), rtol=1e-12)

    @pytest.mark.parametrize("x, d, radius", [
        (np.zeros(2), np.ones(2), 0.0),
        (np.zeros(2), np.ones(2), -1.0),
        (np.zeros(2), np.zeros(2), 1.0),
        (np.array([3.0, 0.0]), np.ones(2), 1.0),
    ])
    def test_invalid_inputs_raise(self, x, d, radius):
        with pytest.raises(SolverError) as err:
            to_boundary(x, d, radius)
        assert err.value.code == SolverErrorMsg.INVALID_INPUT

# -----------------------------------------------------------------------------
#! Vector window and statuses
# -----------------------------------------------------------------------------

def test_vector_window_lags():
    """Lag 0 is the newest vector; pushing drops the oldest one."""
    template = np.zeros(2)
    w = VectorWindow(2, template)
    assert len(w) == 2
    np.testing.assert_array_equal(w[0], template)

    w.push(np.array([1.0, 1.0]))
    w.push(np.array([2.0, 2.0]))
    w.push(np.array([3.0, 3.0]))
    np.testing.assert_array_equal(w[0], [3.0, 3.0])
    np.testing.assert_array_equal(w[1], [2.0, 2.0])

    w.swap()
    np.testing.assert_array_equal(w[0], [2.0, 2.0])
    np.testing.assert_array_equal(w[1], [3.0, 3.0])

    w[1] = np.array([5.0, 5.0])
    np.testing.assert_array_equal(w[1], [5.0, 5.0])
    np.testing.assert_array_equal(w[0], [2.0, 2.0])

def test_status_solved_split():
    solved = [s for s in SolverStatus if s.solved]
    assert SolverStatus.ZERO_RESIDUAL in solved
    assert SolverStatus.ON_BOUNDARY in solved
    for s in (SolverStatus.PROCESSING, SolverStatus.INCONSISTENT, SolverStatus.ILL_CONDITIONED,
              SolverStatus.ILL_CONDITIONED_MACH, SolverStatus.BREAKDOWN, SolverStatus.MAX_ITER):
        assert not s.solved
    assert all(isinstance(s.message, str) and s.message for s in SolverStatus)

def test_solver_error_format():
    err = SolverError(SolverErrorMsg.DIM_MISMATCH)
    assert err.code == SolverErrorMsg.DIM_MISMATCH
    assert err.message == "Dim Mismatch"
    assert "DIM_MISMATCH" in str(err) and "106" in str(err)

# -----------------------------------------------------------------------------
#! Operator collaborator
# -----------------------------------------------------------------------------

class TestCreateOperator:

    def setup_method(self):
        np.random.seed(11)
        self.A = np.random.randn(4, 3)
        self.u = np.random.randn(3)
        self.v = np.random.randn(4)

    def _check(self, op):
        assert op.shape == (4, 3)
        np.testing.assert_allclose(op.matvec(self.u), self.A @ self.u, rtol=1e-12)
        np.testing.assert_allclose(op.rmatvec(self.v), self.A.T @ self.v, rtol=1e-12)

    def test_dense(self):
        self._check(Solver.create_operator(self.A))

    def test_sparse(self):
        self._check(Solver.create_operator(sps.csr_matrix(self.A)))

    def test_scipy_linear_operator(self):
        self._check(Solver.create_operator(spsla.aslinearoperator(self.A)))

    def test_callables(self):
        op = Solver.create_operator(lambda u: self.A @ u, rmatvec=lambda v: self.A.T @ v, shape=(4, 3))
        self._check(op)

    def test_passthrough(self):
        op = LinearOperator((4, 3), lambda u: self.A @ u, lambda v: self.A.T @ v)
        assert Solver.create_operator(op) is op

    def test_callable_without_shape_is_square(self):
        op = Solver.create_operator(lambda u: 2.0 * u, n=5)
        assert op.shape == (5, 5)
        assert op.rmatvec is None

    def test_callable_unknown_shape_raises(self):
        with pytest.raises(SolverError):
            Solver.create_operator(lambda u: u)

    def test_one_dimensional_matrix_raises(self):
        with pytest.raises(SolverError) as err:
            Solver.create_operator(np.ones(3))
        assert err.value.code == SolverErrorMsg.INVALID_INPUT

def test_table_row_alignment():
    row = Logger.table_row((3, 1.5e-3, "✗"), (5, 9, 3))
    assert row == "    3" + "  " + " 1.50e-03" + "  " + "  ✗"

def test_logger_console_output(capsys):
    log = Logger(name="krysolve.tests", lvl='warning', use_ts_in_cmd=False)
    log.info("hidden")
    log.warning("shown", lvl=1)
    log.error("muted", verbose=False)
    log.say("a", "b", log='error', end=False)
    out = capsys.readouterr().out.splitlines()
    assert out == ["[WARNING] \t->shown", "[ERROR] a b"]

def test_logger_title_width(capsys):
    log = Logger(name="krysolve.tests.title", use_ts_in_cmd=False)
    log.title("MINRES-QLP", 30, '=')
    line = capsys.readouterr().out.strip()
    assert line.startswith("[INFO] ==========MINRES-QLP")
    assert len(line) == len("[INFO] ") + 30
