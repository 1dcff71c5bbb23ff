r'''
file:       krysolve/algebra/solver.py
author:     Maksymilian Kliczkowski

Defines the abstract interface and helper structures shared by the Krylov
solvers of this package. Every solver builds, one operator application at a
time, an orthogonal (or biorthogonal) basis of a Krylov subspace

$$
\mathcal{K}_k(A, b) = \mathrm{span}\{ b, Ab, \dots, A^{k-1} b \},
$$

keeps a running factorization of the small projected matrix and uses it to
update the iterate and an estimate of the residual norm

$$
\| r_k \| = \| b - A x_k \|
$$

without ever forming $ r_k $ or the projected matrix explicitly.

The module provides:
    - `SolverType`, `SolverErrorMsg`, `SolverError`, `SolverStatus` and `SolverResult`,
    - `LinearOperator` - the operator collaborator (shape, matvec, rmatvec),
    - `VectorWindow` - fixed ring of the last few vectors of a short recurrence,
    - `IterationLog` - the iteration table printed every `verbose` iterations,
    - the `Solver` base class with the static `solve` interface and the
        convenience instance method `solve_instance`,
    - the numeric primitives `sym_ortho`, `roots_quadratic` and `to_boundary`.
'''

import math
import numpy as np
import numba
import scipy.sparse as sps
import scipy.sparse.linalg as spsla
from typing import Optional, Callable, Union, Any, NamedTuple, Type, Tuple, List
from abc import ABC, abstractmethod
from enum import Enum, IntEnum, auto, unique

# -----------------------------------------------------------------------------

from .utils import JAX_AVAILABLE, Array, get_backend, backend_name, working_dtype, default_tolerance, machine_eps
from .preconditioners import Preconditioner, PreconitionerApplyFun
from ..common.flog import get_global_logger, Logger

# -----------------------------------------------------------------------------
#! Type hints
# -----------------------------------------------------------------------------

MatVecFunc          = Callable[[Array], Array]

# -----------------------------------------------------------------------------

@unique
class SolverType(Enum):
    """
    Enumeration class for the different types of solvers.
    """
    MINRES_QLP      = auto() # Symmetric Lanczos + QR then LQ factorization
    BILQ            = auto() # Biorthogonal Lanczos + LQ factorization
    LSQR            = auto() # Golub-Kahan bidiagonalization + QR factorization
    TRICG           = auto() # Orthogonal tridiagonalization + block LDL^T factorization

# -----------------------------------------------------------------------------
#! Errors
# -----------------------------------------------------------------------------

class SolverErrorMsg(Enum):
    '''
    Enumeration class for solver error messages.
    '''
    MATVEC_FUNC_NOT_SET = 101
    MAT_NOT_SET         = 102
    CONV_FAILED         = 105
    DIM_MISMATCH        = 106
    METHOD_NOT_IMPL     = 109
    PRECOND_INVALID     = 110
    BACKEND_MISMATCH    = 111
    INVALID_INPUT       = 112

    def __str__(self):
        return self.name.replace('_', ' ').title()

    def __repr__(self):
        return f"<{self.__class__.__name__}.{self.name}: '{str(self)}'>"

class SolverError(Exception):
    '''
    Base class for exceptions in the solver module. Raised for invalid inputs
    before the first iteration; numerical outcomes are reported as `SolverStatus`.
    '''
    def __init__(self, code: SolverErrorMsg, message: Optional[str] = None):
        self.code       = code
        self.message    = message if message else str(code)
        super().__init__(self.message)

    def __str__(self):
        return f"[SolverError {self.code.name} ({self.code.value})]: {self.message}"

    def __repr__(self):
        return self.__str__()

# -----------------------------------------------------------------------------
#! Terminal states
# -----------------------------------------------------------------------------

class SolverStatus(IntEnum):
    '''
    Terminal states of a Krylov solve. Values below `INCONSISTENT` mean the
    returned iterate satisfies one of the convergence tests.
    '''
    PROCESSING              = -1
    ZERO_RESIDUAL           = 0     # b = 0 (or b - A x0 = 0), x = 0 solves exactly
    ZERO_LEAST_SQUARES      = 1     # A^T b = 0, x = 0 is a least-squares solution
    SOLVED                  = 2     # ||r|| <= atol + rtol ||b||
    SOLVED_LQ               = 3     # BiLQ iterate converged
    SOLVED_CG               = 4     # BiCG point converged
    LEAST_SQUARES           = 5     # LSQR optimality test satisfied
    ZERO_RESIDUAL_APPROX    = 6     # LSQR residual test satisfied
    FORWARD_ERROR           = 7     # LSQR truncated forward error small
    ON_BOUNDARY             = 8     # LSQR step clipped to the trust region
    INCONSISTENT            = 9     # ||A r|| small while ||r|| is not
    ILL_CONDITIONED_MACH    = 10    # condition estimate beyond machine precision
    ILL_CONDITIONED         = 11    # condition estimate beyond conlim
    BREAKDOWN               = 12    # zero normalizing quantity or pivot
    MAX_ITER                = 13    # iteration limit reached

    @property
    def message(self) -> str:
        return _STATUS_MESSAGES[self]

    @property
    def solved(self) -> bool:
        return 0 <= self.value < SolverStatus.INCONSISTENT.value

_STATUS_MESSAGES = {
    SolverStatus.PROCESSING             : "unknown",
    SolverStatus.ZERO_RESIDUAL          : "x = 0 is a zero-residual solution",
    SolverStatus.ZERO_LEAST_SQUARES     : "x = 0 is a minimum least-squares solution",
    SolverStatus.SOLVED                 : "solution good enough given atol and rtol",
    SolverStatus.SOLVED_LQ              : "solution xᴸ good enough given atol and rtol",
    SolverStatus.SOLVED_CG              : "solution xᶜ good enough given atol and rtol",
    SolverStatus.LEAST_SQUARES          : "found approximate minimum least-squares solution",
    SolverStatus.ZERO_RESIDUAL_APPROX   : "found approximate zero-residual solution",
    SolverStatus.FORWARD_ERROR          : "truncated forward error small enough",
    SolverStatus.ON_BOUNDARY            : "on trust-region boundary",
    SolverStatus.INCONSISTENT           : "found approximate minimum-norm least-squares solution",
    SolverStatus.ILL_CONDITIONED_MACH   : "condition number seems too large for this machine",
    SolverStatus.ILL_CONDITIONED        : "condition number exceeds tolerance",
    SolverStatus.BREAKDOWN              : "breakdown",
    SolverStatus.MAX_ITER               : "maximum number of iterations exceeded",
}

class SolverResult(NamedTuple):
    '''
    Stores the result of a solver's static execution.

    Attributes:
        x (Array):
            The computed solution vector (first block for TriCG).
        converged (bool):
            Whether one of the convergence tests was satisfied.
        iterations (int):
            The number of iterations performed.
        residual_norm (Optional[float]):
            The recurrence estimate of the final residual norm ||b - Ax||.
        inconsistent (bool):
            Whether the system was detected to be inconsistent.
        status (str):
            Human readable terminal state (method specific for breakdowns).
        flag (SolverStatus):
            Machine readable terminal state.
        residuals (tuple):
            Residual norm history (empty unless `history=True`).
        aresiduals (tuple):
            Optimality residual ||A^T r|| history (MINRES-QLP, LSQR).
        y (Array, optional):
            Second block of the solution (TriCG).
    '''
    x               : Array
    converged       : bool
    iterations      : int
    residual_norm   : Optional[float]
    inconsistent    : bool                  = False
    status          : str                   = ""
    flag            : SolverStatus          = SolverStatus.PROCESSING
    residuals       : Tuple[float, ...]     = ()
    aresiduals      : Tuple[float, ...]     = ()
    y               : Optional[Array]       = None

# -----------------------------------------------------------------------------
#! Operator collaborator
# -----------------------------------------------------------------------------

class LinearOperator(NamedTuple):
    '''
    Matrix-free operator: its shape and the products v -> Av and v -> A^T v.
    `rmatvec` may be None for methods that never apply the adjoint.
    '''
    shape           : Tuple[int, int]
    matvec          : MatVecFunc
    rmatvec         : Optional[MatVecFunc]  = None
    dtype           : Optional[np.dtype]    = None

# -----------------------------------------------------------------------------
#! Short-recurrence storage
# -----------------------------------------------------------------------------

class VectorWindow:
    '''
    Fixed ring holding the last `size` vectors of a short recurrence.

    Indexing is by lag: `window[0]` is the newest vector, `window[1]` the one
    before it. `push` overwrites the oldest slot, `swap` exchanges two slots.
    Nothing is ever appended, so the memory of a solve is fixed at start.
    '''

    __slots__ = ('_buf', '_head', '_size')

    def __init__(self, size: int, template: Array, backend_module: Any = np):
        self._size  = int(size)
        self._buf   = [backend_module.zeros_like(template) for _ in range(self._size)]
        self._head  = 0

    def push(self, v: Array) -> None:
        self._head              = (self._head + 1) % self._size
        self._buf[self._head]   = v

    def swap(self, i: int = 0, j: int = 1) -> None:
        a, b                    = (self._head - i) % self._size, (self._head - j) % self._size
        self._buf[a], self._buf[b] = self._buf[b], self._buf[a]

    def __getitem__(self, lag: int) -> Array:
        return self._buf[(self._head - lag) % self._size]

    def __setitem__(self, lag: int, v: Array) -> None:
        self._buf[(self._head - lag) % self._size] = v

    def __len__(self) -> int:
        return self._size

# -----------------------------------------------------------------------------
#! Iteration log
# -----------------------------------------------------------------------------

class IterationLog:
    '''
    Iteration table of a solver, written through the global logger every
    `verbose` iterations. With `verbose = 0` every call is a no-op.
    '''

    def __init__(self, name: str, columns: Tuple[str, ...], verbose: int = 0, width: int = 9):
        self.name       = name
        self.columns    = ("k",) + tuple(columns)
        self.verbose    = int(verbose) if verbose else 0
        self.widths     = [5] + [width] * len(columns)
        self._logger    = get_global_logger() if self.verbose > 0 else None

    def header(self, info: str) -> None:
        if not self.verbose:
            return
        self._logger.title(self.name, 50, '=')
        self._logger.info(info, lvl=1)
        self._logger.info(Logger.table_row(self.columns, self.widths), lvl=1)

    def row(self, k: int, *values) -> None:
        if self.verbose and k % self.verbose == 0:
            self._logger.info(Logger.table_row((int(k),) + values, self.widths), lvl=1)

    def close(self, k: int, status: str) -> None:
        if not self.verbose:
            return
        self._logger.info(f"{self.name}: {status} ({k} iterations)", lvl=1, color='green')

# -----------------------------------------------------------------------------
#! General Solver Abstract Base Class
# -----------------------------------------------------------------------------

class Solver(ABC):
    '''
    Abstract base class for the Krylov solvers.

    Primarily defines the static interface `solve` that the concrete engines
    (MINRES-QLP, BiLQ, LSQR, TriCG) provide. The static interface keeps every
    call self-contained and reentrant: all state lives in the locals of one call.

    Also includes static helpers turning a matrix, a scipy LinearOperator or a
    pair of callables into a `LinearOperator`, validating preconditioners and
    right-hand sides, and an instance method `solve_instance` for convenience
    when working with configured Solver objects.
    '''
    _solver_type    : Optional[SolverType]  = None  # To be set by concrete subclasses
    _name           : str                   = "Solver"

    def __init__(self,
                backend         : str                                       = 'default',
                dtype           : Optional[Type]                            = None,
                # Default parameters for the convenience instance method
                eps             : Optional[float]                           = None,
                maxiter         : Optional[int]                             = None,
                default_precond : Optional[Union[Preconditioner, Callable]] = None,
                # Configuration of the operator (optional)
                a               : Optional[Any]                             = None,
                matvec_func     : Optional[MatVecFunc]                      = None,
                rmatvec_func    : Optional[MatVecFunc]                      = None,
                shape           : Optional[Tuple[int, int]]                 = None,
                verbose         : int                                       = 0):
        '''
        Initializes solver metadata and optionally pre-configures for instance usage.

        Args:
            backend (str):
                Preferred backend ('numpy', 'jax', 'default').
            dtype (Type, optional):
                Working data type; taken from the inputs when None.
            eps (float, optional):
                Default relative tolerance for `solve_instance` (sqrt(eps) of the dtype when None).
            maxiter (int, optional):
                Default max iterations for `solve_instance` (method default when None).
            default_precond (Preconditioner or Callable, optional):
                Preconditioner used when `solve_instance` is called with precond='default'.
            a (matrix-like, optional):
                Dense array, scipy.sparse matrix or scipy LinearOperator.
            matvec_func, rmatvec_func (Callable, optional):
                Explicit products v -> Av and v -> A^T v when no matrix is given.
            shape (tuple, optional):
                Operator shape for callables (square from b when None).
            verbose (int):
                Log the iteration table every `verbose` iterations.
        '''
        self._backend                   = get_backend(backend)
        self._backend_str               = backend_name(self._backend)
        self._isjax                     = JAX_AVAILABLE and self._backend is not np
        self._dtype                     = dtype

        self._default_eps               = eps
        self._default_maxiter           = maxiter
        self._default_precond           = default_precond
        self._conf_a                    = a
        self._conf_matvec_func          = matvec_func
        self._conf_rmatvec_func         = rmatvec_func
        self._conf_shape                = shape
        self._verbose                   = verbose
        self._logger                    = get_global_logger()

        # Store results from last instance solve call
        self._last_result               : Optional[SolverResult] = None

    # -------------------------------------------------------------------------
    #! Static Solve Interface (Core Requirement)
    # -------------------------------------------------------------------------

    @staticmethod
    @abstractmethod
    def solve(
            matvec          : Any,
            b               : Array,
            x0              : Optional[Array]   = None,
            *,
            atol            : Optional[float]   = None,
            rtol            : Optional[float]   = None,
            maxiter         : Optional[int]     = None,
            precond_apply   : Optional[Callable[[Array], Array]] = None,
            backend_module  : Any               = np,
            **kwargs        : Any
            ) -> SolverResult:
        """
        Abstract Static:
            Solves the problem defined by the operator and right-hand side(s).

        Args:
            matvec:
                Function implementing v -> Av, or a matrix-like object
                (dense array, scipy.sparse matrix, scipy LinearOperator, `LinearOperator`).
            b:
                Right-hand side vector.
            x0:
                Warm-restart offset; the engine solves for the correction and adds it back.
            atol, rtol:
                Absolute and relative tolerances (sqrt(eps) of the working dtype when None).
            maxiter:
                Maximum number of iterations (method default when None or 0).
            precond_apply:
                Preconditioner r -> M^{-1} r, assumed symmetric positive definite.
            backend_module:
                The numerical backend module (`numpy` or `jax.numpy`).
            **kwargs:
                Solver-specific keyword arguments.

        Returns:
            SolverResult
        """
        raise NotImplementedError(str(SolverErrorMsg.METHOD_NOT_IMPL))

    # -------------------------------------------------------------------------
    #! Static Helpers for the operator and the inputs
    # -------------------------------------------------------------------------

    @staticmethod
    def create_operator(matvec          : Any,
                        rmatvec         : Optional[MatVecFunc]      = None,
                        shape           : Optional[Tuple[int, int]] = None,
                        n               : Optional[int]             = None,
                        backend_module  : Any                       = np) -> LinearOperator:
        """
        Static Helper:
            Normalizes the operator collaborator into a `LinearOperator`.

        Args:
            matvec:
                `LinearOperator`, scipy LinearOperator, scipy.sparse matrix,
                dense 2D array or a callable v -> Av.
            rmatvec (Callable, optional):
                v -> A^T v for callables (ignored for matrix-like inputs).
            shape (tuple, optional):
                Shape for callables.
            n (int, optional):
                Square dimension used for callables when `shape` is None.
            backend_module:
                The backend used for dense matrices.

        Returns:
            LinearOperator
        """
        if isinstance(matvec, LinearOperator):
            return matvec

        if isinstance(matvec, spsla.LinearOperator) or sps.issparse(matvec):
            op = spsla.aslinearoperator(matvec)
            return LinearOperator(tuple(op.shape), op.matvec, op.rmatvec, np.dtype(op.dtype) if op.dtype is not None else None)

        if hasattr(matvec, 'ndim') and hasattr(matvec, 'shape') and not callable(matvec):
            mat = backend_module.asarray(matvec)
            if mat.ndim != 2:
                raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Operator must be 2D, got shape {mat.shape}")
            mat_t = mat.T
            def _matvec(v: Array) -> Array:
                return mat @ v
            def _rmatvec(v: Array) -> Array:
                return mat_t @ v
            return LinearOperator(tuple(mat.shape), _matvec, _rmatvec, np.dtype(mat.dtype))

        if callable(matvec):
            if shape is None:
                if n is None:
                    raise SolverError(SolverErrorMsg.INVALID_INPUT, "Shape of a matrix-free operator is unknown.")
                shape = (int(n), int(n))
            return LinearOperator((int(shape[0]), int(shape[1])), matvec, rmatvec, None)

        raise SolverError(SolverErrorMsg.MATVEC_FUNC_NOT_SET, f"Cannot build an operator from {type(matvec)}")

    @staticmethod
    def _prepare_vector(v: Any, size: int, name: str, backend_module: Any, dtype: Any = None) -> Array:
        """
        Static Helper:
            Validates a 1D input vector of the expected size and converts it to the backend.
        """
        arr = backend_module.asarray(v) if dtype is None else backend_module.asarray(v, dtype=dtype)
        if arr.ndim != 1:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"{name} must be a 1D vector, got shape {arr.shape}")
        if arr.shape[0] != size:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Shape mismatch: expected len({name}) = {size}, got {arr.shape[0]}")
        return arr

    @staticmethod
    def _resolve_dtype(op: LinearOperator, *vectors: Any) -> np.dtype:
        """
        Static Helper:
            Working dtype of a solve. Complex data is rejected.
        """
        arrays = [v for v in vectors if v is not None]
        if op.dtype is not None:
            arrays.append(np.empty(0, dtype=op.dtype))
        dt = working_dtype(*arrays)
        if np.issubdtype(dt, np.complexfloating):
            raise SolverError(SolverErrorMsg.INVALID_INPUT, "Only real floating-point data is supported.")
        return dt

    @staticmethod
    def _prepare_system(matvec          : Any,
                        b               : Any,
                        x0              : Optional[Any],
                        backend_module  : Any,
                        *,
                        rmatvec         : Optional[MatVecFunc]      = None,
                        shape           : Optional[Tuple[int, int]] = None,
                        square          : bool                      = True,
                        need_adjoint    : bool                      = False) -> Tuple[LinearOperator, Array, Optional[Array], np.dtype]:
        """
        Static Helper:
            Validates the operator, the right-hand side and the warm-restart offset
            before the first iteration.

        Returns:
            (operator, b, x0 or None, working dtype)
        Raises:
            SolverError: DIM_MISMATCH, INVALID_INPUT or MATVEC_FUNC_NOT_SET.
        """
        b_raw = backend_module.asarray(b)
        if b_raw.ndim != 1:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"b must be a 1D vector, got shape {b_raw.shape}")
        op      = Solver.create_operator(matvec, rmatvec=rmatvec, shape=shape, n=b_raw.shape[0], backend_module=backend_module)
        m, n    = op.shape
        if square and m != n:
            raise SolverError(SolverErrorMsg.DIM_MISMATCH, f"Square operator required, got shape {op.shape}")
        if need_adjoint and op.rmatvec is None:
            raise SolverError(SolverErrorMsg.MATVEC_FUNC_NOT_SET, "The product with the adjoint v -> A^T v is required.")
        dtype   = Solver._resolve_dtype(op, b_raw, x0)
        b_arr   = Solver._prepare_vector(b_raw, m, "b", backend_module, dtype)
        x0_arr  = None if x0 is None else Solver._prepare_vector(x0, n, "x0", backend_module, dtype)
        return op, b_arr, x0_arr, dtype

    @staticmethod
    def _resolve_maxiter(maxiter: Optional[int], default: int) -> int:
        ''' Iteration limit, 0 and None mean the method default. '''
        if maxiter is None or int(maxiter) == 0:
            return int(default)
        if int(maxiter) < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"maxiter must be non-negative, got {maxiter}")
        return int(maxiter)

    @staticmethod
    def _resolve_tolerances(atol: Optional[float], rtol: Optional[float], dtype: Any) -> Tuple[float, float]:
        """
        Static Helper:
            Default tolerances sqrt(eps) of the working dtype, resolved at call time.
        """
        tol = default_tolerance(dtype)
        atol = tol if atol is None else float(atol)
        rtol = tol if rtol is None else float(rtol)
        if atol < 0 or rtol < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Tolerances must be non-negative, got atol={atol}, rtol={rtol}")
        return atol, rtol

    @staticmethod
    def _resolve_precond(precond: Any, name: str = "M") -> Optional[PreconitionerApplyFun]:
        """
        Static Helper:
            Validates the preconditioner collaborator.

        Args:
            precond (Preconditioner, Callable, None or 'default'):
                - 'default' and None mean no preconditioner,
                - a `Preconditioner` must have been set up,
                - any other callable is assumed to apply r -> M^{-1} r.
        Returns:
            The apply function or None.
        Raises:
            SolverError(PRECOND_INVALID) for other inputs.
        """
        if precond is None or (isinstance(precond, str) and precond == 'default'):
            return None
        if isinstance(precond, Preconditioner):
            if not precond.is_set:
                raise SolverError(SolverErrorMsg.PRECOND_INVALID, f"Preconditioner {name} ({precond.name}) is not set up.")
            return precond
        if callable(precond):
            return precond
        raise SolverError(SolverErrorMsg.PRECOND_INVALID,
                f"Invalid preconditioner {name} of type {type(precond)}. Expected Preconditioner, Callable, None, or 'default'.")

    @staticmethod
    def _apply_precond(precond: Optional[PreconitionerApplyFun], r: Array, name: str = "M") -> Array:
        """
        Static Helper:
            Applies the preconditioner; without one the vector itself is returned (no copy).
        """
        if precond is None:
            return r
        z = precond(r)
        if z.shape != r.shape:
            raise SolverError(SolverErrorMsg.PRECOND_INVALID, f"Preconditioner {name} returned shape {z.shape}, expected {r.shape}")
        return z

    @staticmethod
    def _warn_unused_kwargs(name: str, kwargs: dict) -> None:
        """
        Static Helper:
            Logs keyword arguments a static `solve` does not know, e.g. a
            misspelled preconditioner name.
        """
        if kwargs:
            get_global_logger().warning(f"({name}) Ignoring unknown kwargs: {sorted(kwargs)}")

    @staticmethod
    def _finalize(x             : Array,
                flag            : SolverStatus,
                iterations      : int,
                residual_norm   : float,
                *,
                inconsistent    : bool                  = False,
                status          : Optional[str]         = None,
                residuals       : Optional[List[float]] = None,
                aresiduals      : Optional[List[float]] = None,
                y               : Optional[Array]       = None,
                log             : Optional[IterationLog] = None) -> SolverResult:
        """
        Static Helper:
            Packs the terminal state of a solve into a `SolverResult`.
        """
        status = status if status is not None else flag.message
        if log is not None:
            log.close(iterations, status)
        return SolverResult(
            x               = x,
            converged       = flag.solved,
            iterations      = int(iterations),
            residual_norm   = float(residual_norm),
            inconsistent    = bool(inconsistent),
            status          = status,
            flag            = flag,
            residuals       = tuple(residuals) if residuals is not None else (),
            aresiduals      = tuple(aresiduals) if aresiduals is not None else (),
            y               = y)

    # -------------------------------------------------------------------------
    #! Convenience Instance Method (Wrapper around Static Solve)
    # -------------------------------------------------------------------------

    def _check_operator_solve(self, n: int) -> LinearOperator:
        """
        Internal: Determines the operator based on instance config.
        """
        if self._conf_a is not None:
            return self.create_operator(self._conf_a, backend_module=self._backend)
        if self._conf_matvec_func is not None:
            return self.create_operator(self._conf_matvec_func, rmatvec=self._conf_rmatvec_func,
                                        shape=self._conf_shape, n=n, backend_module=self._backend)
        raise SolverError(SolverErrorMsg.MATVEC_FUNC_NOT_SET, "Instance needs a matrix or a matvec function.")

    def solve_instance(self,
                    b               : Array,
                    x0              : Optional[Array]   = None,
                    *,
                    atol            : Optional[float]   = None,
                    rtol            : Optional[float]   = None,
                    maxiter         : Optional[int]     = None,
                    precond         : Union[Preconditioner, Callable[[Array], Array], None, str] = 'default',
                    **kwargs) -> SolverResult:
        """
        Convenience instance method to run the solver.

        Sets up the operator and the preconditioner based on the instance
        configuration, then calls the static `solve` method of this solver's
        class. Stores the result in instance attributes.

        Args:
            b (Array):
                Right-hand side vector.
            x0 (Optional[Array]):
                Warm-restart offset.
            atol, rtol (Optional[float]):
                Tolerance overrides. `rtol` defaults to the instance `eps`.
            maxiter (Optional[int]):
                Max iterations override. Uses instance default if None.
            precond (Preconditioner, Callable, None, str):
                Preconditioner for this solve; 'default' uses the instance default.
            **kwargs:
                Additional arguments passed directly to the static `solve`.

        Returns:
            SolverResult:
                Result from the static solve method.
        """
        current_rtol    = rtol if rtol is not None else self._default_eps
        current_maxiter = maxiter if maxiter is not None else self._default_maxiter
        precond         = self._default_precond if (isinstance(precond, str) and precond == 'default') else precond
        b_be            = self._backend.asarray(b) if self._dtype is None else self._backend.asarray(b, dtype=self._dtype)
        op              = self._check_operator_solve(b_be.shape[0])
        kwargs.setdefault('verbose', self._verbose)

        self._logger.debug(f"({self.__class__.__name__}) Calling static solve with backend={self.backend_str}, "
                        f"rtol={current_rtol}, maxiter={current_maxiter}...")
        result = self.__class__.solve(op, b_be, x0,
                                    atol            = atol,
                                    rtol            = current_rtol,
                                    maxiter         = current_maxiter,
                                    precond_apply   = precond,
                                    backend_module  = self._backend,
                                    **kwargs)
        self._last_result = result
        self._logger.debug(f"({self.__class__.__name__}) Instance solve finished. Converged: {result.converged}, "
                        f"Iterations: {result.iterations}, Residual Norm: {result.residual_norm:.4e}")
        return result

    # -------------------------------------------------------------------------
    #! Properties for Last Result
    # -------------------------------------------------------------------------

    @property
    def last_result(self) -> Optional[SolverResult]:
        return self._last_result

    @property
    def solution(self) -> Optional[Array]:
        ''' What is the last solution? '''
        return self._last_result.x if self._last_result is not None else None

    @property
    def converged(self) -> Optional[bool]:
        ''' Is it converged solution? '''
        return self._last_result.converged if self._last_result is not None else None

    @property
    def iterations(self) -> Optional[int]:
        ''' How many iterations? '''
        return self._last_result.iterations if self._last_result is not None else None

    @property
    def residual_norm(self) -> Optional[float]:
        ''' What is the quality of the last result? '''
        return self._last_result.residual_norm if self._last_result is not None else None

    # -------------------------------------------------------------------------
    #! Properties for Configuration (Read-only access)
    # -------------------------------------------------------------------------

    @property
    def backend_str(self) -> str:
        return self._backend_str

    @property
    def dtype(self) -> Optional[Type]:
        return self._dtype

    @property
    def default_eps(self) -> Optional[float]:
        return self._default_eps

    @property
    def default_maxiter(self) -> Optional[int]:
        return self._default_maxiter

    @property
    def solver_type(self) -> Optional[SolverType]:
        return self._solver_type

    # -------------------------------------------------------------------------

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self._solver_type.name if self._solver_type else 'Unknown'}, backend='{self.backend_str}')"

    def __str__(self) -> str:
        return self.__repr__()

# -----------------------------------------------------------------------------
#! Givens rotation
# -----------------------------------------------------------------------------

@numba.njit
def _sym_ortho(a, b):
    '''
    Numba kernel of `sym_ortho` for real scalars.
    '''
    if b == 0.0:
        if a == 0.0:
            return 1.0, 0.0, 0.0
        return np.sign(a), 0.0, abs(a)
    if a == 0.0:
        return 0.0, np.sign(b), abs(b)
    if abs(b) > abs(a):
        t   = a / b
        s   = np.sign(b) / np.sqrt(1.0 + t * t)
        c   = s * t
        return c, s, b / s
    # |a| >= |b|
    t   = b / a
    c   = np.sign(a) / np.sqrt(1.0 + t * t)
    s   = c * t
    return c, s, a / c

def sym_ortho(a: float, b: float) -> Tuple[float, float, float]:
    r"""
    Stable symmetric Givens reflection.

    Computes parameters c, s, rho such that

        [ c  s ] [ a ] = [ rho ]
        [ s -c ] [ b ]   [  0  ]

    with $ c^2 + s^2 = 1 $ and $ \rho = \sqrt{a^2 + b^2} \geq 0 $, computed by
    scaling on the larger input so that $ a^2 + b^2 $ is never formed.

    Conventions:
        - b = 0: c = sign(a) (1 when a = 0 too), s = 0, rho = |a|,
        - a = 0: c = 0, s = sign(b), rho = |b|.

    Parameters:
        a, b : float
            The two-vector [a; b].

    Returns:
        (c, s, rho) : tuple of floats
    """
    c, s, rho = _sym_ortho(float(a), float(b))
    return float(c), float(s), float(rho)

def _safe_div(num: float, den: float) -> float:
    ''' num / den, or 0 when a degenerate column makes den vanish. '''
    return num / den if den != 0.0 else 0.0

# -----------------------------------------------------------------------------
#! Quadratic roots and trust region
# -----------------------------------------------------------------------------

def roots_quadratic(q2: float, q1: float, q0: float, nitref: int = 1) -> Tuple[float, ...]:
    r"""
    Real roots of $ q_2 x^2 + q_1 x + q_0 $ computed in a numerically stable way.

    The linear case $ q_2 = 0 $ yields one root (or none). Otherwise, when the
    quadratic is well conditioned, the root of larger magnitude is taken from
    $ d = -(q_1 + \mathrm{sign}(q_1) \sqrt{q_1^2 - 4 q_2 q_0}) / 2 $ and the
    other one from the product of the roots; ill-conditioned quadratics use
    $ (-q_1 / q_2, 0) $. Each root is refined by `nitref` Newton steps.

    Returns:
        Tuple with zero, one or two roots.
    """
    q2, q1, q0 = float(q2), float(q1), float(q0)

    if q2 == 0.0:
        if q1 == 0.0:
            return (0.0,) if q0 == 0.0 else ()
        return (-q0 / q1,)

    if abs(q0 * q2) > math.sqrt(machine_eps(np.float64)) * q1 * q1:
        rho = q1 * q1 - 4.0 * q2 * q0
        if rho < 0.0:
            return ()
        d       = -(q1 + math.copysign(math.sqrt(rho), q1)) / 2.0
        roots   = [d / q2, q0 / d]
    else:
        # ill-conditioned quadratic
        roots   = [-q1 / q2, 0.0]

    for i, root in enumerate(roots):
        for _ in range(nitref):
            q   = (q2 * root + q1) * root + q0
            dq  = 2.0 * q2 * root + q1
            if dq == 0.0:
                continue
            root = root - q / dq
        roots[i] = root
    return tuple(roots)

def to_boundary(x               : Array,
                d               : Array,
                radius          : float,
                *,
                flip            : bool              = False,
                xnorm2          : Optional[float]   = None,
                dnorm2          : Optional[float]   = None,
                backend_module  : Any               = np) -> Tuple[float, float]:
    r"""
    Step lengths $ \sigma $ such that $ \| x + \sigma d \| = \Delta $ (or $ \| x - \sigma d \| $ when `flip`).

    The two roots of $ \|d\|^2 \sigma^2 + 2 x^T d \, \sigma + \|x\|^2 - \Delta^2 $
    are returned, one non-negative and one non-positive since x lies inside
    the trust region.

    Raises:
        SolverError(INVALID_INPUT): radius <= 0, zero direction or x outside the region.
    """
    if radius <= 0:
        raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Trust-region radius must be positive, got {radius}")
    rad2    = float(radius) ** 2
    dnorm2  = float(backend_module.dot(d, d)) if dnorm2 is None else float(dnorm2)
    xnorm2  = float(backend_module.dot(x, x)) if xnorm2 is None else float(xnorm2)
    if dnorm2 == 0.0:
        raise SolverError(SolverErrorMsg.INVALID_INPUT, "Zero direction in trust-region step.")
    if xnorm2 > rad2:
        raise SolverError(SolverErrorMsg.INVALID_INPUT, "Iterate lies outside of the trust region.")
    xd      = float(backend_module.dot(x, d))
    if flip:
        xd  = -xd
    roots   = roots_quadratic(dnorm2, 2.0 * xd, xnorm2 - rad2)
    if len(roots) == 1:
        return roots[0], roots[0]
    return roots[0], roots[1]

# -----------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------
