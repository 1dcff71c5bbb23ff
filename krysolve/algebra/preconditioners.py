r'''
file:       krysolve/algebra/preconditioners.py
author:     Maksymilian Kliczkowski

This module contains the preconditioners accepted by the Krylov solvers.
A preconditioner is an operator applying $ M^{-1} r $ where $ M $ approximates
the system operator. All solvers in this package assume $ M^{-1} $ is symmetric
positive definite, since it defines the inner product

$$
\langle u, v \rangle_{M^{-1}} = u^T M^{-1} v
$$

in which the Krylov basis is orthonormalized.

Any callable `r -> M^{-1} r` is accepted by the solvers; the classes below add
set-up from a matrix, backend handling and logging on top of that contract.
'''

from abc import ABC, abstractmethod
from typing import Union, Callable, Optional, Any, Dict
from enum import Enum, unique
import inspect
import numpy as np

import scipy.sparse as sps

from .utils import JAX_AVAILABLE, get_backend, backend_name, Array
from ..common.flog import get_global_logger, Logger

# ---------------------------------------------------------------------

if JAX_AVAILABLE:
    import jax
else:
    jax = None

# ---------------------------------------------------------------------

PreconitionerApplyFun   = Callable[[Array], Array]

_TOLERANCE_SMALL        = 1e-13

@unique
class PreconditionersType(Enum):
    """
    Enumeration of the available symmetric positive definite preconditioners.
    """
    IDENTITY            = 0
    JACOBI              = 1

# ---------------------------------------------------------------------
#! Preconditioners
# ---------------------------------------------------------------------

class Preconditioner(ABC):
    """
    Abstract base class for preconditioners $ M^{-1} $ used by the Krylov solvers.

    Provides a framework for setting up the preconditioner from a matrix A
    (dense array or scipy.sparse matrix) and applying $ M^{-1} r $ efficiently.

    Attributes:
        sigma (float):
            Shift added during setup, so that M is built from A + sigma*I.
        type (PreconditionersType):
            The specific type of the preconditioner. Set by subclass.
        backend_str (str):
            The name of the current backend ('numpy', 'jax').
    """

    _type : Optional[PreconditionersType]   = None
    _name : str                             = "General Preconditioner"
    _dcol : str                             = "yellow"

    # -----------------------------------------------------------------

    def __init__(self, backend: str = 'default'):
        """
        Initialize the preconditioner.

        Parameters:
            backend (str):
                The computational backend to be used by the preconditioner.
        """
        self._logger: Logger            = get_global_logger()
        self._sigma                     = 0.0
        self._precomputed_data_instance : Optional[Dict[str, Any]]  = None
        self._apply_func_instance       : Optional[PreconitionerApplyFun] = None
        self._backend_str               = None
        self.reset_backend(backend)

    # -----------------------------------------------------------------
    #! Logging
    # -----------------------------------------------------------------

    def log(self, msg : str, log : Union[int, str] = 'info', lvl : int = 0, color : str = "white"):
        """
        Log the message prefixed with the preconditioner name.
        """
        if isinstance(log, str):
            log = Logger.LEVELS_R[log]
        self._logger.say(self._logger.colorize(f"[{self._name}] {msg}", color), log=log, lvl=lvl)

    # -----------------------------------------------------------------
    #! Backend Management
    # -----------------------------------------------------------------

    def reset_backend(self, backend: Any):
        '''
        Resets the backend and rebuilds the internal apply function.

        Parameters:
            backend (str or module): The new backend ('numpy', 'jax', np, jnp).
        '''
        backend_mod     = get_backend(backend)
        new_backend_str = backend_name(backend_mod)
        if self._backend_str != new_backend_str:
            self.log(f"Backend set to: {new_backend_str}", log='debug', lvl=1, color=self._dcol)
            self._backend_str   = new_backend_str
            self._backend       = backend_mod
            self._isjax         = JAX_AVAILABLE and backend_mod is not np
            if self._precomputed_data_instance is not None:
                self._precomputed_data_instance = {k: self._backend.asarray(v) for k, v in self._precomputed_data_instance.items()}
            self._update_instance_apply_func()

    # -----------------------------------------------------------------
    #! Closure for the apply function
    # -----------------------------------------------------------------

    def _update_instance_apply_func(self):
        """
        Creates/updates the instance's `apply(r)` closure using stored data.
        """
        static_apply    = self.__class__._apply_kernel
        backend_mod     = self._backend
        current_sigma   = self._sigma
        instance_self   = self

        def wrapped_apply_instance(r: Array) -> Array:
            precomputed_data = instance_self._get_precomputed_data_instance()
            return static_apply(r, backend_mod, current_sigma, **precomputed_data)

        if self._isjax and jax is not None:
            self._apply_func_instance = jax.jit(wrapped_apply_instance)
        else:
            self._apply_func_instance = wrapped_apply_instance

    def _get_precomputed_data_instance(self) -> Dict[str, Any]:
        if self._precomputed_data_instance is None:
            raise RuntimeError(f"Preconditioner data not available - ({self._name}) not set up. Call set() first.")
        return self._precomputed_data_instance

    def get_apply(self) -> PreconitionerApplyFun:
        '''
        Returns the function `apply(r)` using the data stored by the last call to `set()`.
        '''
        self._get_precomputed_data_instance()
        return self._apply_func_instance

    # -----------------------------------------------------------------
    #! Properties
    # -----------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> Optional[PreconditionersType]:
        return self._type

    @property
    def backend_str(self) -> str:
        return self._backend_str

    @property
    def backend(self) -> Any:
        return self._backend

    @property
    def is_set(self) -> bool:
        ''' Was `set()` called (or is no set-up needed)? '''
        return self._precomputed_data_instance is not None

    @property
    def sigma(self) -> float:
        return self._sigma

    @sigma.setter
    def sigma(self, value: float):
        self._sigma = float(value)

    # -----------------------------------------------------------------
    #! KERNELS
    # -----------------------------------------------------------------

    @staticmethod
    @abstractmethod
    def _setup_standard_kernel(a: Any, sigma: float, backend_mod: Any, **kwargs) -> Dict[str, Any]:
        """Static Kernel: Computes precond data dict from matrix A."""
        raise NotImplementedError

    @staticmethod
    @abstractmethod
    def _apply_kernel(r: Array, backend_mod: Any, sigma: float, **precomputed_data: Any) -> Array:
        """Static Kernel: Applies M^{-1}r using precomputed data."""
        raise NotImplementedError

    # -----------------------------------------------------------------
    #! General Setup Method
    # -----------------------------------------------------------------

    def set(self, a: Any, sigma: float = 0.0, backend: Optional[str] = None, **kwargs) -> 'Preconditioner':
        '''
        Sets up the preconditioner from the matrix A (dense or scipy.sparse).

        Params:
            a (Array or sparse matrix):
                The square matrix the preconditioner approximates.
            sigma (float, optional):
                Shift, M is built from A + sigma*I. Defaults to 0.0.
            backend (str, optional):
                The backend to use for computations.
            **kwargs:
                Additional keyword arguments for specific implementations.
        Returns:
            The preconditioner itself, so that `JacobiPreconditioner().set(a)` can be passed on.
        '''
        if backend is not None:
            self.reset_backend(backend)

        if a.ndim != 2 or a.shape[0] != a.shape[1]:
            raise ValueError(f"Preconditioner set-up needs a square matrix, got shape {a.shape}")

        self.sigma = sigma if sigma is not None else self._sigma
        self.log(f"Setting up preconditioner with sigma={self.sigma} using backend='{self.backend_str}'...", log='debug', lvl=1, color=self._dcol)

        self._precomputed_data_instance = self.__class__._setup_standard_kernel(a, self.sigma, self._backend, **kwargs)
        self._update_instance_apply_func()
        return self

    # -----------------------------------------------------------------
    #! Apply Method
    # -----------------------------------------------------------------

    def __call__(self, r: Array) -> Array:
        """
        Apply the configured preconditioner $ M^{-1} $ to vector r.
        """
        return self.get_apply()(r)

    # -----------------------------------------------------------------

    def __repr__(self) -> str:
        return f"{self._name}(sigma={self.sigma}, backend='{self.backend_str}', type={self.type})"

    def __str__(self) -> str:
        return self.__repr__()

# =====================================================================
#! Identity preconditioner
# =====================================================================

class IdentityPreconditioner(Preconditioner):
    """
    Identity preconditioner M = I. Applying M^{-1} simply returns the input vector.

    Serves as a baseline: every solver gives the same iterates with it as
    without a preconditioner.
    """

    _name = "Identity Preconditioner"
    _type = PreconditionersType.IDENTITY

    def __init__(self, backend: str = 'default'):
        super().__init__(backend=backend)
        # usable without set()
        self._precomputed_data_instance = {}

    @staticmethod
    def _setup_standard_kernel(a: Any, sigma: float, backend_mod: Any, **kwargs) -> Dict[str, Any]:
        return {}

    @staticmethod
    def _apply_kernel(r: Array, backend_mod: Any, sigma: float, **precomputed_data: Any) -> Array:
        return backend_mod.asarray(r)

# =====================================================================
#! Jacobi preconditioner
# =====================================================================

class JacobiPreconditioner(Preconditioner):
    """
    Jacobi (Diagonal) Preconditioner. M = |diag(A + sigma*I)|.

    Applying the inverse M^{-1}r is an element-wise division by the diagonal.
    The absolute value keeps M positive definite for indefinite operators,
    which is what the M^{-1}-inner product of the solvers requires.

    Math:
        M^{-1}r = [1 / |A_ii + sigma|] * r_i

    References:
        - Saad, Y. (2003). Iterative Methods for Sparse Linear Systems (2nd ed.). SIAM. Chapter 10.
    """
    _name = "Jacobi Preconditioner"
    _type = PreconditionersType.JACOBI

    def __init__(self,
                backend                 : str   = 'default',
                tol_small               : float = _TOLERANCE_SMALL,
                diag                    : Optional[Array] = None):
        """
        Initialize the Jacobi preconditioner.

        Args:
            backend (str):
                The computational backend.
            tol_small (float):
                Diagonal entries smaller than this (in magnitude) are treated
                as ones, leaving that component unscaled.
            diag (Array, optional):
                Diagonal of the operator, for matrix-free set-up without calling `set()`.
        """
        super().__init__(backend=backend)
        self._tol_small = tol_small
        if diag is not None:
            self._precomputed_data_instance = {
                'inv_diag': JacobiPreconditioner._static_compute_inv_diag(self._backend.asarray(diag), 0.0, self._backend, tol_small)
            }
            self._update_instance_apply_func()

    # -----------------------------------------------------------------

    @staticmethod
    def _static_compute_inv_diag(diag_a: Array, sigma: float, backend_mod: Any, tol_small: float) -> Array:
        """
        Inverse of the absolute (shifted) diagonal; tiny entries map to one.
        """
        be          = backend_mod
        reg_diag    = be.abs(diag_a + sigma)
        is_small    = reg_diag < tol_small
        safe_diag   = be.where(is_small, 1.0, reg_diag)
        return 1.0 / safe_diag

    @staticmethod
    def _setup_standard_kernel(a: Any, sigma: float, backend_mod: Any, **kwargs) -> Dict[str, Any]:
        tol_small   = kwargs.get('tol_small', _TOLERANCE_SMALL)
        if sps.issparse(a):
            diag_a  = backend_mod.asarray(a.diagonal())
        else:
            diag_a  = backend_mod.diag(backend_mod.asarray(a))
        inv_diag    = JacobiPreconditioner._static_compute_inv_diag(diag_a, sigma, backend_mod, tol_small)
        return {'inv_diag': inv_diag}

    @staticmethod
    def _apply_kernel(r: Array, backend_mod: Any, sigma: float, **precomputed_data: Any) -> Array:
        inv_diag = precomputed_data.get('inv_diag', None)
        if inv_diag is None:
            raise ValueError("Jacobi apply kernel requires 'inv_diag' in precomputed_data.")
        if r.ndim != 1 or r.shape[0] != inv_diag.shape[0]:
            raise ValueError(f"Shape mismatch in Jacobi apply: r={r.shape}, inv_diag={inv_diag.shape}")
        return inv_diag * r

    def set(self, a: Any, sigma: float = 0.0, backend: Optional[str] = None, **kwargs) -> 'JacobiPreconditioner':
        kwargs.setdefault('tol_small', self._tol_small)
        return super().set(a, sigma=sigma, backend=backend, **kwargs)

    def __repr__(self) -> str:
        base_repr = super().__repr__()
        return f"{base_repr[:-1]}, tol_small={self._tol_small})"

# =====================================================================
#! Factory
# =====================================================================

_PRECOND_CLASSES = {
    PreconditionersType.IDENTITY    : IdentityPreconditioner,
    PreconditionersType.JACOBI      : JacobiPreconditioner,
}

def _resolve_precond_type(precond_id: Any) -> PreconditionersType:
    ''' Resolve an Enum member, name or integer code into a PreconditionersType. '''
    if isinstance(precond_id, PreconditionersType):
        return precond_id
    if isinstance(precond_id, str):
        key = precond_id.upper()
        if key in PreconditionersType.__members__:
            return PreconditionersType[key]
        raise ValueError(f"Unknown preconditioner name: {precond_id}")
    if isinstance(precond_id, int):
        return PreconditionersType(precond_id)
    raise TypeError(f"Invalid preconditioner identifier type: {type(precond_id)}")

def choose_precond(precond_id: Any, **kwargs) -> Optional[Preconditioner]:
    """
    Factory function to select and instantiate a preconditioner.

    Accepts various identifiers (Enum, str, int, instance) and passes kwargs
    to the specific preconditioner's constructor.

    Args:
        precond_id (Any):
            Identifier (instance, Enum, str, int) or None.
        **kwargs:
            Additional arguments for the constructor (e.g., backend='jax', diag=d).

    Returns:
        Preconditioner: An instance of the selected preconditioner (None for None).
    """
    if precond_id is None:
        return None

    if isinstance(precond_id, Preconditioner):
        if kwargs:
            get_global_logger().warning(f"Preconditioner instance provided; ignoring kwargs: {kwargs}")
        return precond_id

    target_class    = _PRECOND_CLASSES[_resolve_precond_type(precond_id)]
    valid_args      = inspect.signature(target_class.__init__).parameters
    filtered_kwargs = {k: v for k, v in kwargs.items() if k in valid_args}
    ignored_kwargs  = {k: v for k, v in kwargs.items() if k not in valid_args}
    if ignored_kwargs:
        get_global_logger().warning(f"Ignoring invalid kwargs for {target_class.__name__}: {ignored_kwargs}")
    return target_class(**filtered_kwargs)

# =====================================================================
#! End of File
# =====================================================================
