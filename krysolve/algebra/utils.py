# file        :   krysolve/algebra/utils.py
# author      :   Maksymilian Kliczkowski
# copyright   :   (c) 2025, Maksymilian Kliczkowski

'''
This module provides utilities for selecting the linear algebra backend
(NumPy by default, JAX when installed and requested) and the working precision
of the Krylov solvers.

Provides:
- Environment driven defaults (`PY_BACKEND`, `PY_FLOATING_POINT`).
- `get_backend` to resolve a backend specifier into the array module
    (and optionally its SciPy counterpart).
- `working_dtype` and `default_tolerance` used by the solvers to resolve
    tolerance defaults at call time.
'''

import os
from typing import Union, Optional, Type, Tuple, Any, TypeAlias

import numpy as np
import scipy as sp

# ---------------------------------------------------------------------
#! Enviroment variable names
# ---------------------------------------------------------------------

PY_FLOATING_POINT_STR   : str               = "PY_FLOATING_POINT"
PY_BACKEND_STR          : str               = "PY_BACKEND"

DEFAULT_BACKEND         : str               = "numpy"

# ---------------------------------------------------------------------
#! SET VARIABLES
# ---------------------------------------------------------------------

PREFER_32BIT            : bool              = os.environ.get(PY_FLOATING_POINT_STR, "64bit").lower() in ["32bit", "32", "float32", "float"]
PY_FLOATING_POINT       : str               = "float32" if PREFER_32BIT else "float64"
PY_NP_FLOAT_TYPE        : Type              = np.float32 if PREFER_32BIT else np.float64
PY_BACKEND              : str               = os.environ.get(PY_BACKEND_STR, DEFAULT_BACKEND).lower()
PREFER_JAX              : bool              = PY_BACKEND not in ("numpy", "np")

DEFAULT_NP_FLOAT_TYPE   : Type              = PY_NP_FLOAT_TYPE

#! Backend Detection
try:
    import jax.numpy as jnp
    import jax.scipy as jsp
    JAX_AVAILABLE       : bool              = True
except ImportError:
    jnp                                     = None
    jsp                                     = None
    JAX_AVAILABLE       : bool              = False

#! Type Aliases
if JAX_AVAILABLE:
    Array               : TypeAlias         = Union[np.ndarray, jnp.ndarray]
else:
    Array               : TypeAlias         = np.ndarray

# ---------------------------------------------------------------------
#! Global methods
# ---------------------------------------------------------------------

def get_backend(backend_spec    : Union[str, Any, None] = None,
                scipy           : bool = False) -> Union[Any, Tuple[Any, Any]]:
    """
    Return backend modules based on the provided specifier.

    Parameters
    ----------
    backend_spec : str or module or None, optional
        Backend specifier ("numpy", "np", "jax", "jnp", `np`, `jnp`, "default", None).
        "default" and None follow the `PY_BACKEND` environment variable and fall
        back to NumPy when JAX is not installed.
    scipy : bool, optional
        If True, also return the associated SciPy module.

    Returns
    -------
    module or tuple
        The array module, or (array module, scipy module).
    """
    if backend_spec is None or (isinstance(backend_spec, str) and backend_spec.lower() == "default"):
        backend_spec = "jax" if (PREFER_JAX and JAX_AVAILABLE) else "numpy"

    if backend_spec is np or (isinstance(backend_spec, str) and backend_spec.lower() in ("numpy", "np")):
        return (np, sp) if scipy else np

    if (JAX_AVAILABLE and backend_spec is jnp) or (isinstance(backend_spec, str) and backend_spec.lower() in ("jax", "jnp")):
        if not JAX_AVAILABLE:
            raise ImportError("JAX backend requested but JAX is not installed.")
        return (jnp, jsp) if scipy else jnp

    raise ValueError(f"Unsupported backend specifier: {backend_spec!r}")

def backend_name(backend_mod: Any) -> str:
    ''' Short name of a backend module ('numpy' or 'jax'). '''
    return "jax" if (JAX_AVAILABLE and backend_mod is jnp) else "numpy"

# ---------------------------------------------------------------------
#! Precision
# ---------------------------------------------------------------------

def working_dtype(*arrays: Any) -> np.dtype:
    '''
    Floating dtype the solvers work in for the given inputs.

    Integer inputs are promoted to the default float type (`PY_FLOATING_POINT`),
    floating inputs keep their precision. Complex inputs yield a complex dtype,
    the caller decides whether it is supported.
    '''
    dtypes = [np.dtype(getattr(a, "dtype", np.asarray(a).dtype)) for a in arrays if a is not None]
    if not dtypes:
        return np.dtype(DEFAULT_NP_FLOAT_TYPE)
    res = np.result_type(*dtypes)
    if not np.issubdtype(res, np.inexact):
        res = np.result_type(res, DEFAULT_NP_FLOAT_TYPE)
    return np.dtype(res)

def default_tolerance(dtype: Any = None) -> float:
    r'''
    Default absolute and relative tolerance $\sqrt{\epsilon}$ of the working precision.
    '''
    dt = np.dtype(dtype) if dtype is not None else np.dtype(DEFAULT_NP_FLOAT_TYPE)
    return float(np.sqrt(np.finfo(dt).eps))

def machine_eps(dtype: Any = None) -> float:
    ''' Machine epsilon of the working precision. '''
    dt = np.dtype(dtype) if dtype is not None else np.dtype(DEFAULT_NP_FLOAT_TYPE)
    return float(np.finfo(dt).eps)

# ---------------------------------------------------------------------
#! EOF
# ---------------------------------------------------------------------
