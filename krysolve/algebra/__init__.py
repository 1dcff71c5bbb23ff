"""
A module for the matrix-free Krylov solvers and their building blocks.

Key functionalities provided include:
    - The common solver interface (`Solver`, `SolverResult`, `SolverStatus`, `SolverError`).
    - The numeric primitives `sym_ortho`, `roots_quadratic` and `to_boundary`.
    - Preconditioners (`IdentityPreconditioner`, `JacobiPreconditioner`, `choose_precond`).
    - The solvers MINRES-QLP, BiLQ, LSQR and TriCG (`choose_solver`).
    - Backend selection (`get_backend`) for NumPy and JAX.

This module uses lazy imports to minimize startup overhead. Submodules are
only loaded when accessed.

# -----------------------------------------------------------------------------------------------
Author          : Maksymilian Kliczkowski
Email           : maksymilian.kliczkowski@pwr.edu.pl
Version         : 1.0
Description     : Krylov solvers module with lazy imports
# -----------------------------------------------------------------------------------------------
"""

from typing import TYPE_CHECKING
import importlib

# -----------------------------------------------------------------------------------------------
# Lazy Import Configuration
# -----------------------------------------------------------------------------------------------

# Mapping of attribute names to their module paths and actual attribute names
_LAZY_IMPORTS = {
    # Solver interface
    'Solver'                : ('.solver', 'Solver'),
    'SolverResult'          : ('.solver', 'SolverResult'),
    'SolverStatus'          : ('.solver', 'SolverStatus'),
    'SolverError'           : ('.solver', 'SolverError'),
    'SolverErrorMsg'        : ('.solver', 'SolverErrorMsg'),
    'SolverType'            : ('.solver', 'SolverType'),
    'LinearOperator'        : ('.solver', 'LinearOperator'),
    'sym_ortho'             : ('.solver', 'sym_ortho'),
    'roots_quadratic'       : ('.solver', 'roots_quadratic'),
    'to_boundary'           : ('.solver', 'to_boundary'),
    # Factories
    'choose_solver'         : ('.solvers', 'choose_solver'),
    'choose_precond'        : ('.preconditioners', 'choose_precond'),
    # Utility imports from common
    'get_logger'            : ('..common.flog', 'get_global_logger'),
    # Utils module exports
    'get_backend'           : ('.utils', 'get_backend'),
    'JAX_AVAILABLE'         : ('.utils', 'JAX_AVAILABLE'),
    # Submodules (lazy)
    'solvers'               : ('.solvers', None),
    'solver'                : ('.solver', None),
    'preconditioners'       : ('.preconditioners', None),
    'utils'                 : ('.utils', None),
}

# Cache for lazily loaded modules/attributes
_LAZY_CACHE = {}

# For type checking, import types without runtime overhead
if TYPE_CHECKING:
    from .solver import Solver, SolverResult, SolverStatus, SolverError, SolverErrorMsg, SolverType
    from .solver import LinearOperator, sym_ortho, roots_quadratic, to_boundary
    from .solvers import choose_solver
    from .preconditioners import choose_precond
    from .utils import get_backend, JAX_AVAILABLE
    from ..common.flog import get_global_logger as get_logger

# -----------------------------------------------------------------------------------------------
# Lazy Import Implementation
# -----------------------------------------------------------------------------------------------

def _lazy_import(name: str):
    """
    Lazily import a module or attribute based on _LAZY_IMPORTS configuration.

    Parameters
    ----------
    name : str
        The name of the attribute to import lazily.

    Returns
    -------
    The imported module or attribute.
    """
    if name in _LAZY_CACHE:
        return _LAZY_CACHE[name]

    if name not in _LAZY_IMPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_path, attr_name  = _LAZY_IMPORTS[name]
    module                  = importlib.import_module(module_path, package=__name__)
    result                  = module if attr_name is None else getattr(module, attr_name)
    _LAZY_CACHE[name]       = result
    return result

def __getattr__(name: str):
    """
    Module-level __getattr__ for lazy imports.
    """
    return _lazy_import(name)

def __dir__():
    return sorted(list(globals().keys()) + list(_LAZY_IMPORTS.keys()))

__all__ = list(_LAZY_IMPORTS.keys())

# -----------------------------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------------------------
