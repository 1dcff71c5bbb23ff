'''
Krylov solvers of the krysolve package.

Initialization file for the solvers module. Exports the solver classes,
the SolverType enum and the choose_solver factory.

----------------------------------------------------------------
File        : krysolve/algebra/solvers/__init__.py
Author      : Maksymilian Kliczkowski
License     : MIT
Description : Every solver shares one engine pattern: a basis-building
              process (symmetric Lanczos, biorthogonal Lanczos, Golub-Kahan,
              orthogonal tridiagonalization) feeding an incrementally updated
              factorization (QLP, LQ, QR, LDL^T) with residual norms estimated
              by recurrence. Classes are imported lazily on first use.
----------------------------------------------------------------
'''

import inspect
from typing import Union, Optional, Type

from ..solver           import (Solver, SolverResult, SolverError, SolverErrorMsg, SolverType, SolverStatus)
from ..preconditioners  import Preconditioner, choose_precond

# -----------------------------------------------------------------------------
# Lazy Loading Configuration
# -----------------------------------------------------------------------------

_LAZY_MODULES = {
    'MinresQLPSolver'           : '.minres_qlp',
    'BiLQSolver'                : '.bilq',
    'LsqrSolver'                : '.lsqr',
    'TriCGSolver'               : '.tricg',
}

_TYPE_TO_CLASS = {
    SolverType.MINRES_QLP       : 'MinresQLPSolver',
    SolverType.BILQ             : 'BiLQSolver',
    SolverType.LSQR             : 'LsqrSolver',
    SolverType.TRICG            : 'TriCGSolver',
}

def _load_class(name: str) -> Type[Solver]:
    import importlib
    module = importlib.import_module(_LAZY_MODULES[name], package=__name__)
    return getattr(module, name)

# -----------------------------------------------------------------------------

def choose_solver(solver_id     : Union[str, int, SolverType, Type[Solver], Solver],
                backend         : str                       = "default",
                *,
                default_precond : Optional[Preconditioner]  = None,
                **kwargs) -> Solver:
    """
    Factory function to select and instantiate a solver based on identifier.
    Uses lazy loading to import specific solver classes only when requested.

    Parameters
    ----------
    solver_id : Union[str, int, SolverType, Type[Solver], Solver]
        Identifier for the solver. Can be a string name ("minres_qlp",
        "MINRES-QLP", "LsqrSolver"), integer code, SolverType enum, a Solver
        subclass or an instance (returned as is).
    backend : str, optional
        Numerical backend to use ("numpy", "jax"). Default is "default".
    default_precond : Optional[Preconditioner], optional
        Default preconditioner used by `solve_instance`. Default is None.
    **kwargs
        Additional keyword arguments passed to the solver constructor
        (e.g. `eps`, `maxiter`, `a`, `matvec_func`, `verbose`).

    Returns
    -------
    Solver
        An instance of the selected solver class.

    Examples
    --------
    >>> solver = choose_solver("minres_qlp", a=A, eps=1e-10)
    >>> solver = choose_solver(SolverType.LSQR, a=A)
    >>> result = solver.solve_instance(b)
    """

    # 1. Handle Instance Passthrough
    if isinstance(solver_id, Solver):
        if kwargs:
            solver_id._logger.warning(f"Solver instance provided; ignoring kwargs: {list(kwargs)}")
        return solver_id

    # 2. Resolve SolverType Enum
    solver_type = None
    if isinstance(solver_id, str):
        key = solver_id.upper().replace('-', '_')
        if key in SolverType.__members__:
            solver_type = SolverType[key]
    elif isinstance(solver_id, SolverType):
        solver_type = solver_id
    elif isinstance(solver_id, int):
        try:
            solver_type = SolverType(solver_id)
        except ValueError as e:
            raise ValueError(f"Unknown solver identifier: {solver_id}") from e

    # 3. Import Class based on Type (Lazy Import Logic)
    if isinstance(solver_id, type) and issubclass(solver_id, Solver):
        target_class = solver_id
    elif solver_type is not None:
        target_class = _load_class(_TYPE_TO_CLASS[solver_type])
    elif isinstance(solver_id, str) and solver_id in _LAZY_MODULES:
        target_class = _load_class(solver_id)
    else:
        raise ValueError(f"Unknown solver identifier: {solver_id}")

    # 4. Instantiate
    init_kwargs = kwargs.copy()
    init_kwargs.update({
        'default_precond'   : default_precond,
        'backend'           : backend
    })

    # Introspect constructor to pass only valid arguments
    sig             = inspect.signature(target_class.__init__)
    valid_params    = sig.parameters
    has_varkw       = any(p.kind == inspect.Parameter.VAR_KEYWORD for p in valid_params.values())
    filtered_kwargs = {k: v for k, v in init_kwargs.items() if k in valid_params or has_varkw}
    try:
        return target_class(**filtered_kwargs)
    except Exception as e:
        raise RuntimeError(f"Failed to instantiate {target_class.__name__}: {e}") from e

# -----------------------------------------------------------------------------
# Module-level __getattr__ for Lazy Imports
# -----------------------------------------------------------------------------

def __getattr__(name):
    """
    Lazy import of solver classes when accessed directly (e.g. solvers.LsqrSolver).
    """
    if name in _LAZY_MODULES:
        return _load_class(name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    'Solver', 'SolverResult', 'SolverError', 'SolverErrorMsg', 'SolverType', 'SolverStatus',
    'choose_solver', 'choose_precond',
    # List all lazy classes so IDEs/tools know they exist
    'MinresQLPSolver', 'BiLQSolver', 'LsqrSolver', 'TriCGSolver',
]

__author__      = "Maksymilian Kliczkowski"
__version__     = "1.0"
__license__     = "MIT"
__status__      = "Development"
__maintainer__  = "Maksymilian Kliczkowski"
__email__       = "maksymilian.kliczkowski@pwr.edu.pl"
__description__ = """
                This module provides the Krylov solvers MINRES-QLP, BiLQ, LSQR
                and TriCG behind a common static interface, a factory function
                choosing them by identifier.
                """

# -----------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------
