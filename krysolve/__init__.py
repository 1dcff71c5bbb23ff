# krysolve/__init__.py

"""
krysolve - matrix-free Krylov subspace solvers.

This package provides iterative solvers for large linear systems and
least-squares problems where the operator is only available through its
products v -> Av (and v -> A^T v). Every solver couples a basis-building
process with an incrementally updated factorization and estimates the
residual norm by recurrence.

Solvers:
--------
- minres_qlp : symmetric (singular) systems, minimum-length solutions
- bilq       : square unsymmetric systems
- lsqr       : rectangular (regularized) least-squares problems
- tricg      : symmetric quasi-definite block systems

Modules:
--------
- algebra   : Solver interface, numeric primitives, preconditioners and the solvers
- common    : Logging

Examples:
---------
>>> import numpy as np
>>> import krysolve
>>> A = np.diag([1.0, 2.0, 3.0])
>>> res = krysolve.minres_qlp(A, np.ones(3))
>>> res.converged, res.status
(True, 'solution good enough given atol and rtol')

File    : krysolve/__init__.py
Version : 0.1.0
Author  : Maksymilian Kliczkowski
License : MIT
"""

import importlib

# Package metadata
__version__         = "0.1.0"
__author__          = "Maksymilian Kliczkowski"
__email__           = "maksymilian.kliczkowski@pwr.edu.pl"
__license__         = "MIT"

# List of available modules (not imported by default)
__all__             = ["algebra", "common", "minres_qlp", "bilq", "lsqr", "tricg", "choose_solver"]

# ---------------------------------------------------------------------
#! Functional entry points
# ---------------------------------------------------------------------

def minres_qlp(a, b, x0=None, **kwargs):
    ''' MINRES-QLP for symmetric (A + lam I) x = b. See `MinresQLPSolver.solve`. '''
    from .algebra.solvers.minres_qlp import MinresQLPSolver
    return MinresQLPSolver.solve(a, b, x0, **kwargs)

def bilq(a, b, x0=None, **kwargs):
    ''' BiLQ for square A x = b. See `BiLQSolver.solve`. '''
    from .algebra.solvers.bilq import BiLQSolver
    return BiLQSolver.solve(a, b, x0, **kwargs)

def lsqr(a, b, x0=None, **kwargs):
    ''' LSQR for min ||b - A x||^2 + lam^2 ||x||^2. See `LsqrSolver.solve`. '''
    from .algebra.solvers.lsqr import LsqrSolver
    return LsqrSolver.solve(a, b, x0, **kwargs)

def tricg(a, b, c, x0=None, y0=None, **kwargs):
    ''' TriCG for [tau E, A; A^T, nu F] [x; y] = [b; c]. See `TriCGSolver.solve`. '''
    from .algebra.solvers.tricg import TriCGSolver
    return TriCGSolver.solve(a, b, x0, c=c, y0=y0, **kwargs)

def choose_solver(*args, **kwargs):
    ''' Factory of solver instances. See `krysolve.algebra.solvers.choose_solver`. '''
    from .algebra.solvers import choose_solver as _choose
    return _choose(*args, **kwargs)

# Lazy import subpackages on attribute access (PEP 562)
def __getattr__(name):
    if name in ("algebra", "common"):
        return importlib.import_module(f".{name}", __name__)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")

def __dir__():
    return sorted(list(globals().keys()) + __all__)

# ---------------------------------------------------------------------
#! EOF
# ---------------------------------------------------------------------
