r'''
Solves the regularized linear least-squares problem

$$
\min_x \; \| b - A x \|_2^2 + \lambda^2 \| x \|_2^2
$$

for a rectangular $ A \in \mathbb{R}^{m \times n} $ of any rank. With
$ \lambda = 0 $ and a consistent system it converges to a solution of
$ A x = b $; on inconsistent systems to a least-squares solution.

Mathematical Sketch:
--------------------
The Golub-Kahan process

$$
\beta_1 u_1 = b, \quad \alpha_1 v_1 = A^T u_1, \quad
\beta_{k+1} u_{k+1} = A v_k - \alpha_k u_k, \quad
\alpha_{k+1} v_{k+1} = A^T u_{k+1} - \beta_{k+1} v_k
$$

reduces $ A $ to the lower bidiagonal $ B_k $ with $ A V_k = U_{k+1} B_k $.
LSQR is mathematically equivalent to CG on the normal equations and keeps
the QR factorization of $ [B_k; \lambda I] $ with two reflections per step
(one eliminating $ \lambda $, one eliminating $ \beta_{k+1} $). The iterate
is updated along $ w_k $ and the norms $ \|r_k\| $, $ \|A^T r_k\| $,
$ \|A\| $, $ \mathrm{cond}(A) $ and $ \|x_k\| $ are estimated by recurrences.

With SPD preconditioners $ M $ (range space) and $ N $ (domain space) the
process works in the $ M $ and $ N $ inner products, which solves

$$
\min_x \; \| b - A x \|_{M^{-1}}^2 + \lambda^2 \| x \|_{N^{-1}}^2 .
$$

References:
-----------
    - Paige, C. C., & Saunders, M. A. (1982). LSQR: An algorithm for sparse
        linear equations and sparse least squares. ACM Transactions on
        Mathematical Software, 8(1), 43-71.
    - Estrin, R., Orban, D., & Saunders, M. A. (2019). Euclidean-norm error
        bounds for SYMMLQ and CG. SIAM Journal on Matrix Analysis and
        Applications, 40(1), 235-253. (forward error window)

-----------------------------------------------------------------------------
file:       krysolve/algebra/solvers/lsqr.py
author:     Maksymilian Kliczkowski
desc:       LSQR solver for (regularized) least-squares problems.
-----------------------------------------------------------------------------
'''

import math
from typing import Optional, Callable, Tuple, Any
import numpy as np

from ..solver import (Solver, SolverResult, SolverError, SolverErrorMsg, SolverType, SolverStatus,
                    LinearOperator, IterationLog, Array, MatVecFunc, sym_ortho, to_boundary, _safe_div)
from ..utils import default_tolerance

# ##############################################################################
#! Core LSQR Logic
# ##############################################################################

def _lsqr_logic(
        op              : LinearOperator,
        b               : Array,
        x0              : Optional[Array],
        *,
        atol            : float,
        rtol            : float,
        axtol           : float,
        btol            : float,
        etol            : float,
        window          : int,
        conlim          : float,
        lam             : float,
        radius          : float,
        itmax           : int,
        precond_m       : Optional[Callable[[Array], Array]],
        precond_n       : Optional[Callable[[Array], Array]],
        history         : bool,
        verbose         : int,
        xp              : Any) -> SolverResult:
    """
    LSQR iteration on validated inputs.
    """
    m, n    = op.shape
    log     = IterationLog("LSQR", ("αₖ", "βₖ", "‖rₖ‖", "‖Aᵀrₖ‖", "compat", "backwrd", "‖A‖", "κ(A)"), verbose)
    rnorms  = [] if history else None
    arnorms = [] if history else None
    lam2    = lam * lam
    ctol    = 1.0 / conlim if conlim > 0 else 0.0

    def _result(x, flag, k, rnorm, **kw):
        if x0 is not None:
            x = x + x0
        return Solver._finalize(x, flag, k, rnorm, residuals=rnorms, aresiduals=arnorms, log=log, **kw)

    def _breakdown(x, k, rnorm, name):
        return _result(x, SolverStatus.BREAKDOWN, k, rnorm, inconsistent=False,
                    status=f"Breakdown: preconditioner {name} is not positive definite")

    x       = xp.zeros(n, dtype=b.dtype)
    log.header(f"system of {m} equations in {n} variables, λ = {lam:.2e}, itmax = {itmax}")

    # Golub-Kahan: beta_1 M u_1 = b
    mu      = b - op.matvec(x0) if x0 is not None else b
    u       = Solver._apply_precond(precond_m, mu, "M")
    beta_sq = float(xp.dot(u, mu))
    if beta_sq < 0.0:
        return _breakdown(x, 0, math.sqrt(float(xp.dot(mu, mu))), "M")
    beta1   = math.sqrt(beta_sq)
    if beta1 == 0.0:
        if history:
            rnorms.append(0.0)
            arnorms.append(0.0)
        return _result(x, SolverStatus.ZERO_RESIDUAL, 0, 0.0)
    beta    = beta1
    # relative tests keep the reference of a cold start, beta_1 = ||b||_M
    bnorm   = beta1
    xnorm0  = 0.0
    if x0 is not None:
        bnorm   = math.sqrt(max(float(xp.dot(Solver._apply_precond(precond_m, b, "M"), b)), 0.0))
        xnorm0  = float(xp.linalg.norm(x0))
        if bnorm == 0.0:
            bnorm = beta1
    mu      = mu / beta1
    u       = mu if precond_m is None else u / beta1

    # alpha_1 N v_1 = A^T u_1
    nv      = op.rmatvec(u)
    v       = Solver._apply_precond(precond_n, nv, "N")
    anorm2  = float(xp.dot(v, nv))
    if anorm2 < 0.0:
        return _breakdown(x, 0, beta1, "N")
    anorm   = math.sqrt(anorm2)
    alpha   = anorm

    acond = xnorm = xnorm2 = dnorm2 = 0.0
    c2, s2, z   = -1.0, 0.0, 0.0
    xenorm2     = 0.0
    err_lbnd    = 0.0
    err_vec     = [0.0] * window

    rnorm       = beta1
    res2        = 0.0
    arnorm      = arnorm0 = alpha * beta
    if x0 is not None and rtol > 0.0:
        atb     = Solver._apply_precond(precond_m, b, "M")
        atb     = op.rmatvec(atb)
        arnorm0 = math.sqrt(max(float(xp.dot(Solver._apply_precond(precond_n, atb, "N"), atb)), 0.0))
    if history:
        rnorms.append(rnorm)
        arnorms.append(arnorm)
    log.row(0, beta1, alpha, beta1, alpha, 0.0, 1.0, anorm, acond)

    # A^T b = 0 so x = 0 is a minimum least-squares solution
    if alpha == 0.0:
        return _result(x, SolverStatus.ZERO_LEAST_SQUARES, 0, rnorm)

    v       = v / alpha
    nv      = v if precond_n is None else nv / alpha
    w       = v

    phi_bar = beta1
    rho_bar = alpha

    k               = 0
    on_boundary     = False
    solved_lim      = arnorm / (anorm * rnorm) <= axtol
    solved_mach     = 1.0 + arnorm / (anorm * rnorm) <= 1.0
    solved          = solved_mach or solved_lim
    tired           = k >= itmax
    ill_cond = ill_cond_mach = ill_cond_lim = False
    zero_resid_lim  = rnorm / bnorm <= btol + axtol * anorm * xnorm0 / bnorm
    zero_resid_mach = 1.0 + rnorm / bnorm <= 1.0
    zero_resid      = zero_resid_mach or zero_resid_lim
    solved          = solved or zero_resid
    fwd_err         = False

    while not (solved or tired or ill_cond):
        k += 1

        # ======================================================================
        # 1. GOLUB-KAHAN STEP
        # ======================================================================
        # beta_{k+1} M u_{k+1} = A v_k - alpha_k M u_k
        mu      = op.matvec(v) - alpha * mu
        u       = Solver._apply_precond(precond_m, mu, "M")
        beta_sq = float(xp.dot(u, mu))
        if beta_sq < 0.0:
            return _breakdown(x, k, rnorm, "M")
        beta    = math.sqrt(beta_sq)
        if beta != 0.0:
            mu      = mu / beta
            u       = mu if precond_m is None else u / beta
            anorm2  = anorm2 + alpha * alpha + beta * beta
            if lam > 0:
                anorm2 += lam2

            # alpha_{k+1} N v_{k+1} = A^T u_{k+1} - beta_{k+1} N v_k
            nv      = op.rmatvec(u) - beta * nv
            v       = Solver._apply_precond(precond_n, nv, "N")
            alpha_sq = float(xp.dot(v, nv))
            if alpha_sq < 0.0:
                return _breakdown(x, k, rnorm, "N")
            alpha   = math.sqrt(alpha_sq)
            if alpha != 0.0:
                v   = v / alpha
                nv  = v if precond_n is None else nv / alpha

        # ======================================================================
        # 2. QR OF [B_k; lam I]
        # ======================================================================
        # eliminate the regularization parameter
        c1, s1, rho_bar1 = sym_ortho(rho_bar, lam)
        psi     = s1 * phi_bar
        phi_bar = c1 * phi_bar

        # eliminate beta
        c, s, rho = sym_ortho(rho_bar1, beta)
        phi     = c * phi_bar
        phi_bar = s * phi_bar

        xenorm2 += phi * phi
        err_vec[k % window] = phi
        if k >= window:
            err_lbnd = math.sqrt(sum(e * e for e in err_vec))

        tau     = s * phi
        theta   = s * alpha
        rho_bar = -c * alpha
        dnorm2  += _safe_div(float(xp.dot(w, w)), rho * rho)

        # ======================================================================
        # 3. STEP ALONG w, CLIPPED TO THE TRUST REGION
        # ======================================================================
        sigma   = _safe_div(phi, rho)
        if radius > 0:
            t1, t2      = to_boundary(x, w, radius, backend_module=xp)
            tmax, tmin  = max(t1, t2), min(t1, t2)
            on_boundary = sigma > tmax or sigma < tmin
            sigma       = min(sigma, tmax) if sigma > 0 else max(sigma, tmin)

        x       = x + sigma * w
        w       = v - _safe_div(theta, rho) * w

        # ======================================================================
        # 4. ||x|| FROM A RIGHT ROTATION ELIMINATING theta
        # ======================================================================
        delta   = s2 * rho
        gamma_bar = -c2 * rho
        rhs     = phi - delta * z
        z_bar   = _safe_div(rhs, gamma_bar)
        xnorm   = math.sqrt(xnorm2 + z_bar * z_bar)
        c2, s2, gamma = sym_ortho(gamma_bar, theta)
        z       = _safe_div(rhs, gamma)
        xnorm2  += z * z

        # ======================================================================
        # 5. NORM ESTIMATES AND STOPPING
        # ======================================================================
        anorm   = math.sqrt(anorm2)
        acond   = anorm * math.sqrt(dnorm2)
        res2    += psi * psi
        rnorm   = math.sqrt(phi_bar * phi_bar + res2)
        arnorm  = alpha * abs(tau)
        if history:
            rnorms.append(rnorm)
            arnorms.append(arnorm)

        test1   = rnorm / bnorm
        test2   = _safe_div(arnorm, anorm * rnorm)
        test3   = _safe_div(1.0, acond)
        t1      = test1 / (1.0 + anorm * (xnorm0 + xnorm) / bnorm)
        rnormtol = btol + axtol * anorm * (xnorm0 + xnorm) / bnorm
        log.row(k, alpha, beta, rnorm, arnorm, test1, test2, anorm, acond)

        # machine precision guards against unreasonably small tolerances
        ill_cond_mach   = 1.0 + test3 <= 1.0
        solved_mach     = 1.0 + test2 <= 1.0
        zero_resid_mach = 1.0 + t1 <= 1.0

        tired           = k >= itmax
        ill_cond_lim    = test3 <= ctol
        solved_lim      = test2 <= axtol
        solved_opt      = arnorm <= atol + rtol * arnorm0
        zero_resid_lim  = test1 <= rnormtol
        if k >= window:
            fwd_err     = err_lbnd <= etol * math.sqrt(xenorm2)

        ill_cond    = ill_cond_mach or ill_cond_lim
        zero_resid  = zero_resid_mach or zero_resid_lim
        solved      = solved_mach or solved_lim or solved_opt or zero_resid or fwd_err or on_boundary

    if on_boundary:
        flag = SolverStatus.ON_BOUNDARY
    elif fwd_err:
        flag = SolverStatus.FORWARD_ERROR
    elif zero_resid:
        flag = SolverStatus.ZERO_RESIDUAL_APPROX
    elif solved:
        flag = SolverStatus.LEAST_SQUARES
    elif ill_cond_lim:
        flag = SolverStatus.ILL_CONDITIONED
    elif ill_cond_mach:
        flag = SolverStatus.ILL_CONDITIONED_MACH
    else:
        flag = SolverStatus.MAX_ITER
    return _result(x, flag, k, rnorm, inconsistent=not zero_resid)

# -----------------------------------------------------------------------------
#! LSQR Solver Class
# -----------------------------------------------------------------------------

class LsqrSolver(Solver):
    r'''
    LSQR for $ \min \|b - Ax\|^2 + \lambda^2 \|x\|^2 $ with rectangular $ A $.

    Requires $ v \mapsto Av $ and $ u \mapsto A^T u $, one of each per iteration.
    '''
    _solver_type    = SolverType.LSQR
    _name           = "LSQR"

    @staticmethod
    def solve(
        matvec          : Any,
        b               : Array,
        x0              : Optional[Array]       = None,
        *,
        atol            : Optional[float]       = None,
        rtol            : Optional[float]       = None,
        maxiter         : Optional[int]         = None,
        precond_apply   : Optional[Callable[[Array], Array]] = None,
        backend_module  : Any                   = np,
        rmatvec         : Optional[MatVecFunc]  = None,
        shape           : Optional[Tuple[int, int]] = None,
        N               : Optional[Callable[[Array], Array]] = None,
        lam             : float                 = 0.0,
        sqd             : bool                  = False,
        axtol           : Optional[float]       = None,
        btol            : Optional[float]       = None,
        etol            : Optional[float]       = None,
        window          : int                   = 5,
        conlim          : Optional[float]       = None,
        radius          : float                 = 0.0,
        history         : bool                  = False,
        verbose         : int                   = 0,
        **kwargs        : Any) -> SolverResult:
        """
        Static LSQR execution.

        Args:
            matvec (MatVecFunc or matrix-like):
                Operator $ v \\mapsto Av $ of shape (m, n) (or a matrix).
            b (Array):
                Right-hand side vector of length m.
            x0 (Array, optional):
                Warm-restart offset of length n; the damping acts on the correction.
            atol, rtol (float, optional):
                Stop when $ ||A^T r_k|| \\leq atol + rtol ||A^T b|| $ (0 when None, the
                scale-free tests `axtol` and `btol` then decide).
            maxiter (int, optional):
                Maximum number of iterations (m + n when None or 0).
            precond_apply (Callable, optional):
                SPD preconditioner M on the range space (length m vectors).
            backend_module (Any):
                Backend module (`numpy` or `jax.numpy`).
            rmatvec (MatVecFunc, optional):
                $ u \\mapsto A^T u $ for callables.
            shape (tuple, optional):
                Shape (m, n) for callables.
            N (Callable, optional):
                SPD preconditioner on the domain space (length n vectors).
            lam (float):
                Damping $ \\lambda \\geq 0 $.
            sqd (bool):
                Solve the symmetric quasi-definite system, sets $ \\lambda = 1 $.
            axtol, btol (float, optional):
                Stop when $ ||A^T r|| \\leq axtol ||A|| ||r|| $ or
                $ ||r|| \\leq btol ||b|| + axtol ||A|| ||x|| $ (sqrt(eps) when None).
            etol (float, optional):
                Stop when the lower bound of the forward error over the last `window`
                steps is below $ etol \\, ||x|| $ (sqrt(eps) when None).
            window (int):
                Number of steps of the forward error lower bound.
            conlim (float, optional):
                Stop when $ cond(A) $ exceeds it (1 / sqrt(eps) when None, 0 disables).
            radius (float):
                Trust-region radius, 0 means unconstrained.
            history (bool):
                Record $ ||r_k|| $ and $ ||A^T r_k|| $ per iteration.
            verbose (int):
                Log the iteration table every `verbose` iterations.

        Returns:
            SolverResult
        """
        Solver._warn_unused_kwargs("LSQR", kwargs)
        op, b, x0, dtype    = Solver._prepare_system(matvec, b, x0, backend_module, rmatvec=rmatvec,
                                                    shape=shape, square=False, need_adjoint=True)
        m, n                = op.shape
        atol                = 0.0 if atol is None else atol
        rtol                = 0.0 if rtol is None else rtol
        atol, rtol          = Solver._resolve_tolerances(atol, rtol, dtype)
        tol                 = default_tolerance(dtype)
        if lam < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Damping must be non-negative, got lam={lam}")
        if radius < 0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"Trust-region radius must be non-negative, got {radius}")
        if int(window) < 1:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, f"window must be positive, got {window}")
        return _lsqr_logic(op, b, x0,
                        atol        = atol,
                        rtol        = rtol,
                        axtol       = tol if axtol is None else float(axtol),
                        btol        = tol if btol is None else float(btol),
                        etol        = tol if etol is None else float(etol),
                        window      = int(window),
                        conlim      = 1.0 / tol if conlim is None else float(conlim),
                        lam         = 1.0 if sqd else float(lam),
                        radius      = float(radius),
                        itmax       = Solver._resolve_maxiter(maxiter, m + n),
                        precond_m   = Solver._resolve_precond(precond_apply, "M"),
                        precond_n   = Solver._resolve_precond(N, "N"),
                        history     = history,
                        verbose     = verbose,
                        xp          = backend_module)

# -------------------------------------------------------------------------
#! EOF
# -------------------------------------------------------------------------
