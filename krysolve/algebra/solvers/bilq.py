r'''
Solves square, possibly unsymmetric, linear systems

$$
A x = b
$$

with the biorthogonal (two-sided) Lanczos process and an LQ factorization.

Mathematical Sketch:
--------------------
Starting from $ v_1 = b / \beta_1 $ and $ u_1 = c / \gamma_1 $ with
$ \beta_1 \gamma_1 = b^T c $, the process builds bases $ V_k, U_k $ with
$ U_k^T V_k = I $ and the tridiagonal

$$
A V_k = V_{k+1} T_{k+1,k}, \qquad A^T U_k = U_{k+1} T_{k,k+1}^T,
$$

with diagonal $ \alpha_j $, subdiagonal $ \beta_j $ and superdiagonal $ \gamma_j $.

The LQ factorization $ T_k = \bar L_k Q_k $ (one reflection per step) gives the
BiLQ iterate $ x^L_k = D_k z_k $ with $ D_k = V_k Q_k^T $. The same recurrence
also yields the BiCG point $ x^C_k = x^L_{k-1} + \bar\zeta_k \bar d_k $,
used as an early exit when it already satisfies the tolerance.

References:
-----------
    - Montoison, A., & Orban, D. (2020). BiLQ: An iterative method for
        nonsymmetric linear systems with a quasi-minimum error property.
        SIAM Journal on Matrix Analysis and Applications, 41(3), 1145-1166.

-----------------------------------------------------------------------------
file:       krysolve/algebra/solvers/bilq.py
author:     Maksymilian Kliczkowski
desc:       BiLQ solver for square unsymmetric systems.
-----------------------------------------------------------------------------
'''

import math
from typing import Optional, Callable, Any
import numpy as np

from ..solver import (Solver, SolverResult, SolverError, SolverErrorMsg, SolverType, SolverStatus, LinearOperator,
                    VectorWindow, IterationLog, Array, MatVecFunc, sym_ortho, _safe_div)

# ##############################################################################
#! Core BiLQ Logic
# ##############################################################################

def _bilq_logic(
        op                  : LinearOperator,
        b                   : Array,
        c                   : Array,
        x0                  : Optional[Array],
        *,
        atol                : float,
        rtol                : float,
        itmax               : int,
        transfer_to_bicg    : bool,
        history             : bool,
        verbose             : int,
        xp                  : Any) -> SolverResult:
    """
    BiLQ iteration on validated inputs.
    """
    n       = b.shape[0]
    log     = IterationLog("BiLQ", ("‖rₖ‖",), verbose)
    rnorms  = [] if history else None

    def _result(x, flag, k, rnorm, **kw):
        if x0 is not None:
            x = x + x0
        return Solver._finalize(x, flag, k, rnorm, residuals=rnorms, log=log, **kw)

    r0      = b - op.matvec(x0) if x0 is not None else b
    x       = xp.zeros_like(b)
    bnorm   = float(xp.linalg.norm(r0))
    log.header(f"n = {n}, atol = {atol:.2e}, rtol = {rtol:.2e}, itmax = {itmax}")

    if history:
        rnorms.append(bnorm)
    if bnorm == 0.0:
        return _result(x, SolverStatus.ZERO_RESIDUAL, 0, 0.0)

    # relative test against the residual at x = 0, also after a warm restart
    eps_tol = atol + rtol * (float(xp.linalg.norm(b)) if x0 is not None else bnorm)
    if bnorm <= eps_tol:
        return _result(x, SolverStatus.SOLVED_LQ, 0, bnorm)

    # Initialize the biorthogonalization process
    btc     = float(xp.dot(r0, c))
    if btc == 0.0:
        return _result(x, SolverStatus.BREAKDOWN, 0, bnorm, status="Breakdown bᵀc = 0")

    beta_k  = math.sqrt(abs(btc))       # beta_1 gamma_1 = b^T c
    gamma_k = btc / beta_k
    v       = VectorWindow(2, b, xp)    # lag 0 is v_k, lag 1 is v_{k-1}
    u       = VectorWindow(2, b, xp)    # lag 0 is u_k, lag 1 is u_{k-1}
    v.push(r0 / beta_k)
    u.push(c / gamma_k)
    d_bar   = xp.zeros_like(b)          # last column of D_k = V_k Q_k^T

    c_km1 = c_k = -1.0
    s_km1 = s_k = 0.0
    zeta_km1 = zeta_bar_k = 0.0
    zeta_km2 = eta_k = 0.0
    delta_bar_km1 = delta_bar_k = 0.0
    delta_km1 = lam_km1 = eps_km2 = 0.0
    norm_vk = bnorm / beta_k
    rnorm_lq = rnorm_cg = bnorm

    k           = 0
    solved_lq   = bnorm <= eps_tol
    solved_cg   = False
    breakdown   = False
    tired       = k >= itmax

    while not (solved_lq or solved_cg or tired or breakdown):
        k += 1

        # ======================================================================
        # 1. BIORTHOGONAL LANCZOS STEP
        # ======================================================================
        q       = op.matvec(v[0]) - gamma_k * v[1]
        p       = op.rmatvec(u[0]) - beta_k * u[1]
        alpha_k = float(xp.dot(q, u[0]))
        q       = q - alpha_k * v[0]
        p       = p - alpha_k * u[0]
        qtp     = float(xp.dot(p, q))
        beta_kp1    = math.sqrt(abs(qtp))
        gamma_kp1   = _safe_div(qtp, beta_kp1)

        # ======================================================================
        # 2. LQ OF T_k
        # ======================================================================
        if k == 1:
            delta_bar_k = alpha_k
        elif k == 2:
            c_k, s_k, delta_km1 = sym_ortho(delta_bar_km1, gamma_k)
            lam_km1     = c_k * beta_k + s_k * alpha_k
            delta_bar_k = s_k * beta_k - c_k * alpha_k
        else:
            c_k, s_k, delta_km1 = sym_ortho(delta_bar_km1, gamma_k)
            eps_km2     = s_km1 * beta_k
            lam_km1     = -c_km1 * c_k * beta_k + s_k * alpha_k
            delta_bar_k = -c_km1 * s_k * beta_k - c_k * alpha_k

        # ======================================================================
        # 3. FORWARD SUBSTITUTION L_k z_k = beta_1 e_1
        # ======================================================================
        if k == 1:
            eta_k       = beta_k
        elif k == 2:
            eta_km1     = eta_k
            zeta_km1    = _safe_div(eta_km1, delta_km1)
            eta_k       = -lam_km1 * zeta_km1
        else:
            zeta_km2    = zeta_km1
            eta_km1     = eta_k
            zeta_km1    = _safe_div(eta_km1, delta_km1)
            eta_k       = -eps_km2 * zeta_km2 - lam_km1 * zeta_km1

        # ======================================================================
        # 4. DIRECTIONS AND THE BiLQ ITERATE
        # ======================================================================
        if k >= 2:
            x       = x + (zeta_km1 * c_k) * d_bar + (zeta_km1 * s_k) * v[0]
            d_bar   = s_k * d_bar - c_k * v[0]
        else:
            d_bar   = v[0]

        if qtp != 0.0:
            v.push(q / beta_kp1)
            u.push(p / gamma_kp1)
        else:
            # keep v_k in place, the loop stops on breakdown
            v.push(v[0])
            u.push(u[0])

        vk_vkp1     = float(xp.dot(v[1], v[0]))
        norm_vkp1   = float(xp.linalg.norm(v[0]))

        # ======================================================================
        # 5. RESIDUAL NORMS
        # ======================================================================
        if k == 1:
            rnorm_lq = bnorm
        else:
            mu_k    = beta_k * (s_km1 * zeta_km2 - c_km1 * c_k * zeta_km1) + alpha_k * s_k * zeta_km1
            omega_k = beta_kp1 * s_k * zeta_km1
            rnorm_lq = math.sqrt(max(0.0, mu_k ** 2 * norm_vk ** 2 + omega_k ** 2 * norm_vkp1 ** 2
                                        + 2.0 * mu_k * omega_k * vk_vkp1))
        if history:
            rnorms.append(rnorm_lq)

        cg_ready    = transfer_to_bicg and delta_bar_k != 0.0
        if cg_ready:
            zeta_bar_k  = eta_k / delta_bar_k
            rho_k       = beta_kp1 * (s_k * zeta_km1 - c_k * zeta_bar_k)
            rnorm_cg    = abs(rho_k) * norm_vkp1

        # Shift the scalars
        s_km1, c_km1    = s_k, c_k
        gamma_k         = gamma_kp1
        beta_k          = beta_kp1
        delta_bar_km1   = delta_bar_k
        norm_vk         = norm_vkp1

        solved_lq   = rnorm_lq <= eps_tol
        solved_cg   = cg_ready and rnorm_cg <= eps_tol
        tired       = k >= itmax
        breakdown   = not solved_lq and not solved_cg and qtp == 0.0
        log.row(k, rnorm_lq)

    # BiCG point x^C_k = x^L_{k-1} + zeta_bar_k d_bar_k
    if solved_cg:
        x = x + zeta_bar_k * d_bar
        return _result(x, SolverStatus.SOLVED_CG, k, rnorm_cg)
    if solved_lq:
        return _result(x, SolverStatus.SOLVED_LQ, k, rnorm_lq)
    if breakdown:
        return _result(x, SolverStatus.BREAKDOWN, k, rnorm_lq, status="Breakdown ⟨uₖ₊₁,vₖ₊₁⟩ = 0")
    return _result(x, SolverStatus.MAX_ITER, k, rnorm_lq)

# -----------------------------------------------------------------------------
#! BiLQ Solver Class
# -----------------------------------------------------------------------------

class BiLQSolver(Solver):
    r'''
    BiLQ method for square unsymmetric systems $ A x = b $.

    Requires both products $ v \mapsto Av $ and $ u \mapsto A^T u $ (one of
    each per iteration) and a shadow vector $ c $ with $ b^T c \neq 0 $.
    '''
    _solver_type    = SolverType.BILQ
    _name           = "BiLQ"

    @staticmethod
    def solve(
        matvec              : Any,
        b                   : Array,
        x0                  : Optional[Array]       = None,
        *,
        atol                : Optional[float]       = None,
        rtol                : Optional[float]       = None,
        maxiter             : Optional[int]         = None,
        precond_apply       : Optional[Callable[[Array], Array]] = None,
        backend_module      : Any                   = np,
        c                   : Optional[Array]       = None,
        rmatvec             : Optional[MatVecFunc]  = None,
        transfer_to_bicg    : bool                  = True,
        history             : bool                  = False,
        verbose             : int                   = 0,
        **kwargs            : Any) -> SolverResult:
        """
        Static BiLQ execution.

        Args:
            matvec (MatVecFunc or matrix-like):
                Operator $ v \\mapsto Av $ (or a matrix).
            b (Array):
                Right-hand side vector $ b $.
            x0 (Array, optional):
                Warm-restart offset.
            atol, rtol (float, optional):
                Stop when $ ||r_k|| \\leq atol + rtol ||b|| $ (sqrt(eps) when None), ||b|| also after a restart.
            maxiter (int, optional):
                Maximum number of iterations (2n when None or 0).
            precond_apply:
                Not supported by BiLQ; must be None.
            backend_module (Any):
                Backend module (`numpy` or `jax.numpy`).
            c (Array, optional):
                Second starting vector of the biorthogonal process (default b).
            rmatvec (MatVecFunc, optional):
                $ u \\mapsto A^T u $ for callables (the matrix transpose otherwise).
            transfer_to_bicg (bool):
                Return the BiCG point when its residual is small enough.
            history (bool):
                Record $ ||r^L_k|| $ per iteration.
            verbose (int):
                Log the iteration table every `verbose` iterations.

        Returns:
            SolverResult
        """
        if Solver._resolve_precond(precond_apply, "M") is not None:
            raise SolverError(SolverErrorMsg.PRECOND_INVALID, "BiLQ does not support preconditioners.")
        Solver._warn_unused_kwargs("BiLQ", kwargs)
        op, b, x0, dtype    = Solver._prepare_system(matvec, b, x0, backend_module, rmatvec=rmatvec,
                                                    square=True, need_adjoint=True)
        c                   = b if c is None else Solver._prepare_vector(c, b.shape[0], "c", backend_module, dtype)
        atol, rtol          = Solver._resolve_tolerances(atol, rtol, dtype)
        itmax               = Solver._resolve_maxiter(maxiter, 2 * b.shape[0])
        return _bilq_logic(op, b, c, x0,
                        atol                = atol,
                        rtol                = rtol,
                        itmax               = itmax,
                        transfer_to_bicg    = bool(transfer_to_bicg),
                        history             = history,
                        verbose             = verbose,
                        xp                  = backend_module)

# -------------------------------------------------------------------------
#! EOF
# -------------------------------------------------------------------------
