r'''
Solves symmetric (possibly singular) linear systems:

$$
(A + \lambda I)x = b,
$$

or least-squares problems $ \min ||(A + \lambda I)x - b||_2 $.
On singular inconsistent systems it finds the minimum length solution
$ x $ (the minimum $||x||_2$ ) among all least-squares solutions.

Based on the algorithm by Choi, Paige, and Saunders.

Mathematical Sketch:
--------------------
The Lanczos process applied to $ A' = A + \lambda I $ (with the SPD
preconditioner M, in the M-inner product) generates a basis

$$
V_k = [v_1, ..., v_k]
$$

of the Krylov subspace $ K_k(A', b) $ and the symmetric tridiagonal matrix
$ T_{k+1,k} $ with diagonal $ \alpha_j $ and off-diagonal $ \beta_j $.

The residual is minimized through the QR factorization
$ Q_k T_{k+1,k} = [R_k; 0] $ built with one Givens reflection per step, so that
$ ||r_k|| = |\bar\zeta_{k+1}| $ is known without forming $ r_k $.

MINRES-QLP then applies right reflections ($ R_k P_k = L_k $), the LQ
factorization of $ R_k $. The iterate

$$
x_k = W_k t_k, \quad W_k = V_k P_k, \quad L_k t_k = \beta_1 Q_k e_1,
$$

is updated with short recurrences over the last two directions of $ W_k $.
The last component $ \tau_k $ is the only one affected by a near-singular
$ \bar\mu_k $; it is dropped on inconsistent systems.

References:
-----------
    - Choi, S.-C. T., Paige, C. C., & Saunders, M. A. (2011). MINRES-QLP: A
        Krylov subspace method for indefinite or singular symmetric systems.
        SIAM Journal on Scientific Computing, 33(4), 1810-1836.
    - Choi, S.-C. T., & Saunders, M. A. (2014). Algorithm 937: MINRES-QLP for
        symmetric and Hermitian linear equations and least-squares problems.
        ACM Transactions on Mathematical Software, 40(2).

-----------------------------------------------------------------------------
file:       krysolve/algebra/solvers/minres_qlp.py
author:     Maksymilian Kliczkowski
desc:       MINRES-QLP solver for symmetric (singular) systems.
            Supports both NumPy and (eager) JAX backends.
-----------------------------------------------------------------------------
'''

import math
from typing import Optional, Callable, Any
import numpy as np

# Base Solver classes and types
from ..solver import (Solver, SolverResult, SolverType, SolverStatus,
                    LinearOperator, VectorWindow, IterationLog, Array, sym_ortho, _safe_div)

# ##############################################################################
#! Constants
# ##############################################################################

_MAX_A_COND     = 1.0e+15           # Condition number limit of L_k
_KAPPA_SCALE    = 100.0             # ||A r|| threshold is (atol + rtol ||A r_0||) / 100

# ##############################################################################
#! Core MINRES-QLP Logic
# ##############################################################################

def _minres_qlp_logic(
        op              : LinearOperator,
        b               : Array,
        x0              : Optional[Array],
        *,
        atol            : float,
        rtol            : float,
        itmax           : int,
        precond         : Optional[Callable[[Array], Array]],
        lam             : float,
        conlim          : float,
        history         : bool,
        verbose         : int,
        xp              : Any) -> SolverResult:
    """
    MINRES-QLP iteration on validated inputs. All scalars are Python floats,
    vectors are updated out of place on the backend `xp`.
    """
    n           = b.shape[0]
    log         = IterationLog("MINRES-QLP", ("‖rₖ‖", "‖Arₖ₋₁‖", "βₖ₊₁", "κ(L)"), verbose)

    def _apply(v: Array) -> Array:
        av = op.matvec(v)
        return av + lam * v if lam != 0.0 else av

    def _result(x, flag, k, rnorm, **kw):
        if x0 is not None:
            x = x + x0
        return Solver._finalize(x, flag, k, rnorm, residuals=rnorms, aresiduals=arnorms, log=log, **kw)

    # Initial residual and the first Lanczos vector
    r0          = b - _apply(x0) if x0 is not None else b
    x           = xp.zeros_like(b)
    vk          = Solver._apply_precond(precond, r0)
    beta_sq     = float(xp.dot(vk, r0))
    rnorms      = [] if history else None
    arnorms     = [] if history else None
    log.header(f"n = {n}, λ = {lam:.2e}, atol = {atol:.2e}, rtol = {rtol:.2e}, itmax = {itmax}")

    if beta_sq < 0.0:
        return _result(x, SolverStatus.BREAKDOWN, 0, math.sqrt(float(xp.dot(r0, r0))),
                    status="Breakdown: preconditioner M is not positive definite")

    beta_k      = math.sqrt(beta_sq)
    rnorm       = beta_k
    if history:
        rnorms.append(rnorm)
    if rnorm == 0.0:
        return _result(x, SolverStatus.ZERO_RESIDUAL, 0, 0.0)

    # Lanczos storage: lag 0 is M^{-1}v_k, lag 1 is M^{-1}v_{k-1}
    mv          = VectorWindow(2, b, xp)
    mv.push(r0 / beta_k)
    vk          = mv[0] if precond is None else vk / beta_k
    # Directions: lag 0 is w_k, lag 1 is w_{k-1}
    w           = VectorWindow(2, b, xp)

    # relative test against the residual at x = 0, also after a warm restart
    bnorm       = rnorm
    if x0 is not None:
        bnorm   = math.sqrt(max(float(xp.dot(Solver._apply_precond(precond, b), b)), 0.0))
    eps_tol     = atol + rtol * bnorm
    kappa       = 0.0

    # QR factorization of T_{k+1,k}
    c_km2 = c_km1 = s_km2 = s_km1 = 0.0
    zeta_bar_k  = beta_k
    eps_km2     = 0.0
    gamma_km1   = 0.0
    # LQ factorization of R_k
    cp = sp = cd = sd = 0.0
    xi_km1      = 0.0
    tau_km2 = tau_km1 = tau_k = 0.0
    psibar_km2 = psibar_km1 = 0.0
    mu_bis_km2 = mu_bis_km1 = mu_bar_km1 = 0.0
    mu_max, mu_min = 0.0, math.inf
    acond       = 1.0
    arnorm      = 0.0

    k               = 0
    solved          = rnorm <= eps_tol
    inconsistent    = False
    ill_cond        = False
    breakdown       = False
    breakdown_msg   = "Breakdown: βₖ₊₁ = 0"
    tired           = k >= itmax

    while not (solved or inconsistent or ill_cond or breakdown or tired):
        k += 1

        # ======================================================================
        # 1. PRECONDITIONED LANCZOS
        # ======================================================================
        p           = _apply(vk)
        if k >= 2:
            p       = p - beta_k * mv[1]
        alpha       = float(xp.dot(vk, p))
        p           = p - alpha * mv[0]
        vkp1        = Solver._apply_precond(precond, p)
        beta_sq     = float(xp.dot(vkp1, p))
        if beta_sq < 0.0:
            breakdown       = True
            breakdown_msg   = "Breakdown: preconditioner M is not positive definite"
            break
        beta_kp1    = math.sqrt(beta_sq)
        if beta_kp1 != 0.0:
            p       = p / beta_kp1
            vkp1    = p if precond is None else vkp1 / beta_kp1

        # ======================================================================
        # 2. QR OF T_{k+1,k}: PREVIOUS REFLECTIONS, THEN THE CURRENT ONE
        # ======================================================================
        if k >= 3:
            eps_km2     = s_km2 * beta_k
            gamma_bar   = -c_km2 * beta_k
        else:
            gamma_bar   = beta_k
        if k >= 2:
            gamma_km1   = c_km1 * gamma_bar + s_km1 * alpha
            lam_bar     = s_km1 * gamma_bar - c_km1 * alpha
        else:
            lam_bar     = alpha

        c_k, s_k, lam_k = sym_ortho(lam_bar, beta_kp1)
        if lam_k == 0.0:
            # zero column, the residual is unchanged
            c_k, s_k    = 0.0, 1.0
        zeta_k          = c_k * zeta_bar_k
        zeta_bar_kp1    = s_k * zeta_bar_k

        # ======================================================================
        # 3. LQ OF R_k: RIGHT REFLECTIONS P_{k-2,k} AND P_{k-1,k}
        # ======================================================================
        if k == 1:
            mu_bar_k    = lam_k
        elif k == 2:
            cp, sp, mu_bis_km1 = sym_ortho(mu_bar_km1, gamma_km1)
            psibar_km1  = sp * lam_k
            mu_bar_k    = -cp * lam_k
        else:
            cp, sp, mu_km2 = sym_ortho(mu_bis_km2, eps_km2)
            psi_km2     = cp * psibar_km2 + sp * gamma_km1
            theta_k     = sp * psibar_km2 - cp * gamma_km1
            rho_km2     = sp * lam_k
            eta_k       = -cp * lam_k
            cd, sd, mu_bis_km1 = sym_ortho(mu_bar_km1, theta_k)
            psibar_km1  = sd * eta_k
            mu_bar_k    = -cd * eta_k
            # mu_{k-2} is final
            mu_max      = max(mu_max, mu_km2)
            mu_min      = min(mu_min, mu_km2)

        # ======================================================================
        # 4. FORWARD SUBSTITUTION L_k t_k = z_k
        # ======================================================================
        if k == 1:
            tau_k       = _safe_div(zeta_k, mu_bar_k)
        elif k == 2:
            tau_km1     = _safe_div(tau_k * mu_bar_km1, mu_bis_km1)
            xi_k        = zeta_k
            tau_k       = _safe_div(xi_k - psibar_km1 * tau_km1, mu_bar_k)
        else:
            tau_km2     = _safe_div(tau_km1 * mu_bis_km2, mu_km2)
            tau_km1     = _safe_div(xi_km1 - psi_km2 * tau_km2, mu_bis_km1)
            xi_k        = zeta_k - rho_km2 * tau_km2
            tau_k       = _safe_div(xi_k - psibar_km1 * tau_km1, mu_bar_k)

        # ======================================================================
        # 5. DIRECTIONS W_k = V_k P_k AND THE FINAL PART OF x
        # ======================================================================
        if k == 1:
            w[0]        = vk
        elif k == 2:
            w_bar       = w[0]
            w[1]        = cp * w_bar + sp * vk
            w[0]        = sp * w_bar - cp * vk
        else:
            w_ring      = w[1]
            w_bar       = w[0]
            x           = x + (cp * tau_km2) * w_ring + (sp * tau_km2) * vk
            w_aux       = sp * w_ring - cp * vk
            w[1]        = cd * w_bar + sd * w_aux
            w[0]        = sd * w_bar - cd * w_aux

        # Shift the Lanczos vectors
        mv.push(p)
        vk              = vkp1

        # ======================================================================
        # 6. NORM ESTIMATES AND STOPPING
        # ======================================================================
        rnorm           = abs(zeta_bar_kp1)
        arnorm          = abs(zeta_bar_k) * math.sqrt(lam_bar ** 2 + (c_km1 * beta_kp1) ** 2)
        if k >= 2:
            lo          = min(mu_min, mu_bis_km1)
            hi          = max(mu_max, mu_bis_km1)
            acond       = hi / lo if lo > 0.0 else math.inf
        if history:
            rnorms.append(rnorm)
            arnorms.append(arnorm)

        if k == 1:
            kappa       = (atol + rtol * arnorm) / _KAPPA_SCALE
        solved          = rnorm <= eps_tol
        inconsistent    = not solved and arnorm <= kappa
        ill_cond        = not (solved or inconsistent) and acond >= conlim
        breakdown       = not (solved or inconsistent or ill_cond) and beta_kp1 == 0.0
        tired           = k >= itmax

        # Update variables
        if k >= 2:
            s_km2, c_km2    = s_km1, c_km1
            xi_km1          = xi_k
            mu_bis_km2      = mu_bis_km1
            psibar_km2      = psibar_km1
        s_km1, c_km1        = s_k, c_k
        mu_bar_km1          = mu_bar_k
        zeta_bar_k          = zeta_bar_kp1
        beta_k              = beta_kp1
        log.row(k, rnorm, arnorm, beta_kp1, acond)

    # Finalize the update of x
    if k >= 2:
        x = x + tau_km1 * w[1]
    if k >= 1 and not (inconsistent or ill_cond):
        x = x + tau_k * w[0]

    if breakdown:
        return _result(x, SolverStatus.BREAKDOWN, k, rnorm, status=breakdown_msg)
    if ill_cond:
        return _result(x, SolverStatus.ILL_CONDITIONED, k, rnorm)
    if solved:
        return _result(x, SolverStatus.SOLVED, k, rnorm)
    if inconsistent:
        return _result(x, SolverStatus.INCONSISTENT, k, rnorm, inconsistent=True)
    return _result(x, SolverStatus.MAX_ITER, k, rnorm)

# -----------------------------------------------------------------------------
#! MinresQLP Solver Class
# -----------------------------------------------------------------------------

class MinresQLPSolver(Solver):
    r'''
    Minimum Residual method with QLP stabilization for symmetric systems.

    Solves $ (A + \lambda I) x = b $ for symmetric $ A $, returning the minimum
    length least-squares solution when the system is singular and inconsistent.
    '''
    _solver_type    = SolverType.MINRES_QLP
    _name           = "MINRES-QLP"

    @staticmethod
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
        lam             : float             = 0.0,
        conlim          : float             = _MAX_A_COND,
        history         : bool              = False,
        verbose         : int               = 0,
        **kwargs        : Any) -> SolverResult:
        """
        Static MINRES-QLP execution.

        Args:
            matvec (MatVecFunc or matrix-like):
                Symmetric operator $ v \\mapsto Av $.
            b (Array):
                Right-hand side vector $ b $.
            x0 (Array, optional):
                Warm-restart offset; the correction solves $ (A + \\lambda I)\\Delta x = b - (A + \\lambda I) x_0 $.
            atol, rtol (float, optional):
                Stop when $ ||r_k|| \\leq atol + rtol ||b|| $ (sqrt(eps) when None), ||b|| also after a restart.
            maxiter (int, optional):
                Maximum number of iterations (2n when None or 0).
            precond_apply (Callable, optional):
                SPD preconditioner $ r \\mapsto M^{-1}r $.
            backend_module (Any):
                Backend module (`numpy` or `jax.numpy`).
            lam (float):
                Shift $ \\lambda $ of $ A + \\lambda I $.
            conlim (float):
                Stop when the condition estimate of $ L_k $ exceeds this value.
            history (bool):
                Record $ ||r_k|| $ and $ ||A r_{k-1}|| $ per iteration.
            verbose (int):
                Log the iteration table every `verbose` iterations.

        Returns:
            SolverResult
        """
        Solver._warn_unused_kwargs("MINRES-QLP", kwargs)
        op, b, x0, dtype    = Solver._prepare_system(matvec, b, x0, backend_module, square=True)
        atol, rtol          = Solver._resolve_tolerances(atol, rtol, dtype)
        itmax               = Solver._resolve_maxiter(maxiter, 2 * b.shape[0])
        precond             = Solver._resolve_precond(precond_apply, "M")
        return _minres_qlp_logic(op, b, x0,
                                atol    = atol,
                                rtol    = rtol,
                                itmax   = itmax,
                                precond = precond,
                                lam     = float(lam),
                                conlim  = float(conlim),
                                history = history,
                                verbose = verbose,
                                xp      = backend_module)

# -------------------------------------------------------------------------
#! EOF
# -------------------------------------------------------------------------
