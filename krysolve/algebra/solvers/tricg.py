r'''
Solves symmetric quasi-definite (SQD) block systems

$$
\begin{bmatrix} \tau E & A \\ A^T & \nu F \end{bmatrix}
\begin{bmatrix} x \\ y \end{bmatrix}
=
\begin{bmatrix} b \\ c \end{bmatrix},
$$

where $ A \in \mathbb{R}^{m \times n} $, $ \tau, \nu $ are real scalars and
$ E = M^{-1} \succ 0 $, $ F = N^{-1} \succ 0 $.

By default $ \tau = 1, \nu = -1 $ (SQD). `flip` selects $ \tau = -1, \nu = 1 $,
`spd` selects $ \tau = \nu = 1 $ (symmetric positive definite) and `snd`
selects $ \tau = \nu = -1 $ (symmetric negative definite).

Mathematical Sketch:
--------------------
The orthogonal tridiagonalization process started from $ \beta_1 E v_1 = b $
and $ \gamma_1 F u_1 = c $ builds

$$
A U_k = E V_{k+1} T_{k+1,k}, \qquad A^T V_k = F U_{k+1} T_{k,k+1}^T,
$$

one product with $ A $ and one with $ A^T $ per step. Interleaving the bases,
$ W_k = [v_1, u_1, \dots, v_k, u_k] $, turns the block system into a symmetric
tridiagonal-by-blocks matrix $ S_{k,k} $ whose $ LDL^T $ factorization is
updated with a fixed number of scalars per step. TriCG imposes
$ W_k^T r_k = 0 $, i.e. $ S_{k,k} z_k = \beta_1 e_1 + \gamma_1 e_2 $, and
updates $ (x_k, y_k) $ along the directions $ G_k $ with $ L_k G_k^T = W_k^T $.

TriCG breaks down when a pivot of $ D_k $ vanishes, which can happen when
$ \tau = 0 $ or $ \nu = 0 $.

References:
-----------
    - Montoison, A., & Orban, D. (2021). TriCG and TriMR: Two iterative
        methods for symmetric quasi-definite systems. SIAM Journal on
        Scientific Computing, 43(4), 2502-2525.

-----------------------------------------------------------------------------
file:       krysolve/algebra/solvers/tricg.py
author:     Maksymilian Kliczkowski
desc:       TriCG solver for symmetric quasi-definite block systems.
-----------------------------------------------------------------------------
'''

import math
from typing import Optional, Callable, Tuple, Any
import numpy as np

from ..solver import (Solver, SolverResult, SolverError, SolverErrorMsg, SolverType, SolverStatus,
                    LinearOperator, VectorWindow, IterationLog, Array, MatVecFunc)
from ..utils import machine_eps

# ##############################################################################
#! Core TriCG Logic
# ##############################################################################

def _tricg_logic(
        op              : LinearOperator,
        b               : Array,
        c               : Array,
        x0              : Optional[Array],
        y0              : Optional[Array],
        *,
        atol            : float,
        rtol            : float,
        itmax           : int,
        tau             : float,
        nu              : float,
        precond_m       : Optional[Callable[[Array], Array]],
        precond_n       : Optional[Callable[[Array], Array]],
        history         : bool,
        verbose         : int,
        xp              : Any) -> SolverResult:
    """
    TriCG iteration on validated inputs.
    """
    m, n    = op.shape
    log     = IterationLog("TriCG", ("‖rₖ‖", "αₖ", "βₖ₊₁", "γₖ₊₁"), verbose)
    rnorms  = [] if history else None
    restart = x0 is not None or y0 is not None

    x       = xp.zeros(m, dtype=b.dtype)
    y       = xp.zeros(n, dtype=b.dtype)

    def _result(flag, k, rnorm, **kw):
        xk, yk = x, y
        if x0 is not None:
            xk = xk + x0
        if y0 is not None:
            yk = yk + y0
        return Solver._finalize(xk, flag, k, rnorm, residuals=rnorms, y=yk, log=log, **kw)

    def _enorm(vec, precond, name):
        # ||vec||_{E}, E = M^{-1}; the second value is M vec
        z   = Solver._apply_precond(precond, vec, name)
        sq  = float(xp.dot(z, vec))
        return (math.sqrt(sq) if sq >= 0.0 else -1.0), z

    # [ tau E   A  ] [ x_k ] = [ b - tau E dx - A dy ] = [ b0 ]
    # [  A^T  nu F ] [ y_k ]   [ c - A^T dx - nu F dy ]   [ c0 ]
    b0, c0  = b, c
    if restart:
        if y0 is not None:
            b0 = b0 - op.matvec(y0)
        if x0 is not None:
            c0 = c0 - op.rmatvec(x0)
            if tau != 0.0:
                b0 = b0 - tau * x0
        if y0 is not None and nu != 0.0:
            c0 = c0 - nu * y0

    log.header(f"system of {m + n} equations in {m + n} variables, τ = {tau:.2e}, ν = {nu:.2e}")

    # beta_1 E v_1 = b  <->  beta_1 v_1 = M b
    beta_k, vk      = _enorm(b0, precond_m, "M")
    gamma_k, uk     = _enorm(c0, precond_n, "N")
    if beta_k < 0.0 or gamma_k < 0.0:
        return _result(SolverStatus.BREAKDOWN, 0, 0.0, status="Breakdown: preconditioner is not positive definite")
    rnorm           = math.sqrt(gamma_k ** 2 + beta_k ** 2)
    if history:
        rnorms.append(rnorm)
    if rnorm == 0.0:
        return _result(SolverStatus.ZERO_RESIDUAL, 0, 0.0)
    # relative test against the residual at x = y = 0, also after a warm restart
    rnorm_ref       = rnorm
    if restart:
        bnorm, _    = _enorm(b, precond_m, "M")
        cnorm, _    = _enorm(c, precond_n, "N")
        rnorm_ref   = math.sqrt(max(bnorm, 0.0) ** 2 + max(cnorm, 0.0) ** 2)
    eps_tol         = atol + rtol * rnorm_ref
    if rnorm <= eps_tol:
        return _result(SolverStatus.SOLVED, 0, rnorm)
    if beta_k == 0.0 or gamma_k == 0.0:
        # only reachable after a warm restart, b and c themselves are nonzero
        return _result(SolverStatus.BREAKDOWN, 0, rnorm, status="Breakdown: one block of the residual vanishes")

    # Lanczos storage: lag 0 is E v_k (resp. F u_k), lag 1 the previous one
    ev      = VectorWindow(2, b, xp)
    fu      = VectorWindow(2, c, xp)
    ev.push(b0 / beta_k)
    fu.push(c0 / gamma_k)
    vk      = ev[0] if precond_m is None else vk / beta_k
    uk      = fu[0] if precond_n is None else uk / gamma_k

    # Directions G_k: lag 0 is g_{2k}, lag 1 is g_{2k-1}
    gx      = VectorWindow(2, b, xp)
    gy      = VectorWindow(2, c, xp)

    log.row(0, rnorm, "✗ ✗ ✗ ✗", beta_k, gamma_k)

    eps_mach        = machine_eps(b.dtype)
    anorm           = 0.0
    d_2km3 = d_2km2 = 0.0
    pi_2km3 = pi_2km2 = 0.0
    delta_km1 = 0.0

    k       = 0
    solved  = rnorm <= eps_tol
    tired   = k >= itmax

    while not (solved or tired):
        k += 1

        # ======================================================================
        # 1. ORTHOGONAL TRIDIAGONALIZATION
        # ======================================================================
        q       = op.matvec(uk)
        p       = op.rmatvec(vk)
        if k >= 2:
            q   = q - gamma_k * ev[1]
            p   = p - beta_k * fu[1]
        alpha_k = float(xp.dot(vk, q))
        q       = q - alpha_k * ev[0]
        p       = p - alpha_k * fu[0]

        # ======================================================================
        # 2. LDL^T OF S_{k,k}
        # ======================================================================
        if k == 1:
            d_2km1      = tau
            if d_2km1 == 0.0:
                return _result(SolverStatus.BREAKDOWN, k - 1, rnorm, status="Breakdown: zero pivot d₂ₖ₋₁")
            delta_k     = alpha_k / d_2km1
            d_2k        = nu - delta_k ** 2 * d_2km1
        else:
            sigma_k     = beta_k / d_2km2
            eta_k       = gamma_k / d_2km3
            lambda_k    = -(eta_k * delta_km1 * d_2km3) / d_2km2
            d_2km1      = tau - sigma_k ** 2 * d_2km2
            if d_2km1 == 0.0 and beta_k == 0.0:
                # v_k = 0, the pivot only scales a zero direction
                d_2km1  = 1.0
            if d_2km1 == 0.0:
                return _result(SolverStatus.BREAKDOWN, k - 1, rnorm, status="Breakdown: zero pivot d₂ₖ₋₁")
            delta_k     = (alpha_k - lambda_k * sigma_k * d_2km2) / d_2km1
            d_2k        = nu - eta_k ** 2 * d_2km3 - lambda_k ** 2 * d_2km2 - delta_k ** 2 * d_2km1
        if d_2k == 0.0 and gamma_k == 0.0:
            # u_k = 0, the pivot only scales a zero direction
            d_2k        = 1.0
        if d_2k == 0.0:
            return _result(SolverStatus.BREAKDOWN, k - 1, rnorm, status="Breakdown: zero pivot d₂ₖ")

        # ======================================================================
        # 3. SOLVE L_k D_k p_k = beta_1 e_1 + gamma_1 e_2
        # ======================================================================
        if k == 1:
            pi_2km1     = beta_k / d_2km1
            pi_2k       = (gamma_k - delta_k * beta_k) / d_2k
        else:
            pi_2km1     = -(sigma_k * d_2km2 * pi_2km2) / d_2km1
            pi_2k       = -(delta_k * d_2km1 * pi_2km1 + lambda_k * d_2km2 * pi_2km2 + eta_k * d_2km3 * pi_2km3) / d_2k

        # ======================================================================
        # 4. DIRECTIONS L_k G_k^T = W_k^T
        # ======================================================================
        if k == 1:
            gx[1]       = vk
            gx[0]       = -delta_k * vk
            gy[1]       = xp.zeros_like(uk)
            gy[0]       = uk
        else:
            # slots hold g_{2k-3} (lag 1) and g_{2k-2} (lag 0)
            ax          = eta_k * gx[1] + lambda_k * gx[0]
            ay          = eta_k * gy[1] + lambda_k * gy[0]
            gx[0]       = vk - sigma_k * gx[0]
            gy[0]       = -sigma_k * gy[0]
            gx[1]       = -ax - delta_k * gx[0]
            gy[1]       = uk - ay - delta_k * gy[0]
            # lag 0 now holds g_{2k-1} and lag 1 holds g_{2k}
            gx.swap()
            gy.swap()

        x   = x + pi_2km1 * gx[1] + pi_2k * gx[0]
        y   = y + pi_2km1 * gy[1] + pi_2k * gy[0]

        # ======================================================================
        # 5. NEXT BASIS VECTORS
        # ======================================================================
        beta_kp1, vkp1  = _enorm(q, precond_m, "M")
        gamma_kp1, ukp1 = _enorm(p, precond_n, "N")
        if beta_kp1 < 0.0 or gamma_kp1 < 0.0:
            return _result(SolverStatus.BREAKDOWN, k, rnorm, status="Breakdown: preconditioner is not positive definite")
        # v_{k+1} lives in R^m and u_{k+1} in R^n: once a basis spans its space
        # (or an invariant subspace) the new vector is rounding noise and the
        # basis stops growing, the other one keeps going
        anorm           = max(anorm, abs(alpha_k))
        if k >= m or beta_kp1 <= eps_mach * anorm:
            beta_kp1    = 0.0
            q           = xp.zeros_like(q)
            vkp1        = q
        else:
            q           = q / beta_kp1
            vkp1        = q if precond_m is None else vkp1 / beta_kp1
        if k >= n or gamma_kp1 <= eps_mach * anorm:
            gamma_kp1   = 0.0
            p           = xp.zeros_like(p)
            ukp1        = p
        else:
            p           = p / gamma_kp1
            ukp1        = p if precond_n is None else ukp1 / gamma_kp1
        anorm           = max(anorm, beta_kp1, gamma_kp1)
        ev.push(q)
        fu.push(p)
        vk, uk  = vkp1, ukp1

        # ||r_k||^2 = (gamma_{k+1} zeta_{2k-1})^2 + (beta_{k+1} zeta_{2k})^2
        rnorm   = math.sqrt((gamma_kp1 * (pi_2km1 - delta_k * pi_2k)) ** 2 + (beta_kp1 * pi_2k) ** 2)
        if history:
            rnorms.append(rnorm)

        beta_k, gamma_k     = beta_kp1, gamma_kp1
        pi_2km3, pi_2km2    = pi_2km1, pi_2k
        d_2km3, d_2km2      = d_2km1, d_2k
        delta_km1           = delta_k

        solved  = rnorm <= eps_tol
        tired   = k >= itmax
        log.row(k, rnorm, alpha_k, beta_kp1, gamma_kp1)

    return _result(SolverStatus.SOLVED if solved else SolverStatus.MAX_ITER, k, rnorm)

# -----------------------------------------------------------------------------
#! TriCG Solver Class
# -----------------------------------------------------------------------------

class TriCGSolver(Solver):
    r'''
    TriCG for symmetric quasi-definite block systems
    $ [\tau E, A; A^T, \nu F] [x; y] = [b; c] $.

    The solution blocks are returned as `result.x` (length m) and `result.y` (length n).
    '''
    _solver_type    = SolverType.TRICG
    _name           = "TriCG"

    @staticmethod
    def solve(
        matvec          : Any,
        b               : Array,
        x0              : Optional[Array]       = None,
        *,
        c               : Array,
        y0              : Optional[Array]       = None,
        atol            : Optional[float]       = None,
        rtol            : Optional[float]       = None,
        maxiter         : Optional[int]         = None,
        precond_apply   : Optional[Callable[[Array], Array]] = None,
        backend_module  : Any                   = np,
        rmatvec         : Optional[MatVecFunc]  = None,
        shape           : Optional[Tuple[int, int]] = None,
        N               : Optional[Callable[[Array], Array]] = None,
        tau             : float                 = 1.0,
        nu              : float                 = -1.0,
        spd             : bool                  = False,
        snd             : bool                  = False,
        flip            : bool                  = False,
        history         : bool                  = False,
        verbose         : int                   = 0,
        **kwargs        : Any) -> SolverResult:
        """
        Static TriCG execution.

        Args:
            matvec (MatVecFunc or matrix-like):
                Off-diagonal block $ v \\mapsto Av $ of shape (m, n) (or a matrix).
            b (Array):
                First right-hand side block (length m), must be nonzero.
            x0 (Array, optional):
                Warm-restart offset of the first block.
            c (Array):
                Second right-hand side block (length n), must be nonzero.
            y0 (Array, optional):
                Warm-restart offset of the second block.
            atol, rtol (float, optional):
                Stop when $ ||r_k|| \\leq atol + rtol ||(b, c)|| $ (sqrt(eps) when None), also after a restart.
            maxiter (int, optional):
                Maximum number of iterations (m + n when None or 0).
            precond_apply (Callable, optional):
                SPD preconditioner M (length m vectors), $ E = M^{-1} $.
            backend_module (Any):
                Backend module (`numpy` or `jax.numpy`).
            rmatvec (MatVecFunc, optional):
                $ u \\mapsto A^T u $ for callables.
            shape (tuple, optional):
                Shape (m, n) for callables.
            N (Callable, optional):
                SPD preconditioner N (length n vectors), $ F = N^{-1} $.
            tau, nu (float):
                Diagonal scalars of the block system.
            spd, snd, flip (bool):
                Presets for $ (\\tau, \\nu) $: (1, 1), (-1, -1) and (-1, 1). Mutually exclusive.
            history (bool):
                Record $ ||r_k|| $ per iteration.
            verbose (int):
                Log the iteration table every `verbose` iterations.

        Returns:
            SolverResult with the second block in `y`.
        """
        Solver._warn_unused_kwargs("TriCG", kwargs)
        if spd and flip:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, "The matrix cannot be SPD and SQD")
        if snd and flip:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, "The matrix cannot be SND and SQD")
        if spd and snd:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, "The matrix cannot be SPD and SND")
        if flip:
            tau, nu = -1.0, 1.0
        elif spd:
            tau, nu = 1.0, 1.0
        elif snd:
            tau, nu = -1.0, -1.0

        op, b, _, dtype     = Solver._prepare_system(matvec, b, None, backend_module, rmatvec=rmatvec,
                                                    shape=shape, square=False, need_adjoint=True)
        m, n                = op.shape
        c                   = Solver._prepare_vector(c, n, "c", backend_module, dtype)
        x0                  = None if x0 is None else Solver._prepare_vector(x0, m, "x0", backend_module, dtype)
        y0                  = None if y0 is None else Solver._prepare_vector(y0, n, "y0", backend_module, dtype)
        if float(backend_module.linalg.norm(b)) == 0.0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, "b must be nonzero")
        if float(backend_module.linalg.norm(c)) == 0.0:
            raise SolverError(SolverErrorMsg.INVALID_INPUT, "c must be nonzero")

        precond_m           = Solver._resolve_precond(precond_apply, "M")
        precond_n           = Solver._resolve_precond(N, "N")
        restart             = x0 is not None or y0 is not None
        if restart and ((tau != 0.0 and precond_m is not None) or (nu != 0.0 and precond_n is not None)):
            raise SolverError(SolverErrorMsg.PRECOND_INVALID, "Restart with preconditioners is not supported.")

        atol, rtol          = Solver._resolve_tolerances(atol, rtol, dtype)
        return _tricg_logic(op, b, c, x0, y0,
                            atol        = atol,
                            rtol        = rtol,
                            itmax       = Solver._resolve_maxiter(maxiter, m + n),
                            tau         = float(tau),
                            nu          = float(nu),
                            precond_m   = precond_m,
                            precond_n   = precond_n,
                            history     = history,
                            verbose     = verbose,
                            xp          = backend_module)

# -------------------------------------------------------------------------
#! EOF
# -------------------------------------------------------------------------
