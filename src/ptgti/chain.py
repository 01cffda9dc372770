"""Single-rung Metropolis–Hastings updates, vectorised over the ladder."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
from jax import lax, random

from .proposals import ProposalState, propose_step
from .transforms import ParameterSpace


class ChainState(NamedTuple):
    y: jnp.ndarray           # (R, D) working coordinates
    theta: jnp.ndarray       # (R, D)
    loglike: jnp.ndarray     # (R,)  untempered log-likelihood
    logprior: jnp.ndarray    # (R,)
    logjac: jnp.ndarray      # (R,)
    n_accepted: jnp.ndarray  # (R,)  accepted moves
    n_steps: jnp.ndarray     # (R,)  attempted moves


@dataclass(frozen=True)
class Chain:
    """Host-side snapshot of one rung; ``n_steps`` counts MH moves, ``d`` per sweep on the diagonal kernel."""
    rung: int
    beta: float
    theta: np.ndarray
    loglike: float
    logprior: float
    n_accepted: int
    n_steps: int

    @property
    def acceptance_rate(self) -> float:
        return self.n_accepted / self.n_steps if self.n_steps else float("nan")


def make_log_components(loglike: Callable, logprior: Callable, x) -> Callable:
    """Vectorise user callbacks: ``thetas (R, D) -> (loglike (R,), logprior (R,))``.

    ``loglike(theta, x)`` and ``logprior(theta)`` must be traceable by JAX.
    """
    x = jnp.asarray(x, dtype=jnp.float64)

    def components(theta):
        ll = jnp.asarray(loglike(theta, x), dtype=jnp.float64).reshape(())
        lp = jnp.asarray(logprior(theta), dtype=jnp.float64).reshape(())
        return ll, lp

    return jax.vmap(components)


def tempered_log_target(beta, loglike, logprior, logjac):
    """``beta * loglike + logprior + logjac``; anything non-finite becomes -inf."""
    val = beta * loglike + logprior + logjac
    return jnp.where(jnp.isfinite(val), val, -jnp.inf)


def init_chain_state(space: ParameterSpace, components: Callable, theta_init, rungs: int) -> ChainState:
    theta = jnp.tile(jnp.asarray(theta_init, dtype=jnp.float64)[None, :], (rungs, 1))
    y = space.forward(theta)
    ll, lp = components(theta)
    return ChainState(
        y=y,
        theta=theta,
        loglike=ll,
        logprior=lp,
        logjac=space.log_jacobian(y),
        n_accepted=jnp.zeros((rungs,), dtype=jnp.int64),
        n_steps=jnp.zeros((rungs,), dtype=jnp.int64),
    )


def _mh_update(key, chains: ChainState, y_prop, active, betas, space: ParameterSpace, components: Callable):
    """Accept or reject ``y_prop`` on the ``active`` rungs; other rungs are left as they are."""
    R = chains.y.shape[0]
    th_prop = space.inverse(y_prop)
    inside = space.in_bounds(th_prop) & active                     # (R,)

    th_eval = jnp.where(inside[:, None], th_prop, chains.theta)
    ll_prop, lp_prop = components(th_eval)
    lj_prop = space.log_jacobian(y_prop)

    cur = tempered_log_target(betas, chains.loglike, chains.logprior, chains.logjac)
    new = tempered_log_target(betas, ll_prop, lp_prop, lj_prop)
    new = jnp.where(inside, new, -jnp.inf)
    # cur == -inf and new finite gives +inf: always move off an impossible point
    log_alpha = jnp.where(jnp.isneginf(new), -jnp.inf, new - cur)
    accept = (jnp.log(random.uniform(key, (R,))) < log_alpha) & inside

    new_state = ChainState(
        y=jnp.where(accept[:, None], y_prop, chains.y),
        theta=jnp.where(accept[:, None], th_prop, chains.theta),
        loglike=jnp.where(accept, ll_prop, chains.loglike),
        logprior=jnp.where(accept, lp_prop, chains.logprior),
        logjac=jnp.where(accept, lj_prop, chains.logjac),
        n_accepted=chains.n_accepted + accept.astype(chains.n_accepted.dtype),
        n_steps=chains.n_steps + active.astype(chains.n_steps.dtype),
    )
    return new_state, accept


def metropolis_step(key, chains: ChainState, proposal: ProposalState, betas,
                    space: ParameterSpace, components: Callable):
    """One random-walk MH sweep on every rung.

    Rungs on the diagonal kernel update one coordinate at a time, each with
    its own bandwidth, so a sweep is ``d`` moves. Rungs on the covariance
    kernel make a single joint move.

    Candidates whose ``theta`` leaves the bounds are rejected outright and the
    callbacks are evaluated at the current point instead, so they never see an
    out-of-bounds parameter.

    Returns ``(new_state, accepted (R, D))``. Column ``j`` of a diagonal rung
    is the outcome of its coordinate-``j`` move; a covariance rung repeats
    its joint outcome across the row.
    """
    R, D = chains.y.shape
    k_prop, k_u, k_dims = random.split(key, 3)
    use_cov = proposal.use_cov

    y_joint = propose_step(k_prop, chains.y, proposal)
    chains, acc_joint = _mh_update(k_u, chains, y_joint, use_cov, betas, space, components)

    def coordinate(j, carry):
        st, acc = carry
        k_z, k_a = random.split(random.fold_in(k_dims, j))
        step = proposal.bandwidth[:, j] * random.normal(k_z, (R,))
        st, ok = _mh_update(k_a, st, st.y.at[:, j].add(step), ~use_cov, betas, space, components)
        return st, acc.at[:, j].set(ok)

    chains, acc_dims = lax.fori_loop(0, D, coordinate, (chains, jnp.zeros((R, D), dtype=bool)))
    accepted = jnp.where(use_cov[:, None], acc_joint[:, None], acc_dims)
    return chains, accepted
