"""Metropolis coupling: state exchange between adjacent rungs."""
from __future__ import annotations

from typing import Iterator, NamedTuple, Sequence

import jax.numpy as jnp
import numpy as np
from jax import lax, random

from .chain import ChainState


class SwapRecord(NamedTuple):
    iteration: int
    phase: str          # "burnin" or "sampling"
    rung_lo: int
    rung_hi: int
    attempted: bool
    accepted: bool


def swap_log_acceptance(beta_lo, beta_hi, loglike_lo, loglike_hi):
    """Log acceptance of exchanging the states of rungs ``k`` and ``k + 1``.

    ``(beta_hi - beta_lo) * (loglike_lo - loglike_hi)``; priors and Jacobians
    cancel because both rungs share them. NaN (e.g. two impossible points)
    becomes -inf.
    """
    val = (beta_hi - beta_lo) * (loglike_lo - loglike_hi)
    return jnp.where(jnp.isnan(val), -jnp.inf, val)


def _swap_rows(arr, k, accept):
    ai, aj = arr[k], arr[k + 1]
    arr = arr.at[k].set(jnp.where(accept, aj, ai))
    arr = arr.at[k + 1].set(jnp.where(accept, ai, aj))
    return arr


def attempt_swaps(key, chains: ChainState, betas, coupling_on):
    """One sequential sweep over pairs ``(0, 1), (1, 2), ...``.

    A pair is attempted only when both rungs have coupling enabled. Accepted
    swaps exchange the parameter state and cached likelihood terms; acceptance
    counters stay with their rung. Returns ``(chains, attempted, accepted)``
    with one boolean per pair.
    """
    R = betas.shape[0]
    n_pairs = R - 1
    if n_pairs == 0:
        empty = jnp.zeros((0,), dtype=bool)
        return chains, empty, empty

    attempted = coupling_on[:-1] & coupling_on[1:]                   # (R-1,)
    u_log = jnp.log(random.uniform(key, (n_pairs,)))

    def body(k, carry):
        st, acc = carry
        log_a = swap_log_acceptance(betas[k], betas[k + 1], st.loglike[k], st.loglike[k + 1])
        ok = attempted[k] & (u_log[k] < log_a)
        st = st._replace(
            y=_swap_rows(st.y, k, ok),
            theta=_swap_rows(st.theta, k, ok),
            loglike=_swap_rows(st.loglike, k, ok),
            logprior=_swap_rows(st.logprior, k, ok),
            logjac=_swap_rows(st.logjac, k, ok),
        )
        return st, acc.at[k].set(ok)

    chains, accepted = lax.fori_loop(0, n_pairs, body, (chains, jnp.zeros((n_pairs,), dtype=bool)))
    return chains, attempted, accepted


class CouplingEngine:
    """Swap proposals over a fixed ladder of powers and coupling flags."""

    def __init__(self, betas: Sequence[float], coupling_on: Sequence[bool]):
        self.betas = jnp.asarray(np.asarray(betas, dtype=np.float64))
        self.coupling_on = jnp.asarray(np.asarray(coupling_on, dtype=bool))

    @property
    def n_pairs(self) -> int:
        return int(self.betas.shape[0]) - 1

    @property
    def enabled(self) -> bool:
        """True when at least one adjacent pair can ever be attempted."""
        flags = np.asarray(self.coupling_on)
        return bool(np.any(flags[:-1] & flags[1:])) if self.n_pairs else False

    def attempt_swap(self, key, chains: ChainState):
        """One swap sweep over this ladder; traceable under ``jax.jit``."""
        return attempt_swaps(key, chains, self.betas, self.coupling_on)


def iter_swap_records(attempted, accepted, phases) -> Iterator[SwapRecord]:
    """Expand ``(T, R-1)`` outcome tables into one record per iteration and pair."""
    attempted = np.asarray(attempted, dtype=bool)
    accepted = np.asarray(accepted, dtype=bool)
    for t in range(attempted.shape[0]):
        for k in range(attempted.shape[1]):
            yield SwapRecord(t, str(phases[t]), k, k + 1, bool(attempted[t, k]), bool(accepted[t, k]))
