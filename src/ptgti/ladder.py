"""Tempering ladder: one chain per thermodynamic power."""
from __future__ import annotations

from typing import TYPE_CHECKING, Callable, List, Sequence

import jax.numpy as jnp
import numpy as np

from .chain import Chain, ChainState, init_chain_state, metropolis_step

if TYPE_CHECKING:
    from .config import Configuration
    from .proposals import ProposalState
    from .transforms import ParameterSpace


def temperature_powers(rungs: int, gti_pow: float = 1.0) -> np.ndarray:
    """Raised thermodynamic powers ``beta_k = (k / (rungs - 1)) ** gti_pow``.

    Parameters
    ----------
    rungs:
        Number of rungs in the ladder. A single rung gives ``[1.0]``.
    gti_pow:
        Spacing exponent. Values above one place more rungs near ``beta = 0``,
        where the mean log-likelihood typically changes fastest.

    Returns
    -------
    np.ndarray
        Powers ordered hottest (``beta = 0``) to coldest (``beta = 1``).

    Raises
    ------
    ValueError
        If ``rungs < 1`` or ``gti_pow <= 0``.
    """
    if rungs < 1:
        raise ValueError(f"rungs must be at least 1, got {rungs}")
    if not gti_pow > 0:
        raise ValueError(f"gti_pow must be positive, got {gti_pow}")
    if rungs == 1:
        return np.ones(1, dtype=np.float64)
    i = np.arange(rungs, dtype=np.float64)
    beta = (i / (rungs - 1)) ** gti_pow
    beta[-1] = 1.0
    return beta


class RungLadder:
    """Owns the state of every chain, ordered by increasing ``beta``.

    The last rung is the cold chain (``beta = 1``) whose draws are the
    inference target. ``coupling_on[k]`` gates whether rung ``k`` may take
    part in swaps.
    """

    def __init__(
        self,
        space: "ParameterSpace",
        components: Callable,
        theta_init: Sequence[float],
        betas: Sequence[float],
        coupling_on: Sequence[bool],
    ):
        betas = np.asarray(betas, dtype=np.float64)
        if len(coupling_on) != betas.shape[0]:
            raise ValueError("coupling_on must have one entry per rung")
        self.space = space
        self.components = components
        self.betas = jnp.asarray(betas)
        self.coupling_on = jnp.asarray(np.asarray(coupling_on, dtype=bool))
        self.state: ChainState = init_chain_state(space, components, theta_init, betas.shape[0])

    @classmethod
    def from_config(cls, config: "Configuration", space: "ParameterSpace", components: Callable) -> "RungLadder":
        return cls(space, components, config.theta_init, config.betas, config.coupling_on)

    @property
    def rungs(self) -> int:
        return int(self.betas.shape[0])

    @property
    def cold_index(self) -> int:
        return self.rungs - 1

    def chain(self, k: int) -> Chain:
        st = self.state
        return Chain(
            rung=k,
            beta=float(self.betas[k]),
            theta=np.asarray(st.theta[k]),
            loglike=float(st.loglike[k]),
            logprior=float(st.logprior[k]),
            n_accepted=int(st.n_accepted[k]),
            n_steps=int(st.n_steps[k]),
        )

    @property
    def chains(self) -> List[Chain]:
        return [self.chain(k) for k in range(self.rungs)]

    @property
    def cold_chain(self) -> Chain:
        return self.chain(self.cold_index)

    def advance(self, key, chains: ChainState, proposal: "ProposalState"):
        """Pure MH sweep of ``chains`` over this ladder; traceable under ``jax.jit``."""
        return metropolis_step(key, chains, proposal, self.betas, self.space, self.components)

    def step(self, key, proposal: "ProposalState"):
        """Sweep the owned state once (no swaps); returns the (R, D) acceptance mask."""
        self.state, accepted = self.advance(key, self.state, proposal)
        return np.asarray(accepted)
