"""
Random-walk proposals with phase-wise adaptation, one proposal per rung.

Two kernels are available to every rung:

- diagonal: ``y_j' = y_j + bandwidth_j * z``, one coordinate at a time, each
  bandwidth tuned from its own coordinate's acceptance rate,
- full covariance: ``y' = y + cov_scale * 2.38 / sqrt(d) * L z`` where
  ``L`` is the Cholesky factor of the adapted covariance.

A rung switches to the covariance kernel at a phase boundary once enough
post-swap history has accumulated and the shrunk empirical covariance is
well conditioned; otherwise it stays on (or falls back to) the diagonal
kernel. Adaptation happens only in :meth:`ProposalTuner.adapt`; the sampler
step itself never touches :class:`ProposalState`.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, NamedTuple, Sequence

import jax.numpy as jnp
import numpy as np
from jax import random

if TYPE_CHECKING:
    from .config import RungSettings, TunerSettings

logger = logging.getLogger(__name__)


# ------------------------- State -------------------------
class ProposalState(NamedTuple):
    bandwidth: jnp.ndarray   # (R, D)
    cov: jnp.ndarray         # (R, D, D)
    chol: jnp.ndarray        # (R, D, D) lower
    cov_scale: jnp.ndarray   # (R,)
    use_cov: jnp.ndarray     # (R,) bool


class TuningStats(NamedTuple):
    n_accepted: jnp.ndarray   # (R, D) since last checkpoint
    n_attempted: jnp.ndarray  # (R, D) since last checkpoint
    n_hist: jnp.ndarray       # (R,) post-swap states seen during burn-in
    shift: jnp.ndarray        # (R, D) reference point for the moment sums
    sum_y: jnp.ndarray        # (R, D)
    sum_yy: jnp.ndarray       # (R, D, D)


# ------------------------- Device-side kernels -------------------------

def propose_step(key, y, proposal: ProposalState):
    """Draw one symmetric random-walk candidate per rung. ``y``: (R, D)."""
    R, D = y.shape
    z = random.normal(key, (R, D))
    diag = proposal.bandwidth * z
    cd_const = 2.38 / jnp.sqrt(D)
    full = (cd_const * proposal.cov_scale)[:, None] * jnp.einsum('rij,rj->ri', proposal.chol, z)
    return y + jnp.where(proposal.use_cov[:, None], full, diag)


def accumulate_stats(stats: TuningStats, y, accepted) -> TuningStats:
    """Add one sweep of acceptance outcomes, ``accepted``: (R, D), and post-swap states."""
    dy = y - stats.shift
    return TuningStats(
        n_accepted=stats.n_accepted + accepted.astype(stats.n_accepted.dtype),
        n_attempted=stats.n_attempted + 1,
        n_hist=stats.n_hist + 1,
        shift=stats.shift,
        sum_y=stats.sum_y + dy,
        sum_yy=stats.sum_yy + jnp.einsum('ri,rj->rij', dy, dy),
    )


# ------------------------- Host-side helpers -------------------------

def _cov_from_moments(n: int, sum_y: np.ndarray, sum_yy: np.ndarray) -> np.ndarray:
    mu = sum_y / n
    return (sum_yy - n * np.outer(mu, mu)) / (n - 1)


def _shrink_spd(cov_hat: np.ndarray, shrink: float = 0.1, jitter: float = 1e-9) -> np.ndarray:
    cov_hat = np.asarray(cov_hat)
    d = np.diag(np.diag(cov_hat))
    cov = (1.0 - shrink) * cov_hat + shrink * d
    cov = 0.5 * (cov + cov.T)
    eps = float(max(np.max(np.diag(cov)), 1.0)) * jitter
    cov += eps * np.eye(cov.shape[0], dtype=cov.dtype)
    return cov


def _safe_cholesky(cov: np.ndarray, max_condition: float):
    """Cholesky factor of ``cov`` or ``None`` when it is not usable."""
    if not np.all(np.isfinite(cov)):
        return None
    try:
        L = np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        return None
    w = np.linalg.eigvalsh(cov)
    if w[0] <= 0 or w[-1] / w[0] > max_condition:
        return None
    return L


class ProposalTuner:
    """Owns the per-rung proposal state and its burn-in adaptation.

    Each rung's bandwidth/covariance is updated only from that rung's own
    acceptance counters and history. After :meth:`freeze` the state is
    constant and :meth:`adapt` does nothing.
    """

    def __init__(self, rung_table: Sequence["RungSettings"], settings: "TunerSettings", y_init):
        y_init = np.asarray(y_init, dtype=np.float64)
        R, D = y_init.shape
        if len(rung_table) != R:
            raise ValueError(f"rung table has {len(rung_table)} rows for {R} rungs")
        self.settings = settings
        self.dim = D
        self.bw_update = np.array([r.bw_update for r in rung_table], dtype=bool)
        self.cov_update = np.array([r.cov_update for r in rung_table], dtype=bool)
        eye = np.tile(np.eye(D)[None, :, :], (R, 1, 1))
        self.state = ProposalState(
            bandwidth=jnp.full((R, D), float(settings.bw_init)),
            cov=jnp.asarray(eye),
            chol=jnp.asarray(eye),
            cov_scale=jnp.ones((R,)),
            use_cov=jnp.zeros((R,), dtype=bool),
        )
        self.stats = TuningStats(
            n_accepted=jnp.zeros((R, D), dtype=jnp.int64),
            n_attempted=jnp.zeros((R, D), dtype=jnp.int64),
            n_hist=jnp.zeros((R,), dtype=jnp.int64),
            shift=jnp.asarray(y_init),
            sum_y=jnp.zeros((R, D)),
            sum_yy=jnp.zeros((R, D, D)),
        )
        self.frozen = False
        self.frozen_state: ProposalState | None = None
        self.history: List[dict] = []

    @property
    def rungs(self) -> int:
        return int(self.bw_update.shape[0])

    @property
    def min_history(self) -> int:
        return max(2 * self.dim, int(self.settings.min_history), 2)

    def propose(self, key, y):
        """Candidate working coordinates for every rung, ``y``: (R, D)."""
        return propose_step(key, jnp.asarray(y), self.state)

    def adapt(self, phase_index: int) -> None:
        """Phase-boundary update of every rung with an adaptation flag set.

        Robbins–Monro on the log scale with gain ``gain / sqrt(phase_index + 1)``:
        while a rung uses the diagonal kernel each coordinate bandwidth chases
        ``target_bw`` from that coordinate's own acceptance rate; once it uses
        the covariance kernel the multiplier chases ``target_cov`` from the
        joint rate. The covariance itself is re-estimated from all
        burn-in history seen so far.
        """
        if self.frozen:
            return
        s = self.settings
        st = self.state
        n_acc = np.asarray(self.stats.n_accepted)
        n_att = np.asarray(self.stats.n_attempted)
        n_hist = np.asarray(self.stats.n_hist)
        sum_y = np.asarray(self.stats.sum_y)
        sum_yy = np.asarray(self.stats.sum_yy)

        bandwidth = np.array(st.bandwidth)
        cov = np.array(st.cov)
        chol = np.array(st.chol)
        cov_scale = np.array(st.cov_scale)
        use_cov = np.array(st.use_cov)

        gamma = s.gain / np.sqrt(phase_index + 1.0)
        rates = np.where(n_att > 0, n_acc / np.maximum(n_att, 1), np.nan)     # (R, D)
        for r in range(self.rungs):
            if not (self.bw_update[r] or self.cov_update[r]):
                continue
            if n_att[r].all():
                if use_cov[r] and self.cov_update[r]:
                    cov_scale[r] = np.clip(
                        np.exp(np.log(cov_scale[r]) + gamma * (rates[r].mean() - s.target_cov)),
                        s.scale_min, s.scale_max,
                    )
                elif not use_cov[r] and self.bw_update[r]:
                    bandwidth[r] = np.clip(
                        np.exp(np.log(bandwidth[r]) + gamma * (rates[r] - s.target_bw)),
                        s.bw_min, s.bw_max,
                    )

            if self.cov_update[r] and n_hist[r] >= self.min_history:
                cov_hat = _cov_from_moments(int(n_hist[r]), sum_y[r], sum_yy[r])
                cov_r = _shrink_spd(cov_hat, shrink=s.shrink, jitter=s.jitter)
                L = _safe_cholesky(cov_r, s.max_condition)
                if L is None:
                    logger.debug("rung %d: covariance not usable after phase %d, diagonal proposal", r, phase_index)
                    use_cov[r] = False
                else:
                    cov[r], chol[r] = cov_r, L
                    use_cov[r] = True

        self.state = ProposalState(
            bandwidth=jnp.asarray(bandwidth),
            cov=jnp.asarray(cov),
            chol=jnp.asarray(chol),
            cov_scale=jnp.asarray(cov_scale),
            use_cov=jnp.asarray(use_cov),
        )
        self.stats = self.stats._replace(
            n_accepted=jnp.zeros_like(self.stats.n_accepted),
            n_attempted=jnp.zeros_like(self.stats.n_attempted),
        )
        self.history.append(dict(
            phase=phase_index,
            acceptance=rates,
            bandwidth=bandwidth,
            cov_scale=cov_scale,
            use_cov=use_cov,
        ))
        logger.debug("phase %d adapted: acceptance=%s use_cov=%s", phase_index, np.round(rates, 3), use_cov)

    def freeze(self) -> None:
        """Stop adapting; the proposal state is constant from here on."""
        if not self.frozen:
            self.frozen = True
            self.frozen_state = self.state
