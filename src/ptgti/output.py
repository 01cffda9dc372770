"""Accumulate per-iteration draws and diagnostics, then summarise a run."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional

import numpy as np

from .coupling import SwapRecord, iter_swap_records
from .diagnostics import autocorrelation, effective_sample_size, thermodynamic_integral

MAX_ACF_LAG = 500


class Sample(NamedTuple):
    theta: np.ndarray
    loglike: float
    iteration: int


@dataclass
class DiagnosticPath:
    """Per-rung log-likelihood at every sampling iteration.

    ``loglike[t, k]`` is the untempered log-likelihood of rung ``k``'s state,
    a draw under that rung's tempered target with power ``betas[k]``.
    """
    betas: np.ndarray       # (R,)
    loglike: np.ndarray     # (T, R)

    def mean_loglike(self) -> np.ndarray:
        if self.loglike.shape[0] == 0:
            return np.full(self.betas.shape, np.nan)
        return self.loglike.mean(axis=0)

    def log_marginal_likelihood(self) -> Optional[float]:
        if self.loglike.shape[0] == 0:
            return None
        return thermodynamic_integral(self.betas, self.mean_loglike())


def _rate(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    num = np.asarray(num, dtype=np.float64)
    den = np.asarray(den, dtype=np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(den > 0, num / np.maximum(den, 1), np.nan)


def _stack_flags(rows: List[np.ndarray], n_pairs: int) -> np.ndarray:
    if not rows:
        return np.zeros((0, n_pairs), dtype=bool)
    return np.stack(rows).astype(bool)


@dataclass
class RunResult:
    chain: int
    betas: np.ndarray
    theta: np.ndarray                       # (n, D) cold chain, sampling
    loglike: np.ndarray                     # (n,)
    iteration: np.ndarray                   # (n,)
    path: DiagnosticPath
    acceptance_rate: np.ndarray             # (R,) sampling
    acceptance_rate_burnin: np.ndarray      # (R,)
    swap_rate: np.ndarray                   # (R-1,) sampling
    swap_rate_burnin: np.ndarray            # (R-1,)
    log_marginal_likelihood: Optional[float]
    ess: np.ndarray                         # (D,)
    cancelled: bool = False
    theta_burnin: Optional[np.ndarray] = None
    swap_attempted: np.ndarray = field(default=None, repr=False)   # (T_all, R-1)
    swap_accepted: np.ndarray = field(default=None, repr=False)    # (T_all, R-1)
    swap_phase: np.ndarray = field(default=None, repr=False)       # (T_all,) str
    proposal_history: List[dict] = field(default_factory=list, repr=False)

    @property
    def n_samples(self) -> int:
        return int(self.theta.shape[0])

    @property
    def samples(self) -> List[Sample]:
        return [Sample(self.theta[i], float(self.loglike[i]), int(self.iteration[i])) for i in range(self.n_samples)]

    def swap_records(self) -> Iterator[SwapRecord]:
        if self.swap_attempted is None:
            return iter(())
        return iter_swap_records(self.swap_attempted, self.swap_accepted, self.swap_phase)

    def autocorrelation(self, max_lag: int = 20, phase: str = "sampling", par=None) -> np.ndarray:
        """ACF of cold-chain parameters, shape ``(max_lag + 1, len(par))``.

        ``phase`` is ``"sampling"`` or ``"burnin"`` (the latter needs a run
        with ``keep_burnin``). ``par`` selects parameter indices, all by
        default. ``max_lag`` must lie in ``[1, 500]``.
        """
        if isinstance(max_lag, bool) or not isinstance(max_lag, (int, np.integer)) or not 1 <= max_lag <= MAX_ACF_LAG:
            raise ValueError(f"max_lag must be an integer in [1, {MAX_ACF_LAG}], got {max_lag!r}")
        if phase == "sampling":
            draws = self.theta
        elif phase == "burnin":
            if self.theta_burnin is None:
                raise ValueError("burn-in draws were not kept; run with keep_burnin=True")
            draws = self.theta_burnin
        else:
            raise ValueError(f"phase must be 'sampling' or 'burnin', got {phase!r}")
        if par is not None:
            idx = np.atleast_1d(np.asarray(par, dtype=int))
            if idx.size == 0 or np.any((idx < 0) | (idx >= draws.shape[1])):
                raise ValueError(f"par must index parameters 0..{draws.shape[1] - 1}, got {par!r}")
            draws = draws[:, idx]
        return autocorrelation(draws, max_lag=max_lag)


class OutputCollector:
    """Append-only sink for one replicate's draws and diagnostics."""

    def __init__(self, betas, dim: int, chain: int = 1, keep_burnin: bool = False):
        self.betas = np.asarray(betas, dtype=np.float64)
        self.rungs = int(self.betas.shape[0])
        self.dim = int(dim)
        self.chain = int(chain)
        self.keep_burnin = keep_burnin
        self.theta: List[np.ndarray] = []
        self.loglike: List[float] = []
        self.iteration: List[int] = []
        self.path: List[np.ndarray] = []
        self.theta_burnin: List[np.ndarray] = []
        self.swap_attempted: List[np.ndarray] = []
        self.swap_accepted: List[np.ndarray] = []
        self.swap_phase: List[str] = []
        self._accepted = {"burnin": np.zeros(self.rungs), "sampling": np.zeros(self.rungs)}
        self._steps = {"burnin": 0, "sampling": 0}

    def _record_moves(self, phase: str, accepted, attempted, swapped) -> None:
        self._accepted[phase] += np.asarray(accepted, dtype=np.float64)
        self._steps[phase] += 1
        self.swap_attempted.append(np.asarray(attempted, dtype=bool))
        self.swap_accepted.append(np.asarray(swapped, dtype=bool))
        self.swap_phase.append(phase)

    def record_burnin(self, cold_theta, accepted, attempted, swapped) -> None:
        self._record_moves("burnin", accepted, attempted, swapped)
        if self.keep_burnin:
            self.theta_burnin.append(np.array(cold_theta, dtype=np.float64))

    def record_sampling(self, iteration: int, cold_theta, loglikes, accepted, attempted, swapped) -> None:
        self._record_moves("sampling", accepted, attempted, swapped)
        loglikes = np.array(loglikes, dtype=np.float64)
        self.theta.append(np.array(cold_theta, dtype=np.float64))
        self.loglike.append(float(loglikes[-1]))
        self.iteration.append(int(iteration))
        self.path.append(loglikes)

    def _swap_rate(self, phase: str, att: np.ndarray, acc: np.ndarray, phases: np.ndarray) -> np.ndarray:
        sel = phases == phase
        return _rate(acc[sel].sum(axis=0), att[sel].sum(axis=0))

    def finalize(self, cancelled: bool = False, proposal_history: Optional[List[dict]] = None) -> RunResult:
        n_pairs = max(self.rungs - 1, 0)
        theta = np.array(self.theta).reshape(-1, self.dim)
        path = DiagnosticPath(self.betas, np.array(self.path).reshape(-1, self.rungs))
        att = _stack_flags(self.swap_attempted, n_pairs)
        acc = _stack_flags(self.swap_accepted, n_pairs)
        phases = np.array(self.swap_phase, dtype=object)

        return RunResult(
            chain=self.chain,
            betas=self.betas,
            theta=theta,
            loglike=np.array(self.loglike, dtype=np.float64),
            iteration=np.array(self.iteration, dtype=np.int64),
            path=path,
            acceptance_rate=_rate(self._accepted["sampling"], np.full(self.rungs, self._steps["sampling"])),
            acceptance_rate_burnin=_rate(self._accepted["burnin"], np.full(self.rungs, self._steps["burnin"])),
            swap_rate=self._swap_rate("sampling", att, acc, phases),
            swap_rate_burnin=self._swap_rate("burnin", att, acc, phases),
            log_marginal_likelihood=path.log_marginal_likelihood(),
            ess=effective_sample_size(theta) if theta.shape[0] else np.full(self.dim, np.nan),
            cancelled=cancelled,
            theta_burnin=np.array(self.theta_burnin).reshape(-1, self.dim) if self.keep_burnin else None,
            swap_attempted=att,
            swap_accepted=acc,
            swap_phase=phases,
            proposal_history=list(proposal_history or []),
        )
