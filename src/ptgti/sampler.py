"""
Parallel-tempered adaptive Metropolis sampler.

Every iteration gives each rung one random-walk MH sweep and then runs one
sequential sweep of adjacent swaps. Both happen in a single jitted
call so an iteration costs one device dispatch; the Python loop around it
handles phase bookkeeping, output collection and cooperative cancellation.

Burn-in is split into phases (see :mod:`ptgti.burnin`); proposals adapt at
each phase boundary and are frozen for the sampling phase.
"""
from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

import jax
import jax.numpy as jnp
import numpy as np
from jax import random

from .burnin import BurnInScheduler, Phase, PhaseKind
from .chain import make_log_components
from .config import Configuration
from .coupling import CouplingEngine
from .errors import ConfigurationError
from .ladder import RungLadder
from .output import OutputCollector, RunResult
from .progress import PhaseProgress
from .proposals import ProposalTuner, accumulate_stats

logger = logging.getLogger(__name__)


def _build_iteration(ladder: RungLadder, coupling: CouplingEngine):
    """Jitted ``key, chains, proposal, stats -> key, chains, stats, record`` kernel.

    The ladder powers and coupling flags are fixed for a run and are traced
    in as constants.
    """
    cold_index = ladder.cold_index
    n_pairs = ladder.rungs - 1

    def iterate(key, chains, proposal, stats, *, adapting: bool, couple: bool):
        key, k_mh, k_sw = random.split(key, 3)
        chains, accepted = ladder.advance(k_mh, chains, proposal)
        if couple:
            chains, attempted, swapped = coupling.attempt_swap(k_sw, chains)
        else:
            attempted = swapped = jnp.zeros((n_pairs,), dtype=bool)
        if adapting:
            stats = accumulate_stats(stats, chains.y, accepted)
        # per-rung fraction of accepted moves in this sweep
        acc_frac = accepted.mean(axis=1)
        record = (chains.theta[cold_index], chains.loglike, acc_frac, attempted, swapped)
        return key, chains, stats, record

    return jax.jit(iterate, static_argnames=("adapting", "couple"))


def _is_cancelled(cancel) -> bool:
    if cancel is None:
        return False
    if hasattr(cancel, "is_set"):
        return bool(cancel.is_set())
    return bool(cancel())


def _phase_summary(steps: int, acc_sum: np.ndarray, swap_att: int, swap_ok: int) -> str:
    if not steps:
        return "no iterations"
    text = f"cold acceptance {acc_sum[-1] / steps:.3f}"
    if swap_att:
        text += f", swap acceptance {swap_ok / swap_att:.3f}"
    return text


class Sampler:
    """One replicate run of the tempered sampler.

    Parameters
    ----------
    config:
        Validated :class:`Configuration`.
    loglike:
        ``loglike(theta, x) -> scalar``, written with ``jax.numpy``.
    logprior:
        ``logprior(theta) -> scalar``, written with ``jax.numpy``.
    seed:
        Seed of the run's only random generator. Identical configuration and
        seed give identical output.
    collector:
        Optional output sink; defaults to a fresh :class:`OutputCollector`.
    """

    def __init__(
        self,
        config: Configuration,
        loglike: Callable,
        logprior: Callable,
        seed: int = 0,
        collector: Optional[OutputCollector] = None,
    ):
        if not callable(loglike):
            raise ConfigurationError("loglike", "must be callable")
        if not callable(logprior):
            raise ConfigurationError("logprior", "must be callable")
        self.config = config
        self.seed = int(seed)
        self.space = config.parameter_space()
        components = make_log_components(loglike, logprior, config.x)

        self.ladder = RungLadder.from_config(config, self.space, components)
        self.tuner = ProposalTuner(config.rung_table, config.tuner, self.ladder.state.y)
        self.coupling = CouplingEngine(config.betas, config.coupling_on)
        self.collector = collector or OutputCollector(
            config.betas, config.dim, chain=config.chain, keep_burnin=config.keep_burnin
        )
        self.scheduler = BurnInScheduler(config.burnin, config.samples, self.tuner)

        self._key = random.PRNGKey(self.seed)
        self._iterate = _build_iteration(self.ladder, self.coupling)
        self.iteration = 0
        self._result: Optional[RunResult] = None

        cold = self.ladder.cold_chain
        if not np.isfinite(cold.loglike + cold.logprior):
            logger.warning("non-finite log-posterior at theta_init; the first accepted move will leave it")

    @property
    def result(self) -> Optional[RunResult]:
        return self._result

    def run(self, cancel=None) -> RunResult:
        """Run all burn-in phases and the sampling phase.

        ``cancel`` is ``None``, an object with ``is_set()`` (e.g.
        :class:`threading.Event`) or a zero-argument callable; it is checked
        before every iteration. A cancelled run returns the partial result
        collected so far with ``cancelled=True``.
        """
        if self._result is not None:
            raise RuntimeError("Sampler.run() can only be called once")
        cfg = self.config
        logger.info(
            "chain %d: %d rungs, %d burn-in phases (%d iterations), %d samples",
            cfg.chain, cfg.rungs, cfg.burnin_phases, sum(cfg.burnin), cfg.samples,
        )
        completed = self.scheduler.run(self, cancel)
        self._result = self.collector.finalize(cancelled=not completed, proposal_history=self.tuner.history)
        if completed and self._result.log_marginal_likelihood is not None:
            logger.info("chain %d: GTI log marginal likelihood %.4f", cfg.chain, self._result.log_marginal_likelihood)
        return self._result

    def run_phase(self, phase: Phase, cancel=None) -> bool:
        """Run ``phase.length`` iterations; False if cancelled part-way."""
        cfg = self.config
        adapting = phase.kind is PhaseKind.BURNIN and not self.tuner.frozen
        couple = self.coupling.enabled
        sampling = phase.kind is PhaseKind.SAMPLING
        acc_sum = np.zeros(self.ladder.rungs)
        swap_att = swap_ok = 0

        with PhaseProgress(phase.label, phase.length, silent=cfg.silent, markdown=cfg.pb_markdown) as bar:
            for i in range(phase.length):
                if _is_cancelled(cancel):
                    return False
                self._key, chains, stats, record = self._iterate(
                    self._key, self.ladder.state, self.tuner.state, self.tuner.stats,
                    adapting=adapting, couple=couple,
                )
                self.ladder.state = chains
                if adapting:
                    self.tuner.stats = stats
                cold_theta, loglikes, accepted, attempted, swapped = jax.device_get(record)
                if sampling:
                    self.collector.record_sampling(i, cold_theta, loglikes, accepted, attempted, swapped)
                else:
                    self.collector.record_burnin(cold_theta, accepted, attempted, swapped)
                acc_sum += accepted
                swap_att += int(attempted.sum())
                swap_ok += int(swapped.sum())
                self.iteration += 1
                bar.update()

            summary = _phase_summary(phase.length, acc_sum, swap_att, swap_ok)
            bar.close(summary)
        logger.info("chain %d, %s: %s", cfg.chain, phase.label, summary)
        return True


def run_replicates(
    config: Configuration,
    loglike: Callable,
    logprior: Callable,
    n_replicates: int,
    seed: int = 0,
    max_workers: Optional[int] = None,
    cancel=None,
) -> List[RunResult]:
    """Run independent replicates in parallel, returned in chain order.

    Replicate ``i`` gets ``chain = i + 1`` and seed ``seed + i``; nothing is
    shared between them.
    """
    if n_replicates < 1:
        raise ConfigurationError("chain", f"need at least one replicate, got {n_replicates}")

    def one(i: int) -> RunResult:
        cfg = dataclasses.replace(config, chain=i + 1)
        return Sampler(cfg, loglike, logprior, seed=seed + i).run(cancel=cancel)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        results = list(pool.map(one, range(n_replicates)))
    return sorted(results, key=lambda r: r.chain)
