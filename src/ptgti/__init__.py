"""Parallel-tempered adaptive Metropolis MCMC with thermodynamic integration."""
from __future__ import annotations

import jax

jax.config.update("jax_enable_x64", True)

from .burnin import BurnInScheduler, Phase, PhaseKind  # noqa: E402
from .chain import Chain, ChainState  # noqa: E402
from .config import Configuration, RungSettings, TunerSettings  # noqa: E402
from .coupling import CouplingEngine, SwapRecord, swap_log_acceptance  # noqa: E402
from .errors import ConfigurationError, DomainError  # noqa: E402
from .ladder import RungLadder, temperature_powers  # noqa: E402
from .output import DiagnosticPath, OutputCollector, RunResult, Sample  # noqa: E402
from .proposals import ProposalState, ProposalTuner, TuningStats  # noqa: E402
from .sampler import Sampler, run_replicates  # noqa: E402
from .transforms import ParameterSpace, TransformType  # noqa: E402

__version__ = "0.1.0"

__all__ = [
    "BurnInScheduler",
    "Chain",
    "ChainState",
    "Configuration",
    "ConfigurationError",
    "CouplingEngine",
    "DiagnosticPath",
    "DomainError",
    "OutputCollector",
    "ParameterSpace",
    "Phase",
    "PhaseKind",
    "ProposalState",
    "ProposalTuner",
    "RungLadder",
    "RungSettings",
    "RunResult",
    "Sample",
    "Sampler",
    "SwapRecord",
    "TransformType",
    "TunerSettings",
    "TuningStats",
    "run_replicates",
    "swap_log_acceptance",
    "temperature_powers",
]
