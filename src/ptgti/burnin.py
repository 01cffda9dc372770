"""
Phase sequencing for a run: ``Burnin(0) -> ... -> Burnin(n-1) -> Sampling -> Done``.

Each burn-in phase runs its iterations and then adapts the proposals of the
rungs that have an adaptation flag set. Entering the sampling phase freezes
the tuner, so the proposal state seen by every sampling iteration is the one
left by the last burn-in phase.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence, Tuple

if TYPE_CHECKING:
    from .proposals import ProposalTuner
    from .sampler import Sampler

logger = logging.getLogger(__name__)


class PhaseKind(enum.Enum):
    BURNIN = "burnin"
    SAMPLING = "sampling"
    DONE = "done"


@dataclass(frozen=True)
class Phase:
    kind: PhaseKind
    index: int      # burn-in phase number; 0 for sampling/done
    length: int

    @property
    def label(self) -> str:
        if self.kind is PhaseKind.BURNIN:
            return f"burn-in phase {self.index + 1}"
        return self.kind.value


class BurnInScheduler:
    """Drives a sampler through the explicit phase sequence."""

    def __init__(self, burnin: Sequence[int], samples: int, tuner: "ProposalTuner"):
        self.tuner = tuner
        phases = [Phase(PhaseKind.BURNIN, i, int(n)) for i, n in enumerate(burnin)]
        phases.append(Phase(PhaseKind.SAMPLING, 0, int(samples)))
        phases.append(Phase(PhaseKind.DONE, 0, 0))
        self.phases: Tuple[Phase, ...] = tuple(phases)
        self.state: Phase = self.phases[0]
        self.cancelled = False

    @property
    def frozen(self) -> bool:
        return self.tuner.frozen

    def run(self, sampler: "Sampler", cancel=None) -> bool:
        """Run every phase; returns False if the run was cancelled."""
        for phase in self.phases:
            self.state = phase
            if phase.kind is PhaseKind.DONE:
                break
            if phase.kind is PhaseKind.SAMPLING:
                self.tuner.freeze()
            if not sampler.run_phase(phase, cancel):
                self.cancelled = True
                logger.warning("run cancelled during %s", phase.label)
                return False
            if phase.kind is PhaseKind.BURNIN:
                self.tuner.adapt(phase.index)
        return True
