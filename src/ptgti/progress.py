"""Console progress for sampler phases."""
from __future__ import annotations

from tqdm import tqdm


class PhaseProgress:
    """One progress bar per phase.

    ``silent`` suppresses all output. ``markdown`` draws no live bar and
    writes a single line when the phase completes, which renders cleanly in
    notebooks and knitted documents.
    """

    def __init__(self, label: str, total: int, silent: bool = True, markdown: bool = False):
        self.label = label
        self.total = total
        self.silent = silent
        self.markdown = markdown
        self._bar = None
        if not silent and not markdown:
            self._bar = tqdm(total=total, desc=label, unit="it", leave=True)

    def update(self, n: int = 1) -> None:
        if self._bar is not None:
            self._bar.update(n)

    def close(self, summary: str = "") -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        if not self.silent:
            tqdm.write(f"{self.label}: {summary}" if summary else f"{self.label}: done")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._bar is not None:
            self._bar.close()
            self._bar = None
