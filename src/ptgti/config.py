"""Immutable configuration records for a parallel-tempered sampler run."""
from __future__ import annotations

import functools
import math
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Sequence, Tuple

from .errors import ConfigurationError
from .ladder import temperature_powers
from .transforms import ParameterSpace, TransformType


@dataclass(frozen=True)
class TunerSettings:
    """Hyper-parameters of the phase-wise proposal adaptation."""
    target_bw: float = 0.44         # diagonal (per-dimension bandwidth) moves
    target_cov: float = 0.234       # joint covariance moves
    gain: float = 3.0               # Robbins–Monro gain, divided by sqrt(phase + 1)
    bw_init: float = 1.0
    bw_min: float = 1e-8
    bw_max: float = 1e8
    scale_min: float = 0.01         # bounds on the covariance-move multiplier
    scale_max: float = 100.0
    shrink: float = 0.1
    jitter: float = 1e-9
    min_history: int = 0            # effective minimum is max(2 * d, min_history)
    max_condition: float = 1e12

    def __post_init__(self):
        for name in ("target_bw", "target_cov"):
            v = getattr(self, name)
            if not 0.0 < v < 1.0:
                raise ConfigurationError(f"tuner.{name}", f"must lie in (0, 1), got {v!r}")
        for name in ("gain", "bw_init", "bw_min", "scale_min", "jitter", "max_condition"):
            v = getattr(self, name)
            if not v > 0:
                raise ConfigurationError(f"tuner.{name}", f"must be positive, got {v!r}")
        if self.bw_max < self.bw_min:
            raise ConfigurationError("tuner.bw_max", "must not be below bw_min")
        if self.scale_max < self.scale_min:
            raise ConfigurationError("tuner.scale_max", "must not be below scale_min")
        if not 0.0 <= self.shrink <= 1.0:
            raise ConfigurationError("tuner.shrink", f"must lie in [0, 1], got {self.shrink!r}")
        if self.min_history < 0:
            raise ConfigurationError("tuner.min_history", "must be non-negative")


@dataclass(frozen=True)
class RungSettings:
    """One row of the per-rung table, aligned by construction."""
    index: int
    beta: float
    bw_update: bool
    cov_update: bool
    coupling_on: bool


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(name, f"expected an integer, got {value!r}")
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(name, f"expected an integer, got {value!r}") from None
    if not math.isfinite(f) or f != int(f):
        raise ConfigurationError(name, f"expected an integer, got {value!r}")
    return int(f)


def _as_floats(name: str, value: Any) -> Tuple[float, ...]:
    if isinstance(value, (int, float)):
        value = [value]
    try:
        return tuple(float(v) for v in value)
    except (TypeError, ValueError):
        raise ConfigurationError(name, "expected a sequence of numbers") from None


def _as_flags(name: str, value: Any, rungs: int) -> Tuple[bool, ...]:
    if isinstance(value, bool):
        value = [value]
    try:
        flags = tuple(bool(v) for v in value)
    except TypeError:
        raise ConfigurationError(name, "expected a boolean or a sequence of booleans") from None
    if len(flags) == 1:
        return flags * rungs
    if len(flags) != rungs:
        raise ConfigurationError(name, f"expected 1 or {rungs} values (one per rung), got {len(flags)}")
    return flags


@dataclass(frozen=True)
class Configuration:
    """Validated, immutable run configuration.

    ``bw_update``, ``cov_update`` and ``coupling_on`` are per-rung tables; a
    single value is broadcast to every rung. ``GTI_pow`` from host mappings
    is stored as :attr:`gti_pow`. ``chain`` only labels the replicate.
    """
    x: Sequence[float]
    theta_init: Sequence[float]
    theta_min: Sequence[float]
    theta_max: Sequence[float]
    trans_type: Sequence[Any]
    burnin: Sequence[int]
    samples: int
    rungs: int
    burnin_phases: int
    bw_update: Any = True
    cov_update: Any = False
    coupling_on: Any = True
    gti_pow: float = 1.0
    chain: int = 1
    # reporting / output only
    silent: bool = True
    pb_markdown: bool = False
    keep_burnin: bool = False
    tuner: TunerSettings = field(default_factory=TunerSettings)

    def __post_init__(self):
        set_ = functools.partial(object.__setattr__, self)

        set_("x", _as_floats("x", self.x))
        for name in ("theta_init", "theta_min", "theta_max"):
            set_(name, _as_floats(name, getattr(self, name)))
        trans = self.trans_type
        if isinstance(trans, (str, int, TransformType)):
            trans = [trans]
        set_("trans_type", tuple(TransformType.parse(t) for t in trans))

        d = len(self.theta_init)
        if d == 0:
            raise ConfigurationError("theta_init", "parameter vector is empty")
        for name in ("theta_min", "theta_max", "trans_type"):
            n = len(getattr(self, name))
            if n != d:
                raise ConfigurationError(name, f"length {n} does not match theta_init length {d}")

        set_("rungs", _as_int("rungs", self.rungs))
        if self.rungs < 1:
            raise ConfigurationError("rungs", f"must be at least 1, got {self.rungs}")
        set_("samples", _as_int("samples", self.samples))
        if self.samples < 0:
            raise ConfigurationError("samples", f"must be non-negative, got {self.samples}")
        set_("burnin_phases", _as_int("burnin_phases", self.burnin_phases))
        if self.burnin_phases < 0:
            raise ConfigurationError("burnin_phases", f"must be non-negative, got {self.burnin_phases}")
        burnin = self.burnin
        if isinstance(burnin, (int, float)) and not isinstance(burnin, bool):
            burnin = [burnin]
        set_("burnin", tuple(_as_int("burnin", b) for b in burnin))
        if len(self.burnin) != self.burnin_phases:
            raise ConfigurationError(
                "burnin", f"has {len(self.burnin)} phase lengths but burnin_phases is {self.burnin_phases}"
            )
        if any(b < 0 for b in self.burnin):
            raise ConfigurationError("burnin", "phase lengths must be non-negative")

        try:
            gti_pow = float(self.gti_pow)
        except (TypeError, ValueError):
            raise ConfigurationError("GTI_pow", f"expected a number, got {self.gti_pow!r}") from None
        if not (math.isfinite(gti_pow) and gti_pow > 0):
            raise ConfigurationError("GTI_pow", f"must be positive and finite, got {self.gti_pow!r}")
        set_("gti_pow", gti_pow)

        for name in ("bw_update", "cov_update", "coupling_on"):
            set_(name, _as_flags(name, getattr(self, name), self.rungs))
        set_("chain", _as_int("chain", self.chain))
        if not isinstance(self.tuner, TunerSettings):
            raise ConfigurationError("tuner", "expected a TunerSettings instance")

        # bounds / transform consistency and theta_init domain (DomainError)
        ParameterSpace(self.theta_min, self.theta_max, self.trans_type, self.theta_init)

    # ------------------------- derived views -------------------------

    @property
    def dim(self) -> int:
        return len(self.theta_init)

    @property
    def betas(self) -> Tuple[float, ...]:
        return tuple(float(b) for b in temperature_powers(self.rungs, self.gti_pow))

    @property
    def rung_table(self) -> Tuple[RungSettings, ...]:
        return tuple(
            RungSettings(k, b, self.bw_update[k], self.cov_update[k], self.coupling_on[k])
            for k, b in enumerate(self.betas)
        )

    @property
    def total_iterations(self) -> int:
        return sum(self.burnin) + self.samples

    def parameter_space(self) -> ParameterSpace:
        return ParameterSpace(self.theta_min, self.theta_max, self.trans_type, self.theta_init)

    # ------------------------- host mappings -------------------------

    _REQUIRED = (
        "x", "theta_init", "theta_min", "theta_max", "trans_type", "burnin", "samples",
        "rungs", "burnin_phases", "bw_update", "cov_update", "coupling_on", "GTI_pow", "chain",
    )
    _OPTIONAL = ("silent", "pb_markdown", "keep_burnin", "tuner")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Configuration":
        """Build a configuration from host field names (``GTI_pow`` etc.).

        Unknown keys and missing required keys raise :class:`ConfigurationError`.
        A ``tuner`` entry may be a mapping of :class:`TunerSettings` fields.
        """
        unknown = sorted(set(raw) - set(cls._REQUIRED) - set(cls._OPTIONAL))
        if unknown:
            raise ConfigurationError(unknown[0], "unknown configuration field")
        missing = [k for k in cls._REQUIRED if k not in raw]
        if missing:
            raise ConfigurationError(missing[0], "missing required configuration field")

        kwargs = {k: raw[k] for k in cls._REQUIRED if k != "GTI_pow"}
        kwargs["gti_pow"] = raw["GTI_pow"]
        for k in ("silent", "pb_markdown", "keep_burnin"):
            if k in raw:
                kwargs[k] = bool(raw[k])
        tuner = raw.get("tuner")
        if tuner is not None and not isinstance(tuner, TunerSettings):
            names = {f.name for f in fields(TunerSettings)}
            bad = sorted(set(tuner) - names)
            if bad:
                raise ConfigurationError(f"tuner.{bad[0]}", "unknown tuner setting")
            tuner = TunerSettings(**tuner)
        if tuner is not None:
            kwargs["tuner"] = tuner
        return cls(**kwargs)
