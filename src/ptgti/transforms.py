"""
Per-dimension reparameterisation between bounded ``theta`` and the unbounded
working coordinates ``y`` on which the random-walk proposals act.

Four transforms are supported, mirroring the integer codes used by host
configurations:

- ``IDENTITY`` (0): ``y = theta``. Bounds are enforced by rejection only.
- ``LOG`` (1): ``y = log(theta - theta_min)``, open lower bound.
- ``LOG_UPPER`` (2): ``y = log(theta_max - theta)``, open upper bound.
- ``LOGIT`` (3): ``y = log(theta - theta_min) - log(theta_max - theta)``.

All functions are written with ``jax.numpy`` so that they can be traced inside
the jitted sampler step, and broadcast over leading axes ``(..., d)``.
"""
from __future__ import annotations

import enum
from typing import Sequence

import jax
import jax.numpy as jnp
import numpy as np

from .errors import ConfigurationError, DomainError


class TransformType(enum.IntEnum):
    IDENTITY = 0
    LOG = 1
    LOG_UPPER = 2
    LOGIT = 3

    @classmethod
    def parse(cls, value) -> "TransformType":
        """Accept an enum member, its name (case-insensitive) or its integer code."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ConfigurationError("trans_type", f"unknown transform {value!r}") from None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ConfigurationError("trans_type", f"unknown transform {value!r}") from None


# plain ints for comparisons against traced code arrays
_LOG = int(TransformType.LOG)
_LOG_UPPER = int(TransformType.LOG_UPPER)
_LOGIT = int(TransformType.LOGIT)


class ParameterSpace:
    """Bounds and transforms for a ``d``-dimensional parameter vector.

    Parameters
    ----------
    theta_min, theta_max:
        Lower and upper bounds, length ``d``. Infinite values are allowed where
        the transform does not need them.
    trans_type:
        One transform per dimension (see :class:`TransformType`).
    theta_init:
        Optional starting point; checked against the bounds at construction.

    Raises
    ------
    ConfigurationError
        On length mismatches or bounds incompatible with a transform.
    DomainError
        If ``theta_init`` lies outside its own bounds.
    """

    def __init__(
        self,
        theta_min: Sequence[float],
        theta_max: Sequence[float],
        trans_type: Sequence,
        theta_init: Sequence[float] | None = None,
    ):
        lo = np.asarray(theta_min, dtype=np.float64).reshape(-1)
        hi = np.asarray(theta_max, dtype=np.float64).reshape(-1)
        codes = np.array([int(TransformType.parse(t)) for t in trans_type], dtype=np.int32)
        d = lo.shape[0]
        if d == 0:
            raise ConfigurationError("theta_min", "parameter vector is empty")
        if hi.shape[0] != d:
            raise ConfigurationError("theta_max", f"expected {d} values, got {hi.shape[0]}")
        if codes.shape[0] != d:
            raise ConfigurationError("trans_type", f"expected {d} values, got {codes.shape[0]}")
        if np.any(np.isnan(lo)) or np.any(np.isnan(hi)):
            raise ConfigurationError("theta_min", "bounds must not be NaN")
        if np.any(lo >= hi):
            i = int(np.argmax(lo >= hi))
            raise ConfigurationError("theta_min", f"theta_min[{i}] must be below theta_max[{i}]")

        needs_lo = (codes == _LOG) | (codes == _LOGIT)
        needs_hi = (codes == _LOG_UPPER) | (codes == _LOGIT)
        if np.any(needs_lo & ~np.isfinite(lo)):
            i = int(np.argmax(needs_lo & ~np.isfinite(lo)))
            raise ConfigurationError(
                "theta_min", f"dimension {i} uses {TransformType(codes[i]).name} and needs a finite theta_min"
            )
        if np.any(needs_hi & ~np.isfinite(hi)):
            i = int(np.argmax(needs_hi & ~np.isfinite(hi)))
            raise ConfigurationError(
                "theta_max", f"dimension {i} uses {TransformType(codes[i]).name} and needs a finite theta_max"
            )

        self.dim = d
        self.codes = jnp.asarray(codes)
        self.theta_min = jnp.asarray(lo)
        self.theta_max = jnp.asarray(hi)

        if theta_init is not None:
            init = np.asarray(theta_init, dtype=np.float64).reshape(-1)
            if init.shape[0] != d:
                raise ConfigurationError("theta_init", f"expected {d} values, got {init.shape[0]}")
            ok = np.asarray(self.in_bounds_mask(jnp.asarray(init)))
            if not ok.all():
                i = int(np.argmin(ok))
                raise DomainError(
                    "theta_init",
                    f"value {init[i]!r} of dimension {i} is outside the domain of its "
                    f"{TransformType(codes[i]).name} transform [{lo[i]}, {hi[i]}]",
                )

    @property
    def trans_type(self) -> tuple:
        return tuple(TransformType(int(c)) for c in np.asarray(self.codes))

    # ------------------------- maps -------------------------

    def forward(self, theta):
        """Bounded ``theta`` -> working coordinates ``y``."""
        theta = jnp.asarray(theta, dtype=jnp.float64)
        lo, hi, c = self.theta_min, self.theta_max, self.codes
        y_log = jnp.log(theta - lo)
        y_upper = jnp.log(hi - theta)
        y_logit = y_log - y_upper
        return jnp.select(
            [c == _LOG, c == _LOG_UPPER, c == _LOGIT],
            [y_log, y_upper, y_logit],
            theta,
        )

    def inverse(self, y):
        """Working coordinates ``y`` -> bounded ``theta``."""
        y = jnp.asarray(y, dtype=jnp.float64)
        lo, hi, c = self.theta_min, self.theta_max, self.codes
        # width is inf for unused dimensions; select discards those lanes
        th_logit = lo + (hi - lo) * jax.nn.sigmoid(y)
        return jnp.select(
            [c == _LOG, c == _LOG_UPPER, c == _LOGIT],
            [lo + jnp.exp(y), hi - jnp.exp(y), th_logit],
            y,
        )

    def log_jacobian_terms(self, y):
        """Per-dimension ``log |d theta / d y|``, shape ``(..., d)``."""
        y = jnp.asarray(y, dtype=jnp.float64)
        lo, hi, c = self.theta_min, self.theta_max, self.codes
        j_logit = jnp.log(hi - lo) + jax.nn.log_sigmoid(y) + jax.nn.log_sigmoid(-y)
        return jnp.select(
            [c == _LOG, c == _LOG_UPPER, c == _LOGIT],
            [y, y, j_logit],
            jnp.zeros_like(y),
        )

    def log_jacobian(self, y):
        """Summed log-Jacobian of the inverse transform, shape ``(...)``."""
        return jnp.sum(self.log_jacobian_terms(y), axis=-1)

    # ------------------------- bounds -------------------------

    def in_bounds_mask(self, theta):
        """Per-dimension bound check, ``(..., d)`` bool.

        Closed bounds for identity dimensions, open bounds on the transformed
        side(s) of log/log_upper/logit dimensions.
        """
        theta = jnp.asarray(theta, dtype=jnp.float64)
        lo, hi, c = self.theta_min, self.theta_max, self.codes
        open_lo = (c == _LOG) | (c == _LOGIT)
        open_hi = (c == _LOG_UPPER) | (c == _LOGIT)
        above = jnp.where(open_lo, theta > lo, theta >= lo)
        below = jnp.where(open_hi, theta < hi, theta <= hi)
        return above & below & jnp.isfinite(theta)

    def in_bounds(self, theta):
        return jnp.all(self.in_bounds_mask(theta), axis=-1)

    def __repr__(self):
        names = ", ".join(t.name.lower() for t in self.trans_type)
        return f"ParameterSpace(dim={self.dim}, trans_type=[{names}])"
