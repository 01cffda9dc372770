"""Post-run statistics: autocorrelation, effective sample size, GTI quadrature."""
from __future__ import annotations

from typing import Optional

import jax.numpy as jnp
import numpy as np
from blackjax import diagnostics as bj_diagnostics


def autocorrelation(x: np.ndarray, max_lag: int = 20) -> np.ndarray:
    """Sample autocorrelation at lags ``0..max_lag`` for each column.

    ``x``: (n,) or (n, d). Returns (max_lag + 1,) or (max_lag + 1, d).
    Columns with zero variance give NaN.
    """
    x = np.asarray(x, dtype=np.float64)
    squeeze = x.ndim == 1
    if squeeze:
        x = x[:, None]
    n = x.shape[0]
    max_lag = int(min(max_lag, max(n - 1, 0)))
    dev = x - x.mean(axis=0)
    # zero-padded FFT gives the linear (not circular) autocovariance
    nfft = 1 << int(np.ceil(np.log2(max(2 * n, 1))))
    f = np.fft.rfft(dev, n=nfft, axis=0)
    acov = np.fft.irfft(f * np.conj(f), n=nfft, axis=0)[: max_lag + 1] / n
    with np.errstate(invalid="ignore", divide="ignore"):
        acf = acov / acov[0]
    return acf[:, 0] if squeeze else acf


def effective_sample_size(x: np.ndarray) -> np.ndarray:
    """ESS per column of a single chain.

    ``x``: (n,) or (n, d). Returns a scalar array or (d,). Estimated with
    :func:`blackjax.diagnostics.effective_sample_size`. Constant columns and
    chains shorter than four draws give NaN.

    The result is capped at ``n * log10(n)``, the bound Stan and ArviZ put on
    the ESS (integrated autocorrelation time at least ``1 / log10(n)``).
    Antithetic chains, whose negative lag-1 correlation makes the raw
    estimate exceed ``n``, are held to that bound.
    """
    x = np.asarray(x, dtype=np.float64)
    squeeze = x.ndim == 1
    if squeeze:
        x = x[:, None]
    n, d = x.shape
    out = np.full(d, np.nan)
    if n >= 4:
        ok = np.var(x, axis=0) > 0
        if ok.any():
            ess = bj_diagnostics.effective_sample_size(jnp.asarray(x[None, :, ok]), chain_axis=0, sample_axis=1)
            out[ok] = np.minimum(np.asarray(ess, dtype=np.float64), n * np.log10(n))
    return out[0] if squeeze else out


def thermodynamic_integral(betas: np.ndarray, mean_loglike: np.ndarray) -> Optional[float]:
    """Trapezoidal estimate of ``log Z = int_0^1 E_beta[log L] d beta``.

    Needs at least two rungs with finite means; otherwise ``None``.
    """
    betas = np.asarray(betas, dtype=np.float64)
    m = np.asarray(mean_loglike, dtype=np.float64)
    if betas.shape[0] < 2 or not np.all(np.isfinite(m)):
        return None
    return float(np.sum(np.diff(betas) * 0.5 * (m[1:] + m[:-1])))
