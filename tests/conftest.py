"""Shared models and configuration builders for the test suite."""
from __future__ import annotations

import jax.numpy as jnp
import numpy as np
import pytest

import ptgti  # noqa: F401  (enables float64)
from ptgti import Configuration


def std_normal_loglike(theta, x):
    return -0.5 * jnp.sum(theta ** 2)


def flat_logprior(theta):
    return 0.0


def make_config(**overrides) -> Configuration:
    base = dict(
        x=[],
        theta_init=[0.0],
        theta_min=[-10.0],
        theta_max=[10.0],
        trans_type=["identity"],
        burnin=[200],
        samples=300,
        rungs=1,
        burnin_phases=1,
        bw_update=True,
        cov_update=False,
        coupling_on=True,
        gti_pow=1.0,
        chain=1,
    )
    base.update(overrides)
    return Configuration(**base)


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def data_x():
    # fixed data with mean close to 1
    return np.array([0.3, 1.9, 1.1, 0.4, 2.2, 0.7, 1.4, 0.8, 1.0, 0.6])
