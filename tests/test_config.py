"""
Tests for library settings and logging set-up.
"""

import logging

import pytest

import pycrn
from pycrn.config import SimulationSettings, configure, configure_logging, get_settings, reset_settings


class TestSettings:
    """Runtime and environment configuration."""

    def test_defaults(self):
        settings = get_settings()
        assert settings.ode_method == 'LSODA'
        assert settings.jump_aggregator == 'direct_dg'
        assert settings.use_numba is False
        assert settings.max_events is None

    def test_configure(self):
        configure(rtol=1e-3, jump_aggregator='nrm')
        assert get_settings().rtol == 1e-3
        assert get_settings().jump_aggregator == 'nrm'
        reset_settings()
        assert get_settings().rtol == 1e-6

    def test_unknown_setting(self):
        with pytest.raises(ValueError, match="Unknown setting"):
            configure(colour='red')

    def test_settings_are_frozen(self):
        with pytest.raises(AttributeError):
            get_settings().rtol = 1.0

    def test_from_env(self):
        settings = SimulationSettings.from_env({
            'PYCRN_ODE_METHOD': 'BDF',
            'PYCRN_USE_NUMBA': 'yes',
            'PYCRN_N_EVAL_POINTS': '50',
            'PYCRN_RTOL': '1e-4',
            'PYCRN_MAX_EVENTS': '1000',
            'PYCRN_ENSEMBLE_WORKERS': 'none',
        })
        assert settings.ode_method == 'BDF'
        assert settings.use_numba is True
        assert settings.n_eval_points == 50
        assert settings.rtol == 1e-4
        assert settings.max_events == 1000
        assert settings.ensemble_workers is None

    def test_bad_boolean(self):
        with pytest.raises(ValueError):
            SimulationSettings.from_env({'PYCRN_USE_NUMBA': 'maybe'})

    def test_configured_aggregator_is_used(self):
        configure(jump_aggregator='nrm')
        network = pycrn.parse_network("@parameters k=1.0\nk, 0 --> X")
        assert pycrn.JumpProblem(network).aggregator == 'nrm'


class TestLogging:
    """Package logger set-up."""

    def test_null_handler_installed(self):
        handlers = logging.getLogger('pycrn').handlers
        assert any(isinstance(h, logging.NullHandler) for h in handlers)

    def test_configure_logging(self):
        logger = configure_logging(logging.DEBUG)
        try:
            assert logger.level == logging.DEBUG
            stream_handlers = [h for h in logger.handlers if type(h) is logging.StreamHandler]
            assert len(stream_handlers) == 1
            # Calling again does not stack handlers
            configure_logging(logging.INFO)
            assert len([h for h in logger.handlers if type(h) is logging.StreamHandler]) == 1
        finally:
            logger.handlers = [h for h in logger.handlers if type(h) is not logging.StreamHandler]
            logger.setLevel(logging.NOTSET)

    def test_simulation_logs(self, caplog):
        network = pycrn.parse_network("@parameters k=1.0\n@species X=5\nk, X --> 0")
        with caplog.at_level(logging.INFO, logger='pycrn'):
            pycrn.simulate_ode(network, (0, 1), t_eval=[0, 1])
        assert "Integrating" in caplog.text

    def test_version(self):
        assert pycrn.__version__ == "0.1.0"
