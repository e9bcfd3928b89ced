"""
Tests for exceptions, validators and error handling helpers.
"""

import logging

import numpy as np
import pytest

from kincalib.shared.error_handling import (
    CalibrationError,
    ConfigurationError,
    CovarianceError,
    DataProcessingError,
    DimensionMismatchError,
    ErrorContext,
    KinematicCalibrationError,
    MeasurementParseError,
    ValidationError,
    handle_calibration_errors,
    setup_logging,
    validate_input_data,
    validate_joint_states,
    validate_numeric_range,
    validate_transform,
)


class TestExceptions:
    """Test the exception hierarchy and context."""

    def test_hierarchy(self):
        assert issubclass(MeasurementParseError, DataProcessingError)
        assert issubclass(DimensionMismatchError, ValidationError)
        assert issubclass(CovarianceError, CalibrationError)
        for exc in (ConfigurationError, DataProcessingError, ValidationError,
                    CalibrationError):
            assert issubclass(exc, KinematicCalibrationError)

    def test_context(self):
        error = ConfigurationError("bad group", group="solver", index=3)
        assert str(error) == "bad group"
        assert error.context == {"group": "solver", "index": 3}

    def test_measurement_parse_error_names_source(self):
        error = MeasurementParseError("record 'a' is broken",
                                      source="data.yaml", record="a")
        assert str(error) == "data.yaml: record 'a' is broken"
        assert error.source == "data.yaml"
        assert error.context["record"] == "a"

    def test_covariance_error_carries_result(self):
        result = object()
        error = CovarianceError("rank deficient", result=result, rank=2)
        assert error.result is result
        assert error.context == {"rank": 2}


class TestValidators:
    """Test validation functions."""

    def test_joint_states(self):
        validate_joint_states(np.zeros(2), 2)
        with pytest.raises(DimensionMismatchError) as excinfo:
            validate_joint_states(np.zeros(3), 2, "target chain", index=4)
        assert "observation 4" in str(excinfo.value)
        assert excinfo.value.context["chain"] == "target chain"

        with pytest.raises(ValidationError):
            validate_joint_states([0.0, np.nan], 2)

    def test_transform(self):
        validate_transform(np.eye(4))
        with pytest.raises(ConfigurationError):
            validate_transform(np.eye(3), "guess")
        bad = np.eye(4)
        bad[0, 3] = np.inf
        with pytest.raises(ConfigurationError, match="guess"):
            validate_transform(bad, "guess")

    def test_numeric_range(self):
        validate_numeric_range(0.5, 0.0, 1.0)
        validate_numeric_range(0.0, 0.0)
        with pytest.raises(ConfigurationError):
            validate_numeric_range(0.0, 0.0, exclusive_min=True)
        with pytest.raises(ConfigurationError):
            validate_numeric_range(2.0, max_val=1.0)
        with pytest.raises(ConfigurationError):
            validate_numeric_range(np.array([1.0, np.nan]))


class TestDecorators:
    """Test error handling decorators."""

    def test_validate_input_data(self):
        @validate_input_data
        def total(values):
            return float(np.sum(values))

        assert total(np.ones(3)) == 3.0
        with pytest.raises(ValidationError, match="NaN"):
            total(np.array([1.0, np.nan]))
        with pytest.raises(ValidationError, match="infinite"):
            total(values=np.array([np.inf]))

    def test_package_errors_pass_through(self):
        @handle_calibration_errors
        def fail():
            raise ConfigurationError("bad mask")

        with pytest.raises(ConfigurationError, match="bad mask"):
            fail()

    def test_numerical_errors_are_wrapped(self):
        @handle_calibration_errors
        def fail():
            raise np.linalg.LinAlgError("singular")

        with pytest.raises(CalibrationError, match="singular") as excinfo:
            fail()
        assert isinstance(excinfo.value.__cause__, np.linalg.LinAlgError)


class TestErrorContext:
    """Test the error context manager."""

    def test_reraises_by_default(self):
        with pytest.raises(ValueError):
            with ErrorContext("loading"):
                raise ValueError("boom")

    def test_suppresses_when_asked(self):
        with ErrorContext("loading", raise_on_error=False) as context:
            raise ValueError("boom")
        assert isinstance(context.error, ValueError)

    def test_success(self):
        with ErrorContext("loading") as context:
            pass
        assert context.error is None


def test_setup_logging():
    logger = logging.getLogger("kincalib")
    level, handlers = logger.level, logger.handlers[:]
    try:
        configured = setup_logging("debug")
        assert configured is logger
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
    finally:
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)
