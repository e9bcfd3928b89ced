"""
Custom exceptions and error handling for kinematic calibration.

This module provides standardized error handling and validation
utilities for the dual kinematic chain calibration workflow.
"""

import functools
import logging
from typing import Any, Callable, Optional, TypeVar, Union
import numpy as np

logger = logging.getLogger(__name__)

# Type variable for decorators
F = TypeVar('F', bound=Callable[..., Any])


# Custom Exception Classes
class KinematicCalibrationError(Exception):
    """Base exception for kinematic calibration.

    Keyword arguments passed to the constructor are kept in ``context``
    so that callers can tell which chain, observation or parameter group
    caused the failure without parsing the message.
    """

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.context = context


class ConfigurationError(KinematicCalibrationError):
    """Exception raised for configuration-related issues."""
    pass


class DataProcessingError(KinematicCalibrationError):
    """Exception raised during data processing operations."""
    pass


class MeasurementParseError(DataProcessingError):
    """Exception raised when a measurement record cannot be parsed."""

    def __init__(self, message: str = "", source: Optional[str] = None,
                 **context):
        if source:
            message = f"{source}: {message}"
        super().__init__(message, source=source, **context)
        self.source = source


class ValidationError(KinematicCalibrationError):
    """Exception raised when validation fails."""
    pass


class DimensionMismatchError(ValidationError):
    """Exception raised when array dimensions disagree with a chain."""
    pass


class CalibrationError(KinematicCalibrationError):
    """Exception raised during calibration procedures."""
    pass


class OptimizationError(CalibrationError):
    """Exception raised when the solver cannot run at all."""
    pass


class CovarianceError(CalibrationError):
    """Exception raised when the parameter covariance cannot be computed.

    The calibration result computed before the failure, if any, is
    available as ``result``.
    """

    def __init__(self, message: str = "", result: Any = None, **context):
        super().__init__(message, **context)
        self.result = result


# Validation Functions
def validate_joint_states(
    joints: np.ndarray,
    dof: int,
    chain_name: str = "chain",
    index: Optional[int] = None
) -> None:
    """
    Validate a joint state vector against the DOF of a kinematic chain.

    Args:
        joints: Joint values
        dof: Number of joints of the chain
        chain_name: Name of the chain for error messages
        index: Observation index for error messages

    Raises:
        DimensionMismatchError: If the vector length differs from dof
        ValidationError: If the vector contains NaN or infinite values
    """
    joints = np.asarray(joints, dtype=float)
    where = f" (observation {index})" if index is not None else ""

    if joints.ndim != 1 or joints.shape[0] != dof:
        raise DimensionMismatchError(
            f"{chain_name} joint vector has shape {joints.shape}, "
            f"expected ({dof},){where}",
            chain=chain_name, observation_index=index
        )

    if not np.all(np.isfinite(joints)):
        raise ValidationError(
            f"{chain_name} joint vector contains non-finite values{where}",
            chain=chain_name, observation_index=index
        )


def validate_transform(transform: np.ndarray, name: str = "transform") -> None:
    """
    Validate a 4x4 homogeneous transform.

    Raises:
        ConfigurationError: If the array is not a finite 4x4 matrix
    """
    transform = np.asarray(transform, dtype=float)
    if transform.shape != (4, 4):
        raise ConfigurationError(
            f"{name} must be a 4x4 matrix, got shape {transform.shape}",
            group=name
        )
    if not np.all(np.isfinite(transform)):
        raise ConfigurationError(
            f"{name} contains non-finite values", group=name
        )


def validate_numeric_range(
    value: Union[float, int, np.ndarray],
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    name: str = "value",
    exclusive_min: bool = False
) -> None:
    """
    Validate that numeric value(s) are within specified range.

    Args:
        value: Value or array to validate
        min_val: Minimum allowed value
        max_val: Maximum allowed value
        name: Name of the value for error messages
        exclusive_min: Reject values equal to min_val as well

    Raises:
        ConfigurationError: If value is out of range
    """
    values = np.atleast_1d(np.asarray(value, dtype=float))

    if not np.all(np.isfinite(values)):
        raise ConfigurationError(f"{name} must be finite", group=name)

    if min_val is not None:
        below = values <= min_val if exclusive_min else values < min_val
        if np.any(below):
            bound = "greater than" if exclusive_min else "at least"
            raise ConfigurationError(
                f"{name} {value} must be {bound} {min_val}", group=name
            )

    if max_val is not None and np.any(values > max_val):
        raise ConfigurationError(
            f"{name} {value} is above maximum {max_val}", group=name
        )


# Decorator Functions
def validate_input_data(func: F) -> F:
    """
    Decorator rejecting NaN or infinite numpy array arguments.

    Args:
        func: Function to decorate

    Returns:
        Decorated function with input validation
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        for arg in list(args) + list(kwargs.values()):
            if isinstance(arg, np.ndarray) and arg.dtype.kind in 'fc':
                if np.any(np.isnan(arg)):
                    raise ValidationError("Input data contains NaN values")
                if np.any(np.isinf(arg)):
                    raise ValidationError(
                        "Input data contains infinite values")
        return func(*args, **kwargs)

    return wrapper


def handle_calibration_errors(func: F) -> F:
    """
    Decorator to handle calibration-specific errors.

    Errors raised by this package pass through unchanged so that callers
    can still tell configuration, dimension and covariance failures apart.

    Args:
        func: Function to decorate

    Returns:
        Decorated function with calibration error handling
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KinematicCalibrationError:
            raise
        except (ValueError, np.linalg.LinAlgError) as e:
            raise CalibrationError(
                f"Calibration failed: {e}"
            ) from e
        except Exception as e:
            logger.error(f"Unexpected error in calibration: {e}")
            raise CalibrationError(
                f"Unexpected calibration error: {e}"
            ) from e

    return wrapper


# Logging Utilities
def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Setup logging for kinematic calibration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("kincalib")
    logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Context Managers
class ErrorContext:
    """Context manager for structured error handling."""

    def __init__(self, operation_name: str, raise_on_error: bool = True):
        self.operation_name = operation_name
        self.raise_on_error = raise_on_error
        self.error = None

    def __enter__(self):
        logger.info(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.error(f"{self.operation_name} failed: {exc_val}")
            self.error = exc_val
            return not self.raise_on_error
        logger.info(f"{self.operation_name} completed successfully")
        return False
