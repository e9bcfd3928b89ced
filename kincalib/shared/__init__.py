"""
Shared calibration engine for dual kinematic chain setups.

This module provides the kinematic model, observation types and
optimizer reused by every work-cell setup in the package.

Available modules:
- dh_chain: Denavit-Hartenberg kinematic chains
- types: Correspondence and observation data model
- masking: Parameter masks for the optimization unknowns
- problem: Calibration problem, solver options and result
- base_calibration: Least-squares calibration optimizer
- covariance: Parameter covariance and correlation analysis
- validation: Comparison of a calibration against measurements
- config_manager: Calibration configuration management
- error_handling: Custom exceptions and validation utilities
- data_processing: Measurement loading and splitting
- results_manager: Reporting, saving and plotting
"""

# flake8: noqa F401

from .base_calibration import BaseCalibration, calibrated_chains, optimize
from .config_manager import (
    ConfigManager,
    ConfigSchema,
    load_pose,
    mask_from_config,
    problem_from_config,
    solver_options_from_config,
)
from .covariance import CovarianceResult, compute_covariance
from .data_processing import (
    load_measurements,
    measurements_to_dataframe,
    save_measurements,
    split_measurements,
)
from .dh_chain import DHChain, DHJointType, DHTransform
from .error_handling import (
    KinematicCalibrationError,
    ConfigurationError,
    DataProcessingError,
    MeasurementParseError,
    ValidationError,
    DimensionMismatchError,
    CalibrationError,
    OptimizationError,
    CovarianceError,
    ErrorContext,
    validate_input_data,
    handle_calibration_errors,
    setup_logging,
)
from .masking import CalibrationMask, MaskGroup, ParameterMask, create_dh_mask
from .problem import CalibrationProblem, CalibrationResult, SolverOptions
from .residuals import (
    CorrespondenceResidual,
    Pose6DResidual,
    ResidualBuilder,
    predict_camera_to_target,
)
from .results_manager import (
    ResultsManager,
    format_calibration_result,
    save_results,
)
from .types import (
    CameraIntrinsics,
    Correspondence2D3D,
    Correspondence3D3D,
    KinematicMeasurement,
    KinematicObservation2D3D,
    KinematicObservation3D3D,
    Observation2D3D,
    Observation3D3D,
)
from .validation import Stats, compare_to_measurements, measurement_errors

__all__ = [
    # Core model
    'DHChain',
    'DHJointType',
    'DHTransform',
    'CameraIntrinsics',
    'Correspondence2D3D',
    'Correspondence3D3D',
    'Observation2D3D',
    'Observation3D3D',
    'KinematicObservation2D3D',
    'KinematicObservation3D3D',
    'KinematicMeasurement',
    # Optimization
    'CalibrationMask',
    'MaskGroup',
    'ParameterMask',
    'create_dh_mask',
    'CalibrationProblem',
    'CalibrationResult',
    'SolverOptions',
    'ResidualBuilder',
    'Pose6DResidual',
    'CorrespondenceResidual',
    'predict_camera_to_target',
    'BaseCalibration',
    'optimize',
    'calibrated_chains',
    'CovarianceResult',
    'compute_covariance',
    'Stats',
    'compare_to_measurements',
    'measurement_errors',
    # Ambient
    'ConfigManager',
    'ConfigSchema',
    'load_pose',
    'mask_from_config',
    'problem_from_config',
    'solver_options_from_config',
    'KinematicCalibrationError',
    'ConfigurationError',
    'DataProcessingError',
    'MeasurementParseError',
    'ValidationError',
    'DimensionMismatchError',
    'CalibrationError',
    'OptimizationError',
    'CovarianceError',
    'ErrorContext',
    'validate_input_data',
    'handle_calibration_errors',
    'setup_logging',
    'load_measurements',
    'save_measurements',
    'split_measurements',
    'measurements_to_dataframe',
    'ResultsManager',
    'format_calibration_result',
    'save_results',
]

__version__ = "0.1.0"
