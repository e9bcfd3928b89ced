"""
Pytest configuration file for the kinematic calibration tests.
"""

import numpy as np
import pytest

from kincalib.shared.dh_chain import DHChain
from kincalib.shared.masking import CalibrationMask, MaskGroup
from kincalib.shared.problem import CalibrationProblem
from kincalib.shared.transforms import from_pose6d
from kincalib.two_axis_positioner.utils.positioner_tools import (
    create_two_axis_positioner,
    generate_sample_measurements,
)


# Configure pytest
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests"
    )


@pytest.fixture
def positioner():
    """Nominal two-axis positioner chain."""
    return create_two_axis_positioner()


@pytest.fixture
def true_camera_mount_to_camera():
    return from_pose6d([0.01, -0.02, 1.615], [0.01, np.pi / 2.0 + 0.02, -0.01])


@pytest.fixture
def true_target_mount_to_target():
    return from_pose6d([0.005, 0.01, 0.04], [-0.02, 0.01, 0.015])


@pytest.fixture
def camera_mount_to_camera_guess():
    return from_pose6d([0.0, 0.0, 1.6], [0.0, np.pi / 2.0, 0.0])


@pytest.fixture
def target_mount_to_target_guess():
    return from_pose6d([0.0, 0.0, 0.05], [0.0, 0.0, 0.0])


@pytest.fixture
def true_dh_offsets():
    """Identifiable errors of the first positioner segment (r, alpha)."""
    offsets = np.zeros((2, 4))
    offsets[0, 2] = 0.003
    offsets[0, 3] = 0.002
    return offsets


@pytest.fixture
def exact_measurements(true_camera_mount_to_camera,
                       true_target_mount_to_target):
    """Noise-free measurements of the nominal positioner."""
    return generate_sample_measurements(
        30, true_camera_mount_to_camera, true_target_mount_to_target,
        seed=42)


@pytest.fixture
def dh_error_measurements(true_camera_mount_to_camera,
                          true_target_mount_to_target, true_dh_offsets):
    """Noise-free measurements of a positioner with DH errors."""
    return generate_sample_measurements(
        30, true_camera_mount_to_camera, true_target_mount_to_target,
        target_chain_dh_offsets=true_dh_offsets, seed=7)


def positioner_mask(static_chain=False):
    mask = CalibrationMask()
    rows = [0, 1] if static_chain else [1]
    mask.freeze_dh_rows(MaskGroup.TARGET_CHAIN_DH, 2, rows)
    mask.freeze_transform(MaskGroup.CAMERA_BASE_TO_TARGET_BASE_POSITION,
                          MaskGroup.CAMERA_BASE_TO_TARGET_BASE_ROTATION)
    return mask


@pytest.fixture
def make_problem(positioner, camera_mount_to_camera_guess,
                 target_mount_to_target_guess):
    """Factory for a positioner problem over the given measurements."""
    def factory(measurements, static_chain=False, **kwargs):
        return CalibrationProblem(
            camera_chain=DHChain(),
            target_chain=positioner,
            observations=list(measurements),
            camera_mount_to_camera_guess=camera_mount_to_camera_guess,
            target_mount_to_target_guess=target_mount_to_target_guess,
            camera_chain_offset_stdev=0.001,
            target_chain_offset_stdev=0.005,
            mask=positioner_mask(static_chain),
            **kwargs
        )
    return factory
