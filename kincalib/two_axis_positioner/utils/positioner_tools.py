# Copyright [2021-2025] Thanh Nguyen
# Copyright [2022-2023] [CNRS, Toward SAS]

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at

# http://www.apache.org/licenses/LICENSE-2.0

# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import dataclasses
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from ...shared.base_calibration import BaseCalibration
from ...shared.config_manager import (
    ConfigManager,
    problem_from_config,
    solver_options_from_config,
)
from ...shared.dh_chain import DHChain, DHJointType, DHTransform
from ...shared.error_handling import handle_calibration_errors
from ...shared.masking import MaskGroup
from ...shared.problem import (
    CalibrationProblem,
    CalibrationResult,
    SolverOptions,
)
from ...shared.residuals import predict_camera_to_target
from ...shared.transforms import make_transform, rotation_x, translation_matrix
from ...shared.types import KinematicMeasurement

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = (Path(__file__).resolve().parent.parent / "config"
                       / "two_axis_positioner_config.yaml")


def create_two_axis_positioner() -> DHChain:
    """Nominal DH model of the two-axis positioner carrying the target.

    Two revolute axes: ``j1`` limited to [-pi, pi] and ``j2`` to
    [-2 pi, 2 pi]. The positioner base sits 2.2 m along X and 1.6 m up
    from the camera base, rotated a quarter turn about X.
    """
    j1 = DHTransform([0.0, 0.0, 0.0, -np.pi / 2.0], DHJointType.REVOLUTE,
                     "j1", min=-np.pi, max=np.pi)
    j2 = DHTransform([-0.475, -np.pi / 2.0, 0.0, 0.0], DHJointType.REVOLUTE,
                     "j2", min=-2.0 * np.pi, max=2.0 * np.pi)
    base_offset = translation_matrix(2.2, 0.0, 1.6) @ rotation_x(np.pi / 2.0)
    return DHChain([j1, j2], base_offset)


def freeze_target_chain(problem: CalibrationProblem) -> CalibrationProblem:
    """Copy of ``problem`` with every target chain DH offset frozen.

    Calibrating this copy estimates the transforms against the nominal
    positioner model.
    """
    mask = problem.mask.copy()
    mask.freeze_dh_rows(MaskGroup.TARGET_CHAIN_DH, problem.target_chain.dof,
                        range(problem.target_chain.dof))
    return dataclasses.replace(problem, mask=mask)


def generate_sample_measurements(
    n_samples: int,
    camera_mount_to_camera: np.ndarray,
    target_mount_to_target: np.ndarray,
    target_chain_dh_offsets: Optional[np.ndarray] = None,
    target_chain: Optional[DHChain] = None,
    camera_base_to_target_base: Optional[np.ndarray] = None,
    position_noise: float = 0.0,
    orientation_noise: float = 0.0,
    seed: Optional[int] = None
) -> List[KinematicMeasurement]:
    """
    Synthetic pose measurements of a target on the positioner.

    Joint values are drawn uniformly within [-pi/2, pi/2] for every axis.
    Poses are predicted with ``target_chain_dh_offsets`` applied to the
    positioner and perturbed by zero-mean Gaussian noise.

    Args:
        n_samples: Number of measurements
        camera_mount_to_camera: True camera pose in the camera base frame
        target_mount_to_target: True target pose on the positioner flange
        target_chain_dh_offsets: True DH errors (dof x 4), zero if omitted
        target_chain: Nominal chain, the two-axis positioner if omitted
        camera_base_to_target_base: Defaults to identity
        position_noise: Standard deviation of translation noise (m)
        orientation_noise: Standard deviation of rotation noise (rad)
        seed: Random seed

    Returns:
        List of KinematicMeasurement
    """
    rng = np.random.default_rng(seed)
    nominal = target_chain or create_two_axis_positioner()
    offsets = (np.zeros((nominal.dof, 4)) if target_chain_dh_offsets is None
               else np.asarray(target_chain_dh_offsets, dtype=float))
    true_chain = nominal.with_offsets(offsets)
    base = (np.eye(4) if camera_base_to_target_base is None
            else camera_base_to_target_base)
    camera_chain = DHChain()

    measurements = []
    for _ in range(n_samples):
        joints = rng.uniform(-np.pi / 2.0, np.pi / 2.0, nominal.dof)
        sample = KinematicMeasurement(target_chain_joints=joints)
        pose = predict_camera_to_target(sample, camera_chain, true_chain,
                                        camera_mount_to_camera,
                                        target_mount_to_target, base)
        if position_noise > 0.0 or orientation_noise > 0.0:
            noise = make_transform(
                Rotation.from_rotvec(
                    rng.normal(0.0, orientation_noise, 3)).as_matrix(),
                rng.normal(0.0, position_noise, 3))
            pose = pose @ noise
        sample.camera_to_target = pose
        measurements.append(sample)
    return measurements


class TwoAxisPositionerCalibration(BaseCalibration):
    """
    Calibration of a static camera observing a target on a two-axis
    positioner.

    The camera chain has no joints. By default the last positioner segment
    is frozen because it duplicates the target-mount-to-target transform,
    and the camera-base-to-target-base transform is frozen because the
    positioner base offset already places the positioner in the camera base
    frame. Both choices come from the ``mask`` section of the
    configuration file.
    """

    @handle_calibration_errors
    def __init__(self, measurements: Sequence[KinematicMeasurement],
                 config_file: str = str(DEFAULT_CONFIG_PATH),
                 config: Optional[dict] = None):
        """Build the calibration problem from a configuration.

        Args:
            measurements: Pose measurements of the target
            config_file: YAML calibration configuration
            config: Already loaded configuration, overrides config_file
        """
        self.config = (config if config is not None
                       else ConfigManager.load_calibration_config(config_file))
        self.camera_chain = DHChain()
        self.target_chain = create_two_axis_positioner()
        problem = problem_from_config(self.config, self.camera_chain,
                                      self.target_chain, measurements)
        super().__init__(problem)
        self.offset_prior_weight = float(
            self.config.get('offset_prior_weight', 1.0))
        self.options = solver_options_from_config(self.config)
        logger.info(f"{self.config['robot_name']}: {len(measurements)} "
                    "measurements, frozen target DH entries "
                    f"{problem.mask[MaskGroup.TARGET_CHAIN_DH]}")

    def solve(self, offset_prior_weight: Optional[float] = None,
              options: Optional[SolverOptions] = None,
              compute_covariance: bool = True) -> CalibrationResult:
        """Run the calibration with the configured prior weight and solver
        options unless overridden."""
        if offset_prior_weight is None:
            offset_prior_weight = float(
                self.config.get('offset_prior_weight', 1.0))
        return super().solve(offset_prior_weight, options or self.options,
                             compute_covariance)

    def static_target_chain(self) -> "TwoAxisPositionerCalibration":
        """Calibration of the same data with the positioner model frozen."""
        static = TwoAxisPositionerCalibration(self.problem.observations,
                                              config=self.config)
        static.problem = freeze_target_chain(self.problem)
        return static
