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

"""
Calibration problem definition, solver options and calibration result.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .covariance import CovarianceResult
from .dh_chain import DHChain
from .error_handling import (
    ConfigurationError,
    validate_joint_states,
    validate_numeric_range,
    validate_transform,
)
from .masking import CalibrationMask
from .types import (
    CameraIntrinsics,
    KinematicMeasurement,
    KinematicObservation,
    Observation,
)

logger = logging.getLogger(__name__)

SOLVER_METHODS = ("lm", "trf", "dogbox")


@dataclass
class SolverOptions:
    """Settings passed to ``scipy.optimize.least_squares``.

    Attributes:
        max_iterations: Maximum number of residual evaluations
        num_threads: Worker threads for Jacobian evaluation
        method: Trust region algorithm ("lm", "trf" or "dogbox")
        function_tolerance: Relative cost change for termination (ftol)
        parameter_tolerance: Relative step size for termination (xtol)
        gradient_tolerance: Gradient norm for termination (gtol)
        verbose: least_squares verbosity (0, 1 or 2)
    """
    max_iterations: int = 500
    num_threads: int = 1
    method: str = "lm"
    function_tolerance: float = 1e-10
    parameter_tolerance: float = 1e-10
    gradient_tolerance: float = 1e-10
    verbose: int = 0

    def validate(self) -> None:
        if self.method not in SOLVER_METHODS:
            raise ConfigurationError(
                f"Unknown solver method '{self.method}', "
                f"expected one of {SOLVER_METHODS}", group="solver"
            )
        validate_numeric_range(self.max_iterations, 1,
                               name="max_iterations")
        validate_numeric_range(self.num_threads, 1, name="num_threads")
        for name in ("function_tolerance", "parameter_tolerance",
                     "gradient_tolerance"):
            validate_numeric_range(getattr(self, name), 0.0, name=name,
                                   exclusive_min=True)


@dataclass
class CalibrationProblem:
    """Everything needed to calibrate a camera chain against a target chain.

    The camera is attached to the tip of ``camera_chain`` and the target to
    the tip of ``target_chain``; either chain may have no joints. The
    optimizer estimates the camera-mount-to-camera, target-mount-to-target
    and camera-base-to-target-base transforms together with additive DH
    corrections of both chains. Components listed in ``mask`` stay at
    their initial value.

    Note:
        When the target chain has no joints the camera-base-to-target-base
        and target-mount-to-target transforms are not separately
        observable; one of them must be masked.
    """
    camera_chain: DHChain = field(default_factory=DHChain)
    target_chain: DHChain = field(default_factory=DHChain)
    observations: List = field(default_factory=list)
    camera_mount_to_camera_guess: np.ndarray = field(
        default_factory=lambda: np.eye(4))
    target_mount_to_target_guess: np.ndarray = field(
        default_factory=lambda: np.eye(4))
    camera_base_to_target_base_guess: np.ndarray = field(
        default_factory=lambda: np.eye(4))
    camera_chain_offset_stdev: float = 1.0e-3
    target_chain_offset_stdev: float = 1.0e-3
    mask: CalibrationMask = field(default_factory=CalibrationMask)
    intrinsics: Optional[CameraIntrinsics] = None
    position_weight: float = 1.0
    orientation_weight: float = 1.0

    def validate(self) -> None:
        """Check dimensions and settings before any numerical work.

        Raises:
            ConfigurationError: For inconsistent settings or masks
            DimensionMismatchError: For joint vectors that do not match a
                chain's DOF
        """
        if not self.observations:
            raise ConfigurationError("Calibration problem has no observations")

        validate_transform(self.camera_mount_to_camera_guess,
                           "camera_mount_to_camera_guess")
        validate_transform(self.target_mount_to_target_guess,
                           "target_mount_to_target_guess")
        validate_transform(self.camera_base_to_target_base_guess,
                           "camera_base_to_target_base_guess")
        validate_numeric_range(self.camera_chain_offset_stdev, 0.0,
                               name="camera_chain_offset_stdev",
                               exclusive_min=True)
        validate_numeric_range(self.target_chain_offset_stdev, 0.0,
                               name="target_chain_offset_stdev",
                               exclusive_min=True)
        validate_numeric_range(self.position_weight, 0.0,
                               name="position_weight")
        validate_numeric_range(self.orientation_weight, 0.0,
                               name="orientation_weight")

        self.mask.resolve(self.camera_chain.dof, self.target_chain.dof)

        for i, obs in enumerate(self.observations):
            self._validate_observation(i, obs)

    def _validate_observation(self, index: int, obs) -> None:
        if isinstance(obs, (KinematicMeasurement, KinematicObservation)):
            validate_joint_states(obs.camera_chain_joints,
                                  self.camera_chain.dof,
                                  "camera chain", index)
            validate_joint_states(obs.target_chain_joints,
                                  self.target_chain.dof,
                                  "target chain", index)
            self._warn_out_of_limits(index, obs)
        elif not isinstance(obs, Observation):
            raise ConfigurationError(
                f"Observation {index} has unsupported type "
                f"{type(obs).__name__}", observation_index=index
            )

        correspondences = getattr(obs, "correspondence_set", [])
        if (self.intrinsics is None
                and any(c.IMAGE_DIM == 2 for c in correspondences)):
            raise ConfigurationError(
                f"Observation {index} holds 2D correspondences but the "
                "problem has no camera intrinsics", observation_index=index
            )

    def _warn_out_of_limits(self, index: int, obs) -> None:
        for chain, joints, name in (
                (self.camera_chain, obs.camera_chain_joints, "camera"),
                (self.target_chain, obs.target_chain_joints, "target")):
            outside = chain.joints_out_of_limits(joints)
            if outside:
                logger.warning(
                    f"Observation {index}: {name} chain joints {outside} "
                    "are outside their limits")

    @property
    def n_observations(self) -> int:
        return len(self.observations)


@dataclass
class CalibrationResult:
    """Outcome of a calibration run.

    ``converged`` is False when the solver stopped on the iteration limit;
    the costs and estimates are still valid in that case.
    """
    converged: bool = False
    initial_cost_per_obs: float = 0.0
    final_cost_per_obs: float = 0.0
    camera_mount_to_camera: np.ndarray = field(
        default_factory=lambda: np.eye(4))
    target_mount_to_target: np.ndarray = field(
        default_factory=lambda: np.eye(4))
    camera_base_to_target_base: np.ndarray = field(
        default_factory=lambda: np.eye(4))
    camera_chain_dh_offsets: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 4)))
    target_chain_dh_offsets: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 4)))
    covariance: Optional[CovarianceResult] = None
    parameter_names: List[str] = field(default_factory=list)
    n_function_evals: int = 0
    message: str = ""
