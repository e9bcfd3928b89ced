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
Residual builders.

Every builder turns a predicted camera-to-target transform and one
observation into a residual vector. The optimizer is written once against
:class:`ResidualBuilder`; which builder applies depends on the observation
kind and, for correspondences, on the sensor-space dimension.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from .dh_chain import DHChain
from .error_handling import ConfigurationError, ValidationError
from .transforms import invert, rotation_difference, transform_point
from .types import (
    CameraIntrinsics,
    Correspondence,
    KinematicMeasurement,
    Observation,
)


class ResidualBuilder(ABC):
    """Computes the residual of one observation."""

    @abstractmethod
    def size(self, observation) -> int:
        """Number of residual entries produced for ``observation``."""

    @abstractmethod
    def residual(self, observation,
                 camera_to_target: np.ndarray) -> np.ndarray:
        """Residual given the predicted camera-to-target transform."""


class Pose6DResidual(ResidualBuilder):
    """Translation difference and rotation log-map of a pose measurement.

    Args:
        position_weight: Scale of the three translation entries
        orientation_weight: Scale of the three rotation entries
    """

    def __init__(self, position_weight: float = 1.0,
                 orientation_weight: float = 1.0):
        self.position_weight = position_weight
        self.orientation_weight = orientation_weight

    def size(self, observation) -> int:
        return 6

    def residual(self, observation: KinematicMeasurement,
                 camera_to_target: np.ndarray) -> np.ndarray:
        measured = observation.camera_to_target
        residual = np.empty(6)
        residual[:3] = self.position_weight * (
            camera_to_target[:3, 3] - measured[:3, 3])
        residual[3:] = self.orientation_weight * rotation_difference(
            camera_to_target[:3, :3], measured[:3, :3])
        return residual


class CorrespondenceResidual(ResidualBuilder):
    """Per-feature error of a correspondence set.

    2D image features are compared in pixels after projection through the
    camera intrinsics; 3D sensor features are compared directly.
    """

    def __init__(self, intrinsics: Optional[CameraIntrinsics] = None):
        self.intrinsics = intrinsics

    def size(self, observation) -> int:
        return sum(c.IMAGE_DIM for c in observation.correspondence_set)

    def residual(self, observation,
                 camera_to_target: np.ndarray) -> np.ndarray:
        if not observation.correspondence_set:
            return np.zeros(0)
        blocks = []
        for i, c in enumerate(observation.correspondence_set):
            try:
                blocks.append(self.correspondence_residual(c,
                                                           camera_to_target))
            except ValidationError as e:
                raise ValidationError(f"Correspondence {i}: {e}",
                                      correspondence_index=i) from e
        return np.concatenate(blocks)

    def correspondence_residual(self, correspondence: Correspondence,
                                camera_to_target: np.ndarray) -> np.ndarray:
        in_camera = transform_point(camera_to_target,
                                    correspondence.in_target)
        if correspondence.IMAGE_DIM == 2:
            if self.intrinsics is None:
                raise ConfigurationError(
                    "Camera intrinsics are required for 2D correspondences")
            return self.intrinsics.project(in_camera) - correspondence.in_image
        return in_camera - correspondence.in_image


def predict_camera_to_target(observation, camera_chain: DHChain,
                             target_chain: DHChain,
                             camera_mount_to_camera: np.ndarray,
                             target_mount_to_target: np.ndarray,
                             camera_base_to_target_base: np.ndarray
                             ) -> np.ndarray:
    """Predicted pose of the target in the camera frame.

    Kinematic observations and measurements run forward kinematics on both
    chains; static observations use their recorded mount poses instead.
    """
    if isinstance(observation, Observation):
        to_camera_mount = observation.to_camera_mount
        to_target_mount = observation.to_target_mount
    else:
        to_camera_mount = camera_chain.forward_kinematics(
            observation.camera_chain_joints)
        to_target_mount = target_chain.forward_kinematics(
            observation.target_chain_joints)

    camera_base_to_camera = to_camera_mount @ camera_mount_to_camera
    camera_base_to_target = (camera_base_to_target_base @ to_target_mount
                             @ target_mount_to_target)
    return invert(camera_base_to_camera) @ camera_base_to_target
