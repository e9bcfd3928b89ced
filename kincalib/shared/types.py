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
Observation data model.

A *correspondence* pairs a feature seen by the sensor with the same feature
expressed in the target frame. Two concrete kinds exist: 2D image points
against 3D target points (``Correspondence2D3D``) and 3D sensor points
against 3D target points (``Correspondence3D3D``). Observations bundle a
correspondence set with either the measured mount poses
(``Observation*``) or the raw joint states of both chains
(``KinematicObservation*``). ``KinematicMeasurement`` is the pose-only
variant where the sensor reports the full target pose directly.
"""

from dataclasses import dataclass, field
from typing import ClassVar, List, Sequence

import numpy as np

from .error_handling import DimensionMismatchError, ValidationError


def _vector(values, size: int, name: str) -> np.ndarray:
    vec = np.asarray(values, dtype=float).reshape(-1)
    if vec.shape != (size,):
        raise DimensionMismatchError(
            f"{name} must have {size} entries, got {vec.shape[0]}")
    return vec


def _joints(values) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(-1)


def _pose(values, name: str) -> np.ndarray:
    T = np.eye(4) if values is None else np.array(values, dtype=float)
    if T.shape != (4, 4):
        raise DimensionMismatchError(
            f"{name} must be a 4x4 matrix, got shape {T.shape}")
    return T


@dataclass
class CameraIntrinsics:
    """Pin-hole camera model."""
    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0

    def project(self, point_in_camera: Sequence[float]) -> np.ndarray:
        """Project a 3D point expressed in the camera frame to pixels.

        Raises:
            ValidationError: If the point is not in front of the camera
        """
        x, y, z = point_in_camera
        if not z > 0.0:
            raise ValidationError(
                f"Point at depth {z:.6g} is not in front of the camera")
        return np.array([self.fx * x / z + self.cx,
                         self.fy * y / z + self.cy])

    @property
    def matrix(self) -> np.ndarray:
        return np.array([[self.fx, 0.0, self.cx],
                         [0.0, self.fy, self.cy],
                         [0.0, 0.0, 1.0]])


@dataclass(eq=False)
class Correspondence:
    """A feature located in sensor space and in target space."""

    IMAGE_DIM: ClassVar[int] = 3
    WORLD_DIM: ClassVar[int] = 3

    in_image: np.ndarray = None
    in_target: np.ndarray = None

    def __post_init__(self):
        if self.in_image is None:
            self.in_image = np.zeros(self.IMAGE_DIM)
        if self.in_target is None:
            self.in_target = np.zeros(self.WORLD_DIM)
        self.in_image = _vector(self.in_image, self.IMAGE_DIM, "in_image")
        self.in_target = _vector(self.in_target, self.WORLD_DIM, "in_target")

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return (np.allclose(self.in_image, other.in_image)
                and np.allclose(self.in_target, other.in_target))


@dataclass(eq=False)
class Correspondence2D3D(Correspondence):
    """2D image point against 3D target point."""
    IMAGE_DIM: ClassVar[int] = 2
    WORLD_DIM: ClassVar[int] = 3


@dataclass(eq=False)
class Correspondence3D3D(Correspondence):
    """3D sensor point against 3D target point."""
    IMAGE_DIM: ClassVar[int] = 3
    WORLD_DIM: ClassVar[int] = 3


@dataclass(eq=False)
class Observation:
    """Correspondences captured at known camera and target mount poses.

    For a stationary camera or target the corresponding mount pose is
    identity. The two mount poses need not share a root frame when the
    calibration also estimates the camera-base-to-target-base transform.
    """

    CORRESPONDENCE_TYPE: ClassVar[type] = Correspondence

    correspondence_set: List[Correspondence] = field(default_factory=list)
    to_camera_mount: np.ndarray = None
    to_target_mount: np.ndarray = None

    def __post_init__(self):
        self.to_camera_mount = _pose(self.to_camera_mount, "to_camera_mount")
        self.to_target_mount = _pose(self.to_target_mount, "to_target_mount")
        _check_correspondences(self.correspondence_set,
                               self.CORRESPONDENCE_TYPE)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return (np.allclose(self.to_camera_mount, other.to_camera_mount)
                and np.allclose(self.to_target_mount, other.to_target_mount)
                and self.correspondence_set == other.correspondence_set)


@dataclass(eq=False)
class Observation2D3D(Observation):
    CORRESPONDENCE_TYPE: ClassVar[type] = Correspondence2D3D


@dataclass(eq=False)
class Observation3D3D(Observation):
    CORRESPONDENCE_TYPE: ClassVar[type] = Correspondence3D3D


@dataclass(eq=False)
class KinematicObservation:
    """Correspondences captured at known joint states of both chains.

    Forward kinematics is evaluated during optimization so that the DH
    offsets of each chain can be estimated.
    """

    CORRESPONDENCE_TYPE: ClassVar[type] = Correspondence

    correspondence_set: List[Correspondence] = field(default_factory=list)
    camera_chain_joints: np.ndarray = field(
        default_factory=lambda: np.zeros(0))
    target_chain_joints: np.ndarray = field(
        default_factory=lambda: np.zeros(0))

    def __post_init__(self):
        self.camera_chain_joints = _joints(self.camera_chain_joints)
        self.target_chain_joints = _joints(self.target_chain_joints)
        _check_correspondences(self.correspondence_set,
                               self.CORRESPONDENCE_TYPE)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return (_joints_close(self.camera_chain_joints,
                              other.camera_chain_joints)
                and _joints_close(self.target_chain_joints,
                                  other.target_chain_joints)
                and self.correspondence_set == other.correspondence_set)


@dataclass(eq=False)
class KinematicObservation2D3D(KinematicObservation):
    CORRESPONDENCE_TYPE: ClassVar[type] = Correspondence2D3D


@dataclass(eq=False)
class KinematicObservation3D3D(KinematicObservation):
    CORRESPONDENCE_TYPE: ClassVar[type] = Correspondence3D3D


@dataclass(eq=False)
class KinematicMeasurement:
    """Full 6-DoF target pose measured by the camera at known joint states.

    Either joint vector may be empty when the corresponding device is fixed.
    """

    camera_to_target: np.ndarray = None
    camera_chain_joints: np.ndarray = field(
        default_factory=lambda: np.zeros(0))
    target_chain_joints: np.ndarray = field(
        default_factory=lambda: np.zeros(0))

    def __post_init__(self):
        self.camera_to_target = _pose(self.camera_to_target,
                                      "camera_to_target")
        self.camera_chain_joints = _joints(self.camera_chain_joints)
        self.target_chain_joints = _joints(self.target_chain_joints)

    def __eq__(self, other):
        if not isinstance(other, KinematicMeasurement):
            return NotImplemented
        return (np.allclose(self.camera_to_target, other.camera_to_target)
                and _joints_close(self.camera_chain_joints,
                                  other.camera_chain_joints)
                and _joints_close(self.target_chain_joints,
                                  other.target_chain_joints))


def _joints_close(a: np.ndarray, b: np.ndarray) -> bool:
    return a.shape == b.shape and np.allclose(a, b)


def _check_correspondences(correspondences, expected: type) -> None:
    for i, c in enumerate(correspondences):
        if not isinstance(c, expected):
            raise DimensionMismatchError(
                f"Correspondence {i} is a {type(c).__name__}, "
                f"expected {expected.__name__}", correspondence_index=i)
