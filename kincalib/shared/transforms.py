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
Rigid transform helpers.

All transforms are 4x4 homogeneous numpy arrays. Rotations go through
``scipy.spatial.transform.Rotation``; the minimal parameterization used by
the optimizer is a translation vector plus a rotation vector (angle-axis).
"""

import numpy as np
from scipy.spatial.transform import Rotation
from typing import Sequence, Tuple


def make_transform(rotation: np.ndarray = None,
                   translation: Sequence[float] = None) -> np.ndarray:
    """Build a homogeneous transform from a 3x3 rotation and a translation."""
    T = np.eye(4)
    if rotation is not None:
        T[:3, :3] = rotation
    if translation is not None:
        T[:3, 3] = translation
    return T


def translation_matrix(x: float = 0.0, y: float = 0.0,
                       z: float = 0.0) -> np.ndarray:
    return make_transform(translation=[x, y, z])


def rotation_x(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return make_transform(np.array([[1.0, 0.0, 0.0],
                                    [0.0, c, -s],
                                    [0.0, s, c]]))


def rotation_z(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return make_transform(np.array([[c, -s, 0.0],
                                    [s, c, 0.0],
                                    [0.0, 0.0, 1.0]]))


def invert(T: np.ndarray) -> np.ndarray:
    """Inverse of a rigid transform."""
    R = T[:3, :3]
    inv = np.eye(4)
    inv[:3, :3] = R.T
    inv[:3, 3] = -R.T @ T[:3, 3]
    return inv


def pose_from_quaternion(x: float, y: float, z: float, qw: float,
                         qx: float, qy: float, qz: float) -> np.ndarray:
    """Transform from a translation and a (w, x, y, z) quaternion.

    The quaternion is normalized before use.
    """
    rotation = Rotation.from_quat([qx, qy, qz, qw]).as_matrix()
    return make_transform(rotation, [x, y, z])


def quaternion_from_transform(T: np.ndarray) -> np.ndarray:
    """Unit quaternion of a transform as (w, x, y, z)."""
    qx, qy, qz, qw = Rotation.from_matrix(T[:3, :3]).as_quat()
    return np.array([qw, qx, qy, qz])


def to_pose6d(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split a transform into (translation, rotation vector)."""
    translation = np.array(T[:3, 3], dtype=float)
    rotvec = Rotation.from_matrix(T[:3, :3]).as_rotvec()
    return translation, rotvec


def from_pose6d(translation: Sequence[float],
                rotvec: Sequence[float]) -> np.ndarray:
    """Inverse of :func:`to_pose6d`."""
    rotation = Rotation.from_rotvec(np.asarray(rotvec, dtype=float))
    return make_transform(rotation.as_matrix(), translation)


def rotation_difference(R_a: np.ndarray, R_b: np.ndarray) -> np.ndarray:
    """Rotation vector of ``R_a^T R_b`` (log map of the relative rotation)."""
    return Rotation.from_matrix(R_a.T @ R_b).as_rotvec()


def angular_distance(R_a: np.ndarray, R_b: np.ndarray) -> float:
    """Angle in [0, pi] of the rotation taking ``R_a`` onto ``R_b``."""
    return float(np.linalg.norm(rotation_difference(R_a, R_b)))


def euler_zyx(T: np.ndarray) -> np.ndarray:
    """Intrinsic Z-Y-X Euler angles of the rotation part."""
    return Rotation.from_matrix(T[:3, :3]).as_euler("ZYX")


def transform_point(T: np.ndarray, point: Sequence[float]) -> np.ndarray:
    return T[:3, :3] @ np.asarray(point, dtype=float) + T[:3, 3]
