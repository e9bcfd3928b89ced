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
Serial kinematic chain described by Denavit-Hartenberg parameters.

Each segment carries the four DH parameters ``(d, theta, r, alpha)`` and
contributes the transform ``Tz(d) * Rz(theta) * Tx(r) * Rx(alpha)``. The
joint variable is added to one of them: ``theta`` for a revolute joint,
``d`` for a prismatic joint.

Chains are immutable. Calibration corrections are applied with
:meth:`DHChain.with_offsets`, which returns a new chain.
"""

from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from .error_handling import DimensionMismatchError, validate_joint_states
from .transforms import rotation_x, rotation_z, translation_matrix

DH_PARAMETER_NAMES = ("d", "theta", "r", "alpha")


class DHJointType(Enum):
    """Joint type of a DH segment."""

    PRISMATIC = "prismatic"
    REVOLUTE = "revolute"

    @property
    def live_index(self) -> int:
        """Index of the DH parameter driven by the joint variable."""
        return 0 if self is DHJointType.PRISMATIC else 1


class DHTransform:
    """One segment of a DH chain.

    Args:
        params: DH parameters ``(d, theta, r, alpha)``
        joint_type: Revolute or prismatic joint
        name: Human readable joint identifier
        min: Lower joint limit (metadata only)
        max: Upper joint limit (metadata only)
    """

    def __init__(self, params: Sequence[float],
                 joint_type: DHJointType = DHJointType.REVOLUTE,
                 name: str = "", min: float = -np.pi, max: float = np.pi):
        params = np.array(params, dtype=float)
        if params.shape != (4,):
            raise DimensionMismatchError(
                f"DH parameters of '{name}' must have 4 entries, "
                f"got shape {params.shape}", chain=name
            )
        params.setflags(write=False)
        self._params = params
        self._joint_type = DHJointType(joint_type)
        self._name = name
        self._min = float(min)
        self._max = float(max)

    @property
    def params(self) -> np.ndarray:
        return self._params

    @property
    def joint_type(self) -> DHJointType:
        return self._joint_type

    @property
    def name(self) -> str:
        return self._name

    @property
    def min(self) -> float:
        return self._min

    @property
    def max(self) -> float:
        return self._max

    def with_offsets(self, offsets: Sequence[float]) -> "DHTransform":
        """Copy of this segment with ``offsets`` added to its parameters."""
        return DHTransform(self._params + np.asarray(offsets, dtype=float),
                           self._joint_type, self._name, self._min, self._max)

    def create_relative_transform(self, joint_value: float) -> np.ndarray:
        """Transform from the previous frame to this segment's frame."""
        d, theta, r, alpha = self._params
        if self._joint_type is DHJointType.PRISMATIC:
            d = d + joint_value
        else:
            theta = theta + joint_value

        return (translation_matrix(z=d) @ rotation_z(theta)
                @ translation_matrix(x=r) @ rotation_x(alpha))

    def in_limits(self, joint_value: float) -> bool:
        return self._min <= joint_value <= self._max

    def __repr__(self):
        return (f"DHTransform(params={self._params.tolist()}, "
                f"joint_type={self._joint_type.name}, name={self._name!r}, "
                f"min={self._min}, max={self._max})")


class DHChain:
    """Ordered serial chain of DH segments behind a fixed base offset.

    Args:
        transforms: Segments from base to tip. May be empty, in which case
            the forward kinematics is the base offset itself.
        base_offset: 4x4 transform from the chain root to the first segment
    """

    def __init__(self, transforms: Sequence[DHTransform] = (),
                 base_offset: Optional[np.ndarray] = None):
        self._transforms = tuple(transforms)
        base = np.eye(4) if base_offset is None else np.array(
            base_offset, dtype=float)
        if base.shape != (4, 4):
            raise DimensionMismatchError(
                f"Base offset must be 4x4, got shape {base.shape}")
        base.setflags(write=False)
        self._base_offset = base

    @property
    def dof(self) -> int:
        return len(self._transforms)

    @property
    def transforms(self) -> tuple:
        return self._transforms

    @property
    def base_offset(self) -> np.ndarray:
        return self._base_offset

    def joint_names(self) -> List[str]:
        return [t.name for t in self._transforms]

    def dh_parameters(self) -> np.ndarray:
        """DH parameters of all segments as a (dof, 4) array."""
        if not self._transforms:
            return np.zeros((0, 4))
        return np.vstack([t.params for t in self._transforms])

    def with_offsets(self, offsets: np.ndarray) -> "DHChain":
        """New chain with ``offsets`` (dof x 4) added to the DH parameters.

        Raises:
            DimensionMismatchError: If the offset matrix is not (dof, 4)
        """
        offsets = np.asarray(offsets, dtype=float)
        if offsets.shape != (self.dof, 4):
            raise DimensionMismatchError(
                f"DH offset matrix has shape {offsets.shape}, "
                f"expected ({self.dof}, 4)"
            )
        transforms = [t.with_offsets(row)
                      for t, row in zip(self._transforms, offsets)]
        return DHChain(transforms, self._base_offset)

    def chain_transforms(self, joint_values: Sequence[float]) -> List[np.ndarray]:
        """Pose of every segment frame relative to the chain root."""
        joint_values = self._check_joints(joint_values)
        frames = []
        T = self._base_offset.copy()
        for transform, value in zip(self._transforms, joint_values):
            T = T @ transform.create_relative_transform(value)
            frames.append(T)
        return frames

    def forward_kinematics(self, joint_values: Sequence[float]) -> np.ndarray:
        """Pose of the chain tip relative to the chain root.

        Joint values are not clamped to the segment limits.
        """
        frames = self.chain_transforms(joint_values)
        return frames[-1] if frames else self._base_offset.copy()

    def joints_out_of_limits(self, joint_values: Sequence[float]) -> List[str]:
        """Names of the segments whose joint value lies outside its limits."""
        joint_values = self._check_joints(joint_values)
        return [t.name for t, value in zip(self._transforms, joint_values)
                if not t.in_limits(value)]

    def _check_joints(self, joint_values) -> np.ndarray:
        joint_values = np.asarray(joint_values, dtype=float).reshape(-1)
        validate_joint_states(joint_values, self.dof)
        return joint_values

    def __repr__(self):
        return f"DHChain(dof={self.dof}, joints={self.joint_names()})"
