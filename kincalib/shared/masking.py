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
Parameter masks.

A mask freezes components of an unknown group so that they are left out of
the optimization vector. Masks are used to remove rank deficiencies, e.g.
when the last link of a static target chain duplicates the
target-mount-to-target transform.

Unknown groups, in optimization order:

====  ==========================================
0     camera chain DH offsets (dof x 4)
1     target chain DH offsets (dof x 4)
2, 3  camera mount to camera (position, rotation)
4, 5  target mount to target (position, rotation)
6, 7  camera base to target base (position, rotation)
====  ==========================================
"""

from enum import IntEnum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .error_handling import ConfigurationError


class MaskGroup(IntEnum):
    CAMERA_CHAIN_DH = 0
    TARGET_CHAIN_DH = 1
    CAMERA_MOUNT_TO_CAMERA_POSITION = 2
    CAMERA_MOUNT_TO_CAMERA_ROTATION = 3
    TARGET_MOUNT_TO_TARGET_POSITION = 4
    TARGET_MOUNT_TO_TARGET_ROTATION = 5
    CAMERA_BASE_TO_TARGET_BASE_POSITION = 6
    CAMERA_BASE_TO_TARGET_BASE_ROTATION = 7

    @property
    def label(self) -> str:
        return self.name.lower()


TRANSFORM_GROUP_SIZE = 3


class ParameterMask:
    """Fixed-size bitset of frozen components for one unknown group.

    Provides the projection from the full group vector to its free
    components and the embedding back into a full vector.
    """

    def __init__(self, size: int, frozen: Iterable[int] = (),
                 group: str = "parameters"):
        self.size = int(size)
        self.group = group
        self._frozen = np.zeros(self.size, dtype=bool)
        for index in frozen:
            index = int(index)
            if not 0 <= index < self.size:
                raise ConfigurationError(
                    f"Mask index {index} out of range for {group} "
                    f"(size {self.size})", group=group, index=index
                )
            self._frozen[index] = True
        self._frozen.setflags(write=False)

    @classmethod
    def from_indices(cls, size: int, indices: Iterable[int],
                     group: str = "parameters") -> "ParameterMask":
        return cls(size, indices, group)

    @classmethod
    def from_dh_grid(cls, grid, group: str = "dh_offsets") -> "ParameterMask":
        """Mask from a (segments x 4) boolean grid of frozen DH entries."""
        grid = np.asarray(grid, dtype=bool).reshape(-1, 4)
        return cls(grid.size, create_dh_mask(grid), group)

    @property
    def frozen(self) -> np.ndarray:
        return self._frozen

    @property
    def n_free(self) -> int:
        return int(self.size - np.count_nonzero(self._frozen))

    @property
    def free_indices(self) -> np.ndarray:
        return np.flatnonzero(~self._frozen)

    @property
    def frozen_indices(self) -> List[int]:
        return np.flatnonzero(self._frozen).tolist()

    def project(self, full: np.ndarray) -> np.ndarray:
        """Free components of a full group vector."""
        full = np.asarray(full, dtype=float).reshape(-1)
        self._check_size(full)
        return full[~self._frozen]

    def embed(self, free: np.ndarray, full: np.ndarray) -> np.ndarray:
        """Copy of ``full`` with its free components replaced by ``free``.

        Frozen components are copied unchanged from ``full``.
        """
        full = np.array(full, dtype=float).reshape(-1)
        self._check_size(full)
        free = np.asarray(free, dtype=float).reshape(-1)
        if free.shape[0] != self.n_free:
            raise ConfigurationError(
                f"{self.group} expects {self.n_free} free values, "
                f"got {free.shape[0]}", group=self.group
            )
        full[~self._frozen] = free
        return full

    def _check_size(self, full: np.ndarray) -> None:
        if full.shape[0] != self.size:
            raise ConfigurationError(
                f"{self.group} vector has {full.shape[0]} entries, "
                f"mask expects {self.size}", group=self.group
            )

    def __repr__(self):
        return (f"ParameterMask(group={self.group!r}, size={self.size}, "
                f"frozen={self.frozen_indices})")


def create_dh_mask(grid) -> List[int]:
    """Flat indices (``row * 4 + col``) of the frozen entries of a DH grid."""
    grid = np.asarray(grid, dtype=bool)
    if grid.size and (grid.ndim != 2 or grid.shape[1] != 4):
        raise ConfigurationError(
            f"DH mask grid must have 4 columns, got shape {grid.shape}")
    return np.flatnonzero(grid.reshape(-1)).tolist()


class CalibrationMask:
    """Frozen component indices for every unknown group of a problem.

    Groups that are not set are entirely free. Indexing accepts a
    :class:`MaskGroup` or its integer value::

        mask = CalibrationMask()
        mask[MaskGroup.TARGET_CHAIN_DH] = create_dh_mask(grid)
        mask[6] = [0, 1, 2]
    """

    def __init__(self, frozen: Optional[Mapping[int, Sequence[int]]] = None):
        self._frozen: Dict[MaskGroup, List[int]] = {}
        for group, indices in (frozen or {}).items():
            self[group] = indices

    @staticmethod
    def _group(group) -> MaskGroup:
        try:
            return MaskGroup(group)
        except ValueError as e:
            raise ConfigurationError(f"Unknown mask group {group!r}",
                                     group=group) from e

    def __getitem__(self, group) -> List[int]:
        return list(self._frozen.get(self._group(group), []))

    def __setitem__(self, group, indices: Iterable[int]) -> None:
        self._frozen[self._group(group)] = sorted({int(i) for i in indices})

    def at(self, group) -> List[int]:
        return self[group]

    def freeze_dh_rows(self, group, dof: int, rows: Iterable[int]) -> None:
        """Freeze every DH parameter of the given chain segments."""
        grid = np.zeros((dof, 4), dtype=bool)
        for row in rows:
            if not -dof <= int(row) < dof:
                raise ConfigurationError(
                    f"DH row {row} out of range for a chain with {dof} "
                    "segments", group=self._group(group).label, index=row)
            grid[int(row), :] = True
        self[group] = create_dh_mask(grid)

    def freeze_transform(self, position_group, rotation_group) -> None:
        """Freeze all six components of a transform."""
        self[position_group] = range(TRANSFORM_GROUP_SIZE)
        self[rotation_group] = range(TRANSFORM_GROUP_SIZE)

    def resolve(self, camera_dof: int,
                target_dof: int) -> Dict[MaskGroup, ParameterMask]:
        """Build a :class:`ParameterMask` per group for the given chains.

        Raises:
            ConfigurationError: If an index does not fit its group
        """
        sizes = {
            MaskGroup.CAMERA_CHAIN_DH: 4 * camera_dof,
            MaskGroup.TARGET_CHAIN_DH: 4 * target_dof,
        }
        return {
            group: ParameterMask(sizes.get(group, TRANSFORM_GROUP_SIZE),
                                 self[group], group.label)
            for group in MaskGroup
        }

    def copy(self) -> "CalibrationMask":
        return CalibrationMask(self._frozen)

    def __repr__(self):
        items = {g.label: idx for g, idx in self._frozen.items() if idx}
        return f"CalibrationMask({items})"
