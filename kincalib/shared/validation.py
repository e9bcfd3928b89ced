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
Validation of a calibration result against pose measurements.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

import numpy as np

from .dh_chain import DHChain
from .error_handling import ValidationError
from .problem import CalibrationResult
from .residuals import predict_camera_to_target
from .transforms import angular_distance, invert
from .types import KinematicMeasurement

logger = logging.getLogger(__name__)


@dataclass
class Stats:
    """Mean and standard deviation of position and orientation errors."""
    pos_mean: float = 0.0
    pos_stdev: float = 0.0
    rot_mean: float = 0.0
    rot_stdev: float = 0.0

    def __str__(self):
        return (
            f"Position Difference Mean: {self.pos_mean}\n"
            f"Position Difference Std. Dev.: {self.pos_stdev}\n"
            f"Orientation Difference Mean: {self.rot_mean}\n"
            f"Orientation Difference Std. Dev.: {self.rot_stdev}\n"
        )

    def percent_diff(self, other: "Stats") -> Dict[str, float]:
        """Relative change ``100 * (self - other) / self`` of each field.

        Positive values mean ``other`` has smaller errors. A field that is
        zero in ``self`` yields NaN.
        """
        def pct(mine, theirs):
            if mine == 0.0:
                return float("nan")
            return 100.0 * (mine - theirs) / mine

        return {
            'position': pct(self.pos_mean, other.pos_mean),
            'position_stdev': pct(self.pos_stdev, other.pos_stdev),
            'orientation': pct(self.rot_mean, other.rot_mean),
            'orientation_stdev': pct(self.rot_stdev, other.rot_stdev),
        }


def format_percent_diff(diff: Dict[str, float]) -> str:
    return (
        f"Position: {diff['position']}%\n"
        f"Position Std. Dev.: {diff['position_stdev']}%\n"
        f"Orientation: {diff['orientation']}%\n"
        f"Orientation Std. Dev.: {diff['orientation_stdev']}%\n"
    )


def measurement_errors(
    camera_chain: DHChain,
    target_chain: DHChain,
    result: CalibrationResult,
    measurements: Sequence[KinematicMeasurement]
) -> Tuple[np.ndarray, np.ndarray]:
    """Position and orientation error of every measurement.

    The chains are used as given; apply the calibrated offsets first (see
    :func:`compare_to_measurements`).

    Returns:
        Tuple of (position errors in meters, angular distances in radians)
    """
    pos_errors = np.empty(len(measurements))
    rot_errors = np.empty(len(measurements))
    for i, m in enumerate(measurements):
        predicted = predict_camera_to_target(
            m, camera_chain, target_chain, result.camera_mount_to_camera,
            result.target_mount_to_target, result.camera_base_to_target_base)
        diff = invert(predicted) @ m.camera_to_target
        pos_errors[i] = np.linalg.norm(diff[:3, 3])
        rot_errors[i] = angular_distance(predicted[:3, :3],
                                         m.camera_to_target[:3, :3])
    return pos_errors, rot_errors


def compare_to_measurements(
    initial_camera_chain: DHChain,
    initial_target_chain: DHChain,
    result: CalibrationResult,
    measurements: Sequence[KinematicMeasurement]
) -> Stats:
    """Error statistics of a calibration on a set of pose measurements.

    The calibrated DH offsets of ``result`` are applied to the nominal
    chains before predicting each measurement. Standard deviations are
    population standard deviations.

    Raises:
        ValidationError: If ``measurements`` is empty
        DimensionMismatchError: If the offsets or joints do not fit a chain
    """
    if len(measurements) == 0:
        raise ValidationError("No measurements to compare against")

    camera_chain = initial_camera_chain.with_offsets(
        result.camera_chain_dh_offsets)
    target_chain = initial_target_chain.with_offsets(
        result.target_chain_dh_offsets)
    pos_errors, rot_errors = measurement_errors(camera_chain, target_chain,
                                                result, measurements)

    stats = Stats(
        pos_mean=float(np.mean(pos_errors)),
        pos_stdev=float(np.std(pos_errors)),
        rot_mean=float(np.mean(rot_errors)),
        rot_stdev=float(np.std(rot_errors)),
    )
    logger.debug(f"Validated against {len(measurements)} measurements: "
                 f"position mean {stats.pos_mean:.6g}, "
                 f"orientation mean {stats.rot_mean:.6g}")
    return stats
