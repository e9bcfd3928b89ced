"""
Data processing utilities for kinematic calibration.

This module loads pose measurement files, splits measurement sets into
calibration and validation subsets and tabulates them for inspection.
"""

import logging
from pathlib import Path
from typing import Any, List, Mapping, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import yaml

from .error_handling import DataProcessingError, MeasurementParseError
from .transforms import euler_zyx, pose_from_quaternion, quaternion_from_transform
from .types import KinematicMeasurement

logger = logging.getLogger(__name__)

POSE_FIELDS = ("x", "y", "z", "qw", "qx", "qy", "qz")


def _parse_joints(record: Mapping[str, Any], field: str, source: str,
                  key: Any) -> np.ndarray:
    if field not in record:
        raise MeasurementParseError(
            f"record '{key}' is missing '{field}'", source=source,
            record=key, field=field)
    values = record[field]
    if values is None:
        return np.zeros(0)
    try:
        return np.array([float(v) for v in values], dtype=float)
    except (TypeError, ValueError) as e:
        raise MeasurementParseError(
            f"record '{key}' has invalid '{field}': {e}", source=source,
            record=key, field=field) from e


def parse_pose(node: Any, source: str = "", key: Any = None) -> np.ndarray:
    """Transform from a mapping with x, y, z, qw, qx, qy, qz entries.

    Raises:
        MeasurementParseError: If an entry is missing or not numeric
    """
    if not isinstance(node, Mapping):
        raise MeasurementParseError(
            f"record '{key}' has no 'pose' mapping", source=source,
            record=key, field="pose")

    values = {}
    for name in POSE_FIELDS:
        if name not in node:
            raise MeasurementParseError(
                f"record '{key}' pose is missing '{name}'", source=source,
                record=key, field=f"pose.{name}")
        try:
            values[name] = float(node[name])
        except (TypeError, ValueError) as e:
            raise MeasurementParseError(
                f"record '{key}' pose has invalid '{name}': {e}",
                source=source, record=key, field=f"pose.{name}") from e

    try:
        return pose_from_quaternion(**values)
    except ValueError as e:
        raise MeasurementParseError(
            f"record '{key}' pose has an invalid quaternion: {e}",
            source=source, record=key, field="pose") from e


def parse_measurements(data: Any,
                       source: str = "<data>") -> List[KinematicMeasurement]:
    """Measurements from an already loaded YAML document.

    The document is a mapping (or list) of records, each with
    ``camera_joints``, ``target_joints`` and ``pose``. Records keep the
    document order.
    """
    if isinstance(data, Mapping):
        records = list(data.items())
    elif isinstance(data, list):
        records = list(enumerate(data))
    else:
        raise MeasurementParseError(
            "expected a mapping of measurement records", source=source)

    measurements = []
    for key, record in records:
        if not isinstance(record, Mapping):
            raise MeasurementParseError(
                f"record '{key}' is not a mapping", source=source, record=key)
        measurements.append(KinematicMeasurement(
            camera_to_target=parse_pose(record.get("pose"), source, key),
            camera_chain_joints=_parse_joints(record, "camera_joints",
                                              source, key),
            target_chain_joints=_parse_joints(record, "target_joints",
                                              source, key),
        ))
    return measurements


def load_measurements(path: Union[str, Path]) -> List[KinematicMeasurement]:
    """
    Load kinematic pose measurements from a YAML file.

    Args:
        path: Measurement file

    Returns:
        List of KinematicMeasurement in file order

    Raises:
        MeasurementParseError: If the file cannot be read or a record is
            malformed; the message names the file, record and field
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise MeasurementParseError(f"YAML failure: {e}",
                                    source=str(path)) from e

    measurements = parse_measurements(data, source=str(path))
    logger.info(f"Loaded {len(measurements)} measurements from {path}")
    return measurements


def save_measurements(measurements: Sequence[KinematicMeasurement],
                      path: Union[str, Path]) -> None:
    """Write measurements in the format read by :func:`load_measurements`."""
    data = {}
    for i, m in enumerate(measurements):
        qw, qx, qy, qz = quaternion_from_transform(m.camera_to_target)
        x, y, z = m.camera_to_target[:3, 3]
        data[i] = {
            'camera_joints': [float(v) for v in m.camera_chain_joints],
            'target_joints': [float(v) for v in m.target_chain_joints],
            'pose': {'x': float(x), 'y': float(y), 'z': float(z),
                     'qw': float(qw), 'qx': float(qx), 'qy': float(qy),
                     'qz': float(qz)},
        }
    with open(path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    logger.info(f"Saved {len(measurements)} measurements to {path}")


def split_measurements(
    measurements: Sequence[KinematicMeasurement],
    validation_fraction: float = 0.2,
    seed: int = None
) -> Tuple[List[KinematicMeasurement], List[KinematicMeasurement]]:
    """
    Randomly split measurements into calibration and validation sets.

    Args:
        measurements: Full measurement set
        validation_fraction: Share of measurements held out, in [0, 1)
        seed: Seed for a reproducible split

    Returns:
        Tuple of (calibration set, validation set), each in input order

    Raises:
        DataProcessingError: If the fraction is out of range or would
            leave the calibration set empty
    """
    if not 0.0 <= validation_fraction < 1.0:
        raise DataProcessingError(
            f"validation_fraction must be in [0, 1), got {validation_fraction}")

    n = len(measurements)
    n_validation = int(round(n * validation_fraction))
    if n and n_validation >= n:
        raise DataProcessingError(
            f"Holding out {n_validation} of {n} measurements leaves none "
            "for calibration")

    rng = np.random.default_rng(seed)
    held_out = set(rng.permutation(n)[:n_validation].tolist())
    calibration = [m for i, m in enumerate(measurements) if i not in held_out]
    validation = [m for i, m in enumerate(measurements) if i in held_out]
    return calibration, validation


def measurements_to_dataframe(
        measurements: Sequence[KinematicMeasurement]) -> pd.DataFrame:
    """One row per measurement: joints, position and Euler ZYX angles."""
    rows = []
    for m in measurements:
        row = {}
        for i, q in enumerate(m.camera_chain_joints):
            row[f'camera_joint_{i}'] = q
        for i, q in enumerate(m.target_chain_joints):
            row[f'target_joint_{i}'] = q
        row['x'], row['y'], row['z'] = m.camera_to_target[:3, 3]
        row['yaw'], row['pitch'], row['roll'] = euler_zyx(m.camera_to_target)
        rows.append(row)
    return pd.DataFrame(rows)
