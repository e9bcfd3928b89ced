"""
Centralized configuration management for kinematic calibration.

This module provides configuration loading, validation and conversion of
calibration settings into problem, mask and solver objects.
"""

import json
import logging
from dataclasses import dataclass, field as dataclass_field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import yaml

from .dh_chain import DHChain
from .error_handling import ConfigurationError
from .masking import TRANSFORM_GROUP_SIZE, CalibrationMask, MaskGroup
from .problem import CalibrationProblem, SolverOptions
from .transforms import pose_from_quaternion

logger = logging.getLogger(__name__)

POSE_KEYS = ("x", "y", "z", "qw", "qx", "qy", "qz")


@dataclass
class ConfigSchema:
    """Configuration schema definition for validation."""
    required_fields: List[str] = dataclass_field(default_factory=list)
    optional_fields: List[str] = dataclass_field(default_factory=list)
    field_types: Dict[str, Any] = dataclass_field(default_factory=dict)
    nested_schemas: Dict[str, 'ConfigSchema'] = dataclass_field(
        default_factory=dict
    )


POSE_SCHEMA = ConfigSchema(
    required_fields=list(POSE_KEYS),
    field_types={key: (int, float) for key in POSE_KEYS}
)


class ConfigManager:
    """Configuration manager for calibration setups."""

    CALIBRATION_SCHEMA = ConfigSchema(
        required_fields=['robot_name', 'initial_guesses'],
        optional_fields=['measurements_file', 'offset_stdev',
                         'offset_prior_weight', 'residual_weights', 'mask',
                         'solver', 'validation'],
        field_types={
            'robot_name': str,
            'measurements_file': str,
            'initial_guesses': dict,
            'offset_stdev': dict,
            'offset_prior_weight': (int, float),
            'residual_weights': dict,
            'mask': dict,
            'solver': dict,
            'validation': dict,
        },
        nested_schemas={
            'initial_guesses': ConfigSchema(
                required_fields=['camera_mount_to_camera',
                                 'target_mount_to_target'],
                optional_fields=['camera_base_to_target_base'],
                field_types={
                    'camera_mount_to_camera': dict,
                    'target_mount_to_target': dict,
                    'camera_base_to_target_base': dict,
                },
                nested_schemas={
                    'camera_mount_to_camera': POSE_SCHEMA,
                    'target_mount_to_target': POSE_SCHEMA,
                    'camera_base_to_target_base': POSE_SCHEMA,
                }
            ),
            'offset_stdev': ConfigSchema(
                optional_fields=['camera_chain', 'target_chain'],
                field_types={'camera_chain': (int, float),
                             'target_chain': (int, float)}
            ),
            'solver': ConfigSchema(
                optional_fields=['max_iterations', 'num_threads', 'method',
                                 'function_tolerance', 'parameter_tolerance',
                                 'gradient_tolerance', 'verbose'],
                field_types={'max_iterations': int, 'num_threads': int,
                             'method': str, 'verbose': int}
            ),
        }
    )

    @staticmethod
    def load_calibration_config(
        config_path: str,
        validate: bool = True
    ) -> Dict[str, Any]:
        """
        Load a calibration configuration with validation.

        Args:
            config_path: YAML or JSON configuration file
            validate: Check the configuration against CALIBRATION_SCHEMA

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigurationError: If config is invalid or not found
        """
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        config = ConfigManager._load_config_file(path)
        if validate:
            ConfigManager.validate_config(config)
        logger.debug(f"Loaded calibration config from {path}")
        return config

    @staticmethod
    def _load_config_file(config_path: Path) -> Dict[str, Any]:
        """Load configuration from file (YAML or JSON)."""
        suffix = config_path.suffix.lower()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if suffix in ['.yaml', '.yml']:
                    config = yaml.safe_load(f) or {}
                elif suffix == '.json':
                    config = json.load(f) or {}
                else:
                    raise ConfigurationError(
                        f"Unsupported config format: {suffix}")
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to parse config file {config_path}: {e}"
            ) from e

        if not isinstance(config, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a mapping")
        return config

    @staticmethod
    def validate_config(config: Dict[str, Any],
                        schema: Optional[ConfigSchema] = None,
                        path: str = "") -> None:
        """Validate configuration against a schema, recursing into
        nested schemas."""
        schema = schema or ConfigManager.CALIBRATION_SCHEMA

        missing_fields = [f"{path}{field}" for field in schema.required_fields
                          if field not in config]
        if missing_fields:
            raise ConfigurationError(
                f"Missing required fields: {missing_fields}"
            )

        for field, expected_type in schema.field_types.items():
            if field in config:
                value = config[field]
                # bool is an int subclass but never a valid number here
                if (not isinstance(value, expected_type)
                        or isinstance(value, bool)):
                    expected = (expected_type.__name__
                                if isinstance(expected_type, type)
                                else "number")
                    raise ConfigurationError(
                        f"Field '{path}{field}' should be {expected}, "
                        f"got {type(value).__name__}", group=path + field
                    )

        for field, nested in schema.nested_schemas.items():
            if isinstance(config.get(field), dict):
                ConfigManager.validate_config(config[field], nested,
                                              f"{path}{field}.")

    @staticmethod
    def create_default_config(output_path: str,
                              robot_name: str = "two_axis_positioner"
                              ) -> Dict[str, Any]:
        """Create a default calibration configuration file."""
        identity = {'x': 0.0, 'y': 0.0, 'z': 0.0,
                    'qw': 1.0, 'qx': 0.0, 'qy': 0.0, 'qz': 0.0}
        config = {
            'robot_name': robot_name,
            'initial_guesses': {
                'camera_mount_to_camera': dict(identity),
                'target_mount_to_target': dict(identity),
                'camera_base_to_target_base': dict(identity),
            },
            'offset_stdev': {'camera_chain': 0.001, 'target_chain': 0.005},
            'offset_prior_weight': 100.0,
            'residual_weights': {'position': 1.0, 'orientation': 1.0},
            'mask': {
                'target_chain_dh': {'rows': [-1]},
                'camera_base_to_target_base_position': [0, 1, 2],
                'camera_base_to_target_base_rotation': [0, 1, 2],
            },
            'solver': {'max_iterations': 500, 'num_threads': 4,
                       'method': 'lm'},
        }

        with open(output_path, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Created default config for {robot_name} at "
                    f"{output_path}")
        return config

    @staticmethod
    def merge_configs(
        base_config: Dict[str, Any],
        override_config: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge two configuration dictionaries."""
        merged = base_config.copy()

        for key, value in override_config.items():
            if (key in merged and isinstance(merged[key], dict)
                    and isinstance(value, dict)):
                merged[key] = ConfigManager.merge_configs(merged[key], value)
            else:
                merged[key] = value

        return merged

    @staticmethod
    def resolve_path(config: Dict[str, Any], key: str,
                     base_dir: str) -> Optional[Path]:
        """Path stored under ``key``, relative paths taken from base_dir."""
        if not config.get(key):
            return None
        path = Path(config[key])
        return path if path.is_absolute() else Path(base_dir) / path


def load_pose(node: Dict[str, Any]) -> np.ndarray:
    """
    Transform from a mapping with x, y, z, qw, qx, qy, qz entries.

    Raises:
        ConfigurationError: If an entry is missing or the quaternion is
            zero
    """
    if not isinstance(node, dict):
        raise ConfigurationError(f"Pose must be a mapping, got {node!r}")
    missing = [key for key in POSE_KEYS if key not in node]
    if missing:
        raise ConfigurationError(f"Pose is missing {missing}")
    try:
        return pose_from_quaternion(*(float(node[key]) for key in POSE_KEYS))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid pose {node}: {e}") from e


def solver_options_from_config(config: Dict[str, Any]) -> SolverOptions:
    """SolverOptions from the ``solver`` section (missing keys default)."""
    section = config.get('solver') or {}
    known = set(SolverOptions.__dataclass_fields__)
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigurationError(f"Unknown solver options: {unknown}",
                                 group="solver")
    options = SolverOptions(**section)
    # PyYAML reads "1e-10" (no decimal point) as a string
    for name in ('function_tolerance', 'parameter_tolerance',
                 'gradient_tolerance'):
        try:
            setattr(options, name, float(getattr(options, name)))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid solver {name}: {e}",
                                     group="solver") from e
    options.validate()
    return options


def mask_from_config(config: Dict[str, Any], camera_dof: int,
                     target_dof: int) -> CalibrationMask:
    """
    CalibrationMask from the ``mask`` section.

    Keys are mask group names (e.g. ``target_chain_dh``,
    ``camera_base_to_target_base_position``). Values are a list of frozen
    indices, ``all``, or for DH groups ``{rows: [...]}`` to freeze whole
    segments.

    Raises:
        ConfigurationError: For unknown groups or out-of-range indices
    """
    section = config.get('mask') or {}
    labels = {group.label: group for group in MaskGroup}
    sizes = {MaskGroup.CAMERA_CHAIN_DH: 4 * camera_dof,
             MaskGroup.TARGET_CHAIN_DH: 4 * target_dof}
    dofs = {MaskGroup.CAMERA_CHAIN_DH: camera_dof,
            MaskGroup.TARGET_CHAIN_DH: target_dof}

    mask = CalibrationMask()
    for label, value in section.items():
        if label not in labels:
            raise ConfigurationError(
                f"Unknown mask group '{label}', expected one of "
                f"{sorted(labels)}", group=label)
        group = labels[label]
        if value == 'all':
            mask[group] = range(sizes.get(group, TRANSFORM_GROUP_SIZE))
        elif isinstance(value, dict):
            if group not in dofs or set(value) != {'rows'}:
                raise ConfigurationError(
                    f"Mask group '{label}' only accepts an index list",
                    group=label)
            mask.freeze_dh_rows(group, dofs[group], value['rows'])
        elif isinstance(value, list):
            mask[group] = value
        else:
            raise ConfigurationError(
                f"Invalid mask for '{label}': {value!r}", group=label)

    mask.resolve(camera_dof, target_dof)
    return mask


def problem_from_config(
    config: Dict[str, Any],
    camera_chain: DHChain,
    target_chain: DHChain,
    observations: Sequence
) -> CalibrationProblem:
    """Assemble a CalibrationProblem from a validated configuration."""
    guesses = config['initial_guesses']
    stdev = config.get('offset_stdev') or {}
    weights = config.get('residual_weights') or {}

    base_guess = guesses.get('camera_base_to_target_base')
    return CalibrationProblem(
        camera_chain=camera_chain,
        target_chain=target_chain,
        observations=list(observations),
        camera_mount_to_camera_guess=load_pose(
            guesses['camera_mount_to_camera']),
        target_mount_to_target_guess=load_pose(
            guesses['target_mount_to_target']),
        camera_base_to_target_base_guess=(
            load_pose(base_guess) if base_guess else np.eye(4)),
        camera_chain_offset_stdev=float(stdev.get('camera_chain', 1.0e-3)),
        target_chain_offset_stdev=float(stdev.get('target_chain', 1.0e-3)),
        mask=mask_from_config(config, camera_chain.dof, target_chain.dof),
        position_weight=float(weights.get('position', 1.0)),
        orientation_weight=float(weights.get('orientation', 1.0)),
    )


def load_calibration_config(config_path: str) -> Dict[str, Any]:
    """Load calibration configuration (convenience function)."""
    return ConfigManager.load_calibration_config(config_path)
