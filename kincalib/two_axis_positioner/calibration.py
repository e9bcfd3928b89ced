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
Two-axis positioner kinematic calibration.

This script calibrates a static camera observing a target carried by a
two-axis positioner. It first estimates the camera and target mounting
transforms together with the positioner DH corrections, then repeats the
calibration with the nominal positioner model and reports how much the DH
corrections reduce the pose errors.
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from kincalib.shared.base_calibration import calibrated_chains
from kincalib.shared.config_manager import ConfigManager, load_pose
from kincalib.shared.data_processing import (
    load_measurements,
    split_measurements,
)
from kincalib.shared.error_handling import (
    ConfigurationError,
    ErrorContext,
    KinematicCalibrationError,
    setup_logging,
)
from kincalib.shared.results_manager import (
    ResultsManager,
    format_calibration_result,
)
from kincalib.shared.transforms import from_pose6d
from kincalib.shared.validation import (
    compare_to_measurements,
    format_percent_diff,
    measurement_errors,
)
from kincalib.two_axis_positioner.utils.positioner_tools import (
    DEFAULT_CONFIG_PATH,
    TwoAxisPositionerCalibration,
    generate_sample_measurements,
)

logger = logging.getLogger(__name__)


def sample_measurements(config, n_samples=50, seed=0):
    """Synthetic measurements around the configured initial guesses."""
    guesses = config['initial_guesses']
    camera_mount_to_camera = (load_pose(guesses['camera_mount_to_camera'])
                              @ from_pose6d([0.01, -0.02, 0.015],
                                            [0.01, 0.02, -0.01]))
    target_mount_to_target = (load_pose(guesses['target_mount_to_target'])
                              @ from_pose6d([0.005, 0.01, -0.01],
                                            [-0.02, 0.01, 0.015]))
    dh_offsets = np.zeros((2, 4))
    dh_offsets[0, 2] = 0.003
    dh_offsets[0, 3] = 0.002
    return generate_sample_measurements(
        n_samples, camera_mount_to_camera, target_mount_to_target,
        target_chain_dh_offsets=dh_offsets, position_noise=1.0e-4,
        orientation_noise=1.0e-4, seed=seed)


def config_overrides(max_iterations=None, num_threads=None,
                     offset_prior_weight=None):
    """Configuration entries set on the command line, None if unset."""
    overrides = {}
    solver = {}
    if max_iterations is not None:
        solver['max_iterations'] = max_iterations
    if num_threads is not None:
        solver['num_threads'] = num_threads
    if solver:
        overrides['solver'] = solver
    if offset_prior_weight is not None:
        overrides['offset_prior_weight'] = offset_prior_weight
    return overrides


def main(config_file=str(DEFAULT_CONFIG_PATH), measurements_file=None,
         data_type="experimental", output_dir=None, visualization=False,
         overrides=None):
    """
    Main function for two-axis positioner calibration.

    Args:
        config_file: Calibration configuration file
        measurements_file: Measurement file, overrides the config entry
        data_type: 'experimental' to load measurements or 'sample' to
            generate synthetic ones
        output_dir: Directory for saved results, nothing saved if None
        visualization: Plot validation errors
        overrides: Nested configuration entries replacing those loaded
            from config_file

    Returns:
        Tuple of (optimal DH stats, static DH stats, percent difference)
    """
    config = ConfigManager.load_calibration_config(config_file)
    if overrides:
        config = ConfigManager.merge_configs(config, overrides)
        ConfigManager.validate_config(config)

    with ErrorContext("measurement loading"):
        if data_type == "sample":
            measurements = sample_measurements(config)
        elif data_type == "experimental":
            path = (Path(measurements_file) if measurements_file
                    else ConfigManager.resolve_path(
                        config, 'measurements_file',
                        str(Path(config_file).parent)))
            if path is None:
                raise ConfigurationError(
                    "No measurements file given; pass --measurements, set "
                    "measurements_file in the config or use --data-type "
                    "sample", group="measurements_file")
            measurements = load_measurements(path)
        else:
            raise ValueError("data_type must be 'experimental' or 'sample'")

    validation_config = config.get('validation') or {}
    fraction = float(validation_config.get('fraction', 0.0))
    calibration_set, validation_set = split_measurements(
        measurements, fraction, validation_config.get('seed'))
    if not validation_set:
        validation_set = calibration_set
    logger.info(f"{len(calibration_set)} calibration and "
                f"{len(validation_set)} validation measurements")

    calibration = TwoAxisPositionerCalibration(calibration_set,
                                               config=config)

    print("Starting kinematic calibration optimization...")
    with ErrorContext("calibration with DH corrections"):
        result = calibration.solve()
    print(format_calibration_result(result))

    stats_optimal_dh = compare_to_measurements(
        calibration.camera_chain, calibration.target_chain, result,
        validation_set)
    print("DH calibration validation:")
    print(stats_optimal_dh)

    static = calibration.static_target_chain()
    with ErrorContext("calibration with static DH parameters"):
        static_result = static.solve()
    print(format_calibration_result(static_result))

    stats_static_dh = compare_to_measurements(
        static.camera_chain, static.target_chain, static_result,
        validation_set)
    print("Calibration validation - static DH parameters:")
    print(stats_static_dh)

    percent = stats_static_dh.percent_diff(stats_optimal_dh)
    print("Percent improvement: calibration vs. nominal kinematic model")
    print(format_percent_diff(percent))

    if output_dir or visualization:
        manager = ResultsManager(config['robot_name'], result,
                                 stats_optimal_dh)
        if output_dir:
            manager.save_results(output_dir)
        if visualization:
            camera_chain, target_chain = calibrated_chains(
                calibration.camera_chain, calibration.target_chain, result)
            manager.plot_validation_errors(*measurement_errors(
                camera_chain, target_chain, result, validation_set))

    return stats_optimal_dh, stats_static_dh, percent


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Two-axis positioner kinematic calibration"
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Calibration configuration file"
    )
    parser.add_argument(
        "--measurements",
        help="Pose measurement file (overrides the config entry)"
    )
    parser.add_argument(
        "--data-type",
        choices=["experimental", "sample"],
        default="experimental",
        help="Type of data to use for calibration"
    )
    parser.add_argument(
        "--output-dir",
        help="Save the calibration result to this directory"
    )
    parser.add_argument(
        "--visualization",
        action="store_true",
        help="Show validation error plots"
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        help="Override solver.max_iterations"
    )
    parser.add_argument(
        "--num-threads",
        type=int,
        help="Override solver.num_threads"
    )
    parser.add_argument(
        "--offset-prior-weight",
        type=float,
        help="Override offset_prior_weight"
    )
    parser.add_argument(
        "--create-config",
        metavar="PATH",
        help="Write a default configuration file to PATH and exit"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()
    setup_logging(args.log_level)

    if args.create_config:
        ConfigManager.create_default_config(args.create_config)
        print(f"Default configuration written to {args.create_config}")
        sys.exit(0)

    try:
        main(config_file=args.config,
             measurements_file=args.measurements,
             data_type=args.data_type,
             output_dir=args.output_dir,
             visualization=args.visualization,
             overrides=config_overrides(args.max_iterations,
                                        args.num_threads,
                                        args.offset_prior_weight))
    except KinematicCalibrationError as e:
        print(f"\nError during calibration: {e}")
        sys.exit(1)
