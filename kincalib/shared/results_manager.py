"""
Results reporting, saving and plotting for kinematic calibration.

This module formats a calibration result as a console report, saves it in
YAML and CSV form and plots validation errors.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
import yaml

try:
    import matplotlib.pyplot as plt
    from matplotlib.gridspec import GridSpec
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

from .error_handling import DataProcessingError
from .problem import CalibrationResult
from .transforms import euler_zyx
from .validation import Stats

logger = logging.getLogger(__name__)


def _format_matrix(matrix: np.ndarray) -> str:
    matrix = np.atleast_2d(matrix)
    if matrix.size == 0:
        return "(empty)"
    return "\n".join(
        "|" + "|".join(f"{value:.4g}" for value in row) + "|"
        for row in matrix
    )


def format_calibration_result(result: CalibrationResult,
                              correlation_threshold: float = 0.5) -> str:
    """
    Console report of a calibration result.

    Costs are shown as the square root of the cost per observation.
    Rotations are followed by their Euler ZYX angles.
    """
    lines = [
        "",
        f"Calibration {'did' if result.converged else 'did not'} converge",
        f"Initial cost per observation: "
        f"{np.sqrt(result.initial_cost_per_obs):.6g}",
        f"Final cost per observation: "
        f"{np.sqrt(result.final_cost_per_obs):.6g}",
    ]
    for title, T in (
            ("Camera mount to camera", result.camera_mount_to_camera),
            ("Target mount to target", result.target_mount_to_target),
            ("Camera base to target base",
             result.camera_base_to_target_base)):
        lines += ["", title, _format_matrix(T),
                  "Euler ZYX: " + _format_matrix(euler_zyx(T))]

    if result.camera_chain_dh_offsets.size:
        lines += ["", "Camera chain DH parameter offsets",
                  _format_matrix(result.camera_chain_dh_offsets)]
    lines += ["", "Target chain DH parameter offsets",
              _format_matrix(result.target_chain_dh_offsets)]

    if result.covariance is not None:
        lines += ["", result.covariance.print_correlation_coeff_above_threshold(
            correlation_threshold).rstrip("\n")]
    return "\n".join(lines) + "\n"


def result_to_dict(result: CalibrationResult,
                   stats: Optional[Stats] = None) -> Dict[str, Any]:
    """Serializable dictionary of a calibration result."""
    data = {
        'converged': bool(result.converged),
        'initial_cost_per_obs': float(result.initial_cost_per_obs),
        'final_cost_per_obs': float(result.final_cost_per_obs),
        'n_function_evals': int(result.n_function_evals),
        'message': result.message,
        'camera_mount_to_camera': result.camera_mount_to_camera.tolist(),
        'target_mount_to_target': result.target_mount_to_target.tolist(),
        'camera_base_to_target_base':
            result.camera_base_to_target_base.tolist(),
        'camera_chain_dh_offsets': result.camera_chain_dh_offsets.tolist(),
        'target_chain_dh_offsets': result.target_chain_dh_offsets.tolist(),
        'parameter_names': list(result.parameter_names),
    }
    if result.covariance is not None:
        data['standard_deviations'] = dict(zip(
            result.covariance.names,
            result.covariance.standard_deviations.tolist()))
    if stats is not None:
        data['validation'] = {
            'pos_mean': stats.pos_mean, 'pos_stdev': stats.pos_stdev,
            'rot_mean': stats.rot_mean, 'rot_stdev': stats.rot_stdev,
        }
    return data


class ResultsManager:
    """
    Saving and plotting of calibration results.

    Args:
        robot_name: Name of the setup, used for file naming and titles
        result: Calibration result to save or plot
        stats: Optional validation statistics saved with the result
    """

    COLORS = {
        'position': '#1f77b4',
        'orientation': '#ff7f0e',
        'mean': '#d62728',
    }

    def __init__(self, robot_name: str = "robot",
                 result: Optional[CalibrationResult] = None,
                 stats: Optional[Stats] = None):
        self.robot_name = robot_name
        self.result = result
        self.stats = stats

        if not HAS_MATPLOTLIB:
            logger.warning("Matplotlib not available. Plotting disabled.")

    def save_results(
        self,
        output_dir: str = "results",
        file_prefix: Optional[str] = None,
        save_formats: Sequence[str] = ('yaml', 'csv')
    ) -> Dict[str, str]:
        """
        Save the result in the requested formats.

        The YAML file holds the full result. The CSV file holds one row per
        free parameter with its standard deviation when the covariance is
        available.

        Returns:
            Dictionary mapping format to file path

        Raises:
            DataProcessingError: If there is no result or writing fails
        """
        if self.result is None:
            raise DataProcessingError("No calibration result to save")

        output_path = Path(output_dir)
        if file_prefix is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            file_prefix = f"{self.robot_name}_calibration_{timestamp}"

        saved_files = {}
        try:
            output_path.mkdir(parents=True, exist_ok=True)
            for fmt in save_formats:
                if fmt.lower() == 'yaml':
                    file_path = output_path / f"{file_prefix}.yaml"
                    self._save_yaml(file_path)
                    saved_files['yaml'] = str(file_path)
                elif fmt.lower() == 'csv':
                    file_path = output_path / f"{file_prefix}.csv"
                    self._save_csv(file_path)
                    saved_files['csv'] = str(file_path)
                else:
                    raise DataProcessingError(
                        f"Unsupported save format: {fmt}")
        except OSError as e:
            raise DataProcessingError(f"Failed to save results: {e}") from e

        logger.info(f"Results saved to {output_dir}")
        for fmt, path in saved_files.items():
            logger.info(f"  {fmt.upper()}: {path}")
        return saved_files

    def parameter_table(self) -> pd.DataFrame:
        """Free parameters with their standard deviation, if known."""
        names = list(self.result.parameter_names)
        table = pd.DataFrame({'parameter': names})
        if self.result.covariance is not None:
            table['stdev'] = self.result.covariance.standard_deviations
        return table

    def plot_validation_errors(
        self,
        position_errors: np.ndarray,
        orientation_errors: np.ndarray,
        title: str = "Validation Errors",
        show: bool = True
    ):
        """
        Plot per-measurement position and orientation errors.

        Returns:
            The matplotlib figure, or None when matplotlib is missing
        """
        if not HAS_MATPLOTLIB:
            logger.warning("Cannot plot: matplotlib not available")
            return None

        fig = plt.figure(figsize=(12, 8))
        gs = GridSpec(2, 1, figure=fig, hspace=0.3)
        for row, (errors, key, ylabel) in enumerate((
                (position_errors, 'position', 'Position error (m)'),
                (orientation_errors, 'orientation',
                 'Orientation error (rad)'))):
            ax = fig.add_subplot(gs[row, 0])
            self._plot_errors(ax, np.asarray(errors), key, ylabel)

        fig.suptitle(f"{self.robot_name.upper()} {title}", fontsize=16)
        if show:
            plt.show()
        return fig

    def _plot_errors(self, ax, errors: np.ndarray, key: str, ylabel: str):
        ax.bar(np.arange(len(errors)), errors, color=self.COLORS[key],
               alpha=0.7)
        if len(errors):
            ax.axhline(np.mean(errors), color=self.COLORS['mean'],
                       linestyle='--', label='Mean')
            ax.legend()
        ax.set_xlabel('Measurement Index')
        ax.set_ylabel(ylabel)
        ax.grid(True, alpha=0.3)

    def _save_yaml(self, file_path: Path):
        data = result_to_dict(self.result, self.stats)
        data['robot_name'] = self.robot_name
        data['timestamp'] = datetime.now().isoformat()
        with open(file_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, indent=2,
                      sort_keys=False)

    def _save_csv(self, file_path: Path):
        self.parameter_table().to_csv(file_path, index=False)


def save_results(result: CalibrationResult, output_dir: str = "results",
                 robot_name: str = "robot",
                 stats: Optional[Stats] = None, **kwargs) -> Dict[str, str]:
    """Save results (convenience function)."""
    manager = ResultsManager(robot_name, result, stats)
    return manager.save_results(output_dir, **kwargs)
