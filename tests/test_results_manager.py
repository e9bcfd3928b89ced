"""
Tests for result reporting, saving and plotting.
"""

import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import yaml

from kincalib.shared import results_manager
from kincalib.shared.covariance import CovarianceResult
from kincalib.shared.error_handling import DataProcessingError
from kincalib.shared.problem import CalibrationResult
from kincalib.shared.results_manager import (
    ResultsManager,
    format_calibration_result,
    result_to_dict,
    save_results,
)
from kincalib.shared.transforms import from_pose6d
from kincalib.shared.validation import Stats


@pytest.fixture
def result():
    offsets = np.zeros((2, 4))
    offsets[0, 2] = 0.003
    names = ["target_chain_j1_r", "camera_mount_to_camera_x"]
    return CalibrationResult(
        converged=True,
        initial_cost_per_obs=4.0e-4,
        final_cost_per_obs=1.0e-8,
        camera_mount_to_camera=from_pose6d([0.0, 0.0, 1.6],
                                           [0.0, np.pi / 2.0, 0.0]),
        target_chain_dh_offsets=offsets,
        covariance=CovarianceResult(names, [[1.0e-6, 0.9e-6],
                                            [0.9e-6, 1.0e-6]]),
        parameter_names=names,
        n_function_evals=12,
        message="converged",
    )


class TestFormatCalibrationResult:
    """Test the console report."""

    def test_report_sections(self, result):
        report = format_calibration_result(result)
        assert "Calibration did converge" in report
        # Costs are reported as their square root
        assert "Initial cost per observation: 0.02" in report
        assert "Final cost per observation: 0.0001" in report
        assert report.count("Euler ZYX: ") == 3
        assert "Camera mount to camera" in report
        assert "Target chain DH parameter offsets" in report
        assert "Camera chain DH parameter offsets" not in report
        assert "target_chain_j1_r - camera_mount_to_camera_x: 0.9000" in report

    def test_not_converged(self):
        report = format_calibration_result(
            CalibrationResult(target_chain_dh_offsets=np.zeros((2, 4))))
        assert "Calibration did not converge" in report
        assert "Correlation" not in report


class TestSaveResults:
    """Test saving results to disk."""

    def test_result_to_dict(self, result):
        data = result_to_dict(result, Stats(pos_mean=0.001))
        assert data['converged'] is True
        assert data['target_chain_dh_offsets'][0][2] == 0.003
        assert data['standard_deviations']['target_chain_j1_r'] == \
            pytest.approx(1.0e-3)
        assert data['validation']['pos_mean'] == 0.001

    def test_save_yaml_and_csv(self, result):
        with tempfile.TemporaryDirectory() as tmp:
            saved = save_results(result, tmp, "positioner",
                                 file_prefix="run")
            assert set(saved) == {'yaml', 'csv'}
            with open(saved['yaml']) as f:
                data = yaml.safe_load(f)
            table = pd.read_csv(saved['csv'])

        assert Path(saved['yaml']).name == "run.yaml"
        assert data['robot_name'] == "positioner"
        np.testing.assert_allclose(data['camera_mount_to_camera'],
                                   result.camera_mount_to_camera)
        assert table['parameter'].tolist() == result.parameter_names
        np.testing.assert_allclose(table['stdev'], [1.0e-3, 1.0e-3])

    def test_default_prefix(self, result):
        with tempfile.TemporaryDirectory() as tmp:
            saved = ResultsManager("cell", result).save_results(
                tmp, save_formats=('yaml',))
        assert Path(saved['yaml']).name.startswith("cell_calibration_")

    def test_no_result(self):
        with pytest.raises(DataProcessingError):
            ResultsManager("cell").save_results()

    def test_unsupported_format(self, result):
        with tempfile.TemporaryDirectory() as tmp:
            with pytest.raises(DataProcessingError, match="xlsx"):
                ResultsManager("cell", result).save_results(
                    tmp, save_formats=('xlsx',))

    def test_table_without_covariance(self, result):
        result.covariance = None
        table = ResultsManager("cell", result).parameter_table()
        assert list(table.columns) == ['parameter']


class TestPlotting:
    """Test validation error plots."""

    def test_plot_validation_errors(self, result):
        matplotlib = pytest.importorskip("matplotlib")
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        fig = ResultsManager("cell", result).plot_validation_errors(
            [0.001, 0.002, 0.0015], [0.01, 0.02, 0.005], show=False)
        try:
            assert len(fig.axes) == 2
            assert fig.axes[0].get_ylabel() == 'Position error (m)'
        finally:
            plt.close(fig)

    def test_plot_without_matplotlib(self, result, monkeypatch):
        monkeypatch.setattr(results_manager, "HAS_MATPLOTLIB", False)
        manager = ResultsManager("cell", result)
        assert manager.plot_validation_errors([0.1], [0.1]) is None
