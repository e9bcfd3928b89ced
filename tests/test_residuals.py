"""
Tests for residual builders and correspondence-based calibration.
"""

import numpy as np
import pytest

from kincalib.shared.base_calibration import optimize
from kincalib.shared.dh_chain import DHChain
from kincalib.shared.error_handling import ConfigurationError, ValidationError
from kincalib.shared.masking import CalibrationMask, MaskGroup
from kincalib.shared.problem import CalibrationProblem, SolverOptions
from kincalib.shared.residuals import (
    CorrespondenceResidual,
    Pose6DResidual,
    predict_camera_to_target,
)
from kincalib.shared.transforms import from_pose6d, invert, transform_point
from kincalib.shared.types import (
    CameraIntrinsics,
    Correspondence2D3D,
    Correspondence3D3D,
    KinematicMeasurement,
    KinematicObservation2D3D,
    KinematicObservation3D3D,
    Observation3D3D,
)

TARGET_POINTS = np.array([
    [0.0, 0.0, 0.0], [0.1, 0.0, 0.0], [0.0, 0.1, 0.0],
    [0.1, 0.1, 0.0], [0.05, 0.05, 0.02],
])


class TestPose6DResidual:
    """Test the pose residual."""

    def test_zero_at_measurement(self):
        T = from_pose6d([0.1, 0.2, 0.3], [0.3, -0.2, 0.1])
        res = Pose6DResidual().residual(KinematicMeasurement(T), T)
        np.testing.assert_allclose(res, np.zeros(6), atol=1e-12)

    def test_weights(self):
        measured = np.eye(4)
        predicted = from_pose6d([0.1, 0.0, 0.0], [0.0, 0.0, 0.2])
        res = Pose6DResidual(position_weight=2.0, orientation_weight=0.5
                             ).residual(KinematicMeasurement(measured),
                                        predicted)
        np.testing.assert_allclose(res, [0.2, 0.0, 0.0, 0.0, 0.0, -0.1],
                                   atol=1e-12)


class TestCorrespondenceResidual:
    """Test 2D and 3D correspondence residuals."""

    def test_3d_points(self):
        T = from_pose6d([0.0, 0.0, 1.0], [0.0, 0.0, 0.0])
        obs = Observation3D3D(correspondence_set=[
            Correspondence3D3D([0.1, 0.0, 1.0], [0.1, 0.0, 0.0])])
        builder = CorrespondenceResidual()
        assert builder.size(obs) == 3
        np.testing.assert_allclose(builder.residual(obs, T), np.zeros(3))

    def test_2d_projection(self):
        intr = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
        T = from_pose6d([0.0, 0.0, 2.0], [0.0, 0.0, 0.0])
        obs = KinematicObservation2D3D(correspondence_set=[
            Correspondence2D3D([345.0, 240.0], [0.1, 0.0, 0.0])])
        builder = CorrespondenceResidual(intr)
        assert builder.size(obs) == 2
        np.testing.assert_allclose(builder.residual(obs, T), [0.0, 0.0],
                                   atol=1e-9)

    def test_2d_without_intrinsics(self):
        obs = KinematicObservation2D3D(correspondence_set=[
            Correspondence2D3D([1.0, 1.0], [0.0, 0.0, 0.0])])
        with pytest.raises(ConfigurationError):
            CorrespondenceResidual().residual(obs, from_pose6d([0, 0, 1],
                                                               [0, 0, 0]))


class TestPrediction:
    """Test the camera-to-target prediction chain."""

    def test_static_observation_uses_mount_poses(self, positioner):
        camera_mount = from_pose6d([1.0, 0.0, 0.0], [0.0, 0.0, 0.3])
        target_mount = from_pose6d([0.0, 2.0, 0.0], [0.1, 0.0, 0.0])
        obs = Observation3D3D(to_camera_mount=camera_mount,
                              to_target_mount=target_mount)
        predicted = predict_camera_to_target(obs, DHChain(), positioner,
                                             np.eye(4), np.eye(4), np.eye(4))
        np.testing.assert_allclose(predicted,
                                   invert(camera_mount) @ target_mount,
                                   atol=1e-12)

    def test_kinematic_observation_uses_fk(self, positioner):
        q = np.array([0.3, -0.4])
        obs = KinematicMeasurement(target_chain_joints=q)
        cm2c = from_pose6d([0.0, 0.0, 1.0], [0.0, 0.5, 0.0])
        predicted = predict_camera_to_target(obs, DHChain(), positioner,
                                             cm2c, np.eye(4), np.eye(4))
        np.testing.assert_allclose(
            predicted, invert(cm2c) @ positioner.forward_kinematics(q),
            atol=1e-12)


def point_observations(target_chain, camera_mount_to_camera,
                       target_mount_to_target, n_samples, seed):
    rng = np.random.default_rng(seed)
    observations = []
    for _ in range(n_samples):
        q = rng.uniform(-np.pi / 2.0, np.pi / 2.0, target_chain.dof)
        camera_to_target = (invert(camera_mount_to_camera)
                            @ target_chain.forward_kinematics(q)
                            @ target_mount_to_target)
        observations.append(KinematicObservation3D3D(
            correspondence_set=[
                Correspondence3D3D(transform_point(camera_to_target, p), p)
                for p in TARGET_POINTS],
            target_chain_joints=q))
    return observations


class TestCorrespondenceCalibration:
    """Test calibration driven by 3D point correspondences."""

    def test_recovers_mounts_from_points(
            self, positioner, true_camera_mount_to_camera,
            true_target_mount_to_target, camera_mount_to_camera_guess,
            target_mount_to_target_guess):
        observations = point_observations(
            positioner, true_camera_mount_to_camera,
            true_target_mount_to_target, 20, seed=3)
        mask = CalibrationMask()
        mask.freeze_dh_rows(MaskGroup.TARGET_CHAIN_DH, 2, [0, 1])
        mask.freeze_transform(MaskGroup.CAMERA_BASE_TO_TARGET_BASE_POSITION,
                              MaskGroup.CAMERA_BASE_TO_TARGET_BASE_ROTATION)
        problem = CalibrationProblem(
            camera_chain=DHChain(),
            target_chain=positioner,
            observations=observations,
            camera_mount_to_camera_guess=camera_mount_to_camera_guess,
            target_mount_to_target_guess=target_mount_to_target_guess,
            mask=mask,
        )
        result = optimize(problem, compute_covariance=False)

        assert result.converged
        np.testing.assert_allclose(result.camera_mount_to_camera,
                                   true_camera_mount_to_camera, atol=1e-4)
        np.testing.assert_allclose(result.target_mount_to_target,
                                   true_target_mount_to_target, atol=1e-4)

    def test_2d_observations_need_intrinsics(self, positioner):
        obs = KinematicObservation2D3D(
            correspondence_set=[Correspondence2D3D([1.0, 1.0], [0, 0, 0])],
            target_chain_joints=[0.0, 0.0])
        problem = CalibrationProblem(camera_chain=DHChain(),
                                     target_chain=positioner,
                                     observations=[obs])
        with pytest.raises(ConfigurationError, match="intrinsics"):
            optimize(problem)

    def test_recovers_camera_mount_from_pixels(
            self, positioner, true_camera_mount_to_camera,
            true_target_mount_to_target, camera_mount_to_camera_guess,
            target_mount_to_target_guess):
        """Pin-hole reprojection calibration of both mount transforms."""
        intrinsics = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0,
                                      cy=240.0)
        rng = np.random.default_rng(4)
        observations = []
        for _ in range(20):
            q = rng.uniform(-np.pi / 2.0, np.pi / 2.0, positioner.dof)
            camera_to_target = (invert(true_camera_mount_to_camera)
                                @ positioner.forward_kinematics(q)
                                @ true_target_mount_to_target)
            observations.append(KinematicObservation2D3D(
                correspondence_set=[
                    Correspondence2D3D(
                        intrinsics.project(
                            transform_point(camera_to_target, p)), p)
                    for p in TARGET_POINTS],
                target_chain_joints=q))

        mask = CalibrationMask()
        mask.freeze_dh_rows(MaskGroup.TARGET_CHAIN_DH, 2, [0, 1])
        mask.freeze_transform(MaskGroup.CAMERA_BASE_TO_TARGET_BASE_POSITION,
                              MaskGroup.CAMERA_BASE_TO_TARGET_BASE_ROTATION)
        problem = CalibrationProblem(
            camera_chain=DHChain(),
            target_chain=positioner,
            observations=observations,
            camera_mount_to_camera_guess=camera_mount_to_camera_guess,
            target_mount_to_target_guess=target_mount_to_target_guess,
            mask=mask,
            intrinsics=intrinsics,
        )
        result = optimize(problem, compute_covariance=False)

        assert result.converged
        assert result.final_cost_per_obs < 1e-12
        assert result.final_cost_per_obs < result.initial_cost_per_obs
        np.testing.assert_allclose(result.camera_mount_to_camera,
                                   true_camera_mount_to_camera, atol=1e-5)
        np.testing.assert_allclose(result.target_mount_to_target,
                                   true_target_mount_to_target, atol=1e-5)

    def test_point_behind_camera(self, positioner,
                                 camera_mount_to_camera_guess):
        """A target point behind the camera names the correspondence."""
        intrinsics = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0,
                                      cy=240.0)
        obs = KinematicObservation2D3D(
            correspondence_set=[
                Correspondence2D3D([320.0, 240.0], [0.0, 0.0, 0.0]),
                Correspondence2D3D([320.0, 240.0], [0.0, 0.0, 0.0])],
            target_chain_joints=[0.0, 0.0])
        # Camera looking away from the positioner
        camera_mount_to_camera = from_pose6d([0.0, 0.0, 1.6],
                                             [0.0, -np.pi / 2.0, 0.0])
        problem = CalibrationProblem(
            camera_chain=DHChain(),
            target_chain=positioner,
            observations=[obs],
            camera_mount_to_camera_guess=camera_mount_to_camera,
            intrinsics=intrinsics,
        )
        with pytest.raises(ValidationError) as excinfo:
            optimize(problem, options=SolverOptions(method="trf"))
        assert excinfo.value.context["correspondence_index"] == 0
        assert excinfo.value.context["observation_index"] == 0
