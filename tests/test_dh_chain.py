"""
Tests for the DH kinematic chain model.
"""

import numpy as np
import pytest

from kincalib.shared.dh_chain import DHChain, DHJointType, DHTransform
from kincalib.shared.error_handling import DimensionMismatchError
from kincalib.shared.transforms import rotation_x, translation_matrix


class TestDHTransform:
    """Test single DH segments."""

    def test_revolute_adds_joint_to_theta(self):
        """A revolute joint rotates about the segment z axis."""
        t = DHTransform([0.0, 0.0, 1.0, 0.0], DHJointType.REVOLUTE, "j")
        T = t.create_relative_transform(np.pi / 2.0)
        np.testing.assert_allclose(T[:3, 3], [0.0, 1.0, 0.0], atol=1e-12)

    def test_prismatic_adds_joint_to_d(self):
        """A prismatic joint translates along the segment z axis."""
        t = DHTransform([0.1, 0.0, 0.0, 0.0], DHJointType.PRISMATIC, "p")
        T = t.create_relative_transform(0.25)
        np.testing.assert_allclose(T[:3, 3], [0.0, 0.0, 0.35])
        np.testing.assert_allclose(T[:3, :3], np.eye(3))

    def test_parameter_order(self):
        """Segment transform is Tz(d) Rz(theta) Tx(r) Rx(alpha)."""
        d, theta, r, alpha = 0.2, 0.3, 0.4, 0.5
        t = DHTransform([d, theta, r, alpha])
        c, s = np.cos(theta), np.sin(theta)
        rz = np.eye(4)
        rz[:2, :2] = [[c, -s], [s, c]]
        expected = (translation_matrix(z=d) @ rz @ translation_matrix(x=r)
                    @ rotation_x(alpha))
        np.testing.assert_allclose(t.create_relative_transform(0.0), expected)

    def test_params_are_read_only(self):
        t = DHTransform([0.0, 0.0, 0.0, 0.0])
        with pytest.raises(ValueError):
            t.params[0] = 1.0

    def test_wrong_parameter_count(self):
        with pytest.raises(DimensionMismatchError):
            DHTransform([0.0, 0.0, 0.0])

    def test_live_index(self):
        assert DHJointType.PRISMATIC.live_index == 0
        assert DHJointType.REVOLUTE.live_index == 1


class TestDHChain:
    """Test forward kinematics and offsets of DH chains."""

    def test_empty_chain_returns_base_offset(self):
        """A chain without joints reduces to its base offset."""
        base = translation_matrix(1.0, 2.0, 3.0)
        chain = DHChain([], base)
        assert chain.dof == 0
        np.testing.assert_allclose(chain.forward_kinematics([]), base)

    def test_empty_chain_result_is_a_copy(self):
        chain = DHChain()
        T = chain.forward_kinematics([])
        T[0, 3] = 5.0
        np.testing.assert_allclose(chain.forward_kinematics([]), np.eye(4))

    def test_forward_kinematics_is_deterministic(self, positioner):
        q = [0.3, -1.2]
        np.testing.assert_array_equal(positioner.forward_kinematics(q),
                                      positioner.forward_kinematics(q))

    def test_zero_offsets_leave_fk_unchanged(self, positioner):
        """Adding zero offsets gives the same forward kinematics."""
        shifted = positioner.with_offsets(np.zeros((2, 4)))
        for q in ([0.0, 0.0], [0.5, -0.7], [3.0, 6.0]):
            np.testing.assert_allclose(shifted.forward_kinematics(q),
                                       positioner.forward_kinematics(q))

    def test_offsets_are_added(self, positioner):
        offsets = np.arange(8, dtype=float).reshape(2, 4) * 0.01
        shifted = positioner.with_offsets(offsets)
        np.testing.assert_allclose(shifted.dh_parameters(),
                                   positioner.dh_parameters() + offsets)
        np.testing.assert_array_equal(shifted.base_offset,
                                      positioner.base_offset)

    def test_offsets_shape_mismatch(self, positioner):
        with pytest.raises(DimensionMismatchError):
            positioner.with_offsets(np.zeros((3, 4)))

    def test_joint_count_mismatch(self, positioner):
        """FK with the wrong number of joints is rejected."""
        with pytest.raises(DimensionMismatchError):
            positioner.forward_kinematics([0.0])
        with pytest.raises(DimensionMismatchError):
            positioner.forward_kinematics([0.0, 0.0, 0.0])

    def test_chain_transforms_end_at_fk(self, positioner):
        q = [0.4, 0.9]
        frames = positioner.chain_transforms(q)
        assert len(frames) == 2
        np.testing.assert_allclose(frames[-1],
                                   positioner.forward_kinematics(q))

    def test_no_clamping_outside_limits(self, positioner):
        """Joint values beyond the limits are used as given."""
        inside = positioner.forward_kinematics([np.pi - 0.1, 0.0])
        outside = positioner.forward_kinematics([np.pi + 0.1, 0.0])
        assert not np.allclose(inside, outside)
        assert positioner.joints_out_of_limits([np.pi + 0.1, 0.0]) == ["j1"]
        assert positioner.joints_out_of_limits([0.0, 0.0]) == []

    def test_fk_is_rigid(self, positioner):
        T = positioner.forward_kinematics([0.7, -2.1])
        np.testing.assert_allclose(T[:3, :3] @ T[:3, :3].T, np.eye(3),
                                   atol=1e-12)
        np.testing.assert_allclose(T[3], [0.0, 0.0, 0.0, 1.0])


class TestTwoAxisPositioner:
    """Test the nominal positioner model."""

    def test_nominal_parameters(self, positioner):
        assert positioner.dof == 2
        assert positioner.joint_names() == ["j1", "j2"]
        np.testing.assert_allclose(positioner.dh_parameters(), [
            [0.0, 0.0, 0.0, -np.pi / 2.0],
            [-0.475, -np.pi / 2.0, 0.0, 0.0],
        ])
        j1, j2 = positioner.transforms
        assert (j1.min, j1.max) == (-np.pi, np.pi)
        assert (j2.min, j2.max) == (-2.0 * np.pi, 2.0 * np.pi)

    def test_base_offset(self, positioner):
        np.testing.assert_allclose(positioner.base_offset[:3, 3],
                                   [2.2, 0.0, 1.6])
        np.testing.assert_allclose(positioner.base_offset[:3, :3],
                                   rotation_x(np.pi / 2.0)[:3, :3])

    def test_home_pose(self, positioner):
        """At zero joints the flange sits 0.475 m below the j1 frame."""
        T = positioner.forward_kinematics([0.0, 0.0])
        # j1 frame: base, then Rx(-pi/2); j2 shifts -0.475 along its z axis
        expected = positioner.base_offset @ rotation_x(-np.pi / 2.0)
        np.testing.assert_allclose(T[:3, 3],
                                   expected[:3, 3] - 0.475 * expected[:3, 2],
                                   atol=1e-12)
