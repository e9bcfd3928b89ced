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
Base calibration class for dual kinematic chain calibration.

This module provides the BaseCalibration class which turns a
:class:`CalibrationProblem` into a nonlinear least-squares problem, solves
it with ``scipy.optimize.least_squares`` and packages the calibrated
transforms, DH offsets and parameter covariance.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import numpy as np
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

from .covariance import CovarianceResult, compute_covariance
from .dh_chain import DH_PARAMETER_NAMES, DHChain
from .error_handling import (
    ConfigurationError,
    CovarianceError,
    OptimizationError,
    ValidationError,
    handle_calibration_errors,
    validate_numeric_range,
)
from .masking import MaskGroup, ParameterMask
from .problem import CalibrationProblem, CalibrationResult, SolverOptions
from .residuals import (
    CorrespondenceResidual,
    Pose6DResidual,
    predict_camera_to_target,
)
from .transforms import to_pose6d
from .types import KinematicMeasurement

logger = logging.getLogger(__name__)

# (position group, rotation group, problem guess attribute, result attribute)
TRANSFORM_GROUPS = (
    (MaskGroup.CAMERA_MOUNT_TO_CAMERA_POSITION,
     MaskGroup.CAMERA_MOUNT_TO_CAMERA_ROTATION,
     "camera_mount_to_camera_guess", "camera_mount_to_camera"),
    (MaskGroup.TARGET_MOUNT_TO_TARGET_POSITION,
     MaskGroup.TARGET_MOUNT_TO_TARGET_ROTATION,
     "target_mount_to_target_guess", "target_mount_to_target"),
    (MaskGroup.CAMERA_BASE_TO_TARGET_BASE_POSITION,
     MaskGroup.CAMERA_BASE_TO_TARGET_BASE_ROTATION,
     "camera_base_to_target_base_guess", "camera_base_to_target_base"),
)


class BaseCalibration:
    """
    Least-squares calibration of a camera chain against a target chain.

    The unknowns are, in order, the DH offsets of the camera chain and of
    the target chain followed by the camera-mount-to-camera,
    target-mount-to-target and camera-base-to-target-base transforms, each
    split into a position and a rotation-vector group. Masked components
    are removed from the optimization vector and keep their initial value.

    The residual vector holds one block per observation followed by a
    zero-mean prior on every free DH offset, scaled by
    ``1 / (stdev * offset_prior_weight)``.

    Example:
        >>> calibrator = BaseCalibration(problem)
        >>> result = calibrator.solve(offset_prior_weight=100.0)
        >>> print(result.converged, result.final_cost_per_obs)

    Attributes:
        STATUS (str): "NOT CALIBRATED" or "CALIBRATED"
        LM_result: Raw result of scipy.optimize.least_squares
        var_init (ndarray): Initial free-parameter vector
        var_ (ndarray): Calibrated free-parameter vector
        param_names (list): Names of the free parameters
        evaluation_metrics (dict): Solution quality metrics
    """

    FD_STEP = 1e-6
    # Relative singular value below which a finite-difference Jacobian
    # direction counts as unobservable
    COVARIANCE_RCOND = 1e-7

    def __init__(self, problem: CalibrationProblem):
        self.problem = problem
        self.STATUS = "NOT CALIBRATED"
        self.offset_prior_weight = 1.0
        self.options = SolverOptions()
        self.LM_result = None
        self.var_ = None
        self.evaluation_metrics: Dict[str, Any] = {}

    def initialize(self, offset_prior_weight: float = 1.0,
                   options: Optional[SolverOptions] = None):
        """Validate the problem and lay out the free-parameter vector.

        Raises:
            ConfigurationError: If the problem or the options are
                inconsistent
            DimensionMismatchError: If a joint vector does not match its
                chain
        """
        validate_numeric_range(offset_prior_weight, 0.0,
                               name="offset_prior_weight",
                               exclusive_min=True)
        self.offset_prior_weight = float(offset_prior_weight)
        self.options = options or SolverOptions()
        self.options.validate()
        self.problem.validate()

        problem = self.problem
        self._camera_chain = problem.camera_chain
        self._target_chain = problem.target_chain
        self._masks: Dict[MaskGroup, ParameterMask] = problem.mask.resolve(
            self._camera_chain.dof, self._target_chain.dof)

        # Private copies of the initial state, one full vector per group
        self._guesses = {}
        self._initial: Dict[MaskGroup, np.ndarray] = {
            MaskGroup.CAMERA_CHAIN_DH: np.zeros(4 * self._camera_chain.dof),
            MaskGroup.TARGET_CHAIN_DH: np.zeros(4 * self._target_chain.dof),
        }
        for pos_group, rot_group, guess_attr, _ in TRANSFORM_GROUPS:
            guess = np.array(getattr(problem, guess_attr), dtype=float)
            self._guesses[guess_attr] = guess
            translation, rotvec = to_pose6d(guess)
            self._initial[pos_group] = translation
            self._initial[rot_group] = rotvec

        self._slices = {}
        start = 0
        for group in MaskGroup:
            n_free = self._masks[group].n_free
            self._slices[group] = slice(start, start + n_free)
            start += n_free
        self.nvars = start

        self.var_init = np.concatenate([
            self._masks[group].project(self._initial[group])
            for group in MaskGroup
        ])
        self.param_names = self._parameter_names()

        self._prior_scale = np.concatenate([
            np.full(self._masks[MaskGroup.CAMERA_CHAIN_DH].n_free,
                    1.0 / (problem.camera_chain_offset_stdev
                           * self.offset_prior_weight)),
            np.full(self._masks[MaskGroup.TARGET_CHAIN_DH].n_free,
                    1.0 / (problem.target_chain_offset_stdev
                           * self.offset_prior_weight)),
        ])

        self._pose_residual = Pose6DResidual(problem.position_weight,
                                             problem.orientation_weight)
        self._correspondence_residual = CorrespondenceResidual(
            problem.intrinsics)
        self._n_residuals = sum(
            self._builder(obs).size(obs) for obs in problem.observations
        ) + self._prior_scale.size

        if (self.options.method == "lm" and self.nvars
                and self._n_residuals < self.nvars):
            raise ConfigurationError(
                f"Method 'lm' needs at least as many residuals as free "
                f"parameters ({self._n_residuals} < {self.nvars}); "
                "mask more parameters or add observations",
                group="solver"
            )

    def _parameter_names(self) -> List[str]:
        names = []
        for group, chain, prefix in (
                (MaskGroup.CAMERA_CHAIN_DH, self._camera_chain,
                 "camera_chain"),
                (MaskGroup.TARGET_CHAIN_DH, self._target_chain,
                 "target_chain")):
            full = [f"{prefix}_{joint or f'j{i}'}_{param}"
                    for i, joint in enumerate(chain.joint_names())
                    for param in DH_PARAMETER_NAMES]
            names.extend(full[i] for i in self._masks[group].free_indices)

        for pos_group, rot_group, _, label in TRANSFORM_GROUPS:
            for group, components in ((pos_group, "xyz"),
                                      (rot_group, ("rx", "ry", "rz"))):
                full = [f"{label}_{c}" for c in components]
                names.extend(full[i] for i in self._masks[group].free_indices)
        return names

    def unpack(self, var: np.ndarray) -> Dict[MaskGroup, np.ndarray]:
        """Full vector of every group for a free-parameter vector."""
        return {
            group: self._masks[group].embed(var[self._slices[group]],
                                            self._initial[group])
            for group in MaskGroup
        }

    def _transform(self, full: Dict[MaskGroup, np.ndarray], pos_group,
                   rot_group, guess_attr) -> np.ndarray:
        # Frozen parts are taken from the guess itself
        T = self._guesses[guess_attr].copy()
        if self._masks[pos_group].n_free:
            T[:3, 3] = full[pos_group]
        if self._masks[rot_group].n_free:
            T[:3, :3] = Rotation.from_rotvec(full[rot_group]).as_matrix()
        return T

    def estimates(self, var: np.ndarray) -> Dict[str, Any]:
        """Calibrated chains, offsets and transforms for ``var``."""
        full = self.unpack(var)
        camera_offsets = full[MaskGroup.CAMERA_CHAIN_DH].reshape(-1, 4)
        target_offsets = full[MaskGroup.TARGET_CHAIN_DH].reshape(-1, 4)
        estimates = {
            "camera_chain_dh_offsets": camera_offsets,
            "target_chain_dh_offsets": target_offsets,
            "camera_chain": self._camera_chain.with_offsets(camera_offsets),
            "target_chain": self._target_chain.with_offsets(target_offsets),
        }
        for pos_group, rot_group, guess_attr, label in TRANSFORM_GROUPS:
            estimates[label] = self._transform(full, pos_group, rot_group,
                                               guess_attr)
        return estimates

    def _builder(self, observation):
        if isinstance(observation, KinematicMeasurement):
            return self._pose_residual
        return self._correspondence_residual

    def cost_function(self, var: np.ndarray) -> np.ndarray:
        """Residual vector: observation blocks followed by DH priors."""
        est = self.estimates(var)
        blocks = []
        for i, obs in enumerate(self.problem.observations):
            camera_to_target = predict_camera_to_target(
                obs, est["camera_chain"], est["target_chain"],
                est["camera_mount_to_camera"], est["target_mount_to_target"],
                est["camera_base_to_target_base"])
            try:
                blocks.append(self._builder(obs).residual(obs,
                                                          camera_to_target))
            except ValidationError as e:
                raise ValidationError(f"Observation {i}: {e}",
                                      **dict(e.context,
                                             observation_index=i)) from e

        dh_free = np.concatenate([var[self._slices[MaskGroup.CAMERA_CHAIN_DH]],
                                  var[self._slices[MaskGroup.TARGET_CHAIN_DH]]])
        blocks.append(dh_free * self._prior_scale)
        return np.concatenate(blocks)

    def jacobian(self, var: np.ndarray) -> np.ndarray:
        """Central-difference Jacobian of :meth:`cost_function`.

        Columns are evaluated on ``options.num_threads`` worker threads.
        """
        var = np.asarray(var, dtype=float)
        steps = self.FD_STEP * np.maximum(1.0, np.abs(var))

        def column(i):
            delta = np.zeros_like(var)
            delta[i] = steps[i]
            return (self.cost_function(var + delta)
                    - self.cost_function(var - delta)) / (2.0 * steps[i])

        if self.options.num_threads > 1 and var.size > 1:
            with ThreadPoolExecutor(
                    max_workers=self.options.num_threads) as executor:
                columns = list(executor.map(column, range(var.size)))
        else:
            columns = [column(i) for i in range(var.size)]

        if not columns:
            return np.zeros((self._n_residuals, 0))
        return np.column_stack(columns)

    def cost_per_observation(self, residuals: np.ndarray) -> float:
        return float(np.sum(residuals ** 2) / self.problem.n_observations)

    @handle_calibration_errors
    def solve(self, offset_prior_weight: float = 1.0,
              options: Optional[SolverOptions] = None,
              compute_covariance: bool = True) -> CalibrationResult:
        """Run the calibration.

        Args:
            offset_prior_weight: Divides the DH offset priors; large values
                let the data dominate, small values keep the chains close
                to nominal
            options: Solver settings
            compute_covariance: Compute the covariance of the free
                parameters at the solution

        Returns:
            CalibrationResult. A run that hits the iteration limit is
            returned with ``converged`` set to False.

        Raises:
            ConfigurationError: If the problem is inconsistent
            DimensionMismatchError: If a joint vector does not match its
                chain
            OptimizationError: If the solver rejects the problem
            CovarianceError: If the Jacobian is rank deficient at the
                solution; the result is attached as ``error.result``
        """
        self.initialize(offset_prior_weight, options)

        logger.info("Starting calibration optimization")
        logger.info(f"Observations: {self.problem.n_observations}")
        logger.info(f"Free parameters: {self.nvars}")
        logger.debug(f"Parameter names: {self.param_names}")

        initial_residuals = self.cost_function(self.var_init)
        if not np.all(np.isfinite(initial_residuals)):
            raise OptimizationError(
                "Residuals are not finite at the initial guess")

        if self.nvars == 0:
            logger.warning("Every parameter is masked, nothing to optimize")
            self.LM_result = None
            x, final_residuals = self.var_init.copy(), initial_residuals
            converged, nfev, message = True, 1, "No free parameters"
        else:
            try:
                self.LM_result = least_squares(
                    self.cost_function,
                    self.var_init,
                    jac=self.jacobian,
                    method=self.options.method,
                    ftol=self.options.function_tolerance,
                    xtol=self.options.parameter_tolerance,
                    gtol=self.options.gradient_tolerance,
                    max_nfev=self.options.max_iterations,
                    verbose=self.options.verbose,
                )
            except ValueError as e:
                raise OptimizationError(f"Optimization failed: {e}") from e
            x = self.LM_result.x
            final_residuals = self.LM_result.fun
            converged = bool(self.LM_result.status > 0)
            nfev = int(self.LM_result.nfev)
            message = str(self.LM_result.message)

        result = self._store_optimization_results(
            x, initial_residuals, final_residuals, converged, nfev, message)
        self._log_results(result)

        if compute_covariance:
            try:
                result.covariance = self.calc_covariance(x)
            except CovarianceError as e:
                e.result = result
                logger.error(str(e))
                raise
        return result

    def calc_covariance(self, var: np.ndarray) -> CovarianceResult:
        """Covariance of the free parameters at ``var``.

        Raises:
            CovarianceError: If the Jacobian is rank deficient
        """
        if self.nvars == 0:
            return CovarianceResult([], np.zeros((0, 0)))
        return compute_covariance(self.jacobian(var), self.param_names,
                                  rcond=self.COVARIANCE_RCOND)

    def _store_optimization_results(self, x, initial_residuals,
                                    final_residuals, converged, nfev,
                                    message) -> CalibrationResult:
        self.var_ = np.array(x, dtype=float)
        est = self.estimates(self.var_)

        result = CalibrationResult(
            converged=converged,
            initial_cost_per_obs=self.cost_per_observation(initial_residuals),
            final_cost_per_obs=self.cost_per_observation(final_residuals),
            camera_mount_to_camera=est["camera_mount_to_camera"],
            target_mount_to_target=est["target_mount_to_target"],
            camera_base_to_target_base=est["camera_base_to_target_base"],
            camera_chain_dh_offsets=est["camera_chain_dh_offsets"],
            target_chain_dh_offsets=est["target_chain_dh_offsets"],
            parameter_names=list(self.param_names),
            n_function_evals=nfev,
            message=message,
        )

        n_prior = self._prior_scale.size
        measurement = final_residuals[:final_residuals.size - n_prior]
        self.evaluation_metrics = {
            'converged': converged,
            'initial_cost_per_obs': result.initial_cost_per_obs,
            'final_cost_per_obs': result.final_cost_per_obs,
            'rmse': (float(np.sqrt(np.mean(measurement ** 2)))
                     if measurement.size else 0.0),
            'max_error': (float(np.max(np.abs(measurement)))
                          if measurement.size else 0.0),
            'n_parameters': self.nvars,
            'n_function_evals': nfev,
        }
        self.STATUS = "CALIBRATED"
        return result

    def _log_results(self, result: CalibrationResult):
        metrics = self.evaluation_metrics
        logger.info(f"Calibration {'did' if result.converged else 'did not'} "
                    "converge")
        logger.info(f"  Initial cost per observation: "
                    f"{metrics['initial_cost_per_obs']:.6g}")
        logger.info(f"  Final cost per observation: "
                    f"{metrics['final_cost_per_obs']:.6g}")
        logger.info(f"  RMSE: {metrics['rmse']:.6g}")
        logger.info(f"  Function Evaluations: {metrics['n_function_evals']}")
        if not result.converged:
            logger.warning(f"Solver stopped: {result.message}")


def optimize(problem: CalibrationProblem, offset_prior_weight: float = 1.0,
             options: Optional[SolverOptions] = None,
             compute_covariance: bool = True) -> CalibrationResult:
    """Calibrate ``problem`` (convenience wrapper around BaseCalibration)."""
    return BaseCalibration(problem).solve(offset_prior_weight, options,
                                          compute_covariance)


def calibrated_chains(camera_chain: DHChain, target_chain: DHChain,
                      result: CalibrationResult):
    """Nominal chains with the offsets of ``result`` applied."""
    return (camera_chain.with_offsets(result.camera_chain_dh_offsets),
            target_chain.with_offsets(result.target_chain_dh_offsets))
