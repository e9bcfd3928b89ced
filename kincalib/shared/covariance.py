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
Parameter covariance and correlation analysis.

The covariance of the free parameters is the inverse of the Gauss-Newton
approximation ``J^T J`` of the cost Hessian at the solution. Strongly
correlated pairs point at unknowns the data cannot tell apart.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from .error_handling import CovarianceError, validate_input_data

logger = logging.getLogger(__name__)


class CovarianceResult:
    """Covariance of named parameters.

    Args:
        names: Parameter names, one per row/column
        covariance: Symmetric covariance matrix
    """

    def __init__(self, names: Sequence[str], covariance: np.ndarray):
        covariance = np.asarray(covariance, dtype=float)
        if covariance.shape != (len(names), len(names)):
            raise CovarianceError(
                f"Covariance shape {covariance.shape} does not match "
                f"{len(names)} parameter names")
        self.names = list(names)
        self.covariance = covariance

    @property
    def standard_deviations(self) -> np.ndarray:
        return np.sqrt(np.clip(np.diag(self.covariance), 0.0, None))

    @property
    def correlation(self) -> np.ndarray:
        std = self.standard_deviations
        with np.errstate(divide="ignore", invalid="ignore"):
            corr = self.covariance / np.outer(std, std)
        corr[~np.isfinite(corr)] = 0.0
        np.fill_diagonal(corr, 1.0)
        return corr

    def correlation_coeff_above_threshold(
            self, threshold: float) -> List[Tuple[str, str, float]]:
        """Parameter pairs whose absolute correlation exceeds ``threshold``."""
        corr = self.correlation
        pairs = []
        for i in range(len(self.names)):
            for j in range(i + 1, len(self.names)):
                if abs(corr[i, j]) > threshold:
                    pairs.append((self.names[i], self.names[j],
                                  float(corr[i, j])))
        return pairs

    def print_correlation_coeff_above_threshold(self, threshold: float) -> str:
        """Report of the correlated pairs, one per line."""
        pairs = self.correlation_coeff_above_threshold(threshold)
        lines = [f"Correlation coefficients with magnitude > {threshold}:"]
        if not pairs:
            lines.append("  none")
        for name_a, name_b, value in pairs:
            lines.append(f"  {name_a} - {name_b}: {value:.4f}")
        return "\n".join(lines) + "\n"

    def to_dataframe(self) -> pd.DataFrame:
        """Correlation matrix labelled with the parameter names."""
        return pd.DataFrame(self.correlation, index=self.names,
                            columns=self.names)

    def __len__(self):
        return len(self.names)

    def __repr__(self):
        return f"CovarianceResult(n_parameters={len(self.names)})"


@validate_input_data
def compute_covariance(jacobian: np.ndarray, names: Sequence[str],
                       rcond: float = 1e-10) -> CovarianceResult:
    """Covariance ``(J^T J)^-1`` of the parameters behind ``jacobian``.

    Args:
        jacobian: Residual Jacobian at the solution (m x n)
        names: Names of the n parameters
        rcond: Relative singular value below which a direction counts as
            unobservable

    Raises:
        CovarianceError: If the Jacobian is rank deficient
    """
    J = np.asarray(jacobian, dtype=float)
    n = J.shape[1] if J.ndim == 2 else 0
    if J.ndim != 2 or n != len(names):
        raise CovarianceError(
            f"Jacobian shape {J.shape} does not match {len(names)} parameters")
    if n == 0:
        return CovarianceResult([], np.zeros((0, 0)))

    # Vt is n x n in both branches
    _, s, Vt = np.linalg.svd(J, full_matrices=J.shape[0] < n)
    tol = rcond * s[0] if s.size and s[0] > 0 else rcond
    rank = int(np.count_nonzero(s > tol))
    if rank < n:
        weight = np.abs(Vt[rank:]).max(axis=0)
        suspects = [names[i] for i in np.argsort(weight)[::-1]
                    if weight[i] > 0.1][:6]
        raise CovarianceError(
            f"Jacobian is rank deficient (rank {rank} of {n}); "
            f"unidentifiable parameters involve {suspects}",
            rank=rank, n_parameters=n, parameters=suspects
        )

    # J^T J = V S^2 V^T
    V = Vt.T
    covariance = (V / s ** 2) @ V.T
    logger.debug(f"Covariance computed for {n} parameters")
    return CovarianceResult(names, covariance)
