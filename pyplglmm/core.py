"""
Tabular front end for fitting a genetic pseudo-likelihood GLMM.
"""

import numpy as np
import pandas as pd
import warnings
from collections import OrderedDict
from typing import Optional, Union, List, Dict, Tuple, Any

from .control import PLGLMMControl
from .inference import satterthwaite_df, compute_p_values
from .matrices import compute_vmu, initialise_g
from .pseudovar import pseudovar_partial_g
from .reml.optimizer import fit_pl_glmm, PLGLMMResult
from . import plotting


class GeneticPLGLMM:
    """
    Count GLMM with a genetic (kinship) random effect, fitted by
    pseudo-likelihood.

    Fits log E[y] = offset + X beta + Z u, where u holds one random effect per
    level of each factor in ``random`` (independent, one variance component
    per factor) and one genetic effect per genotype with covariance
    sigma_g K.

    Parameters
    ----------
    response : str
        Name of the count response column in data
    data : pd.DataFrame
        Input data containing all variables
    kinship : pd.DataFrame or np.ndarray
        Kinship matrix between genotypes. A DataFrame must be indexed by
        genotype label; a bare array is matched to the sorted genotype labels
    genotype : str
        Name of the genotype column in data
    fixed : list of str, optional
        Fixed effect variables; an intercept is always included
    random : list of str, optional
        Random effect variables (treated as categorical)
    offset : str or array-like, optional
        Offset column name or values (log scale)
    control : PLGLMMControl, optional
        Algorithm control parameters

    Attributes
    ----------
    result : PLGLMMResult
        Full result of the fit
    fixed_effects : pd.Series
        Fixed effect estimates
    random_effects : dict of pd.Series
        Predicted random effects per factor, the genotype effects last
    variance_components : pd.Series
        Variance component per random factor, the genetic component last
    fitted_values : np.ndarray
        Fitted means
    residuals : np.ndarray
        Pearson residuals
    converged : bool
        Whether the fit converged
    """

    def __init__(
        self,
        response: str,
        data: pd.DataFrame,
        kinship: Union[pd.DataFrame, np.ndarray],
        genotype: str,
        fixed: Optional[List[str]] = None,
        random: Optional[List[str]] = None,
        offset: Optional[Union[str, np.ndarray]] = None,
        control: Optional[PLGLMMControl] = None
    ):
        self.response = response
        self.genotype = genotype
        self.fixed = fixed or []
        self.random = random or []
        self.control = control or PLGLMMControl()

        # Validate inputs first
        self._validate_inputs(data, offset)
        self.data = self._handle_missing_data(data, offset)
        self.offset = self._resolve_offset(offset)
        self.kinship = self._align_kinship(kinship)

        # Fit the model
        self._fit_model()

    def _validate_inputs(self, data, offset):
        """Validate input parameters and data."""
        if not isinstance(data, pd.DataFrame):
            raise ValueError("data must be a pandas DataFrame")

        required_cols = [self.response, self.genotype] + self.fixed + self.random
        if isinstance(offset, str):
            required_cols.append(offset)
        missing_cols = [col for col in required_cols if col not in data.columns]
        if missing_cols:
            raise ValueError(f"Missing columns in data: {missing_cols}")

        if self.genotype in self.random:
            raise ValueError(f"'{self.genotype}' is the genotype column and cannot also be in random")

        y = pd.to_numeric(data[self.response], errors='coerce').dropna().to_numpy()
        if np.any(y < 0) or np.any(y != np.round(y)):
            raise ValueError(f"Response '{self.response}' must contain non-negative counts")

    def _handle_missing_data(self, data, offset):
        """Drop observations with missing values in the model variables."""
        used = [self.response, self.genotype] + self.fixed + self.random
        if isinstance(offset, str):
            used.append(offset)
        self.valid_obs = data[used].notna().all(axis=1).to_numpy()
        n_dropped = int((~self.valid_obs).sum())
        if n_dropped > 0:
            warnings.warn(f"Removing {n_dropped} observations with missing values")
        return data.loc[self.valid_obs].reset_index(drop=True)

    def _resolve_offset(self, offset):
        n_obs = len(self.data)
        if offset is None:
            return np.zeros(n_obs)
        if isinstance(offset, str):
            return self.data[offset].to_numpy(dtype=float)
        offset = np.asarray(offset, dtype=float)
        if offset.shape[0] == len(self.valid_obs):
            offset = offset[self.valid_obs]
        if offset.shape != (n_obs,):
            raise ValueError(f"offset must have one value per observation ({n_obs}), got {offset.shape[0]}")
        return offset

    def _align_kinship(self, kinship):
        """Subset the kinship matrix to the observed genotypes, keeping its order."""
        observed = pd.unique(self.data[self.genotype].astype(str))
        if isinstance(kinship, pd.DataFrame):
            K = kinship.copy()
            K.index = K.index.astype(str)
            K.columns = K.columns.astype(str)
        else:
            kinship = np.asarray(kinship, dtype=float)
            labels = sorted(observed)
            if kinship.shape != (len(labels), len(labels)):
                raise ValueError(
                    f"kinship array is {kinship.shape} but data has {len(labels)} genotypes"
                )
            K = pd.DataFrame(kinship, index=labels, columns=labels)

        missing = sorted(set(observed) - set(K.index))
        if missing:
            raise ValueError(f"Genotypes missing from the kinship matrix: {missing[:10]}")

        observed = set(observed)
        keep = [label for label in K.index if label in observed]
        return K.loc[keep, keep]

    def _construct_design_matrices(self) -> Dict[str, Any]:
        """Construct fixed and random effect design matrices."""
        n_obs = len(self.data)

        # Fixed effects: intercept plus covariates
        X_parts = [pd.DataFrame({'(Intercept)': np.ones(n_obs)})]
        for var in self.fixed:
            column = self.data[var]
            if pd.api.types.is_bool_dtype(column) or not pd.api.types.is_numeric_dtype(column):
                X_parts.append(pd.get_dummies(self.data[var], prefix=var, drop_first=True, dtype=float))
            else:
                X_parts.append(self.data[[var]].astype(float))
        X = pd.concat(X_parts, axis=1)

        # Random effects: full dummy coding per factor, genotype last
        Z_parts = []
        u_indices = OrderedDict()
        rlevels = OrderedDict()
        current_idx = 0
        for var in self.random:
            dummies = pd.get_dummies(self.data[var].astype(str), dtype=float)
            if dummies.shape[1] < 2:
                raise ValueError(f"Random effect '{var}' has insufficient levels ({dummies.shape[1]})")
            Z_parts.append(dummies.to_numpy())
            u_indices[var] = np.arange(current_idx, current_idx + dummies.shape[1])
            rlevels[var] = list(dummies.columns)
            current_idx += dummies.shape[1]

        geno_labels = list(self.kinship.index)
        geno = pd.Categorical(self.data[self.genotype].astype(str), categories=geno_labels)
        Z_geno = pd.get_dummies(geno, dtype=float).to_numpy()
        Z_parts.append(Z_geno)
        u_indices[self.genotype] = np.arange(current_idx, current_idx + len(geno_labels))
        rlevels[self.genotype] = geno_labels

        return {
            'X': X.to_numpy(),
            'X_names': list(X.columns),
            'Z': np.hstack(Z_parts),
            'u_indices': u_indices,
            'rlevels': rlevels,
        }

    def _fit_model(self):
        """Main model fitting procedure."""
        if self.control.monitoring:
            print("Starting genetic PL-GLMM fitting...")

        design_info = self._construct_design_matrices()
        X = design_info['X']
        Z = design_info['Z']
        K = self.kinship.to_numpy()
        y = self.data[self.response].to_numpy(dtype=float)

        # Initialise with an intercept-only fit and no random effects
        beta = np.zeros(X.shape[1])
        beta[0] = np.log(max(np.mean(y), 1e-8))
        u = np.zeros(Z.shape[1])
        sigma = np.ones(len(design_info['u_indices']))
        G = initialise_g(design_info['u_indices'], sigma, K)
        mu = np.exp(self.offset + X @ beta)

        result = fit_pl_glmm(
            Z=Z, X=X, K=K, mu=mu, offsets=self.offset,
            beta=beta, theta=np.concatenate([beta, u]), u=u,
            sigma=sigma, G=G, y=y,
            u_indices=design_info['u_indices'],
            theta_conv=self.control.tolerance,
            rlevels=design_info['rlevels'],
            disp=self.control.dispersion,
            reml=self.control.reml,
            max_iter=self.control.max_iter,
            solver=self.control.solver,
            vardist=self.control.vardist,
            monitoring=self.control.monitoring,
        )
        self._store_results(design_info, result, X, Z, K, y)

    def _store_results(self, design_info, result: PLGLMMResult, X, Z, K, y):
        """Store model fitting results."""
        self._design_info = design_info
        self.result = result

        self.fixed_effects = pd.Series(result.fixed_effects, index=design_info['X_names'], name='estimate')
        self.random_effects = result.random_effects
        self.variance_components = pd.Series(
            result.sigma, index=list(design_info['u_indices']), name='variance'
        )
        self.converged = result.converged
        self.n_iterations = result.iterations

        with np.errstate(over='ignore'):
            self.fitted_values = np.exp(self.offset + X @ result.fixed_effects + Z @ self._u_vector(result))
        vmu = np.diag(compute_vmu(self.fitted_values, result.dispersion, self.control.vardist))
        self.residuals = (y - self.fitted_values) / np.sqrt(vmu)

        # Raw partial derivatives for the Satterthwaite degrees of freedom
        self._V_partial_raw = pseudovar_partial_g(Z, K, design_info['u_indices'])

    def _u_vector(self, result):
        u = np.zeros(sum(len(v) for v in result.random_effects.values()))
        for name, idx in self._design_info['u_indices'].items():
            u[idx] = result.random_effects[name].to_numpy()
        return u

    def summary(self) -> pd.DataFrame:
        """
        Fixed effect summary table.

        Returns
        -------
        pd.DataFrame
            Estimate, standard error, t-score, Satterthwaite degrees of
            freedom and two-sided p-value per fixed effect
        """
        df = satterthwaite_df(
            self._design_info['X'], self.result.V_star_inv, self._V_partial_raw, self.result.vcov
        )
        return pd.DataFrame({
            'estimate': self.result.fixed_effects,
            'std_error': self.result.se,
            't_value': self.result.t_scores,
            'df': df,
            'p_value': compute_p_values(self.result.t_scores, df),
        }, index=self._design_info['X_names'])

    def plot_convergence(self, figsize: Tuple[int, int] = (10, 4)):
        """Plot the parameter changes per iteration."""
        return plotting.plot_convergence(self.result, tolerance=self.control.tolerance, figsize=figsize)

    def plot_variance_components(self, figsize: Tuple[int, int] = (8, 4)):
        """Plot the variance component trajectories."""
        return plotting.plot_variance_components(
            self.result, names=list(self.variance_components.index), figsize=figsize
        )

    def __repr__(self):
        status = "converged" if self.converged else self.result.status.value
        return (f"GeneticPLGLMM(response='{self.response}', genotype='{self.genotype}', "
                f"n_obs={len(self.data)}, {status} in {self.n_iterations} iterations)")
