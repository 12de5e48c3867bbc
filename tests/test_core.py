"""
Test cases for the GeneticPLGLMM front end.
"""

import pytest
import numpy as np
import pandas as pd

import sys
import os
# Add parent directory to path to find pyplglmm package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pyplglmm.core import GeneticPLGLMM
from pyplglmm.control import PLGLMMControl
from pyplglmm.datasets import simulate_count_data
from pyplglmm.reml.optimizer import FitStatus


def fit(data, kinship, **kwargs):
    options = dict(
        fixed=['treatment'],
        random=['block'],
        offset='log_size',
        control=PLGLMMControl(solver='HE-NNLS', max_iter=30),
    )
    options.update(kwargs)
    return GeneticPLGLMM(response='count', data=data, kinship=kinship, genotype='genotype', **options)


class TestGeneticPLGLMM:
    """Test cases for GeneticPLGLMM class."""

    def setup_method(self):
        """Set up test data."""
        self.data, self.kinship = simulate_count_data(n_genotypes=20, n_reps=3, seed=5)

    def test_basic_fit(self):
        """Test fitting on simulated data."""
        model = fit(self.data, self.kinship)

        assert model.result.status in (FitStatus.CONVERGED, FitStatus.MAXITER_REACHED)
        assert list(model.fixed_effects.index) == ['(Intercept)', 'treatment']
        assert list(model.variance_components.index) == ['block', 'genotype']
        assert np.all(model.variance_components >= 0)
        assert len(model.random_effects['genotype']) == 20
        assert list(model.random_effects['genotype'].index) == list(self.kinship.index)
        assert len(model.result.trace) == model.n_iterations
        assert "GeneticPLGLMM" in repr(model)

    def test_fitted_values_and_residuals(self):
        """Test fitted means and Pearson residuals."""
        model = fit(self.data, self.kinship)
        assert model.fitted_values.shape == (len(self.data),)
        assert np.all(model.fitted_values > 0)
        assert np.all(np.isfinite(model.residuals))

    def test_summary(self):
        """Test the fixed effect summary table."""
        model = fit(self.data, self.kinship)
        table = model.summary()

        assert list(table.columns) == ['estimate', 'std_error', 't_value', 'df', 'p_value']
        assert list(table.index) == ['(Intercept)', 'treatment']
        assert np.all(table['std_error'] > 0)
        np.testing.assert_allclose(table['t_value'], table['estimate'] / table['std_error'])
        finite = np.isfinite(table['p_value'])
        assert np.all((table['p_value'][finite] >= 0) & (table['p_value'][finite] <= 1))

    def test_array_kinship(self):
        """A bare kinship array is matched to the sorted genotype labels."""
        from_frame = fit(self.data, self.kinship)
        from_array = fit(self.data, self.kinship.to_numpy())
        np.testing.assert_allclose(from_array.variance_components, from_frame.variance_components)

    def test_kinship_subset_to_observed_genotypes(self):
        """Unobserved genotypes are dropped from the kinship matrix."""
        data = self.data[self.data['genotype'].isin(self.kinship.index[:12])].reset_index(drop=True)
        model = fit(data, self.kinship)
        assert model.kinship.shape == (12, 12)
        assert len(model.random_effects['genotype']) == 12

    def test_categorical_fixed_effect(self):
        """Categorical fixed effects are dummy coded against the first level."""
        data = self.data.assign(group=np.where(self.data['treatment'] == 1, 'b', 'a'))
        model = fit(data, self.kinship, fixed=['group'])
        assert list(model.fixed_effects.index) == ['(Intercept)', 'group_b']

    def test_no_other_random_factors(self):
        """The genetic effect alone is a valid random part."""
        model = fit(self.data, self.kinship, random=[])
        assert list(model.variance_components.index) == ['genotype']

    def test_missing_values_removed(self):
        """Rows with missing model variables are dropped with a warning."""
        data = self.data.astype({'count': float})
        data.loc[0, 'count'] = np.nan
        with pytest.warns(UserWarning, match="Removing 1 observations"):
            model = fit(data, self.kinship)
        assert len(model.data) == len(self.data) - 1
        assert model.offset.shape == (len(self.data) - 1,)

    def test_input_validation(self):
        """Test input validation."""
        with pytest.raises(ValueError, match="Missing columns"):
            fit(self.data, self.kinship, fixed=['missing_col'])

        with pytest.raises(ValueError, match="data must be a pandas DataFrame"):
            fit("not a dataframe", self.kinship)

        negative = self.data.assign(count=-self.data['count'] - 1)
        with pytest.raises(ValueError, match="non-negative counts"):
            fit(negative, self.kinship)

        fractional = self.data.assign(count=self.data['count'] + 0.5)
        with pytest.raises(ValueError, match="non-negative counts"):
            fit(fractional, self.kinship)

        with pytest.raises(ValueError, match="missing from the kinship"):
            fit(self.data, self.kinship.iloc[1:, 1:])

        with pytest.raises(ValueError, match="cannot also be in random"):
            fit(self.data, self.kinship, random=['genotype'])

        with pytest.raises(ValueError, match="kinship array"):
            fit(self.data, np.eye(3))
