"""
Count distributions with a log link and their mean-variance relationships.
"""

import numpy as np
from abc import ABC, abstractmethod


class Family(ABC):
    """Base class for the count families supported by the PL-GLMM."""

    @property
    @abstractmethod
    def family(self):
        """Family name."""
        pass

    @property
    @abstractmethod
    def vardist(self):
        """Short code used to select the variance form ('P' or 'NB')."""
        pass

    @property
    def link(self):
        return 'log'

    def inverse_link(self, eta):
        """Log inverse link: mu = exp(eta).

        Not clipped: an overflowing linear predictor gives ``inf`` so the
        caller can detect divergence.
        """
        with np.errstate(over='ignore'):
            return np.exp(eta)

    @abstractmethod
    def variance(self, mu, disp):
        """Variance function: V(mu)."""
        pass

    def working_variance(self, mu, disp):
        """Diagonal of W = D^-1 Vmu D^-1, with D = diag(mu)."""
        mu = np.asarray(mu, dtype=float)
        return self.variance(mu, disp) / mu**2


class PoissonFamily(Family):
    """Poisson family with log link."""

    @property
    def family(self):
        return 'poisson'

    @property
    def vardist(self):
        return 'P'

    def variance(self, mu, disp):
        """Poisson variance: mu (the dispersion is ignored)."""
        return np.asarray(mu, dtype=float)


class NegativeBinomialFamily(Family):
    """Negative binomial family with log link.

    ``disp`` is the size parameter r, so Var(y) = mu + mu^2 / r.
    """

    @property
    def family(self):
        return 'negative_binomial'

    @property
    def vardist(self):
        return 'NB'

    def variance(self, mu, disp):
        """Negative binomial variance: mu + mu^2 / disp."""
        mu = np.asarray(mu, dtype=float)
        return mu + mu**2 / disp


_FAMILIES = {
    'P': PoissonFamily,
    'NB': NegativeBinomialFamily,
}


def get_family(vardist: str) -> Family:
    """Look up the family for a variance form code ('P' or 'NB')."""
    try:
        return _FAMILIES[vardist]()
    except KeyError:
        raise ValueError(f"Unknown variance form '{vardist}', expected one of {sorted(_FAMILIES)}")


# Convenience functions
def poisson():
    """Poisson family with log link."""
    return PoissonFamily()

def negative_binomial():
    """Negative binomial family with log link."""
    return NegativeBinomialFamily()
