"""
Control parameters for the pseudo-likelihood GLMM fit.
"""

VALID_SOLVERS = ("Fisher", "HE", "HE-NNLS")
VALID_VARDISTS = ("P", "NB")


class PLGLMMControl:
    """
    Control parameters for the pseudo-likelihood GLMM fitting algorithm.

    Parameters
    ----------
    tolerance : float, default=1e-6
        Convergence tolerance applied to the absolute change of every fixed
        effect, random effect and variance component between iterations
    max_iter : int, default=100
        Maximum number of iterations
    reml : bool, default=False
        Whether to use REML for variance component estimation
    solver : str, default='Fisher'
        Variance component solver: 'Fisher' (Fisher scoring), 'HE'
        (Haseman-Elston regression) or 'HE-NNLS' (constrained
        Haseman-Elston regression)
    vardist : str, default='NB'
        Variance form: 'NB' (negative binomial) or 'P' (Poisson)
    dispersion : float, default=1.0
        Initial dispersion parameter
    monitoring : bool, default=False
        Whether to print iteration progress
    """

    def __init__(
        self,
        tolerance: float = 1e-6,
        max_iter: int = 100,
        reml: bool = False,
        solver: str = "Fisher",
        vardist: str = "NB",
        dispersion: float = 1.0,
        monitoring: bool = False
    ):
        if solver not in VALID_SOLVERS:
            raise ValueError(f"solver must be one of {VALID_SOLVERS}, got '{solver}'")
        if vardist not in VALID_VARDISTS:
            raise ValueError(f"vardist must be one of {VALID_VARDISTS}, got '{vardist}'")
        if tolerance <= 0:
            raise ValueError(f"tolerance must be > 0, got {tolerance}")
        if max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {max_iter}")

        self.tolerance = tolerance
        self.max_iter = max_iter
        self.reml = reml
        self.solver = solver
        self.vardist = vardist
        self.dispersion = dispersion
        self.monitoring = monitoring

    def __repr__(self):
        return (f"PLGLMMControl(tolerance={self.tolerance}, max_iter={self.max_iter}, "
                f"reml={self.reml}, solver='{self.solver}', vardist='{self.vardist}')")
