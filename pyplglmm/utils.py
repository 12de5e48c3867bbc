"""
Utility functions for pyPLGLMM.
"""

from collections import OrderedDict
from typing import Dict, Mapping, Sequence, Union

import numpy as np

IndexMap = Union[Mapping[str, Sequence[int]], Sequence[Sequence[int]]]


def check_na(x: np.ndarray) -> np.ndarray:
    """Boolean mask of NaN entries."""
    return np.isnan(np.asarray(x, dtype=float))


def check_inf(x: np.ndarray) -> np.ndarray:
    """Boolean mask of infinite entries."""
    return np.isinf(np.asarray(x, dtype=float))


def rcond(A: np.ndarray) -> float:
    """
    Reciprocal condition number of a square matrix in the 1-norm.

    Returns 0.0 for matrices that are exactly singular or contain
    non-finite values.

    Parameters
    ----------
    A : np.ndarray
        Square matrix

    Returns
    -------
    float
        ``1 / (||A||_1 ||A^-1||_1)``
    """
    A = np.asarray(A, dtype=float)
    if A.size == 0:
        return 1.0
    if not np.all(np.isfinite(A)):
        return 0.0
    try:
        cond = np.linalg.cond(A, 1)
    except np.linalg.LinAlgError:
        return 0.0
    if not np.isfinite(cond) or cond == 0:
        return 0.0
    return float(1.0 / cond)


def trace_product(A: np.ndarray, B: np.ndarray) -> float:
    """tr(A @ B) without forming the product."""
    return float(np.einsum("ij,ji->", A, B))


def as_index_map(u_indices: IndexMap) -> Dict[str, np.ndarray]:
    """
    Normalise random effect column indices to an ordered name -> index map.

    Parameters
    ----------
    u_indices : mapping or sequence
        Either a mapping from grouping name to the (0-based) columns of Z
        belonging to it, or a sequence of such index arrays. Unnamed
        groupings are called 'RE1', 'RE2', ...

    Returns
    -------
    OrderedDict
        Grouping name -> integer index array, in the order given
    """
    if isinstance(u_indices, Mapping):
        items = list(u_indices.items())
    else:
        items = [(f"RE{i + 1}", idx) for i, idx in enumerate(u_indices)]

    index_map = OrderedDict()
    for name, idx in items:
        index_map[str(name)] = np.asarray(idx, dtype=int).ravel()
    return index_map
