"""Linear sensitivity factors of a DC power flow network.

The factors are derived from the line-bus incidence matrix A and the line
susceptances b: the nodal susceptance matrix A^T diag(b) A is reduced by
removing the reference bus, factorized, and inverted to give the reduced bus
reactance matrix X. Power transfer distribution factors (PTDF) then follow as
diag(b) A X, and line outage distribution factors (LODF) as the PTDF flows
induced by a line's own incidence, normalized by the share of that line's
flow which stays on it.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Sequence

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components
from scipy.sparse.linalg import splu

from .config import ModelConfig
from .errors import TopologyError
from .model_data import LineData

logger = logging.getLogger(__name__)


class NetworkFactors(NamedTuple):
    ptdf: np.ndarray
    lodf: np.ndarray

    # indices of lines whose outage would island part of the network
    islanding: frozenset[int]


def incidence_matrix(lines: Sequence[LineData],
                     bus_index: dict[str, int]) -> sp.csr_matrix:
    """Builds A, with +1 at each line's from-bus and -1 at its to-bus."""
    nl, nb = len(lines), len(bus_index)

    rows = np.repeat(np.arange(nl), 2)
    cols = np.fromiter((bus_index[bus] for line in lines
                        for bus in (line.from_bus, line.to_bus)),
                       int, count=2 * nl)
    vals = np.tile([1., -1.], nl)

    return sp.csr_matrix((vals, (rows, cols)), shape=(nl, nb))


def susceptance_matrix(incidence: sp.csr_matrix,
                       b_line: np.ndarray) -> sp.csc_matrix:
    """Builds the nodal susceptance matrix A^T diag(b) A."""
    B_bus = (incidence.T @ sp.diags(b_line) @ incidence).tocsc()
    B_bus.eliminate_zeros()

    return B_bus


def _check_connected(B_bus: sp.csc_matrix, buses: Sequence[str],
                     ref_idx: int) -> None:
    n_comps, labels = connected_components(B_bus, directed=False)

    if n_comps > 1:
        islanded = [bus for bus, lbl in zip(buses, labels)
                    if lbl != labels[ref_idx]]

        raise TopologyError(
            "The network is not connected; these buses cannot be reached "
            "from the reference bus `{}`: {}".format(
                buses[ref_idx], ', '.join(islanded))
            )


def reduced_reactance_matrix(B_bus: sp.csc_matrix, ref_idx: int) -> np.ndarray:
    """Inverts the susceptance matrix with the reference bus removed.

    The returned matrix has the full bus dimension, with a zero row and a
    zero column at the reference bus whose voltage angle is fixed at zero.
    """
    nb = B_bus.shape[0]
    keep = np.flatnonzero(np.arange(nb) != ref_idx)
    X = np.zeros((nb, nb))

    if nb == 1:
        return X

    B_red = B_bus[keep, :][:, keep].tocsc()

    try:
        MLU = splu(B_red)
    except RuntimeError as err:
        raise TopologyError("The reduced network susceptance matrix "
                            "is singular!") from err

    X[np.ix_(keep, keep)] = MLU.solve(np.eye(nb - 1))

    if not np.all(np.isfinite(X)):
        raise TopologyError("The reduced network susceptance matrix could "
                            "not be inverted to finite values!")

    return X


def calculate_ptdf(incidence: sp.csr_matrix, b_line: np.ndarray,
                   X: np.ndarray) -> np.ndarray:
    """PTDF[l, b] = b_l * (X[from(l), b] - X[to(l), b])."""
    B_dA = sp.diags(b_line) @ incidence

    return np.asarray(B_dA @ X)


def calculate_lodf(ptdf: np.ndarray, incidence: sp.csr_matrix,
                   singularity_tol: float) -> tuple[np.ndarray, frozenset]:
    """Finds the flow shifted onto each line by the outage of each other line.

    LODF[l, k] is the share of the pre-outage flow on line k which appears on
    line l once k is switched out; LODF[k, k] is -1. If almost all of a
    line's own transfer stays on it the outage islands part of the network,
    the factors of that outage are undefined, and its column is left at zero.
    """
    # transfer[l, k] = PTDF row of l applied to line k's incidence
    transfer = np.asarray(incidence @ ptdf.T).T
    denom = 1. - np.diag(transfer).copy()

    islanding = np.abs(denom) < singularity_tol
    safe_denom = np.where(islanding, 1., denom)

    lodf = transfer / safe_denom[np.newaxis, :]
    np.fill_diagonal(lodf, -1.)
    lodf[:, islanding] = 0.

    return lodf, frozenset(np.nonzero(islanding)[0].tolist())


def apply_sparsity_cutoff(factors: np.ndarray, cutoff: float) -> np.ndarray:
    """Zeroes out entries whose magnitude is below the given cutoff."""
    factors = factors.copy()
    factors[np.abs(factors) < cutoff] = 0.

    return factors


def calculate_network_factors(buses: Sequence[str],
                              lines: Sequence[LineData], reference_bus: str,
                              config: ModelConfig) -> NetworkFactors:
    """Computes the (sparsified) PTDF and LODF matrices of a DC network."""
    bus_index = {bus: i for i, bus in enumerate(buses)}
    nb, nl = len(buses), len(lines)

    if reference_bus not in bus_index:
        raise TopologyError(
            f"Reference bus `{reference_bus}` is not one of the grid's buses!")

    if nl == 0:
        return NetworkFactors(np.zeros((0, nb)), np.zeros((0, 0)),
                              frozenset())

    ref_idx = bus_index[reference_bus]
    b_line = np.fromiter((line.susceptance for line in lines), float,
                         count=nl)

    logger.info("Calculating PTDF and LODF factors for %d buses "
                "and %d lines", nb, nl)

    incidence = incidence_matrix(lines, bus_index)
    B_bus = susceptance_matrix(incidence, b_line)
    _check_connected(B_bus, buses, ref_idx)

    X = reduced_reactance_matrix(B_bus, ref_idx)
    ptdf = calculate_ptdf(incidence, b_line, X)
    lodf, islanding = calculate_lodf(ptdf, incidence,
                                     config.lodf_singularity_tol)

    if not (np.all(np.isfinite(ptdf)) and np.all(np.isfinite(lodf))):
        raise TopologyError("Network sensitivity factors are not finite!")

    if islanding:
        logger.info("%d line(s) would island the network if outaged: %s",
                    len(islanding),
                    ', '.join(lines[k].name for k in sorted(islanding)))

    ptdf = apply_sparsity_cutoff(ptdf, config.ptdf_sparsity_cutoff)
    lodf = apply_sparsity_cutoff(lodf, config.lodf_sparsity_cutoff)

    logger.debug("PTDF has %d nonzeros, LODF has %d nonzeros",
                 np.count_nonzero(ptdf), np.count_nonzero(lodf))

    return NetworkFactors(ptdf, lodf, islanding)
