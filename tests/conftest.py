"""Shared fixtures for the symmetric_ttns test suite."""

import numpy as np
import pytest

from symmetric_ttns.network import chain_topology, three_legged_topology
from symmetric_ttns.roperators import RenormalizedOperators, operator_legs
from symmetric_ttns.sectors import Leg
from symmetric_ttns.state import NetworkState
from symmetric_ttns.symmetries import make_group, make_groups

# ------------------------------------------------------------------ #
# Symmetry fixtures                                                  #
# ------------------------------------------------------------------ #

@pytest.fixture
def z2():
    return make_group("Z2")


@pytest.fixture
def u1():
    return make_group("U1")


@pytest.fixture
def su2():
    return make_group("SU2")


@pytest.fixture
def seniority():
    return make_group("SENIORITY")


@pytest.fixture
def d2h():
    return make_group("D2h")


@pytest.fixture
def seniority_groups():
    """Fermion parity, particle number and seniority."""
    return make_groups(["Z2", "U1", "SENIORITY"])


@pytest.fixture
def spin_groups():
    """Particle number and total spin."""
    return make_groups(["U1", "SU2"])


# ------------------------------------------------------------------ #
# Topology fixtures                                                  #
# ------------------------------------------------------------------ #

@pytest.fixture
def chain4():
    return chain_topology(4)


@pytest.fixture
def tree():
    """Three arms of two sites around one branching site."""
    return three_legged_topology(2)


# ------------------------------------------------------------------ #
# State fixtures                                                     #
# ------------------------------------------------------------------ #

@pytest.fixture
def chain_state(seniority_groups, chain4):
    """Four electrons in four orbitals, seniority up to two."""
    return NetworkState.random_init(seniority_groups, (0, 4, 2), chain4,
                                    max_dim=4, seed=3)


@pytest.fixture
def tree_state(seniority_groups, tree):
    """Six electrons in six orbitals on a three-legged tree."""
    return NetworkState.random_init(seniority_groups, (0, 6, 2), tree,
                                    max_dim=3, seed=11)


@pytest.fixture
def spin_state(spin_groups, chain4):
    """Four electrons in four orbitals, singlet."""
    return NetworkState.random_init(spin_groups, (4, 0), chain4, max_dim=3, seed=5)


def _attach_operators(state, bond, seed=0):
    registry = state.registry
    rops = RenormalizedOperators(bond, 1, 0, (Leg("v", bond),), registry)
    rows = []
    for hss in range(registry.hss().nr_secs):
        rows.extend(rops.allowed_couplings(hss))
    rops.set_couplings(rows)

    rng = np.random.default_rng(seed)
    for hss in range(rops.nrhss):
        start, stop = rops.begin_blocks_of_hss[hss], rops.begin_blocks_of_hss[hss + 1]
        blocks = [rng.standard_normal(rops.block_shape(r)) for r in rops.qnumbers[start:stop]]
        rops.append_operator(hss, blocks)
    state.operators[bond] = rops
    return rops


@pytest.fixture
def attach_operators():
    """
    Attach left operators with random blocks to a bond of a state.

    One operator per Hamiltonian symmetry sector, including sectors without
    any allowed block.
    """
    return _attach_operators


def _attach_p_operator(state, bond):
    topo, registry = state.topology, state.registry
    rops = RenormalizedOperators(bond, 1, 1, operator_legs(topo, bond, True, True), registry)
    t = registry.hss().index_of([g.trivial_label for g in registry.groups])
    site = int(topo.bonds[bond, 1])
    rops.set_couplings([((i, i, t), (p, p, t), (o, o, t))
                        for i, p, o in state.tensors[site].valid_triplets()])
    start, stop = rops.begin_blocks_of_hss[t], rops.begin_blocks_of_hss[t + 1]
    rops.append_operator(t, [np.eye(rops.block_shape(r)[0]) for r in rops.qnumbers[start:stop]])
    state.operators[bond] = rops
    return rops


@pytest.fixture
def attach_p_operator():
    """Attach a left P operator holding the identity on every triplet of the site."""
    return _attach_p_operator
