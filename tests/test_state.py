"""Tests for the network state container."""

import threading

import pytest

from symmetric_ttns.errors import StructuralSizeMismatchError
from symmetric_ttns.roperators import RenormalizedOperators
from symmetric_ttns.state import NetworkState
from symmetric_ttns.symmetries import make_groups


class TestRandomInit:
    def test_integrity(self, chain_state, tree_state, spin_state):
        for state in (chain_state, tree_state, spin_state):
            state.check_integrity()
            assert len(state.tensors) == state.topology.sites
            assert len(state.operators) == state.topology.nr_bonds

    def test_target_state(self, chain_state):
        assert chain_state.target_state == (0, 4, 2)
        assert chain_state.root_tensor.site == chain_state.topology.root

    def test_tensors_share_the_registry(self, tree_state):
        assert all(t.registry is tree_state.registry for t in tree_state.tensors)

    def test_orbital_irreps(self, chain4):
        groups = make_groups(["U1", "C2v"])
        state = NetworkState.random_init(groups, (4, 0), chain4, max_dim=2,
                                         orbital_irreps=[0, 1, 1, 0], seed=1)
        state.check_integrity()
        assert (1, 1) in {tuple(r) for r in state.registry.physical(1).irreps.tolist()}


class TestIntegrity:
    def test_missing_tensor(self, chain_state):
        chain_state.tensors.pop()
        with pytest.raises(StructuralSizeMismatchError):
            chain_state.check_integrity()

    def test_missing_operator(self, chain_state):
        chain_state.operators.append(RenormalizedOperators.uninitialized())
        with pytest.raises(StructuralSizeMismatchError):
            chain_state.check_integrity()

    def test_swapped_tensors(self, chain_state):
        chain_state.tensors[0], chain_state.tensors[1] = \
            chain_state.tensors[1], chain_state.tensors[0]
        with pytest.raises(StructuralSizeMismatchError):
            chain_state.check_integrity()

    def test_operator_on_wrong_bond(self, chain_state):
        chain_state.operators[1] = chain_state.operators[0]
        with pytest.raises(StructuralSizeMismatchError):
            chain_state.check_integrity()

    def test_open_bond_out_of_sync(self, chain_state):
        chain_state.registry.set_target_state((0, 4, 0))
        with pytest.raises(StructuralSizeMismatchError):
            chain_state.check_integrity()


class TestCopy:
    def test_copy_is_equal(self, tree_state, attach_operators):
        attach_operators(tree_state, tree_state.topology.sweep_order()[0])
        other = tree_state.copy()
        assert other == tree_state
        other.check_integrity()

    def test_copy_is_deep(self, chain_state):
        other = chain_state.copy()
        assert other.registry is not chain_state.registry
        assert all(t.registry is other.registry for t in other.tensors)
        other.tensors[0].blocks.scale(2.0)
        assert other != chain_state

    def test_different_seeds_differ(self, seniority_groups, chain4):
        a = NetworkState.random_init(seniority_groups, (0, 4, 2), chain4, max_dim=4, seed=1)
        b = NetworkState.random_init(seniority_groups, (0, 4, 2), chain4, max_dim=4, seed=2)
        assert a != b


class TestExclusive:
    def test_reentrant(self, chain_state):
        with chain_state.exclusive():
            with chain_state.exclusive() as state:
                assert state is chain_state

    def test_blocks_other_threads(self, chain_state):
        acquired = []

        def worker():
            with chain_state.exclusive():
                acquired.append(True)

        with chain_state.exclusive():
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join(timeout=0.2)
            assert not acquired
        thread.join()
        assert acquired == [True]


def test_destroy(chain_state):
    chain_state.destroy()
    assert chain_state.tensors == []
    assert chain_state.operators == []
    assert chain_state.registry is None
    assert "sites=0" in repr(chain_state)
