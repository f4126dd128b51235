"""Tests for renormalized operator sets."""

import numpy as np
import pytest

from symmetric_ttns.errors import (
    FusionRuleViolationError,
    SectorIndexError,
    StructuralSizeMismatchError,
)
from symmetric_ttns.roperators import RenormalizedOperators, operator_legs
from symmetric_ttns.sectors import Leg, SymmetrySectors


def trivial_hss(registry):
    return registry.hss().index_of([g.trivial_label for g in registry.groups])


class TestSentinels:
    def test_uninitialized(self):
        rops = RenormalizedOperators.uninitialized()
        assert rops.is_uninitialized
        assert rops.bond_of_operator == -1
        assert rops.is_left == -1
        assert rops.nrhss == 0
        assert rops.nrops == 0
        rops.check_integrity()
        assert rops == RenormalizedOperators.uninitialized()

    def test_uninitialized_bonds_of_fresh_state(self, chain_state):
        topo = chain_state.topology
        for bond, rops in enumerate(chain_state.operators):
            internal = not topo.is_vacuum(bond) and not topo.is_open(bond)
            assert rops.is_uninitialized == internal

    def test_vacuum_is_identity(self, chain_state):
        rops = chain_state.operators[0]
        sectors = chain_state.registry.sectors(0)
        assert rops.is_left == 1
        assert rops.nrops == 1
        assert rops.nr_blocks == sectors.nr_secs
        assert rops.hss_of_ops.tolist() == [trivial_hss(chain_state.registry)]
        for k, dim in enumerate(sectors.dims):
            np.testing.assert_array_equal(rops.operator_block(0, k), np.eye(dim))

    def test_open_bond_operator(self, chain_state):
        open_bond = chain_state.topology.open_bond
        rops = chain_state.operators[open_bond]
        assert rops.bond_of_operator == open_bond
        assert rops.is_left == 0
        assert rops.nr_blocks == chain_state.registry.sectors(open_bond).nr_secs

    def test_vacuum_needs_trivial_hss(self, chain_state):
        registry = chain_state.registry.copy()
        registry.register_operator_sectors(SymmetrySectors([[1, 1, 1]], [1]))
        with pytest.raises(SectorIndexError):
            RenormalizedOperators.vacuum(0, 1, registry)

    def test_leg_count_checked(self, chain_state):
        with pytest.raises(ValueError):
            RenormalizedOperators(1, 1, 1, (Leg('v', 1),), chain_state.registry)


class TestCouplings:
    def test_allowed_couplings_are_valid(self, chain_state):
        rops = RenormalizedOperators(2, 1, 0, (Leg('v', 2),), chain_state.registry)
        for hss in range(rops.nrhss):
            for row in rops.allowed_couplings(hss):
                rops.check_coupling(row)
                assert row[0][2] == hss

    def test_rows_bucketed_by_hss(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        begin = rops.begin_blocks_of_hss
        assert begin[0] == 0
        assert begin[-1] == rops.nr_blocks
        for hss in range(rops.nrhss):
            bucket = rops.qnumbers[begin[hss]:begin[hss + 1]]
            assert all(row[0][2] == hss for row in bucket)
            keys = [tuple(row[0]) for row in bucket.tolist()]
            assert keys == sorted(keys)

    def test_fusion_violation(self, chain_state):
        rops = RenormalizedOperators(2, 1, 0, (Leg('v', 2),), chain_state.registry)
        allowed = set(rops.allowed_couplings(0))
        nr_secs = chain_state.registry.sectors(2).nr_secs
        bad = next(((b, k, 0),) for b in range(nr_secs) for k in range(nr_secs)
                   if ((b, k, 0),) not in allowed)
        with pytest.raises(FusionRuleViolationError):
            rops.set_couplings([bad])

    def test_hss_out_of_range(self, chain_state):
        rops = RenormalizedOperators(2, 1, 0, (Leg('v', 2),), chain_state.registry)
        with pytest.raises(SectorIndexError):
            rops.set_couplings([((0, 0, rops.nrhss),)])

    def test_duplicate_rows(self, chain_state):
        rops = RenormalizedOperators(2, 1, 0, (Leg('v', 2),), chain_state.registry)
        row = rops.allowed_couplings(trivial_hss(chain_state.registry))[0]
        with pytest.raises(ValueError):
            rops.set_couplings([row, row])

    def test_structure_frozen_after_append(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        with pytest.raises(ValueError):
            rops.set_couplings([])


class TestOperators:
    def test_blocks_per_operator(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        assert rops.nrops == rops.nrhss
        for op in range(rops.nrops):
            hss = int(rops.hss_of_ops[op])
            assert rops.nr_blocks_for_operator(op) == rops.nr_blocks_of_hss(hss)
            assert rops.operators[op].nr_blocks == rops.nr_blocks_of_hss(hss)
        rops.check_integrity()

    def test_block_for(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        op = next(i for i in range(rops.nrops) if rops.nr_blocks_for_operator(i))
        start = rops.begin_blocks_of_hss[rops.hss_of_ops[op]]
        np.testing.assert_array_equal(rops.block_for(op, rops.qnumbers[start]),
                                      rops.operator_block(op, 0))
        other = next(h for h in range(rops.nrhss) if h != rops.hss_of_ops[op])
        assert rops.block_for(op, [(0, 0, other)]) is None

    def test_append_invalid_hss(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        with pytest.raises(SectorIndexError):
            rops.append_operator(rops.nrhss)

    def test_append_wrong_block_count(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        hss = int(np.argmax(np.diff(rops.begin_blocks_of_hss)))
        with pytest.raises(StructuralSizeMismatchError):
            rops.append_operator(hss, [])

    def test_append_wrong_block_size(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        hss = int(np.argmax(np.diff(rops.begin_blocks_of_hss)))
        blocks = [np.zeros(rops.block_shape(r)) for r in
                  rops.qnumbers[rops.begin_blocks_of_hss[hss]:rops.begin_blocks_of_hss[hss + 1]]]
        blocks[0] = np.zeros(blocks[0].size + 1)
        with pytest.raises(StructuralSizeMismatchError):
            rops.append_operator(hss, blocks)

    def test_zero_operator(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        op = rops.append_operator(0)
        assert rops.operators[op].norm() == 0.0
        rops.check_integrity()

    def test_copy_and_equality(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        other = rops.copy()
        assert other == rops
        op = next(i for i in range(rops.nrops) if rops.operators[i].norm() > 0)
        other.operators[op].scale(3.0)
        assert other != rops


class TestPOperators:
    def test_legs(self, chain_state):
        topo = chain_state.topology
        assert operator_legs(topo, 1, True, True) == topo.site_legs(1)
        assert operator_legs(topo, 1, False, True) == topo.site_legs(0)
        assert operator_legs(topo, 1, True, False) == (Leg('v', 1),)

    def test_no_physical_site(self, chain_state, tree):
        with pytest.raises(ValueError):
            operator_legs(chain_state.topology, chain_state.topology.open_bond, True, True)
        branch_in = tree.incoming_bonds(6)[0]
        with pytest.raises(ValueError):
            operator_legs(tree, branch_in, True, True)

    def test_identity(self, chain_state, attach_p_operator):
        rops = attach_p_operator(chain_state, 1)
        assert rops.nr_of_couplings == 3
        assert rops.qnumbers.shape[1:] == (3, 3)
        rops.check_integrity()
        for k in range(rops.nr_blocks_for_operator(0)):
            bra, ket = rops.block_shape(rops.qnumbers[k])
            assert bra == ket

    def test_couplings_must_fuse_across_legs(self, chain_state):
        topo, registry = chain_state.topology, chain_state.registry
        rops = RenormalizedOperators(1, 1, 1, operator_legs(topo, 1, True, True), registry)
        t = trivial_hss(registry)
        valid = set(chain_state.tensors[1].valid_triplets())
        i, p, o = next(iter(valid))
        nr_in = registry.sectors(1).nr_secs
        i2 = next(j for j in range(nr_in) if (j, p, o) not in valid)
        with pytest.raises(FusionRuleViolationError):
            rops.set_couplings([((i2, i2, t), (p, p, t), (o, o, t))])

    def test_enumeration_not_provided(self, chain_state, attach_p_operator):
        rops = attach_p_operator(chain_state, 1)
        with pytest.raises(ValueError, match="ordinary operators"):
            rops.allowed_couplings(0)


class TestFromArrays:
    def test_round_trip(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        other = RenormalizedOperators.from_arrays(
            2, 1, 0, rops.legs, rops.registry, rops.begin_blocks_of_hss, rops.qnumbers,
            rops.hss_of_ops, [o.copy() for o in rops.operators]
        )
        assert other == rops

    def test_wrong_begin_length(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        with pytest.raises(StructuralSizeMismatchError):
            RenormalizedOperators.from_arrays(
                2, 1, 0, rops.legs, rops.registry, rops.begin_blocks_of_hss[:-1],
                rops.qnumbers, rops.hss_of_ops, rops.operators
            )

    def test_missing_operator_storage(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        with pytest.raises(StructuralSizeMismatchError):
            RenormalizedOperators.from_arrays(
                2, 1, 0, rops.legs, rops.registry, rops.begin_blocks_of_hss,
                rops.qnumbers, rops.hss_of_ops, rops.operators[:-1]
            )

    def test_block_in_wrong_bucket(self, chain_state, attach_operators):
        rops = attach_operators(chain_state, 2)
        begin = rops.begin_blocks_of_hss.copy()
        h = next(h for h in range(1, rops.nrhss) if begin[h + 1] > begin[h])
        # move the first block of bucket h into the previous bucket
        begin[h] += 1
        with pytest.raises(StructuralSizeMismatchError):
            RenormalizedOperators.from_arrays(
                2, 1, 0, rops.legs, rops.registry, begin, rops.qnumbers,
                np.zeros(0, dtype=int), []
            )
