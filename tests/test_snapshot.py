"""Tests for reading and writing HDF5 snapshots."""

import os

import h5py
import numpy as np
import pytest

from symmetric_ttns.config import MAX_SYMMETRIES, SNAPSHOT_NAME
from symmetric_ttns.errors import (
    SnapshotNotFoundError,
    StructuralSizeMismatchError,
    SymmetryConfigurationMismatchError,
    TargetStateIncompatibleError,
    UnsupportedSymmetryCountError,
)
from symmetric_ttns.network import chain_topology
from symmetric_ttns.snapshot import read_from_disk, write_snapshot, write_to_disk
from symmetric_ttns.state import NetworkState
from symmetric_ttns.symmetries import make_groups


@pytest.fixture
def full_state(chain_state, attach_operators, attach_p_operator):
    """Chain state with ordinary operators on bond 2 and a P operator on bond 1."""
    attach_operators(chain_state, 2, seed=7)
    attach_p_operator(chain_state, 1)
    chain_state.check_integrity()
    return chain_state


@pytest.fixture
def snapshot(tmp_path, full_state):
    filename = str(tmp_path / "state.h5")
    write_snapshot(full_state, filename)
    return filename


class TestRoundTrip:
    def test_exact(self, snapshot, full_state):
        assert read_from_disk(snapshot) == full_state

    def test_with_configuration(self, snapshot, full_state, seniority_groups, chain4):
        state = read_from_disk(snapshot, groups=seniority_groups, target_state=(0, 4, 2),
                               topology=chain4)
        assert state == full_state

    def test_tree(self, tmp_path, tree_state):
        filename = str(tmp_path / "tree.h5")
        write_snapshot(tree_state, filename)
        assert read_from_disk(filename) == tree_state

    def test_su2(self, tmp_path, spin_state, attach_operators):
        attach_operators(spin_state, 2)
        filename = str(tmp_path / "spin.h5")
        write_snapshot(spin_state, filename)
        assert read_from_disk(filename) == spin_state

    def test_single_site(self, tmp_path, seniority_groups):
        state = NetworkState.random_init(seniority_groups, (0, 2, 0), chain_topology(1), seed=0)
        filename = str(tmp_path / "single.h5")
        write_snapshot(state, filename)
        with h5py.File(filename, 'r') as f:
            # an empty sweep is not written
            assert "sweep" not in f["/network"]
            assert f["/network"].attrs["sweeplength"].tolist() == [0]
        assert read_from_disk(filename) == state

    def test_overwrites(self, snapshot, tree_state):
        write_snapshot(tree_state, snapshot)
        assert read_from_disk(snapshot) == tree_state

    def test_into_existing_state(self, snapshot, full_state, seniority_groups, chain4):
        other = NetworkState.random_init(seniority_groups, (0, 4, 2), chain4, max_dim=2, seed=99)
        assert other != full_state
        result = read_from_disk(snapshot, state=other)
        assert result is other
        assert other == full_state

    def test_write_to_disk(self, tmp_path, full_state):
        filename = write_to_disk(full_state, str(tmp_path))
        assert filename == os.path.join(str(tmp_path), SNAPSHOT_NAME)
        assert read_from_disk(filename) == full_state

    def test_write_to_disk_without_location(self, full_state):
        assert write_to_disk(full_state, None) is None


class TestLayout:
    def test_groups(self, snapshot):
        with h5py.File(snapshot, 'r') as f:
            for name in ("/network", "/bookkeeper", "/hamiltonian", "/T3NS", "/rOps",
                         "/bookkeeper/v_symsec_0", "/bookkeeper/p_symsec_3",
                         "/T3NS/tensor_3/block_0", "/rOps/rOperator_0",
                         "/rOps/rOperator_1/block_0", "/rOps/rOperator_2"):
                assert name in f

    def test_uninitialized_operators_skipped(self, snapshot):
        with h5py.File(snapshot, 'r') as f:
            assert f["/rOps"].attrs["nrOps"].tolist() == [5]
            assert "rOperator_3" not in f["/rOps"]

    def test_attributes_are_int32_arrays(self, snapshot):
        with h5py.File(snapshot, 'r') as f:
            attr = f["/bookkeeper"].attrs["sgs"]
            assert attr.dtype == np.int32
            assert attr.tolist() == [0, 1, 11]
            assert f["/bookkeeper"].attrs["target_state"].tolist() == [0, 4, 2]
            assert f["/bookkeeper"].attrs["Max_symmetries"].tolist() == [MAX_SYMMETRIES]
            assert f["/T3NS/tensor_0"].attrs["sites"].shape == (1,)

    def test_irreps_padded(self, snapshot, full_state):
        with h5py.File(snapshot, 'r') as f:
            sub = f["/bookkeeper/v_symsec_2"]
            nr_secs = int(sub.attrs["nrSecs"][0])
            irreps = sub["irreps"][()].reshape(nr_secs, MAX_SYMMETRIES)
        expected = full_state.registry.sectors(2).irreps
        np.testing.assert_array_equal(irreps[:, :3], expected)
        assert not np.any(irreps[:, 3:])

    def test_empty_operator_blocks_have_no_datasets(self, snapshot, full_state):
        rops = full_state.operators[2]
        empty = [op for op in range(rops.nrops) if rops.nr_blocks_for_operator(op) == 0]
        with h5py.File(snapshot, 'r') as f:
            for op in empty:
                group = f[f"/rOps/rOperator_2/block_{op}"]
                assert group.attrs["nrBlocks"].tolist() == [0]
                assert "beginblock" not in group
                assert "tel" not in group


class TestErrors:
    def test_missing_file(self, tmp_path):
        filename = str(tmp_path / "absent.h5")
        with pytest.raises(SnapshotNotFoundError):
            read_from_disk(filename)
        with pytest.raises(FileNotFoundError):
            read_from_disk(filename)

    def test_too_many_symmetries(self, snapshot):
        with h5py.File(snapshot, 'a') as f:
            f["/bookkeeper"].attrs.create("nrSyms", np.array([MAX_SYMMETRIES + 1], dtype=np.int32))
        with pytest.raises(UnsupportedSymmetryCountError) as excinfo:
            read_from_disk(snapshot)
        assert excinfo.value.requested == MAX_SYMMETRIES + 1

    def test_symmetry_mismatch(self, snapshot):
        with pytest.raises(SymmetryConfigurationMismatchError):
            read_from_disk(snapshot, groups=make_groups(["Z2", "U1", "U1"]))

    def test_topology_mismatch(self, snapshot):
        with pytest.raises(StructuralSizeMismatchError):
            read_from_disk(snapshot, topology=chain_topology(5))

    def test_truncated_payload(self, snapshot):
        with h5py.File(snapshot, 'a') as f:
            del f["/T3NS/tensor_1/block_0/tel"]
        with pytest.raises(StructuralSizeMismatchError):
            read_from_disk(snapshot)

    @pytest.mark.parametrize("name", [
        "/network", "/bookkeeper", "/T3NS", "/T3NS/tensor_1", "/rOps",
        "/T3NS/tensor_1/block_0",
    ])
    def test_missing_group(self, snapshot, name):
        with h5py.File(snapshot, 'a') as f:
            del f[name]
        with pytest.raises(StructuralSizeMismatchError):
            read_from_disk(snapshot)

    def test_operator_bond_out_of_range(self, snapshot):
        with h5py.File(snapshot, 'a') as f:
            f["/rOps/rOperator_1"].attrs.create("bond_of_operator",
                                                np.array([99], dtype=np.int32))
        with pytest.raises(StructuralSizeMismatchError):
            read_from_disk(snapshot)

    def test_bad_block_count(self, snapshot):
        with h5py.File(snapshot, 'a') as f:
            group = f["/T3NS/tensor_1"]
            nrblocks = int(group.attrs["nrblocks"][0])
            group.attrs.create("nrblocks", np.array([nrblocks + 1], dtype=np.int32))
        with pytest.raises(StructuralSizeMismatchError):
            read_from_disk(snapshot)

    def test_state_untouched_on_failure(self, snapshot, seniority_groups, chain4):
        other = NetworkState.random_init(seniority_groups, (0, 4, 2), chain4, max_dim=2, seed=99)
        before = other.copy()
        with h5py.File(snapshot, 'a') as f:
            del f["/T3NS/tensor_1/block_0/tel"]
        with pytest.raises(StructuralSizeMismatchError):
            read_from_disk(snapshot, state=other)
        assert other == before


class TestMigrationOnRead:
    def test_missing_hamiltonian_sectors(self, snapshot, full_state):
        with h5py.File(snapshot, 'a') as f:
            del f["/hamiltonian"]
        assert read_from_disk(snapshot) == full_state

    def test_seniority_change(self, snapshot):
        state = read_from_disk(snapshot, target_state=(0, 4, 0))
        assert state.target_state == (0, 4, 0)
        assert state.root_tensor.norm() == pytest.approx(1.0)
        state.check_integrity()

    def test_incompatible_target(self, snapshot):
        with pytest.raises(TargetStateIncompatibleError) as excinfo:
            read_from_disk(snapshot, target_state=(0, 2, 2))
        assert excinfo.value.group == "U1"

    def test_target_of_existing_state_is_used(self, snapshot, seniority_groups, chain4):
        other = NetworkState.random_init(seniority_groups, (0, 4, 0), chain4, max_dim=2, seed=99)
        read_from_disk(snapshot, state=other)
        assert other.target_state == (0, 4, 0)
        other.check_integrity()
