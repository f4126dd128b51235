"""
HDF5 snapshots of a network state.

Layout of a snapshot file::

    /network        nr_bonds, psites, sites, sweeplength | bonds, sitetoorb, sweep
    /bookkeeper     nrSyms, Max_symmetries, sgs, target_state, nr_bonds, psites
        v_symsec_<i>    nrSecs, totaldims | dims, irreps, fcidims
        p_symsec_<i>    (same)
    /hamiltonian    nrhss
        hss             (same as a symsec group)
    /T3NS           nrSites
        tensor_<i>      nrsites, sites, nrblocks | qnumbers
            block_0         nrBlocks | beginblock, tel
    /rOps           nrOps
        rOperator_<i>   bond_of_operator, is_left, P_operator, nrhss, nrops
                        | begin_blocks_of_hss, qnumbers, hss_of_ops
            block_<k>       one per operator

Attributes are stored as one-dimensional arrays. Datasets are flat and an
empty dataset is not written at all; readers treat a missing dataset as
empty and check it against the declared counts. Irreps are padded to
``MAX_SYMMETRIES`` columns on write.

The ``qnumbers`` of tensors and operators hold explicit sector-index
triplets, three integers per leg or coupling, rather than one packed
integer per block. Files in this layout are therefore not interchangeable
with snapshots that store packed quantum numbers.
"""

from __future__ import annotations
from contextlib import nullcontext
from typing import Sequence
import logging
import os

import h5py
import numpy as np
from numpy.typing import NDArray

from .config import EL_TYPE, MAX_SYMMETRIES, QN_TYPE, SNAPSHOT_NAME
from .errors import (
    SnapshotNotFoundError,
    StructuralSizeMismatchError,
    SymmetryConfigurationMismatchError,
    UnsupportedSymmetryCountError,
)
from .migration import check_target_state
from .network import NetworkTopology
from .roperators import RenormalizedOperators, operator_legs
from .sectors import SectorRegistry, SymmetrySectors, operator_sectors_from_physical
from .site_tensor import SiteTensor
from .sparseblocks import SparseBlocks
from .state import NetworkState
from .symmetries import SymmetryGroup, group_list_string, make_groups, target_state_string

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------- #
# Attribute and dataset helpers                                          #
# ---------------------------------------------------------------------- #

def _write_attr(group: h5py.Group, name: str, value, dtype=np.int32) -> None:
    value = np.atleast_1d(np.asarray(value, dtype=dtype)).reshape(-1)
    if value.size == 0:
        return
    group.attrs.create(name, value, dtype=dtype)


def _read_attr(group: h5py.Group, name: str, dtype=np.int64, default=None) -> NDArray:
    if name not in group.attrs:
        if default is not None:
            return np.asarray(default, dtype=dtype)
        raise StructuralSizeMismatchError(f"{group.name} misses attribute {name}")
    return np.asarray(group.attrs[name], dtype=dtype).reshape(-1)


def _read_int(group: h5py.Group, name: str) -> int:
    return int(_read_attr(group, name)[0])


def _open_group(parent: h5py.Group, name: str) -> h5py.Group:
    if name not in parent:
        raise StructuralSizeMismatchError(f"{parent.name} misses {name}")
    return parent[name]


def _write_dataset(group: h5py.Group, name: str, data, dtype) -> None:
    data = np.asarray(data, dtype=dtype).reshape(-1)
    if data.size == 0:
        return
    group.create_dataset(name, data=data)


def _read_dataset(group: h5py.Group, name: str, dtype, size: int) -> NDArray:
    if name in group:
        data = np.asarray(group[name][()], dtype=dtype).reshape(-1)
    else:
        data = np.zeros(0, dtype=dtype)
    if len(data) != size:
        raise StructuralSizeMismatchError(
            f"{group.name}/{name} holds {len(data)} values, {size} declared"
        )
    return data


def _write_blocks(parent: h5py.Group, nmbr: int, blocks: SparseBlocks, nr_blocks: int) -> None:
    group = parent.create_group(f"block_{nmbr}")
    _write_attr(group, "nrBlocks", nr_blocks)
    if nr_blocks == 0:
        return
    _write_dataset(group, "beginblock", blocks.beginblock, np.int32)
    if blocks.tel is not None:
        _write_dataset(group, "tel", blocks.tel, EL_TYPE)


def _read_blocks(parent: h5py.Group, nmbr: int, nr_blocks: int) -> SparseBlocks:
    name = f"block_{nmbr}"
    if name not in parent:
        if nr_blocks != 0:
            raise StructuralSizeMismatchError(f"{parent.name} misses {name}")
        return SparseBlocks.empty()

    group = _open_group(parent, name)
    declared = _read_int(group, "nrBlocks")
    if declared != nr_blocks:
        raise StructuralSizeMismatchError(
            f"{group.name} declares {declared} blocks, expected {nr_blocks}"
        )
    if nr_blocks == 0:
        return SparseBlocks.empty()

    beginblock = _read_dataset(group, "beginblock", np.int64, nr_blocks + 1)
    size = int(beginblock[-1])
    tel = _read_dataset(group, "tel", EL_TYPE, size) if size else None
    return SparseBlocks(beginblock, tel)


# ---------------------------------------------------------------------- #
# Sections                                                               #
# ---------------------------------------------------------------------- #

def _write_network(f: h5py.File, topology: NetworkTopology) -> None:
    group = f.create_group("/network")
    _write_attr(group, "nr_bonds", topology.nr_bonds)
    _write_dataset(group, "bonds", topology.bonds, np.int32)
    _write_attr(group, "psites", topology.psites)
    _write_attr(group, "sites", topology.sites)
    _write_dataset(group, "sitetoorb", topology.sitetoorb, np.int32)
    _write_attr(group, "sweeplength", topology.sweeplength)
    _write_dataset(group, "sweep", topology.sweep, np.int32)


def _read_network(f: h5py.File) -> NetworkTopology:
    group = _open_group(f, "network")
    nr_bonds = _read_int(group, "nr_bonds")
    sites = _read_int(group, "sites")
    bonds = _read_dataset(group, "bonds", np.intp, 2 * nr_bonds).reshape(nr_bonds, 2)
    sitetoorb = _read_dataset(group, "sitetoorb", np.intp, sites)
    sweep = _read_dataset(group, "sweep", np.intp, _read_int(group, "sweeplength"))
    try:
        topology = NetworkTopology(bonds, sitetoorb, sweep)
    except ValueError as err:
        raise StructuralSizeMismatchError(f"Invalid network in snapshot: {err}") from err
    if topology.psites != _read_int(group, "psites"):
        raise StructuralSizeMismatchError("Declared psites disagrees with sitetoorb")
    return topology


def _write_symsec(parent: h5py.Group, name: str, sectors: SymmetrySectors) -> None:
    group = parent.create_group(name)
    _write_attr(group, "nrSecs", sectors.nr_secs)
    _write_attr(group, "totaldims", sectors.total_dims)
    _write_dataset(group, "dims", sectors.dims, np.int32)
    padded = np.zeros((sectors.nr_secs, MAX_SYMMETRIES), dtype=np.int32)
    padded[:, :sectors.nr_syms] = sectors.irreps
    _write_dataset(group, "irreps", padded, np.int32)
    _write_dataset(group, "fcidims", sectors.fcidims, np.float64)


def _read_symsec(parent: h5py.Group, name: str, offset: int, nr_syms: int) -> SymmetrySectors:
    group = _open_group(parent, name)
    nr_secs = _read_int(group, "nrSecs")
    dims = _read_dataset(group, "dims", np.int64, nr_secs)
    irreps = _read_dataset(group, "irreps", QN_TYPE, nr_secs * offset)
    irreps = irreps.reshape(nr_secs, offset)[:, :nr_syms]
    fcidims = _read_dataset(group, "fcidims", np.float64, nr_secs)
    if nr_secs and _read_int(group, "totaldims") != int(np.sum(dims)):
        raise StructuralSizeMismatchError(f"{group.name}: totaldims disagrees with dims")
    return SymmetrySectors(irreps, dims, fcidims, nr_syms=nr_syms)


def _write_bookkeeper(f: h5py.File, groups: Sequence[SymmetryGroup],
                      registry: SectorRegistry) -> None:
    group = f.create_group("/bookkeeper")
    _write_attr(group, "nrSyms", registry.nr_syms)
    _write_attr(group, "Max_symmetries", MAX_SYMMETRIES)
    _write_attr(group, "sgs", [int(g.kind) for g in groups])
    _write_attr(group, "target_state", registry.target_state())
    _write_attr(group, "nr_bonds", registry.nr_bonds)
    for i in range(registry.nr_bonds):
        _write_symsec(group, f"v_symsec_{i}", registry.sectors(i))
    _write_attr(group, "psites", registry.psites)
    for i in range(registry.psites):
        _write_symsec(group, f"p_symsec_{i}", registry.physical(i))


def _read_bookkeeper(f: h5py.File, topology: NetworkTopology):
    group = _open_group(f, "bookkeeper")
    nr_syms = _read_int(group, "nrSyms")
    if nr_syms > MAX_SYMMETRIES:
        logger.error("Snapshot declares %d symmetries, at most %d supported",
                     nr_syms, MAX_SYMMETRIES)
        raise UnsupportedSymmetryCountError(nr_syms, MAX_SYMMETRIES)
    offset = _read_int(group, "Max_symmetries")

    sgs = _read_attr(group, "sgs", default=[])
    target = _read_attr(group, "target_state", default=[])
    if len(sgs) != nr_syms or len(target) != nr_syms:
        raise StructuralSizeMismatchError("sgs or target_state disagree with nrSyms")
    groups = make_groups(int(s) for s in sgs)

    nr_bonds = _read_int(group, "nr_bonds")
    psites = _read_int(group, "psites")
    if nr_bonds != topology.nr_bonds or psites != topology.psites:
        raise StructuralSizeMismatchError(
            f"Bookkeeper covers {nr_bonds} bonds and {psites} sites, network has "
            f"{topology.nr_bonds} and {topology.psites}"
        )

    # sectors are registered for the stored target, migration happens later
    registry = SectorRegistry(groups, [int(t) for t in target], nr_bonds, psites,
                              topology.open_bond)
    for i in range(nr_bonds):
        try:
            registry.register_sectors(i, _read_symsec(group, f"v_symsec_{i}", offset, nr_syms))
        except StructuralSizeMismatchError:
            raise
        except ValueError as err:
            raise StructuralSizeMismatchError(f"Sectors of bond {i}: {err}") from err
    for i in range(psites):
        registry.register_physical(i, _read_symsec(group, f"p_symsec_{i}", offset, nr_syms))
    return groups, registry


def _write_hamiltonian(f: h5py.File, registry: SectorRegistry) -> None:
    if registry.operator_sectors is None:
        return
    group = f.create_group("/hamiltonian")
    _write_attr(group, "nrhss", registry.operator_sectors.nr_secs)
    _write_symsec(group, "hss", registry.operator_sectors)


def _read_hamiltonian(f: h5py.File, registry: SectorRegistry, offset: int) -> None:
    if "hamiltonian" not in f:
        logger.info("Snapshot has no Hamiltonian sectors, deriving them from the sites")
        registry.register_operator_sectors(
            operator_sectors_from_physical(registry.groups, registry.p_symsecs)
        )
        return
    group = _open_group(f, "hamiltonian")
    hss = _read_symsec(group, "hss", offset, registry.nr_syms)
    if hss.nr_secs != _read_int(group, "nrhss"):
        raise StructuralSizeMismatchError("nrhss disagrees with the stored sectors")
    registry.register_operator_sectors(hss)


def _write_tensors(f: h5py.File, tensors: Sequence[SiteTensor]) -> None:
    group = f.create_group("/T3NS")
    _write_attr(group, "nrSites", len(tensors))
    for i, tensor in enumerate(tensors):
        sub = group.create_group(f"tensor_{i}")
        _write_attr(sub, "nrsites", tensor.nrsites)
        _write_attr(sub, "sites", tensor.sites)
        _write_attr(sub, "nrblocks", tensor.nrblocks)
        _write_dataset(sub, "qnumbers", tensor.qnumbers, QN_TYPE)
        _write_blocks(sub, 0, tensor.blocks, tensor.nrblocks)


def _read_tensors(f: h5py.File, topology: NetworkTopology,
                  registry: SectorRegistry) -> list[SiteTensor]:
    group = _open_group(f, "T3NS")
    nr_sites = _read_int(group, "nrSites")
    if nr_sites != topology.sites:
        raise StructuralSizeMismatchError(
            f"Snapshot holds {nr_sites} tensors for {topology.sites} sites"
        )
    tensors = []
    for i in range(nr_sites):
        sub = _open_group(group, f"tensor_{i}")
        nrsites = _read_int(sub, "nrsites")
        sites = _read_attr(sub, "sites")
        if nrsites != 1 or len(sites) != 1 or sites[0] != i:
            raise StructuralSizeMismatchError(f"tensor_{i} spans sites {sites.tolist()}")
        nrblocks = _read_int(sub, "nrblocks")
        qnumbers = _read_dataset(sub, "qnumbers", QN_TYPE, 3 * nrblocks)
        blocks = _read_blocks(sub, 0, nrblocks)
        tensors.append(SiteTensor.from_arrays(i, topology.site_legs(i), registry,
                                              qnumbers, blocks))
    return tensors


def _write_operators(f: h5py.File, operators: Sequence[RenormalizedOperators]) -> None:
    group = f.create_group("/rOps")
    _write_attr(group, "nrOps", len(operators))
    for i, rops in enumerate(operators):
        if rops.is_uninitialized:
            continue
        sub = group.create_group(f"rOperator_{i}")
        _write_attr(sub, "bond_of_operator", rops.bond_of_operator)
        _write_attr(sub, "is_left", rops.is_left)
        _write_attr(sub, "P_operator", rops.P_operator)
        _write_attr(sub, "nrhss", rops.nrhss)
        _write_dataset(sub, "begin_blocks_of_hss", rops.begin_blocks_of_hss, np.int32)
        _write_dataset(sub, "qnumbers", rops.qnumbers, QN_TYPE)
        _write_attr(sub, "nrops", rops.nrops)
        _write_dataset(sub, "hss_of_ops", rops.hss_of_ops, np.int32)
        for op in range(rops.nrops):
            _write_blocks(sub, op, rops.operators[op], rops.nr_blocks_for_operator(op))


def _read_operators(f: h5py.File, topology: NetworkTopology,
                    registry: SectorRegistry) -> list[RenormalizedOperators]:
    group = _open_group(f, "rOps")
    nr_ops = _read_int(group, "nrOps")
    if nr_ops != topology.nr_bonds:
        raise StructuralSizeMismatchError(
            f"Snapshot holds {nr_ops} operator sets for {topology.nr_bonds} bonds"
        )
    operators = []
    for i in range(nr_ops):
        name = f"rOperator_{i}"
        if name not in group:
            operators.append(RenormalizedOperators.uninitialized())
            continue
        sub = group[name]
        bond = _read_int(sub, "bond_of_operator")
        is_left = _read_int(sub, "is_left")
        P_operator = _read_int(sub, "P_operator")
        nrhss = _read_int(sub, "nrhss")
        nrops = _read_int(sub, "nrops")
        ncoup = 3 if P_operator else 1

        begin = _read_dataset(sub, "begin_blocks_of_hss", np.int64, nrhss + 1)
        qnumbers = _read_dataset(sub, "qnumbers", QN_TYPE, int(begin[-1]) * ncoup * 3)
        hss_of_ops = _read_dataset(sub, "hss_of_ops", np.int64, nrops)
        if np.any((hss_of_ops < 0) | (hss_of_ops >= nrhss)):
            raise StructuralSizeMismatchError(f"{sub.name}: hss_of_ops out of range")
        blocks = [
            _read_blocks(sub, op, int(begin[h + 1] - begin[h]))
            for op, h in enumerate(hss_of_ops)
        ]
        if not 0 <= bond < topology.nr_bonds:
            raise StructuralSizeMismatchError(
                f"{sub.name}: bond_of_operator {bond} out of range [0, {topology.nr_bonds})"
            )
        try:
            legs = operator_legs(topology, bond, is_left, P_operator)
        except ValueError as err:
            raise StructuralSizeMismatchError(f"{sub.name}: {err}") from err
        operators.append(RenormalizedOperators.from_arrays(
            bond, is_left, P_operator, legs, registry, begin, qnumbers, hss_of_ops, blocks
        ))
    return operators


# ---------------------------------------------------------------------- #
# Public interface                                                       #
# ---------------------------------------------------------------------- #

def snapshot_path(location: str) -> str:
    """The snapshot file inside directory ``location``."""
    return os.path.join(location, SNAPSHOT_NAME.lstrip("/"))


def write_snapshot(state: NetworkState, filename: str) -> None:
    """
    Write ``state`` to the HDF5 file ``filename``, replacing it.

    Sections are written in the order network, bookkeeper, Hamiltonian
    sectors, tensors and operators. The state is held exclusively while
    writing.
    """
    with state.exclusive():
        state.check_integrity()
        with h5py.File(filename, 'w') as f:
            _write_network(f, state.topology)
            _write_bookkeeper(f, state.groups, state.registry)
            _write_hamiltonian(f, state.registry)
            _write_tensors(f, state.tensors)
            _write_operators(f, state.operators)
    logger.info("Snapshot written to %s", filename)


def write_to_disk(state: NetworkState, location: str | None) -> str | None:
    """
    Write ``state`` to the default snapshot file in directory ``location``.

    Returns
    -------
    str or None
        The file written, None if ``location`` is None (nothing is written).
    """
    if location is None:
        return None
    filename = snapshot_path(location)
    write_snapshot(state, filename)
    return filename


def read_from_disk(
    filename: str,
    state: NetworkState | None = None,
    groups: Sequence[SymmetryGroup] | None = None,
    target_state: Sequence[int] | None = None,
    topology: NetworkTopology | None = None
) -> NetworkState:
    """
    Read a snapshot and bring it to the configured target state.

    Parameters
    ----------
    filename : str
        The snapshot file.
    state : NetworkState, optional
        State to load into. Its groups, target state and topology act as the
        configuration and its contents are replaced on success.
    groups : sequence of SymmetryGroup, optional
        Configured symmetry groups. The snapshot's groups are adopted if
        neither this nor ``state`` is given.
    target_state : sequence of int, optional
        Requested target state. The stored one is kept if None.
    topology : NetworkTopology, optional
        Independently established topology; counts must match the snapshot.

    Returns
    -------
    NetworkState

    Raises
    ------
    SnapshotNotFoundError
        If the file does not exist.
    UnsupportedSymmetryCountError
        If the snapshot uses more symmetry groups than supported.
    SymmetryConfigurationMismatchError
        If the configured and stored symmetry groups differ.
    StructuralSizeMismatchError
        If declared counts disagree with the data or the topology.
    TargetStateIncompatibleError
        If the stored state can not be migrated to ``target_state``.
    """
    if not os.path.exists(filename):
        logger.error("Can not read from disk, %s was not found", filename)
        raise SnapshotNotFoundError(f"{filename} was not found")

    if state is not None:
        groups = state.groups if groups is None else groups
        target_state = state.target_state if target_state is None else target_state
        topology = state.topology if topology is None else topology

    with state.exclusive() if state is not None else nullcontext():
        with h5py.File(filename, 'r') as f:
            stored_topology = _read_network(f)
            if topology is not None and (
                    topology.nr_bonds != stored_topology.nr_bonds
                    or topology.sites != stored_topology.sites
                    or topology.psites != stored_topology.psites):
                raise StructuralSizeMismatchError(
                    f"Snapshot network {stored_topology} does not match {topology}"
                )

            stored_groups, registry = _read_bookkeeper(f, stored_topology)
            if groups is not None and tuple(groups) != tuple(stored_groups):
                logger.error("Symmetries do not match between configuration and snapshot")
                raise SymmetryConfigurationMismatchError(
                    group_list_string(groups), group_list_string(stored_groups)
                )

            offset = _read_int(_open_group(f, "bookkeeper"), "Max_symmetries")
            _read_hamiltonian(f, registry, offset)
            tensors = _read_tensors(f, stored_topology, registry)
            operators = _read_operators(f, stored_topology, registry)

        loaded = NetworkState(stored_groups, registry, stored_topology, tensors, operators)
        loaded.check_integrity()
        logger.info("Snapshot %s read, stored target state %s", filename,
                    target_state_string(stored_groups, registry.target_state()))

        if target_state is not None:
            check_target_state(loaded, target_state)

        if state is None:
            return loaded
        state.groups = loaded.groups
        state.registry = loaded.registry
        state.topology = loaded.topology
        state.tensors = loaded.tensors
        state.operators = loaded.operators
        return state
