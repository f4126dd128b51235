"""
Symmetric Tree Tensor Network states.

A Python library for the bookkeeping of symmetry-decorated tree tensor
network states (three-legged tree tensor networks and matrix product
states) with Z2, U(1), SU(2), point group and seniority symmetries.
Covers the symmetry algebra, the sector registry every tensor and operator
refers to, block-sparse site tensors and renormalized operators, HDF5
snapshots and the migration of a stored state to a new target state.

Main Classes
------------
SymmetryGroup
    Fusion rules, irrep text and coupling prefactors of one group.
SectorRegistry
    Symmetry sectors of every bond and physical site.
NetworkTopology
    Tree of sites and bonds with a single open bond.
SiteTensor
    Block-sparse tensor addressed by sector-index triplets.
RenormalizedOperators
    Operator blocks of one bond, bucketed by Hamiltonian symmetry sector.
NetworkState
    Owner of registry, topology, tensors and operators.

Key Functions
-------------
make_group
    Get a symmetry group by tag or name.
build_virtual_sectors
    Forward/backward sector propagation over the network.
write_to_disk, read_from_disk
    HDF5 snapshot persistence.
change_target_state
    Migrate a state to a new target state.

Example
-------
>>> from symmetric_ttns import (make_groups, chain_topology, NetworkState,
...                             write_to_disk, read_from_disk)
>>>
>>> # Z2 x U1 x SENIORITY on a chain of 4 orbitals, 4 electrons
>>> groups = make_groups(["Z2", "U1", "SENIORITY"])
>>> state = NetworkState.random_init(groups, (0, 4, 2), chain_topology(4),
...                                  max_dim=8, seed=1)
>>>
>>> # Store it and read it back with seniority restricted to zero
>>> path = write_to_disk(state, "/tmp")
>>> restored = read_from_disk(path, target_state=(0, 4, 0))
"""

__version__ = "0.1.0"
__author__ = "MaximeD"

# Configuration and errors
from .config import MAX_SYMMETRIES, SNAPSHOT_NAME
from .errors import (
    SymmetricTTNSError,
    SnapshotNotFoundError,
    SectorIndexError,
    UnsupportedSymmetryCountError,
    SymmetryConfigurationMismatchError,
    TargetStateIncompatibleError,
    FusionRuleViolationError,
    StructuralSizeMismatchError,
)

# Symmetry algebra
from .symmetries import (
    GroupKind,
    SymmetryGroup,
    make_group,
    make_groups,
    group_list_string,
    target_state_string,
)

# Sectors and topology
from .sectors import (
    Leg,
    SymmetrySector,
    SymmetrySectors,
    SectorRegistry,
    target_sectors,
    physical_sectors,
    build_virtual_sectors,
)
from .network import (
    NetworkTopology,
    chain_topology,
    three_legged_topology,
)

# Block-sparse storage
from .sparseblocks import SparseBlocks
from .site_tensor import SiteTensor
from .roperators import RenormalizedOperators, operator_legs

# State, persistence and migration
from .state import NetworkState
from .migration import (
    MigrationStatus,
    MigrationResult,
    change_seniority,
    change_target_state,
    check_target_state,
)
from .snapshot import (
    write_to_disk,
    write_snapshot,
    read_from_disk,
)

# Coupling coefficients (usually internal)
from . import wigner


__all__ = [
    # Version
    "__version__",
    # Configuration
    "MAX_SYMMETRIES",
    "SNAPSHOT_NAME",
    # Errors
    "SymmetricTTNSError",
    "SnapshotNotFoundError",
    "SectorIndexError",
    "UnsupportedSymmetryCountError",
    "SymmetryConfigurationMismatchError",
    "TargetStateIncompatibleError",
    "FusionRuleViolationError",
    "StructuralSizeMismatchError",
    # Symmetries
    "GroupKind",
    "SymmetryGroup",
    "make_group",
    "make_groups",
    "group_list_string",
    "target_state_string",
    # Sectors
    "Leg",
    "SymmetrySector",
    "SymmetrySectors",
    "SectorRegistry",
    "target_sectors",
    "physical_sectors",
    "build_virtual_sectors",
    # Topology
    "NetworkTopology",
    "chain_topology",
    "three_legged_topology",
    # Storage
    "SparseBlocks",
    "SiteTensor",
    "RenormalizedOperators",
    "operator_legs",
    # State
    "NetworkState",
    "MigrationStatus",
    "MigrationResult",
    "change_seniority",
    "change_target_state",
    "check_target_state",
    "write_to_disk",
    "write_snapshot",
    "read_from_disk",
    # Internal modules
    "wigner",
]
