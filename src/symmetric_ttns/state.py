"""
The complete state of a symmetric tree tensor network.

:class:`NetworkState` owns the sector registry, the topology, one site
tensor per site and one renormalized operator set per bond. Tensors and
operators only hold back-references (sector indices and the registry
object) to the registry; the state is their single owner.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, Sequence
import logging
import threading

import numpy as np

from .errors import StructuralSizeMismatchError
from .network import NetworkTopology
from .roperators import RenormalizedOperators
from .sectors import (
    SectorRegistry,
    SymmetrySectors,
    build_virtual_sectors,
    operator_sectors_from_physical,
    physical_sectors,
    target_sectors,
)
from .site_tensor import SiteTensor
from .symmetries import SymmetryGroup, target_state_string

logger = logging.getLogger(__name__)


class NetworkState:
    """
    Symmetry groups, registry, topology, site tensors and operators.

    Parameters
    ----------
    groups : sequence of SymmetryGroup
        The configured symmetry groups.
    registry : SectorRegistry
        Sector registry, shares ``groups``.
    topology : NetworkTopology
        The network.
    tensors : list of SiteTensor, optional
        One tensor per site.
    operators : list of RenormalizedOperators, optional
        One operator set per bond. Uninitialized sets if None.
    """

    def __init__(
        self,
        groups: Sequence[SymmetryGroup],
        registry: SectorRegistry,
        topology: NetworkTopology,
        tensors: list[SiteTensor] | None = None,
        operators: list[RenormalizedOperators] | None = None
    ):
        self.groups = tuple(groups)
        self.registry = registry
        self.topology = topology
        self.tensors = list(tensors) if tensors is not None else []
        if operators is None:
            operators = [RenormalizedOperators.uninitialized() for _ in range(topology.nr_bonds)]
        self.operators = list(operators)
        self._lock = threading.RLock()

    @contextmanager
    def exclusive(self) -> Iterator['NetworkState']:
        """
        Hold the state exclusively for a structural operation.

        Re-entrant, so a snapshot read may run a migration while holding it.
        """
        with self._lock:
            yield self

    @property
    def target_state(self) -> tuple[int, ...]:
        return self.registry.target_state()

    @classmethod
    def random_init(
        cls,
        groups: Sequence[SymmetryGroup],
        target_state: Sequence[int],
        topology: NetworkTopology,
        *,
        max_dim: int | None = None,
        orbital_irreps: Sequence[int] | None = None,
        operator_sectors: SymmetrySectors | None = None,
        seed: int | None = None
    ) -> 'NetworkState':
        """
        Fresh state with random site tensors.

        The registry is built first (physical sectors, Hamiltonian symmetry
        sectors, then virtual sectors by forward/backward propagation), then
        one random tensor per site. Vacuum bonds and the open bond get the
        identity operator, every other bond starts uninitialized.

        Parameters
        ----------
        groups : sequence of SymmetryGroup
            Symmetry groups.
        target_state : sequence of int
            Target irrep, one per group.
        topology : NetworkTopology
            The network.
        max_dim : int, optional
            Maximal dimension per sector.
        orbital_irreps : sequence of int, optional
            Point group irrep per orbital, 0 if None.
        operator_sectors : SymmetrySectors, optional
            Hamiltonian symmetry sectors. Derived from the physical sectors
            if None.
        seed : int, optional
            Seed of the random number generator.

        Returns
        -------
        NetworkState
        """
        registry = SectorRegistry(groups, target_state, topology.nr_bonds,
                                  topology.psites, topology.open_bond)
        for orb in range(topology.psites):
            irrep = 0 if orbital_irreps is None else int(orbital_irreps[orb])
            registry.register_physical(orb, physical_sectors(groups, irrep))

        if operator_sectors is None:
            operator_sectors = operator_sectors_from_physical(groups, registry.p_symsecs)
        registry.register_operator_sectors(operator_sectors)
        build_virtual_sectors(registry, topology, max_dim)

        rng = np.random.default_rng(seed)
        tensors = [SiteTensor.random(site, topology, registry, rng)
                   for site in range(topology.sites)]

        operators = []
        for bond in range(topology.nr_bonds):
            if topology.is_vacuum(bond):
                operators.append(RenormalizedOperators.vacuum(bond, 1, registry))
            elif topology.is_open(bond):
                operators.append(RenormalizedOperators.vacuum(bond, 0, registry))
            else:
                operators.append(RenormalizedOperators.uninitialized())

        logger.info("Initialised random state for target %s over %d sites",
                    target_state_string(groups, registry.target_state()), topology.sites)
        return cls(groups, registry, topology, tensors, operators)

    @property
    def root_tensor(self) -> SiteTensor:
        """The tensor attached to the open bond."""
        return self.tensors[self.topology.root]

    def check_integrity(self) -> None:
        """
        Verify referential integrity of the whole state.

        Raises
        ------
        StructuralSizeMismatchError
            If counts or legs disagree with the topology.
        SectorIndexError, FusionRuleViolationError
            If a tensor or operator refers to invalid sectors.
        """
        topo = self.topology
        if self.registry.groups != self.groups:
            raise StructuralSizeMismatchError("Registry and state disagree on the symmetry groups")
        if len(self.tensors) != topo.sites:
            raise StructuralSizeMismatchError(
                f"{len(self.tensors)} site tensors for {topo.sites} sites"
            )
        if len(self.operators) != topo.nr_bonds:
            raise StructuralSizeMismatchError(
                f"{len(self.operators)} operator sets for {topo.nr_bonds} bonds"
            )

        expected = target_sectors(self.groups, self.registry.target_state())
        open_sectors = self.registry.sectors(topo.open_bond)
        if {tuple(r) for r in open_sectors.irreps.tolist()} != \
                {tuple(r) for r in expected.irreps.tolist()}:
            raise StructuralSizeMismatchError("Open bond sectors do not match the target state")

        for site, tensor in enumerate(self.tensors):
            if tensor.site != site or tensor.legs != topo.site_legs(site):
                raise StructuralSizeMismatchError(f"Tensor {site} has the wrong legs")
            tensor.check_integrity()

        for bond, rops in enumerate(self.operators):
            if rops.is_uninitialized:
                rops.check_integrity()
                continue
            if rops.bond_of_operator != bond:
                raise StructuralSizeMismatchError(
                    f"Operator set {bond} is attached to bond {rops.bond_of_operator}"
                )
            rops.check_integrity()

    def copy(self) -> 'NetworkState':
        """Deep copy; tensors and operators refer to the copied registry."""
        registry = self.registry.copy()
        tensors = []
        for tensor in self.tensors:
            tensor = tensor.copy()
            tensor.registry = registry
            tensors.append(tensor)
        operators = []
        for rops in self.operators:
            rops = rops.copy()
            if not rops.is_uninitialized:
                rops.registry = registry
            operators.append(rops)
        return NetworkState(self.groups, registry, self.topology, tensors, operators)

    def destroy(self) -> None:
        """Release every tensor and operator."""
        with self.exclusive():
            self.tensors = []
            self.operators = []
            self.registry = None
            self.topology = None

    def __eq__(self, other) -> bool:
        if not isinstance(other, NetworkState):
            return NotImplemented
        return (
            self.groups == other.groups
            and self.topology == other.topology
            and self.registry == other.registry
            and self.tensors == other.tensors
            and self.operators == other.operators
        )

    def __repr__(self) -> str:
        return (f"NetworkState(groups={[g.name for g in self.groups]}, "
                f"target={self.registry.target_state() if self.registry else None}, "
                f"sites={len(self.tensors)})")
