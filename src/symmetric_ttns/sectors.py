"""
Symmetry sectors and the sector registry.

Every bond of the network and every physical site carries an ordered list
of symmetry sectors: a tuple of irreps (one per configured symmetry group),
a dimension and a reference "full" dimension. Tensors and operators only
store sector *indices* into these lists, so the registry is the single
source of truth for the quantum numbers of every leg.
"""

from __future__ import annotations
from dataclasses import dataclass
from itertools import product
from typing import TYPE_CHECKING, Iterable, NamedTuple, Sequence
import logging

import numpy as np
from numpy.typing import NDArray

from .config import MAX_SYMMETRIES, QN_TYPE
from .errors import SectorIndexError, UnsupportedSymmetryCountError
from .symmetries import GroupKind, SymmetryGroup

if TYPE_CHECKING:
    from .network import NetworkTopology

logger = logging.getLogger(__name__)


class Leg(NamedTuple):
    """A tensor leg: a virtual bond (``kind='v'``) or a physical site (``'p'``)."""

    kind: str
    index: int


@dataclass(frozen=True)
class SymmetrySector:
    """
    A single symmetry sector.

    Attributes
    ----------
    irreps : tuple of int
        One irrep label per configured symmetry group.
    dim : int
        Number of (multiplet) states kept in this sector.
    fcidim : float
        Reference dimension of the sector without truncation.
    """
    irreps: tuple[int, ...]
    dim: int
    fcidim: float = 0.0


class SymmetrySectors:
    """
    Ordered list of symmetry sectors of one bond or site.

    Attributes
    ----------
    irreps : ndarray, shape (nr_secs, nr_syms)
        Irrep labels of every sector.
    dims : ndarray, shape (nr_secs,)
        Sector dimensions.
    fcidims : ndarray, shape (nr_secs,)
        Untruncated reference dimensions.
    """

    def __init__(
        self,
        irreps: NDArray | Sequence[Sequence[int]],
        dims: NDArray | Sequence[int],
        fcidims: NDArray | Sequence[float] | None = None,
        nr_syms: int | None = None
    ):
        dims = np.asarray(dims, dtype=np.int64).reshape(-1)
        if nr_syms is None:
            nr_syms = np.asarray(irreps).shape[-1] if len(dims) else 0
        self.irreps = np.asarray(irreps, dtype=QN_TYPE).reshape(len(dims), nr_syms)
        self.dims = dims
        if fcidims is None:
            fcidims = dims.astype(float)
        self.fcidims = np.asarray(fcidims, dtype=float).reshape(-1)

        if len(self.fcidims) != len(self.dims):
            raise ValueError("fcidims and dims differ in length")
        if np.any(self.dims < 0):
            raise ValueError("Sector dimensions must be non-negative")
        if len({tuple(row) for row in self.irreps.tolist()}) != len(self.dims):
            raise ValueError("Duplicate irreps in sector list")

    @classmethod
    def from_sectors(cls, sectors: Iterable[SymmetrySector], nr_syms: int) -> 'SymmetrySectors':
        sectors = list(sectors)
        return cls(
            [s.irreps for s in sectors],
            [s.dim for s in sectors],
            [s.fcidim for s in sectors],
            nr_syms=nr_syms
        )

    @property
    def nr_secs(self) -> int:
        return len(self.dims)

    @property
    def nr_syms(self) -> int:
        return self.irreps.shape[1]

    @property
    def total_dims(self) -> int:
        return int(np.sum(self.dims))

    def __len__(self) -> int:
        return self.nr_secs

    def __iter__(self):
        return (self.sector(i) for i in range(self.nr_secs))

    def sector(self, index: int) -> SymmetrySector:
        return SymmetrySector(
            tuple(int(x) for x in self.irreps[index]),
            int(self.dims[index]),
            float(self.fcidims[index])
        )

    def index_of(self, irreps: Sequence[int]) -> int | None:
        """Index of the sector with the given irreps, None if absent."""
        matches = np.where(np.all(self.irreps == np.asarray(irreps), axis=1))[0]
        if len(matches) == 0:
            return None
        return int(matches[0])

    def copy(self) -> 'SymmetrySectors':
        return SymmetrySectors(
            self.irreps.copy(), self.dims.copy(), self.fcidims.copy(),
            nr_syms=self.nr_syms
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, SymmetrySectors):
            return NotImplemented
        return (
            np.array_equal(self.irreps, other.irreps)
            and np.array_equal(self.dims, other.dims)
            and np.array_equal(self.fcidims, other.fcidims)
        )

    def __repr__(self) -> str:
        return f"SymmetrySectors(nr_secs={self.nr_secs}, total_dims={self.total_dims})"


class SectorRegistry:
    """
    Registry of the symmetry sectors of every bond and physical site.

    Besides the virtual (bond) and physical sectors, the registry keeps the
    Hamiltonian symmetry sectors ("hss"): the irreps that a term of the
    Hamiltonian can carry, used to index renormalized operators.

    Parameters
    ----------
    groups : sequence of SymmetryGroup
        The configured symmetry groups.
    target_state : sequence of int
        Global target irrep, one label per group.
    nr_bonds : int
        Number of bonds of the network.
    psites : int
        Number of physical sites.
    open_bond : int, optional
        The bond carrying the target state. Its sector list must match the
        target state.
    """

    def __init__(
        self,
        groups: Sequence[SymmetryGroup],
        target_state: Sequence[int],
        nr_bonds: int,
        psites: int,
        open_bond: int | None = None
    ):
        self.groups = tuple(groups)
        if len(self.groups) > MAX_SYMMETRIES:
            raise UnsupportedSymmetryCountError(len(self.groups), MAX_SYMMETRIES)
        self._target_state = self._checked_target(target_state)
        self.nr_bonds = nr_bonds
        self.psites = psites
        self.open_bond = open_bond
        self.v_symsecs: list[SymmetrySectors | None] = [None] * nr_bonds
        self.p_symsecs: list[SymmetrySectors | None] = [None] * psites
        self.operator_sectors: SymmetrySectors | None = None

    @property
    def nr_syms(self) -> int:
        return len(self.groups)

    @property
    def sgs(self) -> tuple[GroupKind, ...]:
        return tuple(g.kind for g in self.groups)

    def _checked_target(self, target_state: Sequence[int]) -> tuple[int, ...]:
        target = tuple(int(x) for x in target_state)
        if len(target) != len(self.groups):
            raise ValueError(
                f"Target state has {len(target)} labels for {len(self.groups)} symmetries"
            )
        return target

    def _check_sectors(self, sectors: SymmetrySectors) -> None:
        if sectors.nr_secs and sectors.nr_syms != self.nr_syms:
            raise ValueError(
                f"Sectors carry {sectors.nr_syms} irreps, expected {self.nr_syms}"
            )

    # ------------------------------------------------------------------ #
    # Target state                                                       #
    # ------------------------------------------------------------------ #

    def target_state(self) -> tuple[int, ...]:
        return self._target_state

    def set_target_state(self, target_state: Sequence[int]) -> None:
        """
        Change the configured target state.

        The sector list of the open bond is left untouched; use
        :meth:`retarget` to change both at once.
        """
        self._target_state = self._checked_target(target_state)

    def retarget(self, target_state: Sequence[int], open_sectors: SymmetrySectors) -> None:
        """Replace the target state together with the open bond's sectors."""
        previous = self._target_state
        self._target_state = self._checked_target(target_state)
        try:
            self.register_sectors(self.open_bond, open_sectors)
        except ValueError:
            self._target_state = previous
            raise

    # ------------------------------------------------------------------ #
    # Registration and lookup                                            #
    # ------------------------------------------------------------------ #

    def register_sectors(self, bond: int, sectors: SymmetrySectors) -> None:
        """
        Replace the sector list of a bond.

        Raises
        ------
        ValueError
            If the sectors do not fit the configured symmetries, or if
            ``bond`` is the open bond and the sectors do not match the
            target state.
        """
        if not 0 <= bond < self.nr_bonds:
            raise SectorIndexError(f"Bond {bond} out of range [0, {self.nr_bonds})")
        self._check_sectors(sectors)
        if bond == self.open_bond:
            expected = target_sectors(self.groups, self._target_state)
            if {tuple(r) for r in sectors.irreps.tolist()} != \
                    {tuple(r) for r in expected.irreps.tolist()}:
                logger.error("Open bond sectors do not match target state %s",
                             self._target_state)
                raise ValueError("Sectors of the open bond must match the target state")
        self.v_symsecs[bond] = sectors

    def register_physical(self, site: int, sectors: SymmetrySectors) -> None:
        """Replace the sector list of a physical site."""
        if not 0 <= site < self.psites:
            raise SectorIndexError(f"Physical site {site} out of range [0, {self.psites})")
        self._check_sectors(sectors)
        self.p_symsecs[site] = sectors

    def register_operator_sectors(self, sectors: SymmetrySectors) -> None:
        """Replace the Hamiltonian symmetry sectors."""
        self._check_sectors(sectors)
        self.operator_sectors = sectors

    def sectors(self, bond: int) -> SymmetrySectors:
        if not 0 <= bond < self.nr_bonds:
            raise SectorIndexError(f"Bond {bond} out of range [0, {self.nr_bonds})")
        sectors = self.v_symsecs[bond]
        if sectors is None:
            raise SectorIndexError(f"No sectors registered for bond {bond}")
        return sectors

    def physical(self, site: int) -> SymmetrySectors:
        if not 0 <= site < self.psites:
            raise SectorIndexError(f"Physical site {site} out of range [0, {self.psites})")
        sectors = self.p_symsecs[site]
        if sectors is None:
            raise SectorIndexError(f"No sectors registered for physical site {site}")
        return sectors

    def hss(self) -> SymmetrySectors:
        if self.operator_sectors is None:
            raise SectorIndexError("No Hamiltonian symmetry sectors registered")
        return self.operator_sectors

    def leg_sectors(self, leg: Leg) -> SymmetrySectors:
        if leg.kind == 'v':
            return self.sectors(leg.index)
        if leg.kind == 'p':
            return self.physical(leg.index)
        raise ValueError(f"Unknown leg kind: {leg.kind}")

    def lookup(self, bond: int, index: int) -> SymmetrySector:
        """
        Get sector ``index`` of ``bond``.

        Raises
        ------
        SectorIndexError
            If ``index`` is not a valid sector index for ``bond``.
        """
        return _lookup(self.sectors(bond), index, f"bond {bond}")

    def lookup_physical(self, site: int, index: int) -> SymmetrySector:
        return _lookup(self.physical(site), index, f"physical site {site}")

    def lookup_leg(self, leg: Leg, index: int) -> SymmetrySector:
        return _lookup(self.leg_sectors(leg), index, f"leg {leg}")

    def total_dimension(self, bond: int) -> int:
        return self.sectors(bond).total_dims

    def copy(self) -> 'SectorRegistry':
        new = SectorRegistry(self.groups, self._target_state, self.nr_bonds,
                             self.psites, self.open_bond)
        new.v_symsecs = [s.copy() if s is not None else None for s in self.v_symsecs]
        new.p_symsecs = [s.copy() if s is not None else None for s in self.p_symsecs]
        if self.operator_sectors is not None:
            new.operator_sectors = self.operator_sectors.copy()
        return new

    def __eq__(self, other) -> bool:
        if not isinstance(other, SectorRegistry):
            return NotImplemented
        return (
            self.groups == other.groups
            and self._target_state == other._target_state
            and self.v_symsecs == other.v_symsecs
            and self.p_symsecs == other.p_symsecs
            and self.operator_sectors == other.operator_sectors
        )


def _lookup(sectors: SymmetrySectors, index: int, where: str) -> SymmetrySector:
    if not 0 <= index < sectors.nr_secs:
        raise SectorIndexError(
            f"Sector index {index} out of range [0, {sectors.nr_secs}) for {where}"
        )
    return sectors.sector(index)


def fusion_allowed(
    groups: Sequence[SymmetryGroup],
    irreps_a: Sequence[int],
    irreps_b: Sequence[int],
    irreps_c: Sequence[int],
    sign: int = 1
) -> bool:
    """Whether ``c`` is reachable from ``a (x) b`` for every group."""
    return all(
        g.allowed(a, b, c, sign)
        for g, a, b, c in zip(groups, irreps_a, irreps_b, irreps_c)
    )


def fuse_irreps(
    groups: Sequence[SymmetryGroup],
    irreps_a: Sequence[int],
    irreps_b: Sequence[int],
    sign: int = 1
) -> list[tuple[int, ...]]:
    """All irrep tuples reachable from ``a (x) b``."""
    return list(product(*(
        g.fused_labels(a, b, sign) for g, a, b in zip(groups, irreps_a, irreps_b)
    )))


def target_sectors(groups: Sequence[SymmetryGroup], target_state: Sequence[int]) -> SymmetrySectors:
    """
    Sector list of the open bond for a given target state.

    Groups can expand a single target label into several open-bond labels
    (a seniority range), every combination becomes one sector of
    dimension one.
    """
    combos = sorted(product(*(
        g.target_labels(t) for g, t in zip(groups, target_state)
    )))
    return SymmetrySectors(combos, np.ones(len(combos), dtype=np.int64),
                           nr_syms=len(groups))


def trivial_sectors(groups: Sequence[SymmetryGroup]) -> SymmetrySectors:
    """A single trivial sector of dimension one (vacuum bonds)."""
    return SymmetrySectors([[g.trivial_label for g in groups]], [1], nr_syms=len(groups))


def physical_sectors(groups: Sequence[SymmetryGroup], orbital_irrep: int = 0) -> SymmetrySectors:
    """
    Sectors of a spatial orbital (empty, spin up, spin down, doubly occupied).

    Z2 is the fermion parity, the first U1 the particle number and a second
    U1 twice the spin projection. With SU2 the two singly occupied states
    form one doublet. Point groups assign ``orbital_irrep`` to the singly
    occupied states, seniority counts them as one unpaired particle.

    Parameters
    ----------
    groups : sequence of SymmetryGroup
    orbital_irrep : int
        Point group irrep of the orbital.
    """
    has_su2 = any(g.kind == GroupKind.SU2 for g in groups)
    # (particle number, 2 Sz)
    states = [(0, 0), (1, 1), (1, -1), (2, 0)]
    if has_su2:
        states = [(0, 0), (1, 1), (2, 0)]

    counts: dict[tuple[int, ...], int] = {}
    for n, two_sz in states:
        labels = []
        u1_seen = 0
        for g in groups:
            if g.kind == GroupKind.Z2:
                labels.append(n % 2)
            elif g.kind == GroupKind.U1:
                labels.append(n if u1_seen == 0 else two_sz)
                u1_seen += 1
            elif g.kind == GroupKind.SU2:
                labels.append(n % 2)
            elif g.kind == GroupKind.SENIORITY:
                labels.append(n % 2)
            else:
                labels.append(orbital_irrep if n == 1 else g.trivial_label)
        counts[tuple(labels)] = counts.get(tuple(labels), 0) + 1

    irreps = sorted(counts)
    dims = [counts[i] for i in irreps]
    return SymmetrySectors(irreps, dims, nr_syms=len(groups))


def operator_sectors_from_physical(
    groups: Sequence[SymmetryGroup],
    physical: Iterable[SymmetrySectors]
) -> SymmetrySectors:
    """
    Hamiltonian symmetry sectors reachable by local operators.

    Collects every irrep ``k`` such that some physical sector ``q`` lies in
    ``p (x) k`` for a physical sector ``p``, closed under pairwise fusion
    (two-site terms). The trivial irrep is always included.
    """
    single: set[tuple[int, ...]] = set()
    for sectors in physical:
        rows = [tuple(r) for r in sectors.irreps.tolist()]
        for p in rows:
            for q in rows:
                single.update(fuse_irreps(groups, q, p, sign=-1))
    single = {k for k in single if all(g.is_valid_label(l) for g, l in zip(groups, k))}

    result = {tuple(g.trivial_label for g in groups)} | single
    for k1 in single:
        for k2 in single:
            result.update(fuse_irreps(groups, k1, k2))
    result = sorted(k for k in result if all(g.is_valid_label(l) for g, l in zip(groups, k)))
    return SymmetrySectors(result, np.ones(len(result), dtype=np.int64), nr_syms=len(groups))


def build_virtual_sectors(
    registry: SectorRegistry,
    topology: 'NetworkTopology',
    max_dim: int | None = None
) -> None:
    """
    Compute and register the sectors of every bond.

    The physical sectors must already be registered. Allowed sectors are
    propagated from the vacuum bonds towards the open bond (forward pass)
    and from the target sectors back to the leaves (backward pass). A
    sector survives if it appears in both passes; its reference dimension
    is the smaller of the two state counts and its dimension is capped at
    ``max_dim``.

    Parameters
    ----------
    registry : SectorRegistry
        Registry with physical sectors registered. Modified in place.
    topology : NetworkTopology
        The network.
    max_dim : int, optional
        Maximal dimension per sector. No cap if None.
    """
    groups = registry.groups
    nr_bonds = topology.nr_bonds
    open_bond = topology.open_bond
    trivial = tuple(g.trivial_label for g in groups)

    def leg_counts(leg: Leg, forward: list[dict]) -> dict:
        if leg.kind == 'p':
            sectors = registry.physical(leg.index)
            return {tuple(r): float(d) for r, d in zip(sectors.irreps.tolist(), sectors.dims)}
        return forward[leg.index]

    # Forward pass: leaves to root
    forward: list[dict[tuple[int, ...], float]] = [dict() for _ in range(nr_bonds)]
    for bond in range(nr_bonds):
        if topology.is_vacuum(bond):
            forward[bond] = {trivial: 1.0}

    for site in topology.ordered_sites():
        leg_a, leg_b, leg_out = topology.site_legs(site)
        counts_a = leg_counts(leg_a, forward)
        counts_b = leg_counts(leg_b, forward)
        result: dict[tuple[int, ...], float] = {}
        for irr_a, deg_a in counts_a.items():
            for irr_b, deg_b in counts_b.items():
                for irr_c in fuse_irreps(groups, irr_a, irr_b):
                    result[irr_c] = result.get(irr_c, 0.0) + deg_a * deg_b
        forward[leg_out.index] = result

    # Backward pass: root to leaves
    target = target_sectors(groups, registry.target_state())
    backward: list[dict[tuple[int, ...], float]] = [dict() for _ in range(nr_bonds)]
    backward[open_bond] = {tuple(r): 1.0 for r in target.irreps.tolist()}
    for site in reversed(topology.ordered_sites()):
        legs = topology.site_legs(site)
        counts_out = backward[legs[2].index]
        for pos in (0, 1):
            leg = legs[pos]
            if leg.kind == 'p':
                continue
            partner = leg_counts(legs[1 - pos], forward)
            result = {}
            for irr_x in forward[leg.index]:
                total = 0.0
                for irr_y, deg_y in partner.items():
                    for irr_z, deg_z in counts_out.items():
                        if fusion_allowed(groups, irr_x, irr_y, irr_z):
                            total += deg_y * deg_z
                if total > 0:
                    result[irr_x] = total
            backward[leg.index] = result

    for bond in range(nr_bonds):
        if bond == open_bond:
            registry.register_sectors(bond, target)
            continue
        irreps = sorted(set(forward[bond]) & set(backward[bond]))
        fcidims = np.array([min(forward[bond][i], backward[bond][i]) for i in irreps])
        dims = fcidims.copy()
        if max_dim is not None:
            dims = np.minimum(dims, max_dim)
        if len(irreps) == 0:
            logger.error("No symmetry sectors survive on bond %d", bond)
            raise ValueError(f"Target state is not reachable through bond {bond}")
        registry.register_sectors(
            bond,
            SymmetrySectors(irreps, dims.astype(np.int64), fcidims, nr_syms=len(groups))
        )
