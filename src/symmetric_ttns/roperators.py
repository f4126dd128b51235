"""
Renormalized operators.

A renormalized operator set lives on one bond and collects the Hamiltonian
terms of the subtree on one side of that bond (``is_left`` tells which
side). Operators are bucketed by their Hamiltonian symmetry sector ("hss"):
all operators of one hss share the same block structure, listed in
``qnumbers[begin_blocks_of_hss[h]:begin_blocks_of_hss[h + 1]]``.

Every block row holds one or three couplings ``(bra, ket, hss)`` of sector
indices. Ordinary operators act on the bond itself (one coupling). Physical
("P") operators have the adjacent physical site appended and carry one
coupling per leg of that site: ``(in, physical, out)``.
"""

from __future__ import annotations
from bisect import insort
from itertools import product
from typing import TYPE_CHECKING, Iterable, Sequence
import logging

import numpy as np
from numpy.typing import NDArray

from .config import EL_TYPE, QN_TYPE
from .errors import (
    FusionRuleViolationError,
    SectorIndexError,
    StructuralSizeMismatchError,
)
from .sectors import Leg, SectorRegistry, SymmetrySectors, fusion_allowed
from .sparseblocks import SparseBlocks

if TYPE_CHECKING:
    from .network import NetworkTopology

logger = logging.getLogger(__name__)


def operator_legs(
    topology: 'NetworkTopology',
    bond: int,
    is_left: bool,
    P_operator: bool
) -> tuple[Leg, ...]:
    """
    Legs a renormalized operator set acts on.

    An ordinary operator acts on ``bond``. A P operator on a left set
    appends the physical site that ``bond`` enters; on a right set, the
    physical site that ``bond`` leaves. Its legs are those of that site.
    """
    if not P_operator:
        return (Leg('v', bond),)
    site = int(topology.bonds[bond, 1 if is_left else 0])
    if site == -1 or not topology.is_psite(site):
        raise ValueError(f"Bond {bond} has no physical site on that side for a P operator")
    return topology.site_legs(site)


class RenormalizedOperators:
    """
    Renormalized operator set of one bond.

    Attributes
    ----------
    bond_of_operator : int
        The bond, ``-1`` when uninitialized.
    is_left : int
        ``1`` for operators grown from the leaves, ``0`` for the other side,
        ``-1`` when uninitialized.
    P_operator : int
        ``1`` if the adjacent physical site is appended.
    legs : tuple of Leg
        Legs the couplings refer to.
    nrhss : int
        Number of Hamiltonian symmetry sectors.
    begin_blocks_of_hss : ndarray, shape (nrhss + 1,)
        Prefix sums of the number of blocks per hss.
    qnumbers : ndarray, shape (nr_blocks, nr_of_couplings, 3)
        ``(bra, ket, hss)`` sector indices of every coupling of every block.
    hss_of_ops : ndarray, shape (nrops,)
        The hss of every operator.
    operators : list of SparseBlocks
        Block storage of every operator.
    """

    def __init__(
        self,
        bond_of_operator: int,
        is_left: int,
        P_operator: int,
        legs: Sequence[Leg],
        registry: SectorRegistry | None
    ):
        self.bond_of_operator = int(bond_of_operator)
        self.is_left = int(is_left)
        self.P_operator = int(P_operator)
        self.legs = tuple(Leg(*leg) for leg in legs)
        self.registry = registry

        if self.is_uninitialized:
            self.nrhss = 0
        else:
            self.nrhss = registry.hss().nr_secs
            if len(self.legs) != self.nr_of_couplings:
                raise ValueError(
                    f"Expected {self.nr_of_couplings} legs, got {len(self.legs)}"
                )
        self.begin_blocks_of_hss = np.zeros(self.nrhss + 1, dtype=np.int64)
        self.qnumbers = np.zeros((0, self.nr_of_couplings, 3), dtype=QN_TYPE)
        self.hss_of_ops = np.zeros(0, dtype=np.int64)
        self.operators: list[SparseBlocks] = []

    @classmethod
    def uninitialized(cls) -> 'RenormalizedOperators':
        """The sentinel of a set that is not attached to a bond yet."""
        return cls(-1, -1, 0, (), None)

    @classmethod
    def vacuum(
        cls,
        bond: int,
        is_left: int,
        registry: SectorRegistry,
        sectors: SymmetrySectors | None = None
    ) -> 'RenormalizedOperators':
        """
        The identity operator on ``bond``.

        The set holds a single operator in the trivial hss with one identity
        block per sector of the bond.

        Parameters
        ----------
        bond : int
            The bond.
        is_left : int
            Direction flag.
        registry : SectorRegistry
            Registry with the Hamiltonian symmetry sectors registered.
        sectors : SymmetrySectors, optional
            Sectors of the bond. Taken from the registry if None.
        """
        sectors = registry.sectors(bond) if sectors is None else sectors
        hss = registry.hss()
        trivial = hss.index_of([g.trivial_label for g in registry.groups])
        if trivial is None:
            raise SectorIndexError("The trivial irrep is not a Hamiltonian symmetry sector")

        rops = cls(bond, is_left, 0, (Leg('v', bond),), registry)
        rows = [[(s, s, trivial)] for s in range(sectors.nr_secs)]
        rops._set_rows(rows, check=False)
        blocks = [np.eye(int(d), dtype=EL_TYPE) for d in sectors.dims]
        rops.operators.append(SparseBlocks.from_blocks(blocks))
        rops.hss_of_ops = np.array([trivial], dtype=np.int64)
        return rops

    @classmethod
    def from_arrays(
        cls,
        bond_of_operator: int,
        is_left: int,
        P_operator: int,
        legs: Sequence[Leg],
        registry: SectorRegistry,
        begin_blocks_of_hss: NDArray,
        qnumbers: NDArray,
        hss_of_ops: NDArray,
        operators: Sequence[SparseBlocks]
    ) -> 'RenormalizedOperators':
        """
        Build a set from raw arrays and validate it.

        Raises
        ------
        StructuralSizeMismatchError
            If counts are inconsistent.
        SectorIndexError, FusionRuleViolationError
            If a coupling is invalid.
        """
        rops = cls(bond_of_operator, is_left, P_operator, legs, registry)
        begin = np.asarray(begin_blocks_of_hss, dtype=np.int64).reshape(-1)
        if len(begin) != rops.nrhss + 1:
            raise StructuralSizeMismatchError(
                f"begin_blocks_of_hss has {len(begin)} entries, expected {rops.nrhss + 1}"
            )
        rops.begin_blocks_of_hss = begin
        rops.qnumbers = np.asarray(qnumbers, dtype=QN_TYPE).reshape(
            -1, rops.nr_of_couplings, 3
        )
        rops.hss_of_ops = np.asarray(hss_of_ops, dtype=np.int64).reshape(-1)
        rops.operators = list(operators)
        rops.check_integrity()
        return rops

    @property
    def is_uninitialized(self) -> bool:
        return self.bond_of_operator == -1 or self.is_left == -1

    @property
    def nr_of_couplings(self) -> int:
        return 3 if self.P_operator else 1

    @property
    def nrops(self) -> int:
        return len(self.operators)

    @property
    def nr_blocks(self) -> int:
        return len(self.qnumbers)

    def nr_blocks_of_hss(self, hss: int) -> int:
        if not 0 <= hss < self.nrhss:
            raise SectorIndexError(f"hss {hss} out of range [0, {self.nrhss})")
        return int(self.begin_blocks_of_hss[hss + 1] - self.begin_blocks_of_hss[hss])

    def nr_blocks_for_operator(self, op: int) -> int:
        return self.nr_blocks_of_hss(int(self.hss_of_ops[op]))

    # ------------------------------------------------------------------ #
    # Couplings                                                          #
    # ------------------------------------------------------------------ #

    def _sectors(self, leg: Leg, index: int, role: str):
        if role == 'hss':
            hss = self.registry.hss()
            if not 0 <= index < hss.nr_secs:
                raise SectorIndexError(f"hss {index} out of range [0, {hss.nr_secs})")
            return hss.sector(index)
        return self.registry.lookup_leg(leg, index)

    def block_shape(self, row: Sequence[Sequence[int]]) -> tuple[int, int]:
        """``(bra dimension, ket dimension)`` of a block row."""
        bra = ket = 1
        for leg, (b, k, _) in zip(self.legs, row):
            bra *= self.registry.lookup_leg(leg, int(b)).dim
            ket *= self.registry.lookup_leg(leg, int(k)).dim
        return bra, ket

    def check_coupling(self, row: Sequence[Sequence[int]]) -> tuple[int, int]:
        """
        Validate one block row.

        Every coupling needs ``ket`` in ``bra (x) hss`` on its leg. For P
        operators the bra, ket and hss irreps of the in and physical legs
        must in addition fuse to those of the out leg.

        Returns
        -------
        tuple of int
            The block shape.
        """
        row = [tuple(int(x) for x in c) for c in row]
        if len(row) != self.nr_of_couplings or any(len(c) != 3 for c in row):
            raise ValueError(f"Expected {self.nr_of_couplings} couplings (bra, ket, hss)")

        groups = self.registry.groups
        irreps = []
        for leg, (b, k, h) in zip(self.legs, row):
            bra = self._sectors(leg, b, 'v').irreps
            ket = self._sectors(leg, k, 'v').irreps
            hss = self._sectors(leg, h, 'hss').irreps
            if not fusion_allowed(groups, bra, hss, ket):
                raise FusionRuleViolationError(
                    f"Coupling {(b, k, h)} on leg {leg} violates the fusion rules"
                )
            irreps.append((bra, ket, hss))

        if self.P_operator:
            for role in range(3):
                if not fusion_allowed(groups, irreps[0][role], irreps[1][role], irreps[2][role]):
                    raise FusionRuleViolationError(
                        f"Couplings {row} of a P operator do not fuse"
                    )
        return self.block_shape(row)

    def _set_rows(self, rows: Iterable[Sequence[Sequence[int]]], check: bool = True) -> None:
        buckets: list[list[tuple]] = [[] for _ in range(self.nrhss)]
        for row in rows:
            row = tuple(tuple(int(x) for x in c) for c in row)
            if check:
                self.check_coupling(row)
            hss = row[-1][2]
            if not 0 <= hss < self.nrhss:
                raise SectorIndexError(f"hss {hss} out of range [0, {self.nrhss})")
            insort(buckets[hss], row)

        for bucket in buckets:
            if any(a == b for a, b in zip(bucket, bucket[1:])):
                raise ValueError("Duplicate coupling in renormalized operator")
        sizes = [len(b) for b in buckets]
        self.begin_blocks_of_hss = np.concatenate([[0], np.cumsum(sizes)]).astype(np.int64)
        flat = [row for bucket in buckets for row in bucket]
        self.qnumbers = np.array(flat, dtype=QN_TYPE).reshape(-1, self.nr_of_couplings, 3)

    def set_couplings(self, rows: Iterable[Sequence[Sequence[int]]]) -> None:
        """
        Define the block structure of the set.

        Rows are bucketed by the hss of their last coupling and sorted within
        a bucket. Only possible before any operator is appended.

        Raises
        ------
        SectorIndexError, FusionRuleViolationError
            If a row is not a valid coupling.
        """
        if self.nrops:
            raise ValueError("Block structure can not change once operators are stored")
        self._set_rows(rows)

    def allowed_couplings(self, hss: int) -> list[tuple[tuple[int, int, int], ...]]:
        """All valid rows of an ordinary operator for Hamiltonian sector ``hss``."""
        if self.P_operator:
            raise ValueError("Enumeration is only provided for ordinary operators")
        sectors = self.registry.leg_sectors(self.legs[0])
        groups = self.registry.groups
        irr_h = self.registry.hss().irreps[hss]
        return [
            ((b, k, hss),)
            for b, k in product(range(sectors.nr_secs), repeat=2)
            if fusion_allowed(groups, sectors.irreps[b], irr_h, sectors.irreps[k])
        ]

    # ------------------------------------------------------------------ #
    # Operators                                                          #
    # ------------------------------------------------------------------ #

    def append_operator(self, hss: int, blocks: Sequence[NDArray] | None = None) -> int:
        """
        Append an operator living in Hamiltonian sector ``hss``.

        Parameters
        ----------
        hss : int
            Hamiltonian symmetry sector index.
        blocks : sequence of ndarray, optional
            One block per row of the hss bucket. Zeros if None.

        Returns
        -------
        int
            Index of the new operator.
        """
        if not 0 <= hss < self.nrhss:
            raise SectorIndexError(f"hss {hss} out of range [0, {self.nrhss})")
        rows = self.qnumbers[self.begin_blocks_of_hss[hss]:self.begin_blocks_of_hss[hss + 1]]
        shapes = [self.block_shape(r) for r in rows]
        if blocks is None:
            blocks = [np.zeros(s, dtype=EL_TYPE) for s in shapes]
        if len(blocks) != len(shapes):
            raise StructuralSizeMismatchError(
                f"Operator in hss {hss} needs {len(shapes)} blocks, got {len(blocks)}"
            )
        for shape, block in zip(shapes, blocks):
            if np.size(block) != shape[0] * shape[1]:
                raise StructuralSizeMismatchError(
                    f"Block of shape {np.shape(block)} does not fit {shape}"
                )
        self.operators.append(SparseBlocks.from_blocks(blocks))
        self.hss_of_ops = np.append(self.hss_of_ops, hss).astype(np.int64)
        return self.nrops - 1

    def operator_block(self, op: int, k: int) -> NDArray:
        """Block ``k`` of operator ``op`` as a ``(bra, ket)`` matrix."""
        row = self.qnumbers[self.begin_blocks_of_hss[self.hss_of_ops[op]] + k]
        return self.operators[op].block(k).reshape(self.block_shape(row))

    def block_for(self, op: int, row: Sequence[Sequence[int]]) -> NDArray | None:
        """The block of operator ``op`` for a coupling row, None if absent."""
        hss = int(self.hss_of_ops[op])
        start, stop = self.begin_blocks_of_hss[hss], self.begin_blocks_of_hss[hss + 1]
        target = np.asarray(row, dtype=QN_TYPE).reshape(self.nr_of_couplings, 3)
        for k in range(stop - start):
            if np.array_equal(self.qnumbers[start + k], target):
                return self.operator_block(op, k)
        return None

    def check_integrity(self) -> None:
        """
        Verify every invariant of the set.

        The uninitialized sentinel is valid as long as it holds nothing.
        """
        if self.is_uninitialized:
            if self.nrops or self.nr_blocks:
                raise StructuralSizeMismatchError("Uninitialized operator set holds data")
            return

        begin = self.begin_blocks_of_hss
        if len(begin) != self.nrhss + 1 or begin[0] != 0 or np.any(np.diff(begin) < 0):
            raise StructuralSizeMismatchError("Malformed begin_blocks_of_hss")
        if begin[-1] != self.nr_blocks:
            raise StructuralSizeMismatchError(
                f"begin_blocks_of_hss declares {begin[-1]} blocks, found {self.nr_blocks}"
            )
        if len(self.hss_of_ops) != self.nrops:
            raise StructuralSizeMismatchError(
                f"{len(self.hss_of_ops)} hss labels for {self.nrops} operators"
            )

        for h in range(self.nrhss):
            for row in self.qnumbers[begin[h]:begin[h + 1]]:
                self.check_coupling(row)
                if row[-1][2] != h:
                    raise StructuralSizeMismatchError(
                        f"Block {row.tolist()} is stored in the bucket of hss {h}"
                    )

        for op, (hss, blocks) in enumerate(zip(self.hss_of_ops, self.operators)):
            nr_blocks = self.nr_blocks_of_hss(int(hss))
            if blocks.nr_blocks != nr_blocks:
                raise StructuralSizeMismatchError(
                    f"Operator {op} has {blocks.nr_blocks} blocks, expected {nr_blocks}"
                )
            for k in range(nr_blocks):
                bra, ket = self.block_shape(self.qnumbers[begin[hss] + k])
                if blocks.block_size(k) != bra * ket:
                    raise StructuralSizeMismatchError(
                        f"Block {k} of operator {op} has the wrong size"
                    )

    def copy(self) -> 'RenormalizedOperators':
        new = RenormalizedOperators.uninitialized()
        new.__dict__.update(self.__dict__)
        new.begin_blocks_of_hss = self.begin_blocks_of_hss.copy()
        new.qnumbers = self.qnumbers.copy()
        new.hss_of_ops = self.hss_of_ops.copy()
        new.operators = [o.copy() for o in self.operators]
        return new

    def __eq__(self, other) -> bool:
        if not isinstance(other, RenormalizedOperators):
            return NotImplemented
        if self.is_uninitialized and other.is_uninitialized:
            return True
        return (
            self.bond_of_operator == other.bond_of_operator
            and self.is_left == other.is_left
            and self.P_operator == other.P_operator
            and self.legs == other.legs
            and self.nrhss == other.nrhss
            and np.array_equal(self.begin_blocks_of_hss, other.begin_blocks_of_hss)
            and np.array_equal(self.qnumbers, other.qnumbers)
            and np.array_equal(self.hss_of_ops, other.hss_of_ops)
            and self.operators == other.operators
        )

    def __repr__(self) -> str:
        if self.is_uninitialized:
            return "RenormalizedOperators(uninitialized)"
        return (f"RenormalizedOperators(bond={self.bond_of_operator}, "
                f"is_left={self.is_left}, P_operator={self.P_operator}, "
                f"nrops={self.nrops})")
