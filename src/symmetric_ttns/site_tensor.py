"""
Block-sparse site tensors of a tree tensor network.

A site tensor lives at one vertex of the network and has three legs. Only
blocks whose sectors satisfy the fusion rule of every configured symmetry
group are stored. Each block is addressed by a quantum-number triplet: the
sector index of every leg in the registry.
"""

from __future__ import annotations
from bisect import bisect_left
from itertools import product
from typing import TYPE_CHECKING, Iterator, Sequence
import logging

import numpy as np
from numpy.typing import NDArray
import scipy.linalg as sla

from .config import EL_TYPE, QN_TYPE
from .errors import (
    FusionRuleViolationError,
    StructuralSizeMismatchError,
)
from .sectors import Leg, SectorRegistry, SymmetrySectors, fusion_allowed
from .sparseblocks import SparseBlocks

if TYPE_CHECKING:
    from .network import NetworkTopology

logger = logging.getLogger(__name__)


def _sort_key(triplet: Sequence[int]) -> tuple[int, ...]:
    # last leg most significant
    return tuple(int(x) for x in reversed(triplet))


class SiteTensor:
    """
    Block-sparse tensor at one site of the network.

    The tensor stores a back-reference to the sector registry; it never owns
    sector information itself. Blocks are kept sorted by triplet with the
    last leg most significant.

    Attributes
    ----------
    sites : ndarray of int
        The sites spanned by the tensor (always a single site here).
    legs : tuple of Leg
        ``(in, physical, out)`` or ``(in1, in2, out)``.
    registry : SectorRegistry
        Registry the sector indices refer to.
    qnumbers : ndarray, shape (nrblocks, 3)
        Sector index of each leg for every stored block.
    blocks : SparseBlocks
        Block payloads, block ``k`` belongs to ``qnumbers[k]``. Each block is
        stored in C order with shape ``(d_in1, d_in2, d_out)``.
    """

    def __init__(self, site: int, legs: Sequence[Leg], registry: SectorRegistry):
        if len(legs) != 3:
            raise ValueError("A site tensor has exactly three legs")
        self.sites = np.array([site], dtype=np.intp)
        self.legs = tuple(Leg(*leg) for leg in legs)
        self.registry = registry
        self.qnumbers = np.zeros((0, 3), dtype=QN_TYPE)
        self.blocks = SparseBlocks.empty()

    @classmethod
    def for_site(
        cls,
        site: int,
        topology: 'NetworkTopology',
        registry: SectorRegistry
    ) -> 'SiteTensor':
        """Empty tensor with the legs of ``site``."""
        return cls(site, topology.site_legs(site), registry)

    @classmethod
    def from_arrays(
        cls,
        site: int,
        legs: Sequence[Leg],
        registry: SectorRegistry,
        qnumbers: NDArray,
        blocks: SparseBlocks
    ) -> 'SiteTensor':
        """
        Build a tensor from raw arrays and validate it.

        Raises
        ------
        SectorIndexError, FusionRuleViolationError, StructuralSizeMismatchError
            If the arrays violate an invariant of the tensor.
        """
        tensor = cls(site, legs, registry)
        tensor.qnumbers = np.asarray(qnumbers, dtype=QN_TYPE).reshape(-1, 3)
        tensor.blocks = blocks
        tensor.check_integrity()
        return tensor

    @property
    def nrsites(self) -> int:
        return len(self.sites)

    @property
    def site(self) -> int:
        return int(self.sites[0])

    @property
    def nrblocks(self) -> int:
        return len(self.qnumbers)

    def _sector_lists(self) -> tuple[SymmetrySectors, ...]:
        return tuple(self.registry.leg_sectors(leg) for leg in self.legs)

    def block_shape(self, triplet: Sequence[int]) -> tuple[int, int, int]:
        return tuple(
            self.registry.lookup_leg(leg, int(i)).dim for leg, i in zip(self.legs, triplet)
        )

    def check_triplet(self, triplet: Sequence[int]) -> tuple[int, int, int]:
        """
        Validate a triplet against the registry and the fusion rules.

        Returns
        -------
        tuple of int
            The block shape.

        Raises
        ------
        SectorIndexError
            If a sector index is out of range for its leg.
        FusionRuleViolationError
            If the out-leg irreps can not be reached from the in-legs.
        """
        if len(triplet) != 3:
            raise ValueError(f"Expected a triplet, got {tuple(triplet)}")
        sectors = [self.registry.lookup_leg(leg, int(i)) for leg, i in zip(self.legs, triplet)]
        if not fusion_allowed(self.registry.groups, *(s.irreps for s in sectors)):
            raise FusionRuleViolationError(
                f"Triplet {tuple(int(i) for i in triplet)} with irreps "
                f"{[s.irreps for s in sectors]} violates the fusion rules"
            )
        return tuple(s.dim for s in sectors)

    def _keys(self) -> list[tuple[int, ...]]:
        return [_sort_key(row) for row in self.qnumbers.tolist()]

    def _find(self, triplet: Sequence[int]) -> int | None:
        keys = self._keys()
        key = _sort_key(triplet)
        pos = bisect_left(keys, key)
        if pos < len(keys) and keys[pos] == key:
            return pos
        return None

    def add_block(self, triplet: Sequence[int], data: NDArray | None = None) -> int:
        """
        Store a new block.

        Parameters
        ----------
        triplet : sequence of int
            Sector index of every leg.
        data : ndarray, optional
            Block payload with ``prod(block_shape)`` elements. Zeros if None.

        Returns
        -------
        int
            Position of the new block.

        Raises
        ------
        FusionRuleViolationError
            If the triplet is not a valid fusion outcome.
        StructuralSizeMismatchError
            If ``data`` has the wrong number of elements.
        """
        shape = self.check_triplet(triplet)
        size = int(np.prod(shape))
        if data is None:
            data = np.zeros(size, dtype=EL_TYPE)
        data = np.asarray(data, dtype=EL_TYPE)
        if data.size != size:
            raise StructuralSizeMismatchError(
                f"Block {tuple(triplet)} needs {size} elements, got {data.size}"
            )

        keys = self._keys()
        key = _sort_key(triplet)
        pos = bisect_left(keys, key)
        if pos < len(keys) and keys[pos] == key:
            raise ValueError(f"Block {tuple(triplet)} is already present")

        self.qnumbers = np.insert(self.qnumbers, pos, np.asarray(triplet, dtype=QN_TYPE), axis=0)
        self.blocks.insert(pos, data)
        return pos

    def block_for(self, triplet: Sequence[int]) -> NDArray | None:
        """The block of ``triplet`` reshaped to its block shape, None if absent."""
        pos = self._find(triplet)
        if pos is None:
            return None
        return self.blocks.block(pos).reshape(self.block_shape(triplet))

    def iter_blocks(self) -> Iterator[tuple[tuple[int, ...], NDArray]]:
        for k, row in enumerate(self.qnumbers.tolist()):
            yield tuple(row), self.blocks.block(k).reshape(self.block_shape(row))

    def valid_triplets(self) -> list[tuple[int, int, int]]:
        """All triplets allowed by the registry and the fusion rules."""
        sectors = self._sector_lists()
        groups = self.registry.groups
        result = []
        for triplet in product(*(range(s.nr_secs) for s in sectors)):
            irreps = [s.irreps[i] for s, i in zip(sectors, triplet)]
            if fusion_allowed(groups, *irreps):
                result.append(triplet)
        return sorted(result, key=_sort_key)

    def norm(self) -> float:
        return self.blocks.norm()

    def normalize(self) -> float:
        """
        Scale the tensor to unit norm.

        Returns
        -------
        float
            The norm before normalisation.
        """
        norm = self.norm()
        if norm == 0.0:
            raise ValueError("Can not normalize a tensor with zero norm")
        self.blocks.scale(1.0 / norm)
        return norm

    def _assign(self, entries: list[tuple[Sequence[int], NDArray]]) -> None:
        entries = sorted(entries, key=lambda e: _sort_key(e[0]))
        self.qnumbers = np.array([e[0] for e in entries], dtype=QN_TYPE).reshape(-1, 3)
        self.blocks = SparseBlocks.from_blocks([e[1] for e in entries])

    @classmethod
    def random(
        cls,
        site: int,
        topology: 'NetworkTopology',
        registry: SectorRegistry,
        rng: np.random.Generator | None = None,
        orthonormal: bool = True
    ) -> 'SiteTensor':
        """
        Random tensor over every allowed block.

        Parameters
        ----------
        site : int
            The site of the tensor.
        topology : NetworkTopology
            The network.
        registry : SectorRegistry
            Registry with all sectors registered.
        rng : numpy.random.Generator, optional
            Random number generator.
        orthonormal : bool
            If True, every out-sector is made an isometry from the in-legs
            (QR decomposition). The tensor attached to the open bond is
            always normalized to one instead.
        """
        rng = np.random.default_rng() if rng is None else rng
        tensor = cls.for_site(site, topology, registry)
        by_out: dict[int, list[tuple[int, int, int]]] = {}
        for triplet in tensor.valid_triplets():
            by_out.setdefault(triplet[2], []).append(triplet)

        entries = []
        for triplets in by_out.values():
            shapes = [tensor.block_shape(t) for t in triplets]
            rows = [s[0] * s[1] for s in shapes]
            d_out = shapes[0][2]
            mat = rng.standard_normal((sum(rows), d_out))
            if orthonormal and sum(rows) and d_out:
                q, _ = sla.qr(mat, mode='economic')
                mat = np.zeros((sum(rows), d_out))
                mat[:, :q.shape[1]] = q
            parts = np.split(mat, np.cumsum(rows)[:-1], axis=0)
            entries.extend((t, p.reshape(s)) for t, p, s in zip(triplets, parts, shapes))
        tensor._assign(entries)

        is_root = tensor.legs[2] == Leg('v', topology.open_bond)
        if (is_root or not orthonormal) and tensor.norm() > 0:
            tensor.normalize()
        return tensor

    def change_sectors(
        self,
        old_sectors: SymmetrySectors,
        new_sectors: SymmetrySectors,
        position: int = 2
    ) -> 'SiteTensor':
        """
        Rewrite the blocks after the sectors of one leg changed.

        Blocks whose sector on leg ``position`` disappeared are dropped,
        sectors that are new get zero-filled blocks for every allowed
        combination of the other legs. The other legs are looked up in the
        registry; the changed leg uses ``new_sectors``.

        Returns
        -------
        SiteTensor
            New tensor whose triplets index into ``new_sectors``. The
            tensor is not renormalized.
        """
        groups = self.registry.groups
        entries = []
        old_present = set()
        for k, row in enumerate(self.qnumbers.tolist()):
            irreps = tuple(int(x) for x in old_sectors.irreps[row[position]])
            old_present.add(irreps)
            new_index = new_sectors.index_of(irreps)
            if new_index is None:
                continue
            if new_sectors.dims[new_index] != old_sectors.dims[row[position]]:
                raise StructuralSizeMismatchError(
                    f"Sector {irreps} changed dimension during the rewrite"
                )
            row = list(row)
            row[position] = new_index
            entries.append((row, self.blocks.block(k).copy()))

        others = [p for p in range(3) if p != position]
        other_sectors = [self.registry.leg_sectors(self.legs[p]) for p in others]
        for new_index in range(new_sectors.nr_secs):
            irreps = tuple(int(x) for x in new_sectors.irreps[new_index])
            if irreps in old_present:
                continue
            for i, j in product(range(other_sectors[0].nr_secs), range(other_sectors[1].nr_secs)):
                row = [0, 0, 0]
                row[others[0]], row[others[1]], row[position] = i, j, new_index
                labels = [None, None, None]
                labels[others[0]] = other_sectors[0].irreps[i]
                labels[others[1]] = other_sectors[1].irreps[j]
                labels[position] = new_sectors.irreps[new_index]
                if not fusion_allowed(groups, *labels):
                    continue
                dims = [None, None, None]
                dims[others[0]] = other_sectors[0].dims[i]
                dims[others[1]] = other_sectors[1].dims[j]
                dims[position] = new_sectors.dims[new_index]
                entries.append((row, np.zeros(int(np.prod(dims)), dtype=EL_TYPE)))

        new = SiteTensor(self.site, self.legs, self.registry)
        new._assign(entries)
        return new

    def check_integrity(self) -> None:
        """
        Verify every invariant of the tensor against the registry.

        Raises
        ------
        SectorIndexError
            Sector index out of range.
        FusionRuleViolationError
            Stored triplet violates the fusion rules.
        StructuralSizeMismatchError
            Block count or block size inconsistent.
        """
        if self.qnumbers.ndim != 2 or self.qnumbers.shape[1] != 3:
            raise StructuralSizeMismatchError(
                f"qnumbers has shape {self.qnumbers.shape}, expected (nrblocks, 3)"
            )
        if self.nrblocks != self.blocks.nr_blocks:
            raise StructuralSizeMismatchError(
                f"Tensor at site {self.site} has {self.nrblocks} triplets "
                f"but {self.blocks.nr_blocks} blocks"
            )
        keys = self._keys()
        if any(a >= b for a, b in zip(keys, keys[1:])):
            raise StructuralSizeMismatchError(
                f"Blocks of tensor at site {self.site} are not sorted"
            )
        for k, row in enumerate(self.qnumbers.tolist()):
            size = int(np.prod(self.check_triplet(row)))
            if self.blocks.block_size(k) != size:
                raise StructuralSizeMismatchError(
                    f"Block {tuple(row)} has {self.blocks.block_size(k)} elements, "
                    f"expected {size}"
                )

    def copy(self) -> 'SiteTensor':
        new = SiteTensor(self.site, self.legs, self.registry)
        new.sites = self.sites.copy()
        new.qnumbers = self.qnumbers.copy()
        new.blocks = self.blocks.copy()
        return new

    def __eq__(self, other) -> bool:
        if not isinstance(other, SiteTensor):
            return NotImplemented
        return (
            np.array_equal(self.sites, other.sites)
            and self.legs == other.legs
            and np.array_equal(self.qnumbers, other.qnumbers)
            and self.blocks == other.blocks
        )

    def __repr__(self) -> str:
        return (f"SiteTensor(site={self.site}, legs={self.legs}, "
                f"nrblocks={self.nrblocks})")
