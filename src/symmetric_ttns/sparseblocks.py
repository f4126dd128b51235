"""
Contiguous storage of a list of dense blocks.

All blocks of a tensor (or of one renormalized operator) live in a single
flat buffer ``tel``. Block ``k`` occupies ``tel[beginblock[k]:beginblock[k+1]]``.
An object without blocks has ``beginblock = tel = None`` rather than empty
arrays, and an object whose blocks are all of size zero has ``tel = None``.
"""

from __future__ import annotations
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from .config import EL_TYPE
from .errors import StructuralSizeMismatchError


class SparseBlocks:
    """
    Prefix-sum indexed block storage.

    Attributes
    ----------
    beginblock : ndarray of int or None
        Offsets of the blocks, length ``nr_blocks + 1``, ``beginblock[0] == 0``.
    tel : ndarray or None
        Flat payload of length ``beginblock[-1]``.
    """

    def __init__(
        self,
        beginblock: NDArray | Sequence[int] | None = None,
        tel: NDArray | None = None
    ):
        if beginblock is None:
            if tel is not None and np.size(tel) != 0:
                raise StructuralSizeMismatchError("Payload given without block offsets")
            self.beginblock = None
            self.tel = None
            return

        beginblock = np.asarray(beginblock, dtype=np.int64).reshape(-1)
        if len(beginblock) == 0 or beginblock[0] != 0:
            raise StructuralSizeMismatchError("beginblock must start at 0")
        if np.any(np.diff(beginblock) < 0):
            raise StructuralSizeMismatchError("beginblock must be non-decreasing")

        size = int(beginblock[-1])
        if size == 0:
            if tel is not None and np.size(tel) != 0:
                raise StructuralSizeMismatchError("Payload given for empty blocks")
            tel = None
        else:
            if tel is None:
                raise StructuralSizeMismatchError(f"Missing payload of length {size}")
            tel = np.asarray(tel, dtype=EL_TYPE).reshape(-1)
            if len(tel) != size:
                raise StructuralSizeMismatchError(
                    f"Payload has length {len(tel)}, beginblock declares {size}"
                )

        if len(beginblock) == 1:
            # no blocks at all
            self.beginblock = None
            self.tel = None
            return
        self.beginblock = beginblock
        self.tel = tel

    @classmethod
    def empty(cls) -> 'SparseBlocks':
        return cls()

    @classmethod
    def zeros(cls, sizes: Sequence[int]) -> 'SparseBlocks':
        """Blocks of the given sizes, filled with zeros."""
        sizes = np.asarray(sizes, dtype=np.int64)
        if len(sizes) == 0:
            return cls()
        beginblock = np.concatenate([[0], np.cumsum(sizes)])
        return cls(beginblock, np.zeros(beginblock[-1], dtype=EL_TYPE))

    @classmethod
    def from_blocks(cls, blocks: Sequence[NDArray]) -> 'SparseBlocks':
        """Pack a list of dense blocks (any shape) into one buffer."""
        if len(blocks) == 0:
            return cls()
        sizes = [np.size(b) for b in blocks]
        beginblock = np.concatenate([[0], np.cumsum(sizes)])
        tel = None
        if beginblock[-1] != 0:
            tel = np.concatenate([np.asarray(b, dtype=EL_TYPE).reshape(-1) for b in blocks])
        return cls(beginblock, tel)

    @property
    def nr_blocks(self) -> int:
        if self.beginblock is None:
            return 0
        return len(self.beginblock) - 1

    @property
    def size(self) -> int:
        if self.beginblock is None:
            return 0
        return int(self.beginblock[-1])

    def block_size(self, k: int) -> int:
        return int(self.beginblock[k + 1] - self.beginblock[k])

    def block(self, k: int) -> NDArray:
        """Flat view on block ``k``."""
        if not 0 <= k < self.nr_blocks:
            raise IndexError(f"Block {k} out of range [0, {self.nr_blocks})")
        if self.tel is None:
            return np.zeros(0, dtype=EL_TYPE)
        return self.tel[self.beginblock[k]:self.beginblock[k + 1]]

    def blocks(self) -> list[NDArray]:
        return [self.block(k).copy() for k in range(self.nr_blocks)]

    def insert(self, k: int, data: NDArray) -> None:
        """Insert ``data`` as new block ``k``, shifting later blocks."""
        blocks = self.blocks()
        blocks.insert(k, np.asarray(data, dtype=EL_TYPE).reshape(-1))
        new = SparseBlocks.from_blocks(blocks)
        self.beginblock, self.tel = new.beginblock, new.tel

    def delete(self, indices: Sequence[int]) -> None:
        """Remove the blocks at ``indices``."""
        drop = set(int(i) for i in indices)
        blocks = [b for k, b in enumerate(self.blocks()) if k not in drop]
        new = SparseBlocks.from_blocks(blocks)
        self.beginblock, self.tel = new.beginblock, new.tel

    def norm(self) -> float:
        if self.tel is None:
            return 0.0
        return float(np.linalg.norm(self.tel))

    def scale(self, factor: float) -> None:
        if self.tel is not None:
            self.tel *= factor

    def copy(self) -> 'SparseBlocks':
        new = SparseBlocks()
        if self.beginblock is not None:
            new.beginblock = self.beginblock.copy()
        if self.tel is not None:
            new.tel = self.tel.copy()
        return new

    def __eq__(self, other) -> bool:
        if not isinstance(other, SparseBlocks):
            return NotImplemented
        if (self.beginblock is None) != (other.beginblock is None):
            return False
        if (self.tel is None) != (other.tel is None):
            return False
        if self.beginblock is not None and not np.array_equal(self.beginblock, other.beginblock):
            return False
        if self.tel is not None and self.tel.tobytes() != other.tel.tobytes():
            return False
        return True

    def __repr__(self) -> str:
        return f"SparseBlocks(nr_blocks={self.nr_blocks}, size={self.size})"
