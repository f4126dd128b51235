"""
Symmetry groups and their irrep algebra.

Every symmetry group variant implements the same small capability set:
enumerating the result of a tensor product of two irreps (``fuse``), sizing
enumeration buffers (``max_label_bound``), converting labels to and from
text, and the coupling prefactors needed when tensors and renormalized
operators are combined. Groups are stateless; :func:`make_group` hands out
one shared instance per variant.

Irrep labels
------------
Z2
    Fermion parity, ``0`` (even) or ``1`` (odd).
U1
    Signed integer charge (e.g. particle number or ``2 Sz``).
SU2
    Doubled total spin ``2j >= 0``.
C1 ... D2h
    Abelian point groups, label is the position in the irrep table. The
    tables are ordered such that the direct product is the bitwise XOR.
SENIORITY
    Non-negative number of unpaired particles on bonds. As a target state
    a label ``t >= 0`` means "any seniority up to ``t``", while ``t < 0``
    pins the seniority at ``-t``.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Iterable, Sequence
import math
import re

from . import wigner

# ASCII digits only, no digit-group underscores
_INTEGER = re.compile(r"[+-]?[0-9]+")
_HALF_INTEGER = re.compile(r"([0-9]+)/2")


class GroupKind(IntEnum):
    """Closed set of supported symmetry group variants.

    The integer values are the tags stored in snapshots (``sgs``).
    """

    Z2 = 0
    U1 = 1
    SU2 = 2
    C1 = 3
    Ci = 4
    C2 = 5
    Cs = 6
    D2 = 7
    C2v = 8
    C2h = 9
    D2h = 10
    SENIORITY = 11


POINT_GROUP_IRREPS: dict[GroupKind, tuple[str, ...]] = {
    GroupKind.C1: ("A",),
    GroupKind.Ci: ("Ag", "Au"),
    GroupKind.C2: ("A", "B"),
    GroupKind.Cs: ("A'", "A''"),
    GroupKind.D2: ("A", "B1", "B2", "B3"),
    GroupKind.C2v: ("A1", "A2", "B1", "B2"),
    GroupKind.C2h: ("Ag", "Bg", "Au", "Bu"),
    GroupKind.D2h: ("Ag", "B1g", "B2g", "B3g", "Au", "B1u", "B2u", "B3u"),
}


class SymmetryGroup(ABC):
    """
    Abstract base of all symmetry group variants.

    Subclasses implement the fusion rule, the buffer bound and the text
    encoding. Coupling prefactors default to ``1.0``, which is correct for
    every abelian group without fermionic signs.

    Attributes
    ----------
    kind : GroupKind
        Variant tag.
    is_abelian : bool
        Whether every fusion has a single outcome.
    trivial_label : int
        Label of the trivial irrep.
    """

    kind: GroupKind
    is_abelian: bool = True
    trivial_label: int = 0

    @property
    def name(self) -> str:
        return self.kind.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, SymmetryGroup):
            return NotImplemented
        return self.kind == other.kind

    def __hash__(self) -> int:
        return hash(("SymmetryGroup", int(self.kind)))

    # ------------------------------------------------------------------ #
    # Fusion                                                             #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def max_label_bound(self, labels_a: Iterable[int], labels_b: Iterable[int]) -> int:
        """
        One past the largest label any fusion of ``A`` with ``B`` can give.

        Parameters
        ----------
        labels_a, labels_b : iterable of int
            Labels occurring in two candidate sector sets.

        Returns
        -------
        int
            A safe over-estimate, used to size enumeration buffers.
        """

    @abstractmethod
    def fuse(self, a: int, b: int, sign: int = 1) -> tuple[int, int, int]:
        """
        Enumerate the tensor product of two irreps.

        Parameters
        ----------
        a, b : int
            The irreps to combine.
        sign : int
            ``-1`` combines ``a`` with the inverse of ``b``. Only meaningful
            for abelian groups.

        Returns
        -------
        min_label : int
            Smallest resulting label.
        count : int
            Number of resulting labels.
        step : int
            Spacing between consecutive resulting labels.
        """

    def fused_labels(self, a: int, b: int, sign: int = 1) -> range:
        """All labels in the tensor product of ``a`` and ``b``."""
        min_label, count, step = self.fuse(a, b, sign)
        return range(min_label, min_label + count * step, step)

    def allowed(self, a: int, b: int, c: int, sign: int = 1) -> bool:
        """Whether ``c`` occurs in the tensor product of ``a`` and ``b``."""
        return c in self.fused_labels(a, b, sign)

    # ------------------------------------------------------------------ #
    # Labels and text                                                    #
    # ------------------------------------------------------------------ #

    def is_valid_label(self, label: int) -> bool:
        return True

    def label_to_string(self, label: int) -> str:
        return str(int(label))

    def string_to_label(self, text: str) -> tuple[int, bool]:
        """
        Parse the textual form of an irrep.

        Returns
        -------
        label : int
            The parsed label, ``0`` on failure.
        ok : bool
            False if the text is malformed or out of the group's domain.
        """
        try:
            text = text.strip()
        except AttributeError:
            return 0, False
        if not _INTEGER.fullmatch(text):
            return 0, False
        label = int(text)
        if not self.is_valid_label(label):
            return 0, False
        return label, True

    def target_labels(self, target: int) -> list[int]:
        """Labels carried by the open bond for a given target irrep."""
        return [int(target)]

    # ------------------------------------------------------------------ #
    # Coupling prefactors                                                #
    # ------------------------------------------------------------------ #

    def mirror_coupling(self, labels: Sequence[int]) -> float:
        """
        Prefactor for mirroring the coupling ``a (x) b -> c`` to
        ``c (x) b* -> a``.

        Parameters
        ----------
        labels : (a, b, c)
        """
        return 1.0

    def prefactor_append_physical(self, labels: Sequence[int], is_left: bool) -> float:
        """
        Prefactor for appending a physical leg to a renormalized operator.

        The operator of rank ``k`` acts on the bond part only; the physical
        leg is a spectator.

        Parameters
        ----------
        labels : (a, p, c, a2, c2, k)
            Bra coupling ``a (x) p -> c``, ket coupling ``a2 (x) p -> c2`` and
            operator irrep ``k``.
        is_left : bool
            True if the bond part comes first in the coupling.
        """
        return 1.0

    def prefactor_matvec(self, labels: Sequence[int], mpo: int) -> float:
        """
        Prefactor of the scalar product of two operators of irrep ``mpo``
        acting on both halves of a two-part state.

        Parameters
        ----------
        labels : (a, b, J, a2, b2)
            Bra coupling ``a (x) b -> J`` and ket coupling ``a2 (x) b2 -> J``.
        mpo : int
            Irrep of the operators.
        """
        return 1.0

    def prefactor_add_p_operator(self, labels: Sequence[int], is_left: bool) -> float:
        """
        Prefactor for inserting an operator acting on the physical leg only.

        Parameters
        ----------
        labels : (a, p, c, p2, c2, k)
            Bra coupling ``a (x) p -> c``, ket coupling ``a (x) p2 -> c2`` and
            operator irrep ``k``.
        is_left : bool
            True if the bond part comes first in the coupling.
        """
        return 1.0

    def prefactor_combine_mpos(self, labels: Sequence[Sequence[int]],
                               mpo_labels: Sequence[int]) -> float:
        """
        Prefactor for combining operators on two legs into one operator.

        Parameters
        ----------
        labels : ((a, b, c), (a2, b2, c2))
            Bra and ket couplings.
        mpo_labels : (k1, k2, k)
            Irreps of the operator on ``a``, on ``b`` and of the result.
        """
        return 1.0

    def prefactor_update_branch(self, labels: Sequence[Sequence[int]],
                                update_case: int) -> float:
        """
        Prefactor for renormalizing operators through a branching tensor.

        Parameters
        ----------
        labels : ((a, b, c), (a2, b2, c2), (k1, k2, k))
            Bra couplings, ket couplings and operator irreps on the three
            legs of the branching tensor.
        update_case : {0, 1, 2}
            Leg on which the resulting operator lives.
        """
        return 1.0


def _branch_order(update_case: int) -> tuple[int, int, int]:
    if update_case not in (0, 1, 2):
        raise ValueError(f"Invalid update case: {update_case}")
    others = tuple(i for i in range(3) if i != update_case)
    return others[0], others[1], update_case


class Z2Group(SymmetryGroup):
    """Fermion parity. Prefactors carry the fermionic exchange signs."""

    kind = GroupKind.Z2

    def max_label_bound(self, labels_a, labels_b) -> int:
        return 2

    def fuse(self, a, b, sign=1):
        return (int(a) ^ int(b)) & 1, 1, 1

    def is_valid_label(self, label):
        return label in (0, 1)

    def label_to_string(self, label):
        label = int(label)
        if not self.is_valid_label(label):
            return "INVALID"
        return str(label)

    @staticmethod
    def _sign(x: int, y: int) -> float:
        return -1.0 if (x * y) % 2 else 1.0

    def prefactor_append_physical(self, labels, is_left):
        if is_left:
            return 1.0
        return self._sign(labels[1], labels[5])

    def prefactor_matvec(self, labels, mpo):
        return self._sign(labels[3], mpo)

    def prefactor_add_p_operator(self, labels, is_left):
        if is_left:
            return self._sign(labels[0], labels[5])
        return 1.0

    def prefactor_combine_mpos(self, labels, mpo_labels):
        return self._sign(labels[1][0], mpo_labels[1])

    def prefactor_update_branch(self, labels, update_case):
        x, y, _ = _branch_order(update_case)
        return self._sign(labels[1][x], labels[2][y])


class U1Group(SymmetryGroup):
    """Additive integer charge."""

    kind = GroupKind.U1

    def max_label_bound(self, labels_a, labels_b) -> int:
        max_a = max((abs(int(x)) for x in labels_a), default=0)
        max_b = max((abs(int(x)) for x in labels_b), default=0)
        return max_a + max_b + 1

    def fuse(self, a, b, sign=1):
        return int(a) + sign * int(b), 1, 1


class SeniorityGroup(U1Group):
    """
    Number of unpaired particles.

    Fuses additively like U1. Only the target state interpretation differs:
    a non-negative target allows a range of seniorities on the open bond.
    """

    kind = GroupKind.SENIORITY

    def target_labels(self, target):
        target = int(target)
        if target < 0:
            return [-target]
        return list(range(target % 2, target + 1, 2))


class SU2Group(SymmetryGroup):
    """
    Spin rotation symmetry, labels are doubled spins ``2j``.

    Prefactors are reduced matrix element relations (Wigner-Eckart theorem)
    evaluated with exact 6j and 9j symbols from :mod:`symmetric_ttns.wigner`.
    """

    kind = GroupKind.SU2
    is_abelian = False

    def max_label_bound(self, labels_a, labels_b) -> int:
        max_a = max((int(x) for x in labels_a), default=0)
        max_b = max((int(x) for x in labels_b), default=0)
        return max_a + max_b + 1

    def fuse(self, a, b, sign=1):
        a, b = int(a), int(b)
        return abs(a - b), min(a, b) + 1, 2

    def is_valid_label(self, label):
        return label >= 0

    def label_to_string(self, label):
        label = int(label)
        if label % 2:
            return f"{label}/2"
        return str(label // 2)

    def string_to_label(self, text):
        try:
            text = text.strip()
        except AttributeError:
            return 0, False
        half = _HALF_INTEGER.fullmatch(text)
        if half:
            label = int(half.group(1))
        elif _INTEGER.fullmatch(text):
            label = 2 * int(text)
        else:
            return 0, False
        if not self.is_valid_label(label):
            return 0, False
        return label, True

    def mirror_coupling(self, labels):
        # <a ma b mb|c mc> = (-1)^(b+mb) * factor * <c -mc b mb|a -ma>
        a, b, c = labels
        if not wigner.triangle(a, b, c):
            return 0.0
        return math.sqrt((c + 1) / (a + 1))

    def prefactor_append_physical(self, labels, is_left):
        a, p, c, a2, c2, k = labels
        sixj = wigner.wigner_6j(a, c, p, c2, a2, k)
        if sixj == 0.0:
            return 0.0
        if is_left:
            sign = wigner.phase(a + p + c2 + k)
        else:
            sign = wigner.phase(p + a2 + c + k)
        return sign * math.sqrt((c + 1) * (c2 + 1)) * sixj

    def prefactor_matvec(self, labels, mpo):
        a, b, J, a2, b2 = labels
        return (J + 1) * wigner.wigner_9j(a, a2, mpo, b, b2, mpo, J, J, 0)

    def prefactor_add_p_operator(self, labels, is_left):
        a, p, c, p2, c2, k = labels
        sixj = wigner.wigner_6j(p, c, a, c2, p2, k)
        if sixj == 0.0:
            return 0.0
        if is_left:
            sign = wigner.phase(a + p2 + c + k)
        else:
            sign = wigner.phase(p + a + c2 + k)
        return sign * math.sqrt((c + 1) * (c2 + 1)) * sixj

    def prefactor_combine_mpos(self, labels, mpo_labels):
        (a, b, c), (a2, b2, c2) = labels
        k1, k2, k = mpo_labels
        ninej = wigner.wigner_9j(a, a2, k1, b, b2, k2, c, c2, k)
        return math.sqrt((c + 1) * (c2 + 1) * (k + 1)) * ninej

    def prefactor_update_branch(self, labels, update_case):
        bra, ket, ops = labels
        x, y, z = _branch_order(update_case)
        ninej = wigner.wigner_9j(bra[x], ket[x], ops[x],
                                 bra[y], ket[y], ops[y],
                                 bra[z], ket[z], ops[z])
        return math.sqrt((bra[z] + 1) * (ket[z] + 1) * (ops[z] + 1)) * ninej


class PointGroup(SymmetryGroup):
    """Abelian point group with irreps ordered such that products are XOR."""

    def __init__(self, kind: GroupKind):
        if kind not in POINT_GROUP_IRREPS:
            raise ValueError(f"{kind!r} is not a point group")
        self.kind = kind
        self.irreps = POINT_GROUP_IRREPS[kind]

    def max_label_bound(self, labels_a, labels_b) -> int:
        return len(self.irreps)

    def fuse(self, a, b, sign=1):
        return int(a) ^ int(b), 1, 1

    def is_valid_label(self, label):
        return 0 <= label < len(self.irreps)

    def label_to_string(self, label):
        label = int(label)
        if not self.is_valid_label(label):
            return "INVALID"
        return self.irreps[label]

    def string_to_label(self, text):
        try:
            return self.irreps.index(text.strip()), True
        except (ValueError, AttributeError):
            return 0, False


_groups: dict[GroupKind, SymmetryGroup] = {}


def make_group(kind: GroupKind | int | str) -> SymmetryGroup:
    """
    Get the shared instance of a symmetry group variant.

    Parameters
    ----------
    kind : GroupKind, int or str
        Variant tag, its integer value or its name (e.g. ``"SU2"``).

    Returns
    -------
    SymmetryGroup
    """
    if isinstance(kind, str):
        try:
            kind = GroupKind[kind.strip()]
        except KeyError:
            raise ValueError(f"Unknown symmetry group: {kind}") from None
    kind = GroupKind(int(kind))

    group = _groups.get(kind)
    if group is None:
        if kind == GroupKind.Z2:
            group = Z2Group()
        elif kind == GroupKind.U1:
            group = U1Group()
        elif kind == GroupKind.SU2:
            group = SU2Group()
        elif kind == GroupKind.SENIORITY:
            group = SeniorityGroup()
        else:
            group = PointGroup(kind)
        _groups[kind] = group
    return group


def make_groups(kinds: Iterable[GroupKind | int | str]) -> tuple[SymmetryGroup, ...]:
    """Instantiate a list of symmetry groups."""
    return tuple(make_group(k) for k in kinds)


def group_list_string(groups: Iterable[SymmetryGroup]) -> str:
    """Human readable rendering of a symmetry group list, e.g. ``"Z2 U1 SU2"``."""
    return " ".join(g.name for g in groups)


def target_state_string(groups: Sequence[SymmetryGroup], labels: Sequence[int]) -> str:
    """Render a target state, one irrep per group."""
    return " ".join(g.label_to_string(l) for g, l in zip(groups, labels))
