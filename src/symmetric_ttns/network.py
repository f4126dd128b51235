"""
Tree network topology.

The network is a tree of sites. Every bond is directed towards a single
distinguished *open* bond that carries the global target state:

* ``bonds[i] = (from_site, to_site)``,
* ``from_site == -1`` marks a vacuum bond entering a leaf,
* ``to_site == -1`` marks the open bond (exactly one).

Physical sites have one incoming bond, one physical leg and one outgoing
bond. Branching sites have two incoming bonds and one outgoing bond.
"""

from __future__ import annotations
from typing import Sequence
import logging

import networkx as nx
import numpy as np
from numpy.typing import NDArray

from .sectors import Leg

logger = logging.getLogger(__name__)


class NetworkTopology:
    """
    Topology of a three-legged tree tensor network.

    Attributes
    ----------
    bonds : ndarray, shape (nr_bonds, 2)
        ``(from_site, to_site)`` for every bond.
    sitetoorb : ndarray, shape (sites,)
        Orbital of every physical site, ``-1`` for branching sites.
    nr_bonds : int
        Number of bonds.
    sites : int
        Number of sites (physical and branching).
    psites : int
        Number of physical sites.
    open_bond : int
        Index of the bond carrying the target state.
    """

    def __init__(
        self,
        bonds: NDArray | Sequence[Sequence[int]],
        sitetoorb: NDArray | Sequence[int],
        sweep: NDArray | Sequence[int] | None = None
    ):
        """
        Build and validate a topology.

        Parameters
        ----------
        bonds : array-like, shape (nr_bonds, 2)
            ``(from_site, to_site)`` pairs.
        sitetoorb : array-like
            Orbital index per site, ``-1`` for branching sites.
        sweep : array-like, optional
            Explicit sweep order. Computed by depth-first traversal if None.

        Raises
        ------
        ValueError
            If the bonds do not describe a tree with exactly one open bond.
        """
        self.bonds = np.asarray(bonds, dtype=np.intp).reshape(-1, 2)
        self.sitetoorb = np.asarray(sitetoorb, dtype=np.intp).reshape(-1)
        self.nr_bonds = len(self.bonds)
        self.sites = len(self.sitetoorb)
        self.psites = int(np.sum(self.sitetoorb >= 0))

        self._incoming: list[list[int]] = [[] for _ in range(self.sites)]
        self._outgoing: list[list[int]] = [[] for _ in range(self.sites)]
        self._validate()

        self.open_bond = int(np.where(self.bonds[:, 1] == -1)[0][0])
        self._order = self._leaves_first_order()

        if sweep is None:
            self.sweep = self._depth_first_sweep()
        else:
            self.sweep = np.asarray(sweep, dtype=np.intp).reshape(-1)
            if np.any((self.sweep < 0) | (self.sweep >= self.nr_bonds)):
                raise ValueError("Sweep refers to bonds outside the network")

    def _validate(self) -> None:
        bonds, sites = self.bonds, self.sites

        if np.any(bonds < -1) or np.any(bonds >= sites):
            raise ValueError("Bonds refer to sites outside the network")
        if np.any(np.all(bonds == -1, axis=1)):
            raise ValueError("A bond must be attached to at least one site")
        if np.sum(bonds[:, 1] == -1) != 1:
            raise ValueError("The network needs exactly one open bond")

        orbitals = np.sort(self.sitetoorb[self.sitetoorb >= 0])
        if not np.array_equal(orbitals, np.arange(self.psites)):
            raise ValueError("Physical sites must map onto orbitals 0 ... psites - 1")

        for i, (a, b) in enumerate(bonds):
            if a != -1:
                self._outgoing[a].append(i)
            if b != -1:
                self._incoming[b].append(i)

        for site in range(sites):
            if len(self._outgoing[site]) != 1:
                raise ValueError(f"Site {site} needs exactly one outgoing bond")
            expected = 1 if self.is_psite(site) else 2
            if len(self._incoming[site]) != expected:
                raise ValueError(
                    f"Site {site} has {len(self._incoming[site])} incoming bonds, "
                    f"expected {expected}"
                )

        graph = nx.Graph()
        graph.add_nodes_from(range(sites))
        graph.add_edges_from((int(a), int(b)) for a, b in bonds if a != -1 and b != -1)
        if sites == 0 or not nx.is_tree(graph):
            logger.error("Bonds %s do not form a tree", bonds.tolist())
            raise ValueError("The sites and bonds do not form a tree")

    def _leaves_first_order(self) -> list[int]:
        graph = nx.DiGraph()
        graph.add_nodes_from(range(self.sites))
        graph.add_edges_from(
            (int(a), int(b)) for a, b in self.bonds if a != -1 and b != -1
        )
        return list(nx.lexicographical_topological_sort(graph))

    def _depth_first_sweep(self) -> NDArray[np.intp]:
        sweep = []
        stack = [self.root]
        while stack:
            site = stack.pop()
            for bond in reversed(self._incoming[site]):
                child = self.bonds[bond, 0]
                if child == -1:
                    continue
                stack.append(int(child))
            for bond in self._incoming[site]:
                if self.bonds[bond, 0] != -1:
                    sweep.append(bond)
        return np.array(sweep, dtype=np.intp)

    # ------------------------------------------------------------------ #
    # Queries                                                            #
    # ------------------------------------------------------------------ #

    @property
    def root(self) -> int:
        """The site attached to the open bond."""
        return int(self.bonds[self.open_bond, 0])

    @property
    def sweeplength(self) -> int:
        return len(self.sweep)

    def is_open(self, bond: int) -> bool:
        return bond == self.open_bond

    def is_vacuum(self, bond: int) -> bool:
        return self.bonds[bond, 0] == -1

    def is_psite(self, site: int) -> bool:
        return self.sitetoorb[site] >= 0

    def incoming_bonds(self, site: int) -> list[int]:
        return list(self._incoming[site])

    def outgoing_bond(self, site: int) -> int:
        return self._outgoing[site][0]

    def site_legs(self, site: int) -> tuple[Leg, Leg, Leg]:
        """
        The three legs of the tensor at ``site``.

        Returns
        -------
        tuple of Leg
            ``(in, physical, out)`` for physical sites and
            ``(in1, in2, out)`` for branching sites.
        """
        out = Leg('v', self.outgoing_bond(site))
        incoming = self._incoming[site]
        if self.is_psite(site):
            return Leg('v', incoming[0]), Leg('p', int(self.sitetoorb[site])), out
        return Leg('v', incoming[0]), Leg('v', incoming[1]), out

    def neighbors(self, bond: int) -> list[int]:
        """Bonds sharing a site with ``bond``."""
        result = set()
        for site in self.bonds[bond]:
            if site == -1:
                continue
            result.update(self._incoming[site])
            result.update(self._outgoing[site])
        result.discard(bond)
        return sorted(result)

    def ordered_sites(self) -> list[int]:
        """Sites ordered such that every site comes after its children."""
        return list(self._order)

    def sweep_order(self) -> list[int]:
        """
        Sweep order over the internal bonds.

        Every internal bond appears exactly once. The order is a
        deterministic function of the topology and can be restarted at will.
        """
        return [int(b) for b in self.sweep]

    def __eq__(self, other) -> bool:
        if not isinstance(other, NetworkTopology):
            return NotImplemented
        return (
            np.array_equal(self.bonds, other.bonds)
            and np.array_equal(self.sitetoorb, other.sitetoorb)
            and np.array_equal(self.sweep, other.sweep)
        )

    def __repr__(self) -> str:
        return (f"NetworkTopology(sites={self.sites}, psites={self.psites}, "
                f"nr_bonds={self.nr_bonds}, open_bond={self.open_bond})")


def chain_topology(psites: int) -> NetworkTopology:
    """
    A linear chain of ``psites`` physical sites (a matrix product state).

    Bond ``0`` is the vacuum bond entering site ``0``, bond ``i`` connects
    site ``i - 1`` to site ``i`` and bond ``psites`` is the open bond.
    """
    bonds = [(-1, 0)] + [(i, i + 1) for i in range(psites - 1)] + [(psites - 1, -1)]
    return NetworkTopology(bonds, np.arange(psites))


def three_legged_topology(arm: int) -> NetworkTopology:
    """
    Three chains of ``arm`` physical sites joined by one branching site.

    Two arms feed the branching site, the third arm continues from it to the
    open bond. Physical sites are numbered arm by arm.
    """
    if arm < 1:
        raise ValueError("Every arm needs at least one site")
    bonds = []
    sitetoorb = []
    branch = 3 * arm
    for a in range(2):
        first = a * arm
        bonds.append((-1, first))
        for i in range(arm - 1):
            bonds.append((first + i, first + i + 1))
        bonds.append((first + arm - 1, branch))
        sitetoorb.extend(range(first, first + arm))
    first = 2 * arm
    bonds.append((branch, first))
    for i in range(arm - 1):
        bonds.append((first + i, first + i + 1))
    bonds.append((first + arm - 1, -1))
    sitetoorb.extend(range(first, first + arm))
    sitetoorb.append(-1)
    return NetworkTopology(bonds, sitetoorb)
