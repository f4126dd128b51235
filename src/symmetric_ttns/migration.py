"""
Changing the target state of an existing network.

A state read from a snapshot may have been optimised for a different
target state than the one requested now. Only seniority targets can be
converted: the open bond gets the sector list of the new target, its
renormalized operators are reset to the identity and the tensor attached
to it is rewritten and renormalized. Every other difference is fatal.

All changes are computed on copies first and committed only when every
group could be converted, so a rejected migration leaves the state as it
was.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Sequence
import logging

from .config import NORM_TOL
from .errors import TargetStateIncompatibleError
from .roperators import RenormalizedOperators
from .sectors import target_sectors
from .state import NetworkState
from .symmetries import GroupKind, target_state_string

logger = logging.getLogger(__name__)


class MigrationStatus(Enum):
    """Outcome of a target-state change."""

    COMPATIBLE = 'compatible'
    SENIORITY_ADJUSTABLE = 'seniority_adjustable'
    INCOMPATIBLE = 'incompatible'


@dataclass(frozen=True)
class MigrationResult:
    """
    Result of :func:`change_target_state`.

    For an incompatible change ``group``, ``before`` and ``after`` name the
    offending symmetry group and its labels as text.
    """
    status: MigrationStatus
    group: str | None = None
    before: str | None = None
    after: str | None = None
    message: str = ''

    @property
    def ok(self) -> bool:
        return self.status is not MigrationStatus.INCOMPATIBLE


def _stage(state: NetworkState, new_target: tuple[int, ...]):
    """
    Compute the open bond sectors, root tensor and operators for a target.

    Returns None if the rewritten tensor has no weight left.
    """
    registry, topology = state.registry, state.topology
    bond = topology.open_bond
    old_sectors = registry.sectors(bond)
    new_sectors = target_sectors(state.groups, new_target)

    tensor = state.root_tensor.change_sectors(old_sectors, new_sectors, position=2)
    norm = tensor.norm()
    if norm < NORM_TOL:
        return None
    tensor.normalize()

    rops = RenormalizedOperators.vacuum(bond, 0, registry, sectors=new_sectors)
    return new_sectors, tensor, rops


def _commit(state: NetworkState, new_target: tuple[int, ...], staged) -> None:
    new_sectors, tensor, rops = staged
    state.registry.retarget(new_target, new_sectors)
    state.tensors[state.topology.root] = tensor
    state.operators[state.topology.open_bond] = rops


def change_seniority(
    state: NetworkState,
    group_index: int,
    old_label: int,
    new_label: int
) -> bool:
    """
    Change the seniority target of one group.

    Parameters
    ----------
    state : NetworkState
        The state, modified in place on success.
    group_index : int
        Index of the seniority group.
    old_label, new_label : int
        Current and requested target label.

    Returns
    -------
    bool
        True on success or when both labels are equal. False if a label
        is a pinned (negative) seniority, the group is not a seniority
        group, or no weight survives the change. The state is untouched
        on failure.
    """
    if old_label == new_label:
        return True
    group = state.groups[group_index]
    if group.kind != GroupKind.SENIORITY:
        logger.error("Group %d (%s) is not a seniority symmetry", group_index, group.name)
        return False
    if old_label < 0 or new_label < 0:
        logger.error("Pinned seniority %d can not be converted to %d", old_label, new_label)
        return False

    with state.exclusive():
        target = list(state.registry.target_state())
        if target[group_index] != old_label:
            logger.error("Seniority target is %d, not %d", target[group_index], old_label)
            return False
        target[group_index] = new_label
        target = tuple(target)

        staged = _stage(state, target)
        if staged is None:
            logger.error("No weight left after changing seniority %d to %d",
                         old_label, new_label)
            return False
        _commit(state, target, staged)
    logger.info("Changed seniority target from %d to %d", old_label, new_label)
    return True


def change_target_state(state: NetworkState, new_target: Sequence[int]) -> MigrationResult:
    """
    Move the state to a new target state.

    Parameters
    ----------
    state : NetworkState
        The state, modified in place when the result is not incompatible.
    new_target : sequence of int
        Requested target irrep, one label per group.

    Returns
    -------
    MigrationResult
        ``COMPATIBLE`` if nothing had to change, ``SENIORITY_ADJUSTABLE`` if
        seniority targets were converted and ``INCOMPATIBLE`` otherwise.
    """
    groups = state.groups
    new_target = tuple(int(x) for x in new_target)
    if len(new_target) != len(groups):
        raise ValueError(f"Target state has {len(new_target)} labels for {len(groups)} symmetries")

    def reject(group_index: int, before: int, after: int, reason: str) -> MigrationResult:
        group = groups[group_index]
        result = MigrationResult(
            MigrationStatus.INCOMPATIBLE,
            group=group.name,
            before=group.label_to_string(before),
            after=group.label_to_string(after),
            message=reason,
        )
        logger.error("Not able to change target state from %s to %s for %s: %s",
                     result.before, result.after, result.group, reason)
        return result

    with state.exclusive():
        old_target = state.registry.target_state()
        if old_target == new_target:
            return MigrationResult(MigrationStatus.COMPATIBLE)

        changed = [i for i, (a, b) in enumerate(zip(old_target, new_target)) if a != b]
        for i in changed:
            before, after = old_target[i], new_target[i]
            if groups[i].kind != GroupKind.SENIORITY:
                return reject(i, before, after, "only seniority targets can be converted")
            if before < 0 or after < 0:
                return reject(i, before, after, "a pinned seniority can not be converted")

        staged = _stage(state, new_target)
        if staged is None:
            i = changed[0]
            return reject(i, old_target[i], new_target[i], "no weight survives the conversion")
        _commit(state, new_target, staged)

    logger.info("Target state changed from %s to %s",
                target_state_string(groups, old_target),
                target_state_string(groups, new_target))
    return MigrationResult(MigrationStatus.SENIORITY_ADJUSTABLE)


def check_target_state(state: NetworkState, new_target: Sequence[int]) -> MigrationResult:
    """
    Like :func:`change_target_state` but raise on an incompatible change.

    Raises
    ------
    TargetStateIncompatibleError
        If the target state could not be reconciled.
    """
    result = change_target_state(state, new_target)
    if not result.ok:
        raise TargetStateIncompatibleError(result.group, result.before, result.after)
    return result
