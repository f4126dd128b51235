"""
Example: inspecting and migrating a tree tensor network snapshot.

This script loads a ``T3NScalc.h5`` snapshot, optionally moves it to a new
target state and logs a summary of the network, the symmetry sectors of
every bond and the stored tensors and operators.

Without a snapshot argument a random state is created and written first,
so the script also works as a self-contained demonstration.

Usage
-----
    python inspect_snapshot.py [snapshot.h5] [--target 0 4 0] [--write DIR]
"""

import argparse
import logging
import sys
import tempfile

from symmetric_ttns import (
    NetworkState,
    SymmetricTTNSError,
    chain_topology,
    make_groups,
    read_from_disk,
    target_state_string,
    three_legged_topology,
    write_to_disk,
)

logger = logging.getLogger("inspect_snapshot")


def summarize(state: NetworkState) -> None:
    topo, registry = state.topology, state.registry
    logger.info("Symmetries: %s", " ".join(g.name for g in state.groups))
    logger.info("Target state: %s",
                target_state_string(state.groups, registry.target_state()))
    logger.info("Sites: %d (%d physical), bonds: %d, open bond: %d",
                topo.sites, topo.psites, topo.nr_bonds, topo.open_bond)

    dims = [str(registry.total_dimension(b)) for b in range(topo.nr_bonds)]
    logger.info("Bond dimensions: %s", '--'.join(dims))

    for site, tensor in enumerate(state.tensors):
        logger.info("Tensor %d: %d blocks, norm %.6f", site, tensor.nrblocks, tensor.norm())
    for bond, rops in enumerate(state.operators):
        if not rops.is_uninitialized:
            logger.info("Operators on bond %d: %d operators, %d blocks",
                        bond, rops.nrops, rops.nr_blocks)


def main(argv=None) -> int:
    # =========================================================================
    # Arguments
    # =========================================================================
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("snapshot", nargs="?", help="HDF5 snapshot to read")
    parser.add_argument("--target", nargs="+", type=int, help="new target state")
    parser.add_argument("--write", metavar="DIR", help="write the result to DIR")
    parser.add_argument("--arm", type=int, default=0,
                        help="demo only: use a three-legged tree with this arm length")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        # =====================================================================
        # Load or create
        # =====================================================================
        if args.snapshot is None:
            groups = make_groups(["Z2", "U1", "SENIORITY"])
            topology = three_legged_topology(args.arm) if args.arm else chain_topology(6)
            psites = topology.psites
            state = NetworkState.random_init(
                groups, (psites % 2, psites, 2), topology, max_dim=16, seed=7
            )
            with tempfile.TemporaryDirectory() as tmpdir:
                filename = write_to_disk(state, tmpdir)
                state = read_from_disk(filename, target_state=args.target)
        else:
            state = read_from_disk(args.snapshot, target_state=args.target)
        summarize(state)

        # =====================================================================
        # Save
        # =====================================================================
        if args.write:
            write_to_disk(state, args.write)
    except SymmetricTTNSError as err:
        logger.error("%s", err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
