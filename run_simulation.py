from __future__ import annotations

import argparse
import dataclasses
import logging
from typing import Sequence

from CellBehavior.io import load_simulation_config, save_containers_json, save_snapshot_json
from CellBehavior.simulator import PatchSimulator

logger = logging.getLogger("run_simulation")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an agent-based patch cell simulation.")
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to simulation YAML config (default: config.yaml)",
    )
    parser.add_argument("--ticks", type=int, default=None, help="Override the number of ticks")
    parser.add_argument("--seed", type=int, default=None, help="Override the random seed")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config)",
    )
    parser.add_argument(
        "--save-cells",
        default=None,
        help="Optional path for the final agent containers (JSON)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    sim_config = load_simulation_config(args.config)
    overrides = {}
    if args.ticks is not None:
        overrides["ticks"] = args.ticks
    if args.seed is not None:
        overrides["random_seed"] = args.seed
    if overrides:
        sim_config = dataclasses.replace(sim_config, **overrides)

    logging.basicConfig(
        level=args.log_level or sim_config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    simulator = PatchSimulator(sim_config)
    snapshots = simulator.run()
    save_snapshot_json(snapshots, sim_config.out_path)
    if args.save_cells is not None:
        save_containers_json(simulator.grid.agents(), args.save_cells)
        logger.info("Wrote %d cell containers to %s", len(simulator.grid), args.save_cells)

    logger.info("Wrote %d snapshots to %s", len(snapshots), sim_config.out_path)


if __name__ == "__main__":
    main()
