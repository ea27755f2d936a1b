#!/usr/bin/env python3
"""
Generate a collection of standard initial conditions (ICs) for simulation.
These files can be loaded using the `--ic-path` argument in runner.py.
"""

import argparse
import pathlib
import sys

project_root = pathlib.Path(__file__).resolve().parents[1]
sys.path.append(str(project_root))

from parabody.initial_conditions import (
    generate_binary_ic,
    generate_random_ic,
    reference_scenario,
    save_ic,
)


def main():
    parser = argparse.ArgumentParser(description="Generate standard N-body ICs.")
    parser.add_argument("--out-dir", type=str, default="data/ics", help="Output directory")
    parser.add_argument("--seed", type=int, default=0, help="seed for the random clusters")
    args = parser.parse_args()

    out_dir = pathlib.Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    entries = [
        ("scenario_4.npy", reference_scenario(4)),
        ("binary_d2.npy", generate_binary_ic(separation=2.0, mu=1.0)),
        ("binary_d10.npy", generate_binary_ic(separation=10.0, mu=1.0)),
        ("cluster_64.npy", generate_random_ic(64, mu=1.0 / 64, seed=args.seed)),
        ("cluster_1024.npy", generate_random_ic(1024, mu=1.0 / 1024, seed=args.seed)),
        ("cluster_64.txt", generate_random_ic(64, mu=1.0 / 64, seed=args.seed)),
    ]

    print(f"Generating ICs in {out_dir}...")
    for filename, bodies in entries:
        save_ic(out_dir / filename, bodies)
        print(f"  Saved {filename} ({bodies.shape[0]} bodies)")

    print("\nTo use these in a simulation:")
    print(f"  python run/runner.py simulate --ic-path {out_dir}/cluster_64.npy --dt 1e-3 --steps 1000")


if __name__ == "__main__":
    main()
