import argparse
import json
import pathlib
import sys
import time
from typing import Any, Dict, Optional

import numpy as np
import torch

project_root = pathlib.Path(__file__).resolve().parents[1]
sys.path.append(str(project_root))

from parabody import (
    Config,
    Pipeline,
    build_initial_conditions,
    load_checkpoint,
    load_config_from_checkpoint,
    restore_pipeline,
    save_checkpoint,
    summarize,
    total_angular_momentum,
    total_energy,
    total_momentum,
)
from parabody.kernel import num_workgroups


def _load_toml(path: str) -> Dict[str, Any]:
    try:
        import tomllib
    except ImportError:
        try:
            import tomli as tomllib
        except ImportError as exc:
            raise RuntimeError(
                "TOML config requires Python 3.11+ (tomllib) or install tomli."
            ) from exc
    with open(path, "rb") as handle:
        return tomllib.load(handle)


def _split_toml_config(data: Dict[str, Any]) -> tuple[Dict[str, Any], Dict[str, Any]]:
    base = {k: v for k, v in data.items() if k not in {"simulate"}}
    simulate = data.get("simulate", {}) or {}
    return base, simulate


def _subparser_for_mode(parser: argparse.ArgumentParser, mode: str) -> Optional[argparse.ArgumentParser]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices.get(mode)
    return None


def _cli_overrides_for_mode(
    args: argparse.Namespace,
    parser: argparse.ArgumentParser,
    mode: str,
    argv: list[str],
) -> Dict[str, Any]:
    option_strings = {arg.split("=", 1)[0] for arg in argv if arg.startswith("-")}
    overrides: Dict[str, Any] = {}
    actions = list(parser._actions)
    subparser = _subparser_for_mode(parser, mode)
    if subparser is not None:
        actions.extend(subparser._actions)
    for action in actions:
        if not action.option_strings:
            continue
        if any(opt in option_strings for opt in action.option_strings):
            if action.dest not in {"config", "mode", "help"}:
                overrides[action.dest] = getattr(args, action.dest, None)
    return overrides


def _config_from_sources(
    base: Dict[str, Any],
    section: Dict[str, Any],
    overrides: Dict[str, Any],
) -> Config:
    payload: Dict[str, Any] = {}
    payload.update(base)
    payload.update(section)
    payload.update(overrides)
    return Config.from_dict(payload)


def _output_dir(config: Config) -> pathlib.Path:
    return pathlib.Path(project_root) / "data" / (config.save_name or "run_nbody")


def _save_trajectory_plot(
    positions: np.ndarray,
    energies: np.ndarray,
    times: np.ndarray,
    config: Config,
) -> pathlib.Path:
    """
    Plot xy trajectories of the active bodies and the energy history.

    Args:
        positions: Array of shape (frames, N, 3).
        energies: Total energy per recorded frame.
        times: Simulation time per recorded frame.
    """
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError as exc:
        raise RuntimeError("matplotlib is required for --plot") from exc

    frames, n_bodies, _ = positions.shape
    if frames == 0:
        raise ValueError("Plotting requires at least one recorded frame.")

    fig, (ax_traj, ax_E) = plt.subplots(1, 2, figsize=(12, 5), gridspec_kw={"width_ratios": [1.2, 1.0]})
    colors = plt.cm.tab10.colors
    for i in range(n_bodies):
        color = colors[i % len(colors)]
        ax_traj.plot(positions[:, i, 0], positions[:, i, 1], color=color, linewidth=0.8)
        ax_traj.plot(positions[-1, i, 0], positions[-1, i, 1], "o", color=color, markersize=3)
    ax_traj.set_aspect("equal", adjustable="datalim")
    ax_traj.set_xlabel("x")
    ax_traj.set_ylabel("y")
    ax_traj.set_title(f"{n_bodies}-Body Trajectories")

    ax_E.plot(times, energies, color="black")
    ax_E.set_xlabel("Time (code units)")
    ax_E.set_ylabel("Total Energy")
    ax_E.grid(True)

    out_dir = _output_dir(config)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / "trajectories.png"
    fig.tight_layout()
    fig.savefig(path, dpi=120)
    plt.close(fig)
    return path


def _init_wandb(config: Config, default_name: str):
    if not config.extra.get("wandb", False):
        return None, None
    try:
        import wandb as wandb_lib
    except ImportError as exc:
        raise RuntimeError("wandb is not installed; install it or disable --wandb") from exc
    run = wandb_lib.init(
        project=config.extra.get("wandb_project") or "parabody",
        name=config.extra.get("wandb_name") or config.save_name or default_name,
        config=config.as_wandb_dict(),
    )
    return wandb_lib, run


def run_simulation(config: Config) -> Dict[str, Any]:
    config.validate()
    device = config.resolve_device()
    if config.seed is not None:
        torch.manual_seed(config.seed)
        np.random.seed(config.seed)

    resume_path = config.extra.get("resume")
    if resume_path:
        pipeline = restore_pipeline(resume_path, device=device)
        if config.extra.get("override_dt") or pipeline.dt is None:
            pipeline.set_dt(config.dt)
        else:
            config.dt = pipeline.dt
    else:
        pipeline = Pipeline.from_config(config, device=device)
        pipeline.write_bodies(build_initial_conditions(config))

    steps = config.resolve_steps()
    print(f"Starting parabody: {config.summary()}")
    print(
        f"num_bodies={pipeline.num_bodies} workgroups/tick={num_workgroups(pipeline.num_bodies, pipeline.workgroup_size)} "
        f"device={pipeline.device}"
    )

    wandb, wandb_run = _init_wandb(config, "simulate")

    initial = pipeline.read_bodies()
    positions_history = [initial["position"].copy()]
    energies = [total_energy(initial, softening=pipeline.softening)]
    times = [pipeline.time]

    def _record(p: Pipeline, tick: int) -> None:
        bodies = p.read_bodies()
        energy = total_energy(bodies, softening=p.softening)
        positions_history.append(bodies["position"].copy())
        energies.append(energy)
        times.append(p.time)
        if config.debug:
            print(f"tick={tick} t={p.time:.6g} E={energy:.8e}")
        if wandb_run is not None:
            wandb_run.log(
                {
                    "tick": tick,
                    "time": p.time,
                    "energy": energy,
                    "momentum_norm": float(np.linalg.norm(total_momentum(bodies))),
                    "angular_momentum_norm": float(np.linalg.norm(total_angular_momentum(bodies))),
                }
            )

    start = time.perf_counter()
    pipeline.submit_and_block(steps, callback=_record, every=config.log_every)
    elapsed = time.perf_counter() - start

    final = pipeline.read_bodies()
    report = summarize(initial, final, softening=pipeline.softening, ticks=pipeline.tick)
    report["wall_time"] = elapsed
    report["ticks_per_second"] = steps / elapsed if elapsed > 0 else None
    print(json.dumps(report, indent=2))

    if config.extra.get("checkpoint"):
        path = save_checkpoint(config.extra["checkpoint"], pipeline, config=config)
        print(f"Checkpoint saved: {path}")

    if config.plot:
        plot_path = _save_trajectory_plot(
            np.stack(positions_history, axis=0),
            np.asarray(energies, dtype=float),
            np.asarray(times, dtype=float),
            config,
        )
        print(f"Plot saved: {plot_path}")

    if wandb_run is not None:
        wandb_run.summary.update({k: v for k, v in report.items() if not isinstance(v, list)})
        wandb.finish()
    return report


def inspect_checkpoint(path: str) -> Dict[str, Any]:
    ckpt = load_checkpoint(path, map_location="cpu")
    config = load_config_from_checkpoint(path)
    pipeline = restore_pipeline(path)
    bodies = pipeline.read_bodies()
    info = {
        "tick": ckpt.get("tick"),
        "time": ckpt.get("time"),
        "num_bodies": pipeline.num_bodies,
        "capacity": pipeline.capacity,
        "dt": pipeline.dt,
        "source": pipeline.source.name,
        "energy": total_energy(bodies, softening=pipeline.softening),
        "config": config.summary() if config is not None else None,
    }
    print(json.dumps(info, indent=2))
    return info


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parallel N-body integrator runner")
    parser.add_argument("--config", type=str, default=None, help="path to TOML config")
    sub = parser.add_subparsers(dest="mode", required=True)

    sim = sub.add_parser("simulate", help="Run an N-body simulation")
    sim.add_argument("--config", type=str, default=None, help=argparse.SUPPRESS)
    Config.add_cli_args(sim, include=["sim", "ic", "device", "logging"])
    sim.add_argument("--ic-path", type=str, default=None, help="path to ICs (npy/txt)")
    sim.add_argument("--checkpoint", type=str, default=None, help="save the final state to this path")
    sim.add_argument("--resume", type=str, default=None, help="continue from a saved checkpoint")
    sim.add_argument("--wandb", action="store_true", help="enable Weights & Biases logging")
    sim.add_argument("--wandb-project", type=str, default="parabody", help="W&B project name")
    sim.add_argument("--wandb-name", type=str, default=None, help="W&B run name (defaults to save_name)")

    insp = sub.add_parser("inspect", help="Summarize a saved checkpoint")
    insp.add_argument("path", type=str, help="checkpoint path")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    args = parser.parse_args(argv)

    if args.mode == "inspect":
        inspect_checkpoint(args.path)
        return

    config_data = {}
    if args.config:
        config_data = _load_toml(args.config)
    base_cfg, sim_cfg = _split_toml_config(config_data)
    overrides = _cli_overrides_for_mode(args, parser, "simulate", argv)
    config = _config_from_sources(base_cfg, sim_cfg, overrides)
    if "dt" in base_cfg or "dt" in sim_cfg or "dt" in overrides:
        config.extra["override_dt"] = True
    for key in ("ic_path", "checkpoint", "resume", "wandb", "wandb_project", "wandb_name"):
        value = getattr(args, key, None)
        if value:
            config.extra[key] = value
    run_simulation(config)


if __name__ == "__main__":
    main()
