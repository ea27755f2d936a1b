from __future__ import annotations

import argparse
import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, Optional

import torch


@dataclass
class Config:
    # Simulation / integrator
    num_bodies: int = 4
    capacity: int = 65536
    dt: float = 1e-3
    steps: int = -1
    duration: float | None = None
    softening: float = 0.1
    pair_policy: str = "skip"
    workgroup_size: int = 64

    # Initial conditions
    ic: str = "random"
    mu: float = 1.0
    pos_scale: float = 1.0
    vel_scale: float = 0.1
    separation: float = 2.0

    # Device
    device: str = "auto"

    # Logging / misc
    save_name: Optional[str] = None
    seed: Optional[int] = None
    debug: bool = False
    log_every: int = 100
    plot: bool = False

    # Extra / unknown fields
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def add_cli_args(cls, parser: argparse.ArgumentParser, include: Optional[Iterable[str]] = None) -> None:
        include_set = set(include) if include is not None else None

        def want(key: str) -> bool:
            return include_set is None or key in include_set

        def add_arg(*args: Any, **kwargs: Any) -> None:
            for option in args:
                if option in parser._option_string_actions:
                    return
            parser.add_argument(*args, **kwargs)

        if want("sim"):
            add_arg("--num-bodies", "-n", type=int, default=cls.num_bodies, help="number of active bodies")
            add_arg("--capacity", type=int, default=cls.capacity, help="body buffer capacity")
            add_arg("--dt", type=float, default=cls.dt, help="integration time step")
            add_arg("--steps", type=int, default=cls.steps, help="number of ticks to run (overrides duration)")
            add_arg("--duration", type=float, default=cls.duration, help="simulated time to cover")
            add_arg("--softening", type=float, default=cls.softening, help="minimum interaction distance")
            add_arg(
                "--pair-policy",
                type=str,
                choices=["skip", "halt"],
                default=cls.pair_policy,
                help="skip close/self pairs, or halt the partner loop at the first one",
            )
            add_arg("--workgroup-size", type=int, default=cls.workgroup_size, help="workers per workgroup")

        if want("ic"):
            add_arg(
                "--ic",
                type=str,
                choices=["random", "scenario", "binary"],
                default=cls.ic,
                help="initial condition generator",
            )
            add_arg("--mu", type=float, default=cls.mu, help="per-body gravitational parameter for generated ICs")
            add_arg("--pos-scale", type=float, default=cls.pos_scale, help="position scale for random ICs")
            add_arg("--vel-scale", type=float, default=cls.vel_scale, help="velocity scale for random ICs")
            add_arg("--separation", type=float, default=cls.separation, help="binary separation for binary ICs")

        if want("device"):
            add_arg("--device", type=str, choices=["auto", "cpu", "cuda"], default=cls.device, help="compute device")

        if want("logging"):
            add_arg("--save-name", "-s", type=str, default=cls.save_name, help="base filename/dir under data/ to save outputs")
            add_arg("--seed", type=int, default=cls.seed, help="random seed for reproducibility")
            add_arg("--debug", action="store_true", help="enable debug printouts")
            add_arg("--log-every", type=int, default=cls.log_every, help="record diagnostics every N ticks")
            add_arg("--plot", action="store_true", help="save a trajectory plot")

    @classmethod
    def from_cli(
        cls,
        parser_or_args: argparse.ArgumentParser | argparse.Namespace,
        *,
        include: Optional[Iterable[str]] = None,
        argv: Optional[Iterable[str]] = None,
    ) -> "Config":
        if isinstance(parser_or_args, argparse.ArgumentParser):
            parser = parser_or_args
            cls.add_cli_args(parser, include=include)
            args = parser.parse_args(argv)
        else:
            args = parser_or_args
        return cls.from_dict(vars(args))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        payload = dict(data) if data is not None else {}
        field_names = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in payload.items():
            if key in field_names and key != "extra":
                kwargs[key] = value
            else:
                extra[key] = value
        kwargs["extra"] = extra
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        return data

    def as_wandb_dict(self) -> Dict[str, Any]:
        data = self.to_dict()
        extra = data.pop("extra", {}) or {}
        if isinstance(extra, dict):
            for key, value in extra.items():
                if key not in data:
                    data[key] = value
        return data

    def summary(self) -> str:
        return (
            f"num_bodies={self.num_bodies} capacity={self.capacity} dt={self.dt} steps={self.resolve_steps()} "
            f"softening={self.softening} pair_policy={self.pair_policy} workgroup_size={self.workgroup_size} "
            f"ic={self.ic} device={self.device}"
        )

    def validate(self) -> None:
        if self.num_bodies < 1:
            raise ValueError("num_bodies must be >= 1")
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        if self.num_bodies > self.capacity:
            raise ValueError(f"num_bodies={self.num_bodies} exceeds capacity={self.capacity}")
        if not math.isfinite(self.dt) or self.dt <= 0:
            raise ValueError("dt must be > 0")
        if self.duration is not None and self.duration < 0:
            raise ValueError("duration must be >= 0")
        if self.softening < 0:
            raise ValueError("softening must be >= 0")
        if self.pair_policy not in ("skip", "halt"):
            raise ValueError(f"Unsupported pair_policy={self.pair_policy!r}. Use 'skip' or 'halt'.")
        if self.workgroup_size < 1:
            raise ValueError("workgroup_size must be >= 1")
        if self.mu < 0:
            raise ValueError("mu must be >= 0")
        if self.log_every < 1:
            raise ValueError("log_every must be >= 1")
        if self.ic == "binary" and self.num_bodies != 2:
            raise ValueError("binary ICs require num_bodies=2")

    def resolve_steps(self) -> int:
        if self.steps is not None and self.steps >= 0:
            return int(self.steps)
        if self.duration is not None:
            return int(math.ceil(self.duration / self.dt))
        return 1000

    def resolve_device(self) -> torch.device:
        if isinstance(self.device, torch.device):
            return self.device
        if self.device == "cpu":
            return torch.device("cpu")
        if self.device == "cuda":
            if not torch.cuda.is_available():
                raise RuntimeError("device='cuda' requested but CUDA is not available")
            return torch.device("cuda")
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
