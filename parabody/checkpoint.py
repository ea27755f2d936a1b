from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional
import inspect

import torch

from .config import Config
from .kernel import DEFAULT_SOFTENING, DEFAULT_WORKGROUP_SIZE
from .pipeline import Pipeline


def _config_payload(config: Optional[Config]) -> Optional[Dict[str, Any]]:
    if config is None:
        return None
    return config.as_wandb_dict()


def save_checkpoint(
    path: str | Path,
    pipeline: Pipeline,
    *,
    config: Optional[Config] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload: Dict[str, Any] = {
        "store": pipeline.store.snapshot(),
        "tick": pipeline.tick,
        "time": pipeline.time,
        "num_bodies": pipeline.num_bodies,
        "dt": pipeline.dt,
        "softening": pipeline.softening,
        "pair_policy": pipeline.pair_policy,
        "workgroup_size": pipeline.workgroup_size,
        "extra": extra,
    }

    if config is not None:
        payload["config"] = _config_payload(config)
        payload["config_summary"] = config.summary()

    torch.save(payload, path)
    return path


def load_checkpoint(path: str | Path, map_location: Optional[str | torch.device] = None) -> Dict[str, Any]:
    if "weights_only" in inspect.signature(torch.load).parameters:
        return torch.load(path, map_location=map_location, weights_only=False)
    return torch.load(path, map_location=map_location)


def restore_pipeline(path: str | Path, device: Optional[str | torch.device] = None) -> Pipeline:
    """Rebuild a Pipeline exactly where a checkpoint left it."""
    ckpt = load_checkpoint(path, map_location="cpu")
    if "store" not in ckpt:
        raise KeyError("Checkpoint missing body store snapshot")
    state = ckpt["store"]
    pipeline = Pipeline.create(
        capacity=int(state["capacity"]),
        device=device,
        softening=ckpt.get("softening", DEFAULT_SOFTENING),
        pair_policy=ckpt.get("pair_policy", "skip"),
        workgroup_size=ckpt.get("workgroup_size", DEFAULT_WORKGROUP_SIZE),
    )
    pipeline.store.restore(state)
    if ckpt.get("dt") is not None:
        pipeline.set_dt(ckpt["dt"])
    pipeline.set_num_bodies(ckpt.get("num_bodies", 0))
    pipeline.tick = int(ckpt.get("tick", 0))
    pipeline.time = float(ckpt.get("time", 0.0))
    return pipeline


def load_config_from_checkpoint(path: str | Path) -> Optional[Config]:
    ckpt = load_checkpoint(path, map_location="cpu")
    cfg = ckpt.get("config")
    if isinstance(cfg, dict):
        return Config.from_dict(cfg)
    return None
