import argparse

import pytest
import torch

from parabody.config import Config


class TestConfig:
    def test_defaults_validate(self):
        Config().validate()

    def test_from_dict_routes_unknown_keys_to_extra(self):
        config = Config.from_dict({"num_bodies": 8, "dt": 0.5, "ic_path": "x.npy"})
        assert config.num_bodies == 8
        assert config.dt == 0.5
        assert config.extra == {"ic_path": "x.npy"}

    def test_wandb_dict_flattens_extra(self):
        config = Config(extra={"wandb_project": "p", "dt": 99.0})
        data = config.as_wandb_dict()
        assert data["wandb_project"] == "p"
        # extra never shadows a real field
        assert data["dt"] == config.dt
        assert "extra" not in data

    def test_round_trip_through_wandb_dict(self):
        config = Config(num_bodies=3, pair_policy="halt", extra={"resume": "ckpt.pt"})
        back = Config.from_dict(config.as_wandb_dict())
        assert back.num_bodies == 3
        assert back.pair_policy == "halt"
        assert back.extra == {"resume": "ckpt.pt"}

    def test_from_cli(self):
        parser = argparse.ArgumentParser()
        config = Config.from_cli(
            parser,
            argv=["--num-bodies", "12", "--dt", "0.01", "--pair-policy", "halt", "--workgroup-size", "100"],
        )
        assert config.num_bodies == 12
        assert config.dt == 0.01
        assert config.pair_policy == "halt"
        assert config.workgroup_size == 100

    def test_add_cli_args_include(self):
        parser = argparse.ArgumentParser()
        Config.add_cli_args(parser, include=["device"])
        args = parser.parse_args(["--device", "cpu"])
        assert args.device == "cpu"
        with pytest.raises(SystemExit):
            parser.parse_args(["--num-bodies", "3"])

    def test_add_cli_args_skips_existing_options(self):
        parser = argparse.ArgumentParser()
        parser.add_argument("--dt", type=float, default=7.0)
        Config.add_cli_args(parser, include=["sim"])
        assert parser.parse_args([]).dt == 7.0

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"num_bodies": 0}, "num_bodies"),
            ({"num_bodies": 10, "capacity": 5}, "exceeds capacity"),
            ({"dt": 0.0}, "dt"),
            ({"dt": float("nan")}, "dt"),
            ({"duration": -1.0}, "duration"),
            ({"softening": -0.1}, "softening"),
            ({"pair_policy": "nope"}, "pair_policy"),
            ({"workgroup_size": 0}, "workgroup_size"),
            ({"mu": -1.0}, "mu"),
            ({"log_every": 0}, "log_every"),
            ({"ic": "binary", "num_bodies": 3}, "binary"),
        ],
    )
    def test_validate_rejects(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            Config(**kwargs).validate()

    def test_resolve_steps(self):
        assert Config(steps=10).resolve_steps() == 10
        assert Config(steps=-1, duration=1.0, dt=0.3).resolve_steps() == 4
        assert Config(steps=-1, duration=None).resolve_steps() == 1000

    def test_resolve_device(self):
        assert Config(device="cpu").resolve_device() == torch.device("cpu")
        auto = Config(device="auto").resolve_device()
        assert auto.type in ("cpu", "cuda")

    def test_cuda_unavailable(self, monkeypatch):
        monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
        with pytest.raises(RuntimeError, match="CUDA"):
            Config(device="cuda").resolve_device()

    def test_summary_mentions_key_fields(self):
        text = Config(num_bodies=5, pair_policy="halt").summary()
        assert "num_bodies=5" in text
        assert "pair_policy=halt" in text
