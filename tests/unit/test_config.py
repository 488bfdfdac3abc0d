"""Unit tests for config models, defaults and the YAML loader."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from broadsky.config.defaults import load_defaults, merge_configs
from broadsky.config.loader import load_bridge_config, load_yaml, resolve_env_vars
from broadsky.config.models import BridgeConfig, MetricsConfig, NatsSinkConfig

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "examples" / "bridge-config.yaml"


class TestModels:
    def test_defaults(self):
        cfg = BridgeConfig()
        assert cfg.sink.url == "nats://127.0.0.1:4222"
        assert cfg.sink.subject == "broadsky.stream.test"
        assert cfg.sink.codec == "cbor"
        assert cfg.sink.retry.max_attempts == 1
        assert cfg.metrics.enabled is False
        assert cfg.metrics.listen == "127.0.0.1:5212"
        assert cfg.debug is False

    def test_unknown_codec_is_accepted(self):
        assert NatsSinkConfig(codec="msgpack").codec == "msgpack"

    @pytest.mark.parametrize("subject", ["has space", ".leading", "trailing."])
    def test_invalid_subject(self, subject: str):
        with pytest.raises(ValidationError, match="subject"):
            NatsSinkConfig(subject=subject)

    @pytest.mark.parametrize("listen", ["localhost", "host:port", ":99999"])
    def test_invalid_listen(self, listen: str):
        with pytest.raises(ValidationError, match="host:port"):
            MetricsConfig(listen=listen)


class TestResolveEnvVars:
    def test_substitutes_env_var(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("RELAY", "bsky.network")
        assert resolve_env_vars({"repo": "${RELAY}"}) == {"repo": "bsky.network"}

    def test_default_when_missing(self):
        assert resolve_env_vars("${BROADSKY_UNSET_VAR:-nats://x:4222}") == (
            "nats://x:4222"
        )

    def test_missing_without_default_raises(self):
        with pytest.raises(ValueError, match="BROADSKY_UNSET_VAR"):
            resolve_env_vars(["${BROADSKY_UNSET_VAR}"])

    def test_non_strings_untouched(self):
        assert resolve_env_vars({"n": 3, "b": True, "x": None}) == {
            "n": 3,
            "b": True,
            "x": None,
        }


class TestDefaults:
    def test_builtin_defaults_match_models(self):
        assert BridgeConfig.model_validate(load_defaults()) == BridgeConfig()

    def test_missing_defaults_file(self):
        with pytest.raises(FileNotFoundError):
            load_defaults("nope")

    def test_merge_is_deep_and_non_mutating(self):
        base = {"sink": {"url": "a", "subject": "s"}, "debug": False}
        merged = merge_configs(base, {"sink": {"url": "b"}})
        assert merged == {"sink": {"url": "b", "subject": "s"}, "debug": False}
        assert base["sink"]["url"] == "a"


class TestLoadBridgeConfig:
    def test_defaults_only(self):
        assert load_bridge_config() == BridgeConfig()

    def test_file_then_overrides(self, tmp_path: Path):
        path = tmp_path / "bridge.yaml"
        path.write_text(
            "source:\n  repo: bsky.network\n"
            "sink:\n  subject: atproto\n  codec: json\n"
            "metrics:\n  enabled: true\n"
        )
        cfg = load_bridge_config(path, {"sink": {"codec": "cbor"}, "debug": True})

        assert cfg.source.repo == "bsky.network"
        assert cfg.sink.subject == "atproto"
        assert cfg.sink.codec == "cbor"
        assert cfg.metrics.enabled is True
        assert cfg.debug is True

    def test_env_substitution_in_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("BROADSKY_TEST_NATS", "nats://bus:4222")
        path = tmp_path / "bridge.yaml"
        path.write_text("sink:\n  url: ${BROADSKY_TEST_NATS}\n")

        assert load_bridge_config(path).sink.url == "nats://bus:4222"

    def test_invalid_values_name_the_source(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("source:\n  queue_size: 0\n")
        with pytest.raises(ValueError, match="bad.yaml"):
            load_bridge_config(path)

    def test_empty_file_means_defaults(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_bridge_config(path) == BridgeConfig()

    def test_top_level_list_rejected(self, tmp_path: Path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(TypeError, match="mapping"):
            load_yaml(path)

    def test_malformed_yaml(self, tmp_path: Path):
        path = tmp_path / "broken.yaml"
        path.write_text("sink: [unclosed\n")
        with pytest.raises(ValueError, match="Failed to parse YAML"):
            load_yaml(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_bridge_config(tmp_path / "missing.yaml")

    def test_example_config_is_valid(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("BROADSKY_NATS_URL", raising=False)
        cfg = load_bridge_config(EXAMPLE_CONFIG)
        assert cfg.source.repo == "bsky.network"
        assert cfg.sink.url == "nats://127.0.0.1:4222"
