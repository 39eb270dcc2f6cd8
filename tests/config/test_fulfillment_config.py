"""Tests for fulfillment_config: YAML loading, validation, checksum and the policy bridge."""

from __future__ import annotations

from pathlib import Path

import pytest

from fulfillment_config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    FulfillmentConfig,
    compute_checksum,
    get_active_config,
    load_config,
)
from fulfillment_config.bridges import policy_from_config
from fulfillment_config.loader import load_yaml_file, parse_config
from fulfillment_kernel.domain.policy import DEFAULT_POLICY, FulfillmentPolicy


def _write(tmp_path: Path, body: str, name: str = "site.yaml") -> Path:
    path = tmp_path / name
    path.write_text(body)
    return path


class TestLoader:

    def test_packaged_defaults_match_kernel_defaults(self):
        config = load_config(DEFAULT_CONFIG_PATH)

        assert config == FulfillmentConfig()
        assert policy_from_config(config) == DEFAULT_POLICY

    def test_site_file_overrides(self, tmp_path):
        path = _write(tmp_path, (
            "config_id: east\n"
            "version: 3\n"
            "max_active_orders_per_picker: 4\n"
            "revalidate_on_backorder_release: true\n"
            "exception_id_prefix: WH1\n"
        ))

        config = load_config(path)

        assert config.config_id == "east"
        assert config.version == 3
        assert config.max_active_orders_per_picker == 4
        assert config.max_active_orders_per_packer == 5
        assert config.revalidate_on_backorder_release is True
        assert config.exception_id_prefix == "WH1"

    def test_empty_file_is_an_empty_mapping(self, tmp_path):
        assert load_yaml_file(_write(tmp_path, "")) == {}
        assert load_config(_write(tmp_path, "", name="empty.yaml")) == FulfillmentConfig()

    def test_top_level_must_be_a_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="mapping"):
            load_config(_write(tmp_path, "- a\n- b\n"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="max_orders_per_pickr"):
            parse_config({"max_orders_per_pickr": 3})

    @pytest.mark.parametrize("value", [0, -2, "3", True, 1.5])
    def test_caps_must_be_positive_integers(self, value):
        with pytest.raises(ValueError, match="max_active_orders_per_packer"):
            parse_config({"max_active_orders_per_packer": value})

    def test_revalidate_flag_must_be_boolean(self):
        with pytest.raises(ValueError, match="true or false"):
            parse_config({"revalidate_on_backorder_release": "yes"})

    @pytest.mark.parametrize("key", ["config_id", "exception_id_prefix"])
    @pytest.mark.parametrize("value", ["", "   ", 7])
    def test_strings_must_be_non_empty(self, key, value):
        with pytest.raises(ValueError, match=key):
            parse_config({key: value})


class TestChecksum:

    def test_deterministic_for_equal_configs(self):
        assert compute_checksum(FulfillmentConfig()) == compute_checksum(FulfillmentConfig())

    def test_key_order_is_irrelevant(self):
        forward = {"a": 1, "b": 2}
        backward = {"b": 2, "a": 1}
        assert compute_checksum(forward) == compute_checksum(backward)

    def test_config_and_its_dict_agree(self):
        config = FulfillmentConfig(config_id="east", max_active_orders_per_picker=2)
        assert compute_checksum(config) == compute_checksum(config.to_dict())

    def test_changes_when_a_setting_changes(self):
        assert compute_checksum(FulfillmentConfig()) != compute_checksum(
            FulfillmentConfig(max_active_orders_per_packer=6)
        )


class TestActiveConfig:

    def test_explicit_path_wins_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(_write(tmp_path, "config_id: env\n", "env.yaml")))
        explicit = _write(tmp_path, "config_id: explicit\n", "explicit.yaml")

        assert get_active_config(explicit).config_id == "explicit"

    def test_environment_variable(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(_write(tmp_path, "config_id: env\n")))

        assert get_active_config().config_id == "env"

    def test_defaults_without_environment(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

        assert get_active_config() == FulfillmentConfig()

    def test_config_loaded_is_logged(self, tmp_path, captured_logs):
        path = _write(tmp_path, "config_id: east\nversion: 2\n")

        config = get_active_config(path)

        loaded = next(r for r in captured_logs() if r["message"] == "config_loaded")
        assert loaded["logger"] == "fulfillment_kernel.config"
        assert loaded["config_id"] == "east"
        assert loaded["config_version"] == 2
        assert loaded["config_path"] == str(path)
        assert loaded["checksum"] == compute_checksum(config)


class TestPolicyBridge:

    def test_policy_from_config(self):
        config = FulfillmentConfig(
            max_active_orders_per_picker=2,
            max_active_orders_per_packer=1,
            revalidate_on_backorder_release=True,
            exception_id_prefix="WH1",
        )

        assert policy_from_config(config) == FulfillmentPolicy(
            max_orders_per_picker=2,
            max_orders_per_packer=1,
            revalidate_on_backorder_release=True,
            exception_id_prefix="WH1",
        )

    def test_bridged_policy_drives_the_orchestrator(self, session, deterministic_clock, tmp_path):
        from fulfillment_kernel.services import FulfillmentOrchestrator

        policy = policy_from_config(load_config(_write(tmp_path, "exception_id_prefix: WH9\n")))
        orchestrator = FulfillmentOrchestrator(session, clock=deterministic_clock, policy=policy)

        assert orchestrator.policy.exception_id_prefix == "WH9"
