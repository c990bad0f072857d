"""Tests for client configuration settings."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from vcloud_cpi.settings import (
    COOKIE_TIMEOUT,
    RETRY_DELAY,
    RETRY_MAX,
    WAIT_DELAY,
    WAIT_MAX,
    ControlSettings,
    VCloudSettings,
    load_settings,
)


class TestControlSettings:
    def test_defaults_applied(self):
        env = {k: v for k, v in os.environ.items() if not k.startswith("VCD_CONTROL_")}
        with patch.dict(os.environ, env, clear=True):
            control = ControlSettings()
        assert control.wait_max == WAIT_MAX
        assert control.wait_delay == WAIT_DELAY
        assert control.retry_max == RETRY_MAX
        assert control.retry_delay == RETRY_DELAY
        assert control.cookie_timeout == COOKIE_TIMEOUT

    def test_env_override(self):
        with patch.dict(os.environ, {
            "VCD_CONTROL_WAIT_MAX": "42",
            "VCD_CONTROL_RETRY_MAX": "7",
        }, clear=False):
            control = ControlSettings()
            assert control.wait_max == 42
            assert control.retry_max == 7

    def test_null_fields_fall_back_to_defaults(self):
        control = ControlSettings(wait_max=None, retry_delay=250)
        assert control.wait_max == WAIT_MAX
        assert control.retry_delay == 250

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationError):
            ControlSettings(wait_delay=-1)
        with pytest.raises(ValidationError):
            ControlSettings(retry_max=-3)


class TestVCloudSettings:
    def test_from_single_entry(self, settings):
        parsed = VCloudSettings.from_mapping(settings)
        assert parsed.url == "https://vcd.example.com"
        assert parsed.password.get_secret_value() == "secret"
        assert parsed.entities.virtual_datacenter == "myvdc"
        assert parsed.control.cookie_timeout == 1200

    def test_from_vcds_list_uses_first_entry(self, settings):
        second = dict(settings, url="https://other.example.com")
        parsed = VCloudSettings.from_mapping({"vcds": [settings, second]})
        assert parsed.url == "https://vcd.example.com"

    def test_empty_vcds_list_rejected(self):
        with pytest.raises(ValueError, match="vcds"):
            VCloudSettings.from_mapping({"vcds": []})

    def test_missing_url_rejected(self):
        env = {k: v for k, v in os.environ.items() if k != "VCD_URL"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ValidationError):
                VCloudSettings.from_mapping({"user": "admin"})

    def test_env_fills_fields_missing_from_partial_control(self, settings):
        settings["entities"]["control"] = {"wait_max": 42, "retry_max": None}
        with patch.dict(os.environ, {
            "VCD_CONTROL_WAIT_MAX": "900",
            "VCD_CONTROL_WAIT_DELAY": "7",
            "VCD_CONTROL_RETRY_MAX": "9",
        }, clear=False):
            parsed = VCloudSettings.from_mapping(settings)

        assert parsed.control.wait_max == 42
        assert parsed.control.wait_delay == 7
        assert parsed.control.retry_max == 9

    def test_env_fills_entity_names(self, settings):
        del settings["entities"]["media_catalog"]
        with patch.dict(os.environ, {"VCD_MEDIA_CATALOG": "isos"}, clear=False):
            parsed = VCloudSettings.from_mapping(settings)

        assert parsed.entities.media_catalog == "isos"
        assert parsed.entities.organization == "myorg"

    def test_negative_control_value_in_options_rejected(self, settings):
        settings["entities"]["control"]["retry_delay"] = -5
        with pytest.raises(ValidationError):
            VCloudSettings.from_mapping(settings)

    def test_logging_section(self, settings):
        settings["logging"] = {"level": "debug", "format": "text"}
        parsed = VCloudSettings.from_mapping(settings)

        assert parsed.logging.level == "debug"
        assert parsed.logging.format == "text"
        assert parsed.logging.backup_count == 5

    def test_null_control_section(self, settings):
        settings["entities"]["control"] = None
        parsed = VCloudSettings.from_mapping(settings)
        assert parsed.control.retry_max == RETRY_MAX

    def test_api_version_default(self, settings):
        assert VCloudSettings.from_mapping(settings).api_version == "5.1"

    def test_login_user(self, settings):
        assert VCloudSettings.from_mapping(settings).login_user == "admin@myorg"

        settings["user"] = "admin@system"
        assert VCloudSettings.from_mapping(settings).login_user == "admin@system"

    def test_password_not_exposed_in_repr(self, settings):
        assert "secret" not in repr(VCloudSettings.from_mapping(settings))


class TestLoadSettings:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "cpi.yml"
        path.write_text(
            "vcds:\n"
            "  - url: https://vcd.example.com\n"
            "    user: admin\n"
            "    password: secret\n"
            "    entities:\n"
            "      organization: myorg\n"
            "      virtual_datacenter: myvdc\n"
            "      control:\n"
            "        wait_max: 900\n"
        )

        settings = load_settings(path)

        assert settings.entities.organization == "myorg"
        assert settings.control.wait_max == 900
        assert settings.control.wait_delay == WAIT_DELAY

    def test_empty_file_rejected(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        with pytest.raises(ValueError, match="empty"):
            load_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "missing.yml")
