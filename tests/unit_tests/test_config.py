"""This module provides unit tests for searchcli.workflow.config."""

import pytest
import yaml

from searchcli.exceptions import (
    ConfigError,
    InvalidPolicyConfigError,
    KeyAddedConfigError,
    TypeMismatchConfigError,
)
from searchcli.workflow.config import DEFAULT_CONFIG_PATH, Config

generic_default_config = {
    "simple_value_int": 1,
    "simple_value_float": 2.0,
    "simple_value_str": "three",
    "simple_value_none": None,
    "simple_value_bool": False,
    "nested_values": {"nested_value_1": 1, "nested_value_2": 2},
    "simple_list": [1, 2, 3],
}


def _engine(**kwargs):
    return {"name": "engine", "command": ["engine", "{spectrum_file}"], **kwargs}


def test_config_update_empty_list():
    """Test updating a config with an empty list of configs."""
    config = Config(generic_default_config)

    # when
    config.update([])

    assert config.data == generic_default_config


def test_config_update_simple_two_files():
    """Test that later configs overwrite earlier ones."""
    config = Config(generic_default_config)
    config_2 = Config({"simple_value_int": 2, "simple_value_float": 4.0}, "first")
    config_3 = Config({"simple_value_int": 3, "simple_value_str": "four"}, "second")

    # when
    config.update([config_2, config_3], do_print=True)

    assert config["simple_value_int"] == 3
    assert config["simple_value_float"] == 4.0
    assert config["simple_value_str"] == "four"


def test_config_update_nested_and_lists():
    """Test that nested values are merged and lists replaced."""
    config = Config(generic_default_config)
    update = Config(
        {"nested_values": {"nested_value_2": 5}, "simple_list": [4]}, "update"
    )

    # when
    config.update([update])

    assert config["nested_values"] == {"nested_value_1": 1, "nested_value_2": 5}
    assert config["simple_list"] == [4]


def test_config_update_does_not_modify_update_config():
    config = Config(generic_default_config)
    update = Config({"nested_values": {"nested_value_1": 7}}, "update")

    # when
    config.update([update])

    assert generic_default_config["nested_values"]["nested_value_1"] == 1
    assert update.data == {"nested_values": {"nested_value_1": 7}}


def test_config_update_new_key_raises():
    config = Config(generic_default_config)

    with pytest.raises(KeyAddedConfigError):
        config.update([Config({"new_key": 1}, "update")])


def test_config_update_type_mismatch_raises():
    config = Config(generic_default_config)

    with pytest.raises(TypeMismatchConfigError):
        config.update([Config({"simple_value_str": 3}, "update")])


def test_config_update_int_float_and_none_are_compatible():
    config = Config(generic_default_config)

    # when
    config.update(
        [Config({"simple_value_int": 1.5, "simple_value_none": "set"}, "update")]
    )

    assert config["simple_value_int"] == 1.5
    assert config["simple_value_none"] == "set"


def test_config_update_bool_from_string():
    config = Config(generic_default_config)

    # when
    config.update([Config({"simple_value_bool": "True"}, "update")])

    assert config["simple_value_bool"] is True


def test_config_is_read_only_except_output_directory():
    config = Config(generic_default_config)

    with pytest.raises(NotImplementedError):
        config["simple_value_int"] = 2
    with pytest.raises(NotImplementedError):
        del config["simple_value_int"]
    with pytest.raises(NotImplementedError):
        config.copy()

    # when
    config["output_directory"] = "/output"

    assert config["output_directory"] == "/output"


def test_config_yaml_round_trip(tmp_path):
    config = Config(generic_default_config)
    path = tmp_path / "config.yaml"

    # when
    config.to_yaml(path)
    loaded = Config()
    loaded.from_yaml(path)

    assert loaded.data == generic_default_config


def test_default_config_is_valid():
    config = Config.from_default()

    # when
    config.validate()

    assert config["spectrum_files"]["missing_titles"] == "fail"
    assert config["search_engines"] == []


def test_default_config_matches_yaml_file():
    config = Config.from_default()
    with open(DEFAULT_CONFIG_PATH) as f:
        assert config.data == yaml.safe_load(f)


@pytest.mark.parametrize(
    "update",
    [
        {"spectrum_files": {"missing_titles": "ignore"}},
        {"spectrum_files": {"duplicate_titles": "merge"}},
        {"search_engines": [_engine(kind="gui")]},
    ],
)
def test_validate_invalid_values_raise(update):
    config = Config.from_default()
    config.update([Config(update, "update")])

    with pytest.raises(InvalidPolicyConfigError):
        config.validate()


@pytest.mark.parametrize(
    "engines",
    [
        [{"command": ["engine"]}],
        [_engine(command=[])],
        [_engine(command="engine {spectrum_file}")],
        [_engine(), _engine()],
        [_engine(timeout=3)],
        ["engine"],
    ],
)
def test_validate_invalid_search_engines_raise(engines):
    config = Config.from_default()
    config.update([Config({"search_engines": engines}, "update")])

    with pytest.raises(ConfigError):
        config.validate()


def test_validate_search_engine():
    config = Config.from_default()
    config.update(
        [Config({"search_engines": [_engine(kind="token_stream", enabled=False)]})]
    )

    # when
    config.validate()

    assert config["search_engines"][0]["enabled"] is False
