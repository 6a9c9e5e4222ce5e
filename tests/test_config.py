import logging

import pytest

from tensorcore.config import Configuration, get_config
from tensorcore.types import DeviceKind


class TestConfiguration:
    def setup_method(self):
        self.config = Configuration()

    def test_defaults(self):
        assert self.config.default_device is DeviceKind.CPU
        assert self.config.memory_fraction == 0.9
        assert self.config.num_threads == 4
        assert self.config.debug_mode is False

    def test_memory_fraction_bounds(self):
        self.config.memory_fraction = 1.0
        assert self.config.memory_fraction == 1.0
        with pytest.raises(ValueError):
            self.config.memory_fraction = 0.0
        with pytest.raises(ValueError):
            self.config.memory_fraction = 1.5
        assert self.config.memory_fraction == 1.0

    def test_num_threads_must_be_positive(self):
        self.config.num_threads = 8
        assert self.config.num_threads == 8
        with pytest.raises(ValueError):
            self.config.num_threads = 0

    def test_debug_mode_raises_log_level(self):
        package_logger = logging.getLogger("tensorcore")
        previous = package_logger.level
        try:
            self.config.debug_mode = True
            assert package_logger.level == logging.DEBUG
        finally:
            package_logger.setLevel(previous)

    def test_disabling_debug_mode_restores_log_level(self):
        package_logger = logging.getLogger("tensorcore")
        previous = package_logger.level
        try:
            package_logger.setLevel(logging.WARNING)
            self.config.debug_mode = True
            self.config.debug_mode = True
            assert package_logger.level == logging.DEBUG

            self.config.debug_mode = False
            assert package_logger.level == logging.WARNING
            assert not self.config.debug_mode
        finally:
            package_logger.setLevel(previous)

    def test_typed_options(self):
        self.config.set_option("tile_size", 32)
        assert self.config.get_option("tile_size", 0) == 32
        assert self.config.get_option("missing", "fallback") == "fallback"

        with pytest.raises(TypeError):
            self.config.get_option("tile_size", "string")

    def test_as_dict(self):
        self.config.set_option("name", "value")
        snapshot = self.config.as_dict()
        assert snapshot['default_device'] == "CPU"
        assert snapshot['options'] == {"name": "value"}

    def test_repr(self):
        assert "memory_fraction=0.9" in repr(self.config)


class TestConfigurationFromEnv:
    def test_reads_environment(self):
        config = Configuration.from_env({
            "TENSORCORE_DEFAULT_DEVICE": "accelerator",
            "TENSORCORE_MEMORY_FRACTION": "0.5",
            "TENSORCORE_NUM_THREADS": "2",
            "TENSORCORE_DEBUG": "0",
        })
        assert config.default_device is DeviceKind.ACCELERATOR
        assert config.memory_fraction == 0.5
        assert config.num_threads == 2
        assert config.debug_mode is False

    def test_empty_environment_uses_defaults(self):
        config = Configuration.from_env({})
        assert config.as_dict() == Configuration().as_dict()

    def test_unknown_device_kind(self):
        with pytest.raises(ValueError):
            Configuration.from_env({"TENSORCORE_DEFAULT_DEVICE": "tpu"})

    def test_invalid_fraction(self):
        with pytest.raises(ValueError):
            Configuration.from_env({"TENSORCORE_MEMORY_FRACTION": "2"})

    def test_global_config_is_shared(self):
        assert get_config() is get_config()
