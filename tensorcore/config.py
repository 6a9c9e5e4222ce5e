"""
Runtime configuration for tensorcore.

The configuration object holds the defaults operation dispatch consults:
default device kind, worker thread count, accelerator memory fraction and
debug mode, plus free-form typed options.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from threading import RLock
from typing import Any, Dict, Optional

from .types.enums import DeviceKind

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


class Configuration:
    """Thread-safe container of library-wide settings."""

    __slots__ = ('_lock', '_default_device', '_memory_fraction', '_num_threads',
                 '_debug_mode', '_saved_log_level', '_options')

    def __init__(
        self,
        default_device: DeviceKind = DeviceKind.CPU,
        memory_fraction: float = 0.9,
        num_threads: int = 4,
        debug_mode: bool = False,
    ):
        self._lock = RLock()
        self._default_device = DeviceKind.CPU
        self._memory_fraction = 0.9
        self._num_threads = 4
        self._debug_mode = False
        self._saved_log_level = logging.NOTSET
        self._options: Dict[str, Any] = {}

        self.default_device = default_device
        self.memory_fraction = memory_fraction
        self.num_threads = num_threads
        self.debug_mode = debug_mode

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> Configuration:
        """Build a configuration from ``TENSORCORE_*`` environment variables."""
        env = os.environ if environ is None else environ
        config = cls()

        device = env.get("TENSORCORE_DEFAULT_DEVICE")
        if device:
            try:
                config.default_device = DeviceKind[device.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown device kind in TENSORCORE_DEFAULT_DEVICE: {device!r}") from None

        fraction = env.get("TENSORCORE_MEMORY_FRACTION")
        if fraction:
            config.memory_fraction = float(fraction)

        threads = env.get("TENSORCORE_NUM_THREADS")
        if threads:
            config.num_threads = int(threads)

        debug = env.get("TENSORCORE_DEBUG")
        if debug:
            config.debug_mode = debug.strip().lower() in _TRUE_VALUES

        return config

    @property
    def default_device(self) -> DeviceKind:
        with self._lock:
            return self._default_device

    @default_device.setter
    def default_device(self, kind: DeviceKind) -> None:
        with self._lock:
            self._default_device = DeviceKind(kind)

    @property
    def memory_fraction(self) -> float:
        with self._lock:
            return self._memory_fraction

    @memory_fraction.setter
    def memory_fraction(self, fraction: float) -> None:
        if not 0.0 < fraction <= 1.0:
            raise ValueError(f"Memory fraction must be in the range (0, 1]: {fraction}")
        with self._lock:
            self._memory_fraction = float(fraction)

    @property
    def num_threads(self) -> int:
        with self._lock:
            return self._num_threads

    @num_threads.setter
    def num_threads(self, num_threads: int) -> None:
        if num_threads <= 0:
            raise ValueError(f"Number of threads must be positive: {num_threads}")
        with self._lock:
            self._num_threads = int(num_threads)

    @property
    def debug_mode(self) -> bool:
        with self._lock:
            return self._debug_mode

    @debug_mode.setter
    def debug_mode(self, enabled: bool) -> None:
        package_logger = logging.getLogger("tensorcore")
        with self._lock:
            was_enabled, self._debug_mode = self._debug_mode, bool(enabled)
            if enabled and not was_enabled:
                self._saved_log_level = package_logger.level
                package_logger.setLevel(logging.DEBUG)
            elif was_enabled and not enabled:
                package_logger.setLevel(self._saved_log_level)
        if enabled and not was_enabled:
            logger.debug("Debug mode enabled")

    def set_option(self, name: str, value: Any) -> None:
        with self._lock:
            self._options[name] = value

    def get_option(self, name: str, default: Any) -> Any:
        """
        Return a custom option, or ``default`` when it was never set.

        A stored value whose type differs from the type of ``default`` is
        rejected with TypeError.
        """
        with self._lock:
            if name not in self._options:
                return default
            value = self._options[name]

        if default is not None and not isinstance(value, type(default)):
            raise TypeError(
                f"Option {name!r} holds {type(value).__name__}, expected {type(default).__name__}"
            )
        return value

    def as_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'default_device': self._default_device.name,
                'memory_fraction': self._memory_fraction,
                'num_threads': self._num_threads,
                'debug_mode': self._debug_mode,
                'options': dict(self._options),
            }

    def __repr__(self) -> str:
        return (
            f"Configuration(default_device={self.default_device.name}, "
            f"memory_fraction={self.memory_fraction}, num_threads={self.num_threads}, "
            f"debug_mode={self.debug_mode})"
        )


@lru_cache(maxsize=1)
def get_config() -> Configuration:
    return Configuration.from_env()
