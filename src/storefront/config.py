"""Configuration for storefront."""

import os
from dataclasses import dataclass
from pathlib import Path

# Local data directory for the CSV files
# Can be overridden via STOREFRONT_DATA_DIR environment variable
_default_data_dir = Path.cwd() / "data"
DATA_DIR = Path(os.environ.get("STOREFRONT_DATA_DIR", _default_data_dir))
PRODUCTS_FILE = "products.csv"
ORDERS_FILE = "orders.csv"

DEFAULT_CUSTOMER = "Customer"
CURRENCY = "DH"

ENV_PREFIX = "STOREFRONT_"


@dataclass(frozen=True)
class ProcessorSettings:
    """Tunables for the background order processor."""

    pool_size: int = 2
    step_delay: float = 0.5  # seconds between progress updates
    result_delay: float = 3.0  # single wait used by submit_for_result
    result_timeout: float = 10.0
    shutdown_grace: float = 5.0

    def __post_init__(self) -> None:
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {self.pool_size}")
        if self.step_delay <= 0:
            raise ValueError(f"step_delay must be positive, got {self.step_delay}")
        if self.result_delay <= 0:
            raise ValueError(f"result_delay must be positive, got {self.result_delay}")
        if self.result_timeout < 0:
            raise ValueError(f"result_timeout must not be negative, got {self.result_timeout}")
        if self.shutdown_grace < 0:
            raise ValueError(f"shutdown_grace must not be negative, got {self.shutdown_grace}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ProcessorSettings":
        """
        Build settings from STOREFRONT_* environment variables.

        Unset variables keep their defaults. Invalid values raise ValueError.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def _read(name: str, cast, default):
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None or raw == "":
                return default
            return cast(raw)

        return cls(
            pool_size=_read("pool_size", int, defaults.pool_size),
            step_delay=_read("step_delay", float, defaults.step_delay),
            result_delay=_read("result_delay", float, defaults.result_delay),
            result_timeout=_read("result_timeout", float, defaults.result_timeout),
            shutdown_grace=_read("shutdown_grace", float, defaults.shutdown_grace),
        )
