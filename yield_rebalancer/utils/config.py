"""Configuration management for the yield rebalancer.

This module loads the YAML configuration file once at startup and turns it
into a validated, immutable ``RebalancerConfig``. Secrets for the HTTP yield
source are read from the environment (optionally from a ``.env`` file).
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from yield_rebalancer.utils.exceptions import ConfigurationError

# Tolerance for "fractions sum to 1.0"
EPSILON = 1e-6

ROOT_DIR = Path(__file__).parent.parent.parent
DEFAULT_CONFIG_PATH = ROOT_DIR / "config" / "default.yaml"


class Config:
    """YAML configuration loader with dot-notation access.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> threshold = config.get("rebalance.threshold", 0.05)
    """

    def __init__(self, config_dict: dict[str, Any]) -> None:
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Load configuration from YAML file.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            Config instance with loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            config_dict = {}

        return cls(config_dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g. "rebalance.threshold").

        Args:
            key: Configuration key (supports dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self._config

        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Get the full configuration as dictionary."""
        return self._config.copy()


@dataclass(frozen=True)
class PoolConfig:
    """Static settings for one pool.

    Attributes:
        pool_id: Opaque pool identifier
        initial_allocation: Starting fraction of capital
        default_yield: Yield assumed when no value has ever been fetched
        adapter: Adapter type name in the adapter registry
    """

    pool_id: str
    initial_allocation: float
    default_yield: float = 0.0
    adapter: str = "simulated"


@dataclass(frozen=True)
class RebalancerConfig:
    """Validated rebalancer configuration, static for the whole run.

    Attributes:
        pools: Pool settings keyed by pool id, in configuration order
        rebalance_threshold: Relative deviation from the mean yield that
            triggers a rebalance
        min_move_threshold: Smallest allocation change worth executing
        refresh_interval_ms: Interval between scheduled ticks
        call_timeout_s: Timeout for each yield fetch and adapter call
        concurrent_execution: Run entries of the same plan group concurrently
        yield_source: Yield source settings (type, base_url, rates)
        log_level: Root logging level
        log_dir: Directory for structured event logs (None disables them)
        enable_console: Echo structured events to the console
        checkpoint_enabled: Persist allocation between ticks
        checkpoint_path: SQLite file for the allocation checkpoint
    """

    pools: Mapping[str, PoolConfig]
    rebalance_threshold: float = 0.05
    min_move_threshold: float = 0.01
    refresh_interval_ms: int = 3_600_000
    call_timeout_s: float = 30.0
    concurrent_execution: bool = False
    yield_source: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({"type": "static"})
    )
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    enable_console: bool = False
    checkpoint_enabled: bool = False
    checkpoint_path: str = "data/allocation.db"

    def __post_init__(self):
        self._validate()

    @property
    def pool_ids(self) -> tuple[str, ...]:
        return tuple(self.pools)

    @property
    def initial_allocation(self) -> Dict[str, float]:
        return {p: pc.initial_allocation for p, pc in self.pools.items()}

    @property
    def default_yields(self) -> Dict[str, float]:
        return {p: pc.default_yield for p, pc in self.pools.items()}

    def _validate(self) -> None:
        if not self.pools:
            raise ConfigurationError("At least one pool must be configured")

        for pool_id, pool in self.pools.items():
            if not 0 <= pool.initial_allocation <= 1:
                raise ConfigurationError(
                    f"initial_allocation for {pool_id} must be in [0, 1], "
                    f"got {pool.initial_allocation}"
                )
            if pool.default_yield < 0 or not math.isfinite(pool.default_yield):
                raise ConfigurationError(
                    f"default_yield for {pool_id} must be >= 0, got {pool.default_yield}"
                )

        total = sum(pool.initial_allocation for pool in self.pools.values())
        if abs(total - 1.0) > EPSILON:
            raise ConfigurationError(
                f"Initial allocations must sum to 1.0, got {total:.6f}"
            )

        if self.rebalance_threshold < 0:
            raise ConfigurationError(
                f"rebalance_threshold must be >= 0, got {self.rebalance_threshold}"
            )
        if not 0 <= self.min_move_threshold < 1:
            raise ConfigurationError(
                f"min_move_threshold must be in [0, 1), got {self.min_move_threshold}"
            )
        if self.refresh_interval_ms <= 0:
            raise ConfigurationError(
                f"refresh_interval_ms must be > 0, got {self.refresh_interval_ms}"
            )
        if self.call_timeout_s <= 0:
            raise ConfigurationError(
                f"call_timeout_s must be > 0, got {self.call_timeout_s}"
            )

    @classmethod
    def from_config(cls, config: Config) -> "RebalancerConfig":
        """Build a validated configuration from a loaded YAML ``Config``.

        Raises:
            ConfigurationError: If a section is missing or malformed
        """
        raw_pools = config.get("pools")
        if not isinstance(raw_pools, dict) or not raw_pools:
            raise ConfigurationError("Configuration must define a 'pools' mapping")

        pools: Dict[str, PoolConfig] = {}
        for pool_id, settings in raw_pools.items():
            if not isinstance(settings, dict):
                raise ConfigurationError(f"Pool '{pool_id}' settings must be a mapping")
            if "initial_allocation" not in settings:
                raise ConfigurationError(f"Pool '{pool_id}' is missing initial_allocation")
            try:
                pools[str(pool_id)] = PoolConfig(
                    pool_id=str(pool_id),
                    initial_allocation=float(settings["initial_allocation"]),
                    default_yield=float(settings.get("default_yield", 0.0)),
                    adapter=str(settings.get("adapter", "simulated")),
                )
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid settings for pool '{pool_id}': {e}") from e

        # An explicit null or empty log_dir disables event logs
        logging_section = config.get("logging") or {}
        if not isinstance(logging_section, dict):
            raise ConfigurationError("'logging' section must be a mapping")
        log_dir = logging_section.get("log_dir") if "log_dir" in logging_section else "logs"

        try:
            return cls(
                pools=MappingProxyType(pools),
                rebalance_threshold=float(config.get("rebalance.threshold", 0.05)),
                min_move_threshold=float(config.get("rebalance.min_move_threshold", 0.01)),
                refresh_interval_ms=int(config.get("rebalance.refresh_interval_ms", 3_600_000)),
                call_timeout_s=float(config.get("rebalance.call_timeout_s", 30.0)),
                concurrent_execution=_get_bool(config, "rebalance.concurrent_execution", False),
                yield_source=MappingProxyType(dict(config.get("yield_source", {"type": "static"}))),
                log_level=str(config.get("logging.level", "INFO")),
                log_dir=log_dir or None,
                enable_console=_get_bool(config, "logging.enable_console", False),
                checkpoint_enabled=_get_bool(config, "checkpoint.enabled", False),
                checkpoint_path=str(config.get("checkpoint.path", "data/allocation.db")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid rebalancer configuration: {e}") from e


def _get_bool(config: Config, key: str, default: bool) -> bool:
    value = config.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be true or false, got {value!r}")
    return value


def load_config(filepath: str | Path = None) -> RebalancerConfig:
    """Load and validate the rebalancer configuration.

    Args:
        filepath: Path to YAML configuration file. If None, uses
            ``config/default.yaml`` at the project root.

    Returns:
        Validated RebalancerConfig
    """
    if filepath is None:
        filepath = DEFAULT_CONFIG_PATH
    return RebalancerConfig.from_config(Config.from_file(filepath))


def load_yield_api_credentials(env_file: str | Path = None) -> dict[str, Optional[str]]:
    """Read HTTP yield source settings from the environment.

    A ``.env`` file at the project root (or ``env_file``) is loaded first if
    it exists; already-set environment variables take precedence.

    Returns:
        Dict with ``base_url`` and ``api_key`` (either may be None)
    """
    env_path = Path(env_file) if env_file is not None else ROOT_DIR / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return {
        "base_url": os.getenv("YIELD_API_BASE_URL"),
        "api_key": os.getenv("YIELD_API_KEY"),
    }
