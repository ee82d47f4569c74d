"""
Run configuration.

A run is described by a YAML file, optionally overlaid on a defaults file.
Secrets (RPC urls, explorer api keys) come from the environment, which is
first populated from the nearest ``.env`` file.
"""

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .core.rpc import ForkConfig
from .exceptions import ConfigError
from .measure.format import FormatRule
from .metadata.etherscan import ETHERSCAN_API

DEFAULT_RPC_URL = "http://127.0.0.1:8545"
DEFAULT_CACHE_DIR = "./delve-cache"


def load_env():
    """Load .env file from parent directories."""
    current = Path.cwd()
    for _ in range(5):  # Check up to 5 parent dirs
        env_file = current / ".env"
        if env_file.exists():
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, value = line.split("=", 1)
                        os.environ.setdefault(key.strip(), value.strip().strip("'\""))
            break
        current = current.parent


def overlay(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy of ``base`` with ``update`` merged in; mappings merge, everything else is replaced."""
    result = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = overlay(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


@dataclass
class ActionConfig:
    contract: str
    function: str
    user: str
    args: List[Any] = field(default_factory=list)
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "contract": self.contract, "function": self.function,
                "user": self.user, "args": self.args}


@dataclass
class DelveConfig:
    """Everything one dig or delve run needs."""
    name: str
    seeds: List[str]
    rpc_url: str = DEFAULT_RPC_URL
    fork: Optional[ForkConfig] = None
    etherscan_api_key: str = ""
    etherscan_url: str = ETHERSCAN_API
    chain_id: int = 1
    cache_dir: Path = Path(DEFAULT_CACHE_DIR)
    output_dir: Path = Path("results")
    stoppers: List[str] = field(default_factory=list)
    users: Dict[str, str] = field(default_factory=dict)
    actions: List[ActionConfig] = field(default_factory=list)
    format: List[FormatRule] = field(default_factory=list)
    show: List[str] = field(default_factory=list)

    @property
    def show_format(self) -> bool:
        return "format" in self.show


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read config: {e}", str(path))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML: {e}", str(path))
    if not isinstance(data, dict):
        raise ConfigError("config must be a mapping", str(path))
    return data


def config_name(path: Path) -> str:
    """``vault-config.yml`` -> ``vault``"""
    stem = path.stem
    return stem[:-len("-config")] if stem.endswith("-config") else stem


def _fork(data: Optional[Dict[str, Any]], path: Path) -> Optional[ForkConfig]:
    if not data:
        return None
    url = data.get("url") or os.environ.get("MAINNET_RPC_URL")
    if not url:
        raise ConfigError("fork needs a url (or MAINNET_RPC_URL)", str(path))
    block = data.get("block")
    return ForkConfig(
        fork_url=url,
        fork_block=int(block) if block is not None else None,
        rpc_port=int(data.get("port", 8545)),
        spawn=bool(data.get("spawn", False)),
    )


def _actions(entries: List[Dict[str, Any]], path: Path) -> List[ActionConfig]:
    actions = []
    for index, entry in enumerate(entries or []):
        missing = [k for k in ("contract", "function", "user") if not entry.get(k)]
        if missing:
            raise ConfigError(f"action {index} is missing {', '.join(missing)}", str(path))
        actions.append(ActionConfig(
            contract=entry["contract"],
            function=entry["function"],
            user=entry["user"],
            args=list(entry.get("args") or []),
            name=entry.get("name"),
        ))
    return actions


def load_config(path: Union[str, Path], defaults_path: Optional[Union[str, Path]] = None) -> DelveConfig:
    """
    Load a run configuration.

    Args:
        path: YAML run configuration
        defaults_path: Optional YAML file the run configuration is overlaid on

    Returns:
        DelveConfig

    Raises:
        ConfigError: If a file cannot be read or the configuration is invalid
    """
    load_env()
    path = Path(path).resolve()
    data = _read_yaml(path)
    if defaults_path is not None:
        data = overlay(_read_yaml(Path(defaults_path)), data)

    seeds = data.get("seeds") or []
    if not seeds:
        raise ConfigError("no seed addresses", str(path))

    try:
        rules = [FormatRule.from_dict(r) for r in data.get("format") or []]
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid format rule: {e}", str(path))

    return DelveConfig(
        name=data.get("name") or config_name(path),
        seeds=list(seeds),
        rpc_url=data.get("rpc_url") or os.environ.get("RPC_URL", DEFAULT_RPC_URL),
        fork=_fork(data.get("fork"), path),
        etherscan_api_key=data.get("etherscan_api_key") or os.environ.get("ETHERSCAN_API_KEY", ""),
        etherscan_url=data.get("etherscan_url", ETHERSCAN_API),
        chain_id=int(data.get("chain_id", 1)),
        cache_dir=Path(data.get("cache_dir", DEFAULT_CACHE_DIR)),
        output_dir=Path(data["output_dir"]) if data.get("output_dir") else path.parent / "results",
        stoppers=list(data.get("stoppers") or []),
        users=dict(data.get("users") or {}),
        actions=_actions(data.get("actions"), path),
        format=rules,
        show=list(data.get("show") or []),
    )
