"""
The config module defines the configuration and its parsing logic.

Every key is optional: a fresh install with no configuration file serves `~/Music`. When a file is
present, we provide detailed errors for invalid values and emit warnings when unrecognized keys are
found.
"""

from __future__ import annotations

import functools
import logging
import multiprocessing
import tomllib
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import appdirs

from lorchestre.common import LorchestreExpectedError

XDG_CONFIG_LORCHESTRE = Path(appdirs.user_config_dir("lorchestre"))
CONFIG_PATH = XDG_CONFIG_LORCHESTRE / "config.toml"

XDG_CACHE_LORCHESTRE = Path(appdirs.user_cache_dir("lorchestre"))

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 7700

logger = logging.getLogger(__name__)


class ConfigNotFoundError(LorchestreExpectedError):
    pass


class ConfigDecodeError(LorchestreExpectedError):
    pass


class InvalidConfigValueError(LorchestreExpectedError, ValueError):
    pass


@dataclass(frozen=True)
class Config:
    music_source_dir: Path
    cache_dir: Path
    # Maximum parallel processes for track extraction. Defaults to nproc/2.
    max_proc: int

    host: str
    port: int

    @classmethod
    def parse(cls, config_path_override: Path | None = None) -> Config:
        # As we parse, delete consumed values from the data dictionary. If any are left over at the
        # end of the config, warn that unknown config keys were found.
        cfgpath = config_path_override or CONFIG_PATH
        try:
            with cfgpath.open("r") as fp:
                data = tomllib.loads(fp.read())
        except FileNotFoundError as e:
            if config_path_override is not None:
                raise ConfigNotFoundError(f"Configuration file not found ({cfgpath})") from e
            logger.debug(f"No configuration file at {cfgpath}, using defaults")
            data = {}
        except tomllib.TOMLDecodeError as e:
            raise ConfigDecodeError(
                f"Failed to decode configuration file: invalid TOML: {e}"
            ) from e

        try:
            music_source_dir = Path(data["music_source_dir"]).expanduser()
            del data["music_source_dir"]
        except KeyError:
            music_source_dir = Path.home() / "Music"
        except (ValueError, TypeError) as e:
            raise InvalidConfigValueError(
                f"Invalid value for music_source_dir in configuration file ({cfgpath}): must be a path"
            ) from e

        try:
            cache_dir = Path(data["cache_dir"]).expanduser()
            del data["cache_dir"]
        except KeyError:
            cache_dir = XDG_CACHE_LORCHESTRE
        except (TypeError, ValueError) as e:
            raise InvalidConfigValueError(
                f"Invalid value for cache_dir in configuration file ({cfgpath}): must be a path"
            ) from e
        cache_dir.mkdir(parents=True, exist_ok=True)

        try:
            max_proc = data["max_proc"]
            del data["max_proc"]
            if not isinstance(max_proc, int) or isinstance(max_proc, bool) or max_proc <= 0:
                raise ValueError(f"must be a positive integer: got {max_proc}")
        except KeyError:
            max_proc = max(1, multiprocessing.cpu_count() // 2)
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for max_proc in configuration file ({cfgpath}): must be a positive integer"
            ) from e

        network = data.get("network", {})
        if not isinstance(network, dict):
            raise InvalidConfigValueError(
                f"Invalid value for network in configuration file ({cfgpath}): must be a table"
            )

        try:
            host = network["host"]
            del network["host"]
            if not isinstance(host, str) or not host:
                raise ValueError(f"Must be a non-empty str: got {type(host)}")
        except KeyError:
            host = DEFAULT_HOST
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for network.host in configuration file ({cfgpath}): {e}"
            ) from e

        try:
            port = network["port"]
            del network["port"]
            if not isinstance(port, int) or isinstance(port, bool):
                raise ValueError(f"Must be an int: got {type(port)}")
            if not 0 < port < 65536:
                raise ValueError(f"Must be between 1 and 65535: got {port}")
        except KeyError:
            port = DEFAULT_PORT
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for network.port in configuration file ({cfgpath}): {e}"
            ) from e

        if "network" in data and not data["network"]:
            del data["network"]

        if data:
            unrecognized_accessors: list[str] = []
            # Do a DFS over the data keys to assemble the map of unknown keys. State is a tuple of
            # ("accessor", node).
            dfs_state: deque[tuple[str, dict[str, Any]]] = deque([("", data)])
            while dfs_state:
                accessor, node = dfs_state.pop()
                if isinstance(node, dict):
                    for k, v in node.items():
                        child_accessor = k if not accessor else f"{accessor}.{k}"
                        dfs_state.append((child_accessor, v))
                    continue
                unrecognized_accessors.append(accessor)
            logger.warning(
                f"Unrecognized options found in configuration file: {', '.join(unrecognized_accessors)}"
            )

        return Config(
            music_source_dir=music_source_dir,
            cache_dir=cache_dir,
            max_proc=max_proc,
            host=host,
            port=port,
        )

    @functools.cached_property
    def covers_dir(self) -> Path:
        return self.cache_dir / "covers"

    @functools.cached_property
    def fingerprint_path(self) -> Path:
        return self.cache_dir / "media.md5"

    @functools.cached_property
    def media_list_path(self) -> Path:
        return self.cache_dir / "media.files"
