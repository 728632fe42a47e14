"""Config loading for FrameRelay.

Reads `.framerelay/config.yaml` (or `~/.framerelay/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. FRAMERELAY_CONFIG environment variable (if set)
  3. `.framerelay/config.yaml` (working directory — for development)
  4. `~/.framerelay/config.yaml` (home directory)

Environment variable overrides:
  FRAMERELAY_PORT       — overrides proxy.port
  FRAMERELAY_TIMEOUT_MS — overrides relay.timeout_ms
  FRAMERELAY_CONFIG     — sets an explicit config file path to try first
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Optional

import yaml

from framerelay.constants import (
    DEFAULT_HOST,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_PORT,
    DEFAULT_UPSTREAM_TIMEOUT_MS,
)
from framerelay.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".framerelay/config.yaml",
    os.path.expanduser("~/.framerelay/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class RelayConfig:
    """Relay behaviour.

    timeout_ms:    Bound on time-to-headers for one upstream fetch (504 on expiry).
    max_redirects: Remapped redirects allowed in one chain; 0 disables the bound.
    open_relay:    When False, /proxy only serves loopback clients.
    """

    timeout_ms: int = DEFAULT_UPSTREAM_TIMEOUT_MS
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    open_relay: bool = True

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass
class CorsConfig:
    """Cross-origin policy for the relay endpoint."""

    allow_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class ProxyConfig:
    """Server binding configuration."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass
class Config:
    """Root configuration object populated from .framerelay/config.yaml.

    All fields have safe defaults; FrameRelay can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Args:
            raw:  Parsed YAML dict (version field already validated).
            path: Path to the config file.

        Raises:
            SystemExit(1): On an out-of-range relay value or malformed cors list.
        """
        # ── Relay ─────────────────────────────────────────────────────────────
        relay_raw = _section(raw, "relay")
        relay = RelayConfig(
            timeout_ms=relay_raw.get("timeout_ms", DEFAULT_UPSTREAM_TIMEOUT_MS),
            max_redirects=relay_raw.get("max_redirects", DEFAULT_MAX_REDIRECTS),
            open_relay=relay_raw.get("open_relay", True),
        )
        _validate_relay(relay)

        # ── Proxy ─────────────────────────────────────────────────────────────
        proxy_raw = _section(raw, "proxy")
        proxy = ProxyConfig(
            host=proxy_raw.get("host", DEFAULT_HOST),
            port=proxy_raw.get("port", DEFAULT_PORT),
        )

        # ── CORS ──────────────────────────────────────────────────────────────
        cors_raw = _section(raw, "cors")
        allow_origins = cors_raw.get("allow_origins", ["*"])
        if not isinstance(allow_origins, list) or not all(
            isinstance(origin, str) for origin in allow_origins
        ):
            _fail(f"CONFIG ERROR: cors.allow_origins must be a list of strings, got {allow_origins!r}")
        cors = CorsConfig(allow_origins=allow_origins)

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            proxy=proxy,
            relay=relay,
            cors=cors,
            path=path,
        )


# ─── Validation ───────────────────────────────────────────────────────────────


def _fail(msg: str) -> None:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str) -> dict:
    """Return a top-level config section; absent or empty means defaults.

    Raises:
        SystemExit(1): The section is present but not a mapping.
    """
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        _fail(f"CONFIG ERROR: '{name}' must be a mapping, got {section!r}")
    return section


def _validate_relay(relay: RelayConfig) -> None:
    """Reject relay values the engine cannot run with.

    Raises:
        SystemExit(1): timeout_ms not a positive int, or max_redirects negative.
    """
    if isinstance(relay.timeout_ms, bool) or not isinstance(relay.timeout_ms, int) or relay.timeout_ms <= 0:
        _fail(
            f"CONFIG ERROR: relay.timeout_ms must be a positive integer, got {relay.timeout_ms!r}"
        )
    if isinstance(relay.max_redirects, bool) or not isinstance(relay.max_redirects, int) or relay.max_redirects < 0:
        _fail(
            f"CONFIG ERROR: relay.max_redirects must be a non-negative integer, "
            f"got {relay.max_redirects!r}"
        )
    if not isinstance(relay.open_relay, bool):
        _fail(f"CONFIG ERROR: relay.open_relay must be true or false, got {relay.open_relay!r}")


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate FrameRelay configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes the error to stderr and raises
    SystemExit(1). Environment overrides are applied in both cases.

    Returns:
        Config object with file values merged onto defaults.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid relay values, or invalid env overrides.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("FRAMERELAY_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        _warn_on_exposure(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "FrameRelay refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    _warn_on_exposure(config)

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        timeout_ms=config.relay.timeout_ms,
        max_redirects=config.relay.max_redirects,
        open_relay=config.relay.open_relay,
    )
    return config


def _warn_on_exposure(config: Config) -> None:
    # An open relay reachable from the network will fetch any URL for anyone.
    if config.proxy.host == "0.0.0.0" and config.relay.open_relay:
        logger.warning(
            "SECURITY WARNING: FrameRelay binds on 0.0.0.0 with open_relay enabled. "
            "Any network client can use it to fetch arbitrary URLs. "
            "Recommended: proxy.host: '127.0.0.1' or relay.open_relay: false."
        )


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Handles:
      FRAMERELAY_PORT       — config.proxy.port (integer)
      FRAMERELAY_TIMEOUT_MS — config.relay.timeout_ms (positive integer)

    Raises:
        SystemExit(1): If an override is set but not a valid value.
    """
    env_port = os.environ.get("FRAMERELAY_PORT")
    if env_port is not None:
        try:
            config.proxy.port = int(env_port)
        except ValueError:
            _fail(
                f"CONFIG ERROR: FRAMERELAY_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )

    env_timeout = os.environ.get("FRAMERELAY_TIMEOUT_MS")
    if env_timeout is not None:
        try:
            timeout_ms = int(env_timeout)
        except ValueError:
            timeout_ms = 0
        if timeout_ms <= 0:
            _fail(
                f"CONFIG ERROR: FRAMERELAY_TIMEOUT_MS environment variable is not a "
                f"positive integer: '{env_timeout}'"
            )
        config.relay.timeout_ms = timeout_ms
