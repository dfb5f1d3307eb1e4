"""
Configuration for the WireGuard gateway.

Two layers live here:
- GatewaySettings: process settings, read once at startup and passed around.
- ConfigResolver: the tunnel configuration, resolved fresh on every read from
  built-in defaults, then the environment, then the persisted port override.
"""
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Annotated, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt, TypeAdapter, ValidationError

from .firewall import build_post_down, build_post_up

logger = logging.getLogger(__name__)

# Paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
OVERRIDE_FILENAME = "wg_config.json"

# Tunnel defaults
DEFAULT_WG_PATH = "/etc/wireguard/"
DEFAULT_WG_DEVICE = "eth0"
DEFAULT_WG_PORT = 51820
DEFAULT_WG_PORTS = "51820-51920"
DEFAULT_PERSISTENT_KEEPALIVE = 25
DEFAULT_ADDRESS = "10.8.0.x"
DEFAULT_DNS = "8.8.8.8"
DEFAULT_ALLOWED_IPS = "0.0.0.0/0, ::/0"

# Web server defaults
DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 51821
DEFAULT_RELEASE = "1"
DEFAULT_WIREGUARD_URL = "http://127.0.0.1:51822"
DEFAULT_WIREGUARD_TIMEOUT = 10.0

# Session
SESSION_MAX_AGE = 86400  # 24 hours
LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "5/minute")

# Audit log
AUDIT_LOG_PATH = DATA_DIR / "audit.log"

Port = Annotated[StrictInt, Field(ge=0, le=65535)]
_port_adapter = TypeAdapter(Port)
_history_adapter = TypeAdapter(list[Port])


def _env_int(environ: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    value = environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"{name}={value!r} is not an integer, using default {default}")
        return default


class PortRange(BaseModel):
    """Inclusive-bounds port range written as `lower-upper`."""
    model_config = ConfigDict(frozen=True)

    lower: int
    upper: int

    @classmethod
    def parse(cls, text: str) -> "PortRange":
        lower, _, upper = text.strip().partition("-")
        if not upper:
            raise ValueError(f"Port range must look like lower-upper, got {text!r}")
        port_range = cls(lower=int(lower), upper=int(upper))
        if port_range.lower > port_range.upper:
            raise ValueError(f"Port range lower bound exceeds upper bound: {text!r}")
        return port_range

    def __contains__(self, port: int) -> bool:
        return self.lower <= port <= self.upper

    def scan(self) -> range:
        """Candidates for automatic assignment; the upper bound is not offered."""
        return range(self.lower, self.upper)

    def __str__(self) -> str:
        return f"{self.lower}-{self.upper}"


class PortOverride(BaseModel):
    """
    The persisted port record: current port plus the ports used before it.
    A field left as None was absent (or malformed) in the file.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    port: Optional[int] = Field(default=None, alias="WG_PORT")
    history: Optional[Tuple[int, ...]] = Field(default=None, alias="WG_HISTORY_PORT")

    @classmethod
    def from_file_data(cls, data: dict, source: Path = None) -> "PortOverride":
        """Validate each recognised field on its own; unknown fields are ignored."""
        fields = {}
        for name, adapter in (("WG_PORT", _port_adapter), ("WG_HISTORY_PORT", _history_adapter)):
            if name not in data:
                continue
            try:
                fields[name] = adapter.validate_python(data[name])
            except ValidationError:
                logger.warning(f"Ignoring malformed {name}={data[name]!r} in {source}")
        return cls.model_validate(fields)

    def to_file_data(self) -> dict:
        return {
            "WG_PORT": self.port or 0,
            "WG_HISTORY_PORT": list(self.history or ()),
        }


def override_path(wg_path: str) -> Path:
    return Path(wg_path) / OVERRIDE_FILENAME


def load_override(path: Path) -> PortOverride:
    """
    Read the override file.
    Any failure means "no override"; it is logged and never raised.
    """
    try:
        raw = path.read_text()
    except FileNotFoundError:
        logger.debug(f"No port override at {path}")
        return PortOverride()
    except OSError as e:
        logger.warning(f"Cannot read port override {path}: {e}")
        return PortOverride()

    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Port override {path} is not valid JSON: {e}")
        return PortOverride()

    if not isinstance(data, dict):
        logger.warning(f"Port override {path} is not a JSON object")
        return PortOverride()

    return PortOverride.from_file_data(data, source=path)


class ConfigurationSnapshot(BaseModel):
    """Effective tunnel configuration at the moment of resolution."""
    model_config = ConfigDict(frozen=True)

    wg_path: str
    wg_device: str
    wg_host: Optional[str]
    wg_port: int
    wg_ports: PortRange
    wg_history_port: Tuple[int, ...]
    wg_mtu: Optional[int]
    wg_persistent_keepalive: int
    wg_default_address: str
    wg_default_dns: str
    wg_allowed_ips: str
    wg_pre_up: str
    wg_post_up: str
    wg_pre_down: str
    wg_post_down: str

    @property
    def override_path(self) -> Path:
        return override_path(self.wg_path)


class ConfigResolver:
    """
    Resolves a ConfigurationSnapshot on every call.
    Never writes: the override file belongs to the port allocator.
    """

    def __init__(self, environ: Mapping[str, str] = None):
        self._environ = os.environ if environ is None else environ

    def _port_range(self) -> PortRange:
        text = self._environ.get("WG_PORTS") or DEFAULT_WG_PORTS
        try:
            return PortRange.parse(text)
        except ValueError as e:
            logger.warning(f"WG_PORTS: {e}, using default {DEFAULT_WG_PORTS}")
            return PortRange.parse(DEFAULT_WG_PORTS)

    def resolve(self, key: str = None):
        """
        Return the full snapshot, or a single field when `key` is given.
        `key` accepts field names (wg_port) and variable names (WG_PORT).
        """
        env = self._environ
        wg_path = env.get("WG_PATH") or DEFAULT_WG_PATH
        wg_port = _env_int(env, "WG_PORT", DEFAULT_WG_PORT)
        history: Tuple[int, ...] = ()

        override = load_override(override_path(wg_path))
        if override.port is not None:
            wg_port = override.port
        if override.history is not None:
            history = override.history

        device = env.get("WG_DEVICE") or DEFAULT_WG_DEVICE
        default_address = env.get("WG_DEFAULT_ADDRESS") or DEFAULT_ADDRESS
        dns = env.get("WG_DEFAULT_DNS")

        snapshot = ConfigurationSnapshot(
            wg_path=wg_path,
            wg_device=device,
            wg_host=env.get("WG_HOST") or None,
            wg_port=wg_port,
            wg_ports=self._port_range(),
            wg_history_port=history,
            wg_mtu=_env_int(env, "WG_MTU", None),
            wg_persistent_keepalive=_env_int(env, "WG_PERSISTENT_KEEPALIVE", DEFAULT_PERSISTENT_KEEPALIVE),
            wg_default_address=default_address,
            wg_default_dns=DEFAULT_DNS if dns is None else dns,
            wg_allowed_ips=env.get("WG_ALLOWED_IPS") or DEFAULT_ALLOWED_IPS,
            wg_pre_up=env.get("WG_PRE_UP") or "",
            wg_post_up=env.get("WG_POST_UP") or build_post_up(device, default_address, wg_port),
            wg_pre_down=env.get("WG_PRE_DOWN") or "",
            wg_post_down=env.get("WG_POST_DOWN") or build_post_down(device, default_address, wg_port),
        )

        if key is None:
            return snapshot
        name = key.lower()
        if name not in ConfigurationSnapshot.model_fields:
            raise KeyError(key)
        return getattr(snapshot, name)


class GatewaySettings(BaseModel):
    """Process settings. Built once at startup, then passed explicitly."""
    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_LISTEN_HOST
    port: int = DEFAULT_LISTEN_PORT
    release: str = DEFAULT_RELEASE
    password: Optional[str] = None
    password_hash: Optional[str] = None
    session_secret: str = Field(default_factory=lambda: secrets.token_hex(32))
    session_max_age: int = SESSION_MAX_AGE
    session_cookie_secure: bool = False
    session_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    wireguard_url: str = DEFAULT_WIREGUARD_URL
    wireguard_timeout: float = DEFAULT_WIREGUARD_TIMEOUT
    audit_log_path: Path = AUDIT_LOG_PATH

    @property
    def requires_password(self) -> bool:
        return bool(self.password or self.password_hash)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> "GatewaySettings":
        env = os.environ if environ is None else environ
        values = {
            "host": env.get("HOST"),
            "port": _env_int(env, "PORT", DEFAULT_LISTEN_PORT),
            "release": env.get("RELEASE"),
            "password": env.get("PASSWORD") or None,
            "password_hash": env.get("PASSWORD_HASH") or None,
            # Without a fixed secret, sessions do not survive a restart.
            "session_secret": env.get("SESSION_SECRET"),
            "session_max_age": _env_int(env, "SESSION_MAX_AGE", SESSION_MAX_AGE),
            "session_cookie_secure": env.get("SESSION_COOKIE_SECURE", "").lower() in ("1", "true", "yes"),
            "session_backend": env.get("SESSION_BACKEND"),
            "redis_url": env.get("REDIS_URL"),
            "wireguard_url": env.get("WG_SERVICE_URL"),
            "audit_log_path": env.get("AUDIT_LOG_PATH"),
        }
        timeout = env.get("WG_SERVICE_TIMEOUT")
        if timeout:
            try:
                values["wireguard_timeout"] = float(timeout)
            except ValueError:
                logger.warning(f"WG_SERVICE_TIMEOUT={timeout!r} is not a number, using default")
        return cls(**{k: v for k, v in values.items() if v is not None})
