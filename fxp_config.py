# Session options and logging setup for the FXP client

import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, fields

from fxp_errors import FXPConfigError

# Define simple paths for the option files
SESSION_FILE = 'last_session.json'
SITES_FILE = 'sites.json'

SECURITY_TYPES = ('none', 'tls', 'ssl')


@dataclass
class SessionOptions:
    """Everything needed to open and configure one control connection."""
    host: str = ''
    port: int = 21
    username: str = 'anonymous'
    password: str = ''
    account: str = ''
    passive: bool = True
    debug: bool = False
    security: str = 'none' # 'none', 'tls' (AUTH TLS) or 'ssl' (AUTH SSL)
    client_cert: str = None # PEM file, also used when acting as TLS server on data connections
    client_key: str = None
    verify_certificates: bool = True
    timeout: float = None # connect timeout in seconds

    def __post_init__(self):
        self.security = (self.security or 'none').lower()
        if self.security not in SECURITY_TYPES:
            raise FXPConfigError(f"Unsupported security type: {self.security}")
        try:
            self.port = int(self.port) if self.port else 21
        except (TypeError, ValueError):
            raise FXPConfigError(f"Invalid port value: {self.port}")

    @property
    def is_secure(self):
        return self.security != 'none'

    @classmethod
    def from_dict(cls, details):
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in details.items() if key in known})

    def to_dict(self):
        return asdict(self)


def _read_json(path):
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise FXPConfigError(f"Error loading {path}: {e}") from e


def _write_json(path, payload):
    try:
        with open(path, 'w') as f:
            json.dump(payload, f, indent=2)
    except (OSError, TypeError) as e:
        raise FXPConfigError(f"Error saving {path}: {e}") from e


def load_last_session(path=SESSION_FILE):
    """Returns the saved options, or defaults when nothing was saved yet."""
    if not os.path.exists(path):
        return SessionOptions()
    details = _read_json(path)
    if not isinstance(details, dict):
        raise FXPConfigError(f"Error loading {path}: expected a JSON object")
    return SessionOptions.from_dict(details)


def save_last_session(options, path=SESSION_FILE):
    _write_json(path, options.to_dict())


def load_sites(path=SITES_FILE):
    """Loads named site profiles, e.g. the two ends of an FXP transfer.

    The file holds {"sites": {"name": {...options...}, ...}}.
    """
    if not os.path.exists(path):
        return {}
    payload = _read_json(path)
    sites = payload.get('sites', {}) if isinstance(payload, dict) else None
    if not isinstance(sites, dict):
        raise FXPConfigError(f"Error loading {path}: 'sites' must be a JSON object")
    return {name: SessionOptions.from_dict(details) for name, details in sites.items()}


def save_sites(sites, path=SITES_FILE):
    _write_json(path, {'sites': {name: options.to_dict() for name, options in sites.items()}})


def configure_logging(debug=False, logger_name='fxp'):
    """Configure the root logger and return the FXP logger."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.debug("Logging configured with level %s", logging.getLevelName(level))
    return logger
