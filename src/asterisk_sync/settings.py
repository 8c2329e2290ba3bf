"""Settings loaded from YAML with environment overrides.

```yaml
ami:
  host: 127.0.0.1
  port: 5038
  username: admin
  secret_env: ASTERISK_AMI_SECRET
asterisk:
  pjsip_config: /etc/asterisk/pjsip.conf
  reload_modules: [res_pjsip.so]
  live_status: ami        # or "cli" for asterisk -rx
  git_history: false
database:
  path: /var/lib/asterisk-sync/endpoints.yaml
```
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .ami.client import AmiSession
from .ami.protocol import DEFAULT_PORT, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

CONFIG_ENV = "ASTERISK_SYNC_CONFIG"
CONFIG_NAME = "asterisk-sync.yaml"


@dataclass
class AmiSettings:
    """Manager interface credentials."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    username: str = "admin"
    secret: Optional[str] = None
    secret_env: str = "ASTERISK_AMI_SECRET"
    timeout: float = DEFAULT_TIMEOUT

    def get_secret(self) -> str:
        """Secret from the file, or from the environment variable."""
        if self.secret:
            return self.secret
        return os.environ.get(self.secret_env, "")

    def connect(self, events: bool = False) -> AmiSession:
        return AmiSession.connect(
            self.host,
            self.port,
            self.username,
            self.get_secret(),
            timeout=self.timeout,
            events=events,
        )


@dataclass
class MonitorSettings:
    """Reconnect policy for the event monitor."""
    max_attempts: int = 10
    min_wait: float = 1.0
    max_wait: float = 60.0


@dataclass
class Settings:
    ami: AmiSettings = field(default_factory=AmiSettings)
    pjsip_config: Path = Path("/etc/asterisk/pjsip.conf")
    reload_modules: list[str] = field(default_factory=lambda: ["res_pjsip.so"])
    live_status: str = "ami"
    manage_transports: bool = True
    git_history: bool = False
    database_path: Path = Path("/var/lib/asterisk-sync/endpoints.yaml")
    audit_log_dir: Optional[str] = None
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    source: Optional[Path] = None


def find_config() -> Optional[Path]:
    """First existing settings file in the standard locations."""
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)

    search_paths = [
        Path.cwd() / "configs" / CONFIG_NAME,
        Path.cwd() / CONFIG_NAME,
        Path.home() / ".config" / "asterisk-sync" / CONFIG_NAME,
        Path("/etc/asterisk-sync") / CONFIG_NAME,
    ]
    for path in search_paths:
        if path.exists():
            return path
    return None


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Settings section '{name}' must be a mapping")
    return value


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from ``path`` or the first file found.

    Missing files give the built-in defaults. Environment variables
    ``ASTERISK_AMI_HOST``, ``ASTERISK_AMI_PORT``, ``ASTERISK_AMI_USERNAME``,
    ``ASTERISK_AMI_SECRET`` and ``ASTERISK_PJSIP_CONFIG`` win over the file.
    """
    config_path = Path(path) if path else find_config()
    data: dict[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Settings file not found: {config_path}")
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded settings from {config_path}")

    ami_data = _section(data, "ami")
    asterisk_data = _section(data, "asterisk")
    database_data = _section(data, "database")
    monitor_data = _section(data, "monitor")

    ami = AmiSettings(
        host=str(ami_data.get("host", AmiSettings.host)),
        port=int(ami_data.get("port", AmiSettings.port)),
        username=str(ami_data.get("username", AmiSettings.username)),
        secret=ami_data.get("secret"),
        secret_env=str(ami_data.get("secret_env", AmiSettings.secret_env)),
        timeout=float(ami_data.get("timeout", AmiSettings.timeout)),
    )
    settings = Settings(
        ami=ami,
        pjsip_config=Path(asterisk_data.get("pjsip_config", Settings.pjsip_config)),
        reload_modules=list(asterisk_data.get("reload_modules") or ["res_pjsip.so"]),
        live_status=str(asterisk_data.get("live_status", "ami")),
        manage_transports=bool(asterisk_data.get("ensure_transports", True)),
        git_history=bool(asterisk_data.get("git_history", False)),
        database_path=Path(database_data.get("path", Settings.database_path)),
        audit_log_dir=data.get("audit_log_dir"),
        monitor=MonitorSettings(**{
            k: v for k, v in monitor_data.items() if k in ("max_attempts", "min_wait", "max_wait")
        }),
        source=config_path,
    )

    if settings.live_status not in ("ami", "cli"):
        raise ValueError(f"Invalid live_status: {settings.live_status}. Must be 'ami' or 'cli'")

    env = os.environ
    if env.get("ASTERISK_AMI_HOST"):
        ami.host = env["ASTERISK_AMI_HOST"]
    if env.get("ASTERISK_AMI_PORT"):
        ami.port = int(env["ASTERISK_AMI_PORT"])
    if env.get("ASTERISK_AMI_USERNAME"):
        ami.username = env["ASTERISK_AMI_USERNAME"]
    if env.get("ASTERISK_AMI_SECRET"):
        ami.secret = env["ASTERISK_AMI_SECRET"]
    if env.get("ASTERISK_PJSIP_CONFIG"):
        settings.pjsip_config = Path(env["ASTERISK_PJSIP_CONFIG"])

    return settings
