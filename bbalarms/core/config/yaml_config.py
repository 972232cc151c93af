from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from bbalarms.domain.models import AlarmDefinition, SeverityScheme, get_scheme

CONFIG_ENV_VAR = "BBALARMS_CONFIG"


@dataclass(frozen=True)
class ServiceConfig:
    """Engine timings and the severity scheme."""
    name: str = "BBAlarms"
    severity_scheme: str = "severity"
    poll_interval_s: float = 30.0
    test_duration_s: float = 5.0
    silence_duration_s: float = 300.0

    @property
    def scheme(self) -> SeverityScheme:
        return get_scheme(self.severity_scheme)


@dataclass(frozen=True)
class PeerConfig:
    """Connection to a peer service relaying remote alarms."""
    source: str
    host: str = "127.0.0.1"
    port: int = 9010
    timeout_s: float = 5.0
    reconnect_delay_s: float = 2.0


@dataclass(frozen=True)
class WebhookConfigData:
    """Webhook notifier configuration (URL, auth, which notifications to post)."""
    url: str
    auth_header: Optional[str] = None
    timeout_s: float = 3.0
    verify_tls: bool = True
    send_status: bool = True
    send_tests: bool = True


@dataclass(frozen=True)
class PersistenceConfig:
    """
    Alarm log backend: ``memory`` or ``ndjson`` (append-only file at `path`).
    `history_size` bounds the records kept in memory.
    """
    backend: str = "memory"
    path: Optional[str] = None
    history_size: int = 1000


@dataclass(frozen=True)
class ApiConfig:
    """HTTP command surface. The bearer token is read from the env var `token_env`."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8765
    token_env: str = "ALARMS_API_TOKEN"


@dataclass(frozen=True)
class AppConfig:
    """
    Root configuration loaded from YAML.

    This is the single source of truth for runtime-tunable values so the
    service can be configured without code changes.
    """
    service: ServiceConfig
    alarms: List[AlarmDefinition]
    peers: List[PeerConfig] = field(default_factory=list)
    webhook: Optional[WebhookConfigData] = None
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    log_level: str = "INFO"


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("config.yaml must contain a YAML mapping at the root")
    return data


def _resolve_default_config_path() -> Path:
    """
    Resolve config.yaml location.

    Priority:
    1) BBALARMS_CONFIG env var if provided
    2) config.yaml next to the executable
    3) ./config.yaml in current working directory
    """
    import os
    import sys

    env = os.getenv(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser().resolve()

    exe_dir = Path(sys.executable).resolve().parent
    candidate = exe_dir / "config.yaml"
    if candidate.exists():
        return candidate

    return Path("config.yaml").resolve()


def _parse_alarm(item: Dict[str, Any]) -> AlarmDefinition:
    source = item.get("source") or None
    d = AlarmDefinition(
        alarm_id=str(item["alarm_id"]),
        name=str(item.get("name", item["alarm_id"])),
        source=str(source) if source else None,
        pin=int(item.get("pin", 0)),
        noise_threshold=int(item.get("noise_threshold", 0)),
        can_disable=bool(item.get("can_disable", True)),
        enabled=bool(item.get("enabled", True)),
    )
    if d.is_local and d.enabled and d.pin == 0:
        raise ValueError(f"Local alarm {d.alarm_id} needs a non-zero pin")
    return d


def parse_app_config(raw: Dict[str, Any]) -> AppConfig:
    """
    Convert a raw YAML mapping into typed config objects.

    Raises
    ------
    ValueError
        If values are invalid (unknown scheme, duplicate alarm ids, pin 0 on a
        local alarm, remote alarm without a peer, unknown persistence backend).
    KeyError
        If required fields are missing.
    """
    # ---- service ----
    s = raw.get("service", {}) or {}
    service = ServiceConfig(
        name=str(s.get("name", "BBAlarms")),
        severity_scheme=str(s.get("severity_scheme", "severity")),
        poll_interval_s=float(s.get("poll_interval_s", 30.0)),
        test_duration_s=float(s.get("test_duration_s", 5.0)),
        silence_duration_s=float(s.get("silence_duration_s", 300.0)),
    )
    get_scheme(service.severity_scheme)
    if service.poll_interval_s <= 0:
        raise ValueError("service.poll_interval_s must be positive")

    # ---- alarms ----
    alarms = [_parse_alarm(item) for item in raw.get("alarms", []) or []]
    seen = set()
    for d in alarms:
        if d.alarm_id in seen:
            raise ValueError(f"Duplicate alarm id in config: {d.alarm_id}")
        seen.add(d.alarm_id)

    # ---- peers ----
    peers = [
        PeerConfig(
            source=str(p["source"]),
            host=str(p.get("host", "127.0.0.1")),
            port=int(p.get("port", 9010)),
            timeout_s=float(p.get("timeout_s", 5.0)),
            reconnect_delay_s=float(p.get("reconnect_delay_s", 2.0)),
        )
        for p in raw.get("peers", []) or []
    ]
    known_sources = {p.source for p in peers}
    for d in alarms:
        if not d.is_local and d.source not in known_sources:
            raise ValueError(f"Remote alarm {d.alarm_id} refers to unknown peer {d.source}")

    # ---- webhook ----
    webhook = None
    w = raw.get("webhook")
    if w:
        webhook = WebhookConfigData(
            url=str(w["url"]),
            auth_header=w.get("auth_header"),
            timeout_s=float(w.get("timeout_s", 3.0)),
            verify_tls=bool(w.get("verify_tls", True)),
            send_status=bool(w.get("send_status", True)),
            send_tests=bool(w.get("send_tests", True)),
        )

    # ---- persistence ----
    pr = raw.get("persistence", {}) or {}
    persistence = PersistenceConfig(
        backend=str(pr.get("backend", "memory")),
        path=pr.get("path"),
        history_size=int(pr.get("history_size", 1000)),
    )
    if persistence.backend not in ("memory", "ndjson"):
        raise ValueError(f"Unknown persistence backend: {persistence.backend}")
    if persistence.backend == "ndjson" and not persistence.path:
        raise ValueError("persistence.path is required for the ndjson backend")
    if persistence.history_size < 1:
        raise ValueError("persistence.history_size must be at least 1")

    # ---- api ----
    a = raw.get("api", {}) or {}
    api = ApiConfig(
        enabled=bool(a.get("enabled", True)),
        host=str(a.get("host", "127.0.0.1")),
        port=int(a.get("port", 8765)),
        token_env=str(a.get("token_env", "ALARMS_API_TOKEN")),
    )

    # ---- logging ----
    lg = raw.get("logging", {}) or {}

    return AppConfig(
        service=service,
        alarms=alarms,
        peers=peers,
        webhook=webhook,
        persistence=persistence,
        api=api,
        log_level=str(lg.get("level", "INFO")).upper(),
    )


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """
    Load service configuration from YAML.

    Parameters
    ----------
    path
        Explicit path to config.yaml. If None, uses default resolution.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If required fields are missing or invalid.
    """
    cfg_path = Path(path).expanduser().resolve() if path else _resolve_default_config_path()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    return parse_app_config(_read_yaml(cfg_path))
