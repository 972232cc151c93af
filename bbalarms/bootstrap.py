from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

from bbalarms.core.alarm.alarm_manager import AlarmManager
from bbalarms.core.alarm.raisers import RemoteAlarmRaiser, SwitchSensor
from bbalarms.core.config.yaml_config import AppConfig, load_app_config
from bbalarms.core.outputs.devices import MemorySwitch
from bbalarms.core.outputs.output_coordinator import OutputCoordinator
from bbalarms.core.state.alarm_log import MemoryAlarmLog, NdjsonAlarmLog
from bbalarms.notification.notification_thread import NotificationWorkerThread
from bbalarms.notification.webhook_notifier import WebhookConfig, WebhookNotifier
from bbalarms.runtime.event_bus import EventBus
from bbalarms.runtime.peer_link_thread import PeerLinkConfig, PeerLinkThread
from bbalarms.runtime.service_runtime import ServiceRuntime
from bbalarms.services.alarms_service import AlarmsService, build_raisers
from bbalarms.services.commands import AlarmCommands

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class ServiceWiring:
    """Everything the entrypoint needs to run the service."""
    config: AppConfig
    manager: AlarmManager
    coordinator: OutputCoordinator
    persistence: MemoryAlarmLog
    service: AlarmsService
    commands: AlarmCommands
    runtime: ServiceRuntime


def configure_logging(level: str = "INFO") -> None:
    """
    Install a single stream handler on the root logger.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def build_persistence(cfg: AppConfig) -> MemoryAlarmLog:
    scheme = cfg.service.scheme
    if cfg.persistence.backend == "ndjson":
        return NdjsonAlarmLog(
            str(cfg.persistence.path),
            definitions=cfg.alarms,
            scheme=scheme,
            history_size=cfg.persistence.history_size,
        )
    return MemoryAlarmLog(definitions=list(cfg.alarms), scheme=scheme, history_size=cfg.persistence.history_size)


def build_notifier(cfg: AppConfig) -> Optional[NotificationWorkerThread]:
    if cfg.webhook is None:
        return None

    auth_header = cfg.webhook.auth_header
    if auth_header and not auth_header.startswith("Bearer "):
        auth_header = f"Bearer {auth_header}"

    return NotificationWorkerThread(
        notifiers=[
            WebhookNotifier(
                WebhookConfig(
                    url=cfg.webhook.url,
                    auth_header=auth_header,
                    timeout_s=cfg.webhook.timeout_s,
                    verify_tls=cfg.webhook.verify_tls,
                    send_status=cfg.webhook.send_status,
                    send_tests=cfg.webhook.send_tests,
                )
            )
        ]
    )


def build_service(
    cfg: Optional[AppConfig] = None,
    config_path: Optional[str] = None,
    sensors: Optional[Mapping[str, SwitchSensor]] = None,
) -> ServiceWiring:
    """
    Compose the service from configuration.

    Threads are created but not started; call ``wiring.runtime.start()``.

    Parameters
    ----------
    cfg
        Parsed configuration. Loaded from `config_path` if None.
    config_path
        Explicit config path (default resolution if None).
    sensors
        Switch inputs by alarm id for local alarms (in-memory if missing).
    """
    cfg = cfg or load_app_config(config_path)
    scheme = cfg.service.scheme

    # --- STATE ---
    persistence = build_persistence(cfg)
    manager = AlarmManager(scheme=scheme)

    # --- OUTPUTS ---
    coordinator = OutputCoordinator(
        manager,
        buzzer=MemorySwitch("buzzer"),
        pilot=MemorySwitch("pilot"),
        master=MemorySwitch("master"),
    )

    # --- NOTIFICATIONS ---
    notifier = build_notifier(cfg)
    bus = EventBus() if notifier is not None else None

    # --- SERVICE ---
    service = AlarmsService(manager=manager, coordinator=coordinator, persistence=persistence, bus=bus)
    service.attach()

    raisers = build_raisers(persistence.load_alarm_definitions(), sensors=sensors, sender=cfg.service.name)
    service.register_raisers(raisers)

    # --- RUNTIME ---
    runtime = ServiceRuntime(
        service=service,
        bus=bus or EventBus(),
        poll_interval_s=cfg.service.poll_interval_s,
        notifier=notifier,
    )

    # --- PEERS ---
    peers = {p.source: p for p in cfg.peers}
    for r in raisers:
        if not isinstance(r, RemoteAlarmRaiser):
            continue
        p = peers[r.source]
        runtime.peer_links.append(
            PeerLinkThread(
                PeerLinkConfig(
                    source=p.source,
                    host=p.host,
                    port=p.port,
                    reconnect_delay_s=p.reconnect_delay_s,
                    connect_timeout_s=p.timeout_s,
                ),
                raiser=r,
                stop_event=runtime.stop_event,
            )
        )

    commands = AlarmCommands(
        service,
        default_silence_s=cfg.service.silence_duration_s,
        default_test_s=cfg.service.test_duration_s,
    )

    return ServiceWiring(
        config=cfg,
        manager=manager,
        coordinator=coordinator,
        persistence=persistence,
        service=service,
        commands=commands,
        runtime=runtime,
    )
