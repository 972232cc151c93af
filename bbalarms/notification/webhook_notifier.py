from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from bbalarms.notification.base import AlarmNotification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookConfig:
    """
    Where and what to post.

    Parameters
    ----------
    url
        Target webhook URL.
    timeout_s
        HTTP request timeout in seconds.
    verify_tls
        Whether to verify TLS certificates.
    auth_header
        Optional Authorization header value (e.g., Bearer token).
    send_status
        Post the periodic ``alarm_status`` reports too, not only alerts.
    send_tests
        Post alerts that belong to an alarm test.
    """

    url: str
    timeout_s: float = 2.0
    verify_tls: bool = True
    auth_header: Optional[str] = None
    send_status: bool = True
    send_tests: bool = True


class WebhookNotifier:
    """
    Post alarm notifications to an HTTP endpoint as JSON.

    The alarm fields travel as headers as well (``X-Alarm-Event``,
    ``X-Alarm-Id``, ``X-Alarm-State``, ``X-Alarm-Code``, ``X-Alarm-Testing``)
    so a receiver can route without decoding the body.

    Notes
    -----
    HTTP errors are surfaced via ``raise_for_status()``; retries are the
    worker thread's job.
    """

    def __init__(self, cfg: WebhookConfig):
        self._cfg = cfg

    def accepts(self, notification: AlarmNotification) -> bool:
        if notification.is_status:
            return self._cfg.send_status
        if notification.testing:
            return self._cfg.send_tests
        return True

    def headers(self, notification: AlarmNotification) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Alarm-Event": notification.kind,
            "X-Alarm-Testing": "true" if notification.testing else "false",
        }
        if self._cfg.auth_header:
            headers["Authorization"] = self._cfg.auth_header
        if notification.alarm_id is not None:
            headers["X-Alarm-Id"] = notification.alarm_id
            headers["X-Alarm-Code"] = str(notification.code)
        if notification.state:
            headers["X-Alarm-State"] = notification.state
        return headers

    def notify(self, notification: AlarmNotification) -> None:
        """
        POST the notification payload, unless this webhook filters it out.

        Raises
        ------
        requests.HTTPError
            If the HTTP response status indicates an error.
        requests.RequestException
            For network-related errors.
        """
        if not self.accepts(notification):
            logger.debug("Webhook skips %s", notification.label)
            return

        r = requests.post(
            self._cfg.url,
            json=notification.payload,
            headers=self.headers(notification),
            timeout=self._cfg.timeout_s,
            verify=self._cfg.verify_tls,
        )
        r.raise_for_status()
