from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from bbalarms.core.alarm.raisers import RemoteAlarmRaiser
from bbalarms.domain.messages import CommandMessage
from bbalarms.transport.tcp_client import TCPNDJSONClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeerLinkConfig:
    """
    Configuration for one peer link.

    Parameters
    ----------
    source
        Peer service name (matches ``AlarmDefinition.source``).
    host
        Peer host.
    port
        Peer port.
    reconnect_delay_s
        Delay in seconds between reconnect attempts after a failure.
    connect_timeout_s
        TCP connect timeout (seconds) used during the connect phase.
    """

    source: str
    host: str
    port: int
    reconnect_delay_s: float = 2.0
    connect_timeout_s: float = 5.0


class PeerLinkThread:
    """
    Dedicated I/O thread that keeps the connection to one peer service.

    Responsibilities
    ----------------
    - Own and manage the TCP connection lifecycle.
    - Auto-reconnect on failures until stopped.
    - Tell the remote raiser when the peer goes online / offline (online
      triggers an ``alarm-status`` request).
    - Hand every decoded message to the remote raiser.
    - Send commands on behalf of the raiser (:meth:`send_command`).

    Stop Behavior
    -------------
    :meth:`stop` sets the stop event and closes the socket to break any
    blocking receive.
    """

    def __init__(
        self,
        cfg: PeerLinkConfig,
        raiser: RemoteAlarmRaiser,
        stop_event: threading.Event,
    ):
        self._cfg = cfg
        self._raiser = raiser
        self._stop = stop_event
        self._thread = threading.Thread(target=self._run, name=f"peer-link-{cfg.source}", daemon=True)
        self._client: Optional[TCPNDJSONClient] = None
        raiser.send_command = self.send_command

    @property
    def source(self) -> str:
        return self._cfg.source

    def start(self) -> None:
        """
        Start the link thread if not already running.
        """
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        client = self._client
        if client:
            client.close()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def send_command(self, cmd: CommandMessage) -> None:
        """
        Send a command to the peer.

        Raises
        ------
        ConnectionError
            If the peer is not connected.
        """
        client = self._client
        if client is None or not client.is_connected:
            raise ConnectionError(f"Peer {self._cfg.source} not connected")
        client.send_command(cmd)

    def _run(self) -> None:
        """
        Connection loop: connect, announce online, receive, reconnect on errors.
        """
        while not self._stop.is_set():
            try:
                self._client = TCPNDJSONClient(
                    host=self._cfg.host,
                    port=self._cfg.port,
                    timeout_s=self._cfg.connect_timeout_s,
                    source=self._cfg.source,
                )
                self._client.connect()
                self._raiser.on_connection_changed(True)

                for msg in self._client.messages():
                    if self._stop.is_set():
                        break
                    self._raiser.handle_message(msg)

            except (OSError, RuntimeError) as e:
                if self._stop.is_set():
                    break
                logger.warning("Peer %s connection/recv error: %r", self._cfg.source, e)

            finally:
                if self._client:
                    self._client.close()
                self._client = None

            if self._stop.is_set():
                break
            self._raiser.on_connection_changed(False)
            self._stop.wait(self._cfg.reconnect_delay_s)
