from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass, field
from typing import Iterator, Optional

from bbalarms.domain.messages import CommandMessage, PeerMessage
from bbalarms.transport.ndjson import decode_message, encode_command

logger = logging.getLogger(__name__)

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 9010
DEFAULT_TIMEOUT_S: float = 5.0


@dataclass
class TCPNDJSONClient:
    """
    TCP client exchanging NDJSON messages with a peer alarms service.

    This transport adapter connects to a peer and:
    - yields raw NDJSON lines via :meth:`lines`
    - yields decoded peer messages via :meth:`messages`
    - sends commands via :meth:`send_command`

    Notes
    -----
    - This class is an infrastructure component. It does not decide alarm
      states; the remote raiser interprets what it receives.
    - Error handling in :meth:`messages` is tolerant: malformed lines are
      logged and skipped.
    - Sends may come from another thread than the receive loop; a lock
      serialises writes.

    Parameters
    ----------
    host
        Peer host address.
    port
        Peer TCP port.
    timeout_s
        Connection timeout (seconds) used for the initial connect only.
    source
        Peer name stamped on decoded messages that do not carry one.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout_s: float = DEFAULT_TIMEOUT_S
    source: Optional[str] = None

    _sock: Optional[socket.socket] = None
    _send_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        """
        Open a TCP connection to the configured host/port.

        A timeout is applied for the connect operation; afterwards the socket
        is switched to blocking mode for continuous streaming.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(self.timeout_s)
        sock.connect((self.host, self.port))
        sock.settimeout(None)
        self._sock = sock
        logger.info("Connected to peer %s at %s:%s", self.source, self.host, self.port)

    def lines(self) -> Iterator[str]:
        """
        Yield complete NDJSON lines from the socket stream.

        Raises
        ------
        RuntimeError
            If called before :meth:`connect`.
        ConnectionError
            If the remote side closes the connection.
        """
        if not self._sock:
            raise RuntimeError("Not connected")

        buf = b""
        while True:
            chunk = self._sock.recv(4096)
            if not chunk:
                raise ConnectionError("Peer closed connection")
            buf += chunk

            while b"\n" in buf:
                line, buf = buf.split(b"\n", 1)
                s = line.decode("utf-8").strip()
                if s:
                    yield s

    def messages(self) -> Iterator[PeerMessage]:
        """
        Yield decoded peer messages; malformed lines are logged and skipped.
        """
        for line in self.lines():
            try:
                yield decode_message(line, self.source)
            except (ValueError, KeyError, TypeError):
                logger.warning("Bad line from peer %s: %r", self.source, line[:200])
                continue

    def send_line(self, line: str) -> None:
        """
        Send one already-encoded NDJSON line.

        Raises
        ------
        ConnectionError
            If not connected.
        """
        sock = self._sock
        if sock is None:
            raise ConnectionError(f"Not connected to peer {self.source}")
        if not line.endswith("\n"):
            line += "\n"
        with self._send_lock:
            sock.sendall(line.encode("utf-8"))

    def send_command(self, cmd: CommandMessage) -> None:
        self.send_line(encode_command(cmd))

    def close(self) -> None:
        """
        Close the underlying socket if open. Close errors are logged at
        debug level since this is a shutdown path.
        """
        if self._sock:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug("Error closing peer socket: %r", e)
            self._sock = None
