"""Live capture adapter: a scapy sniffer feeding decoded frames to a callback."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from scapy.config import conf
from scapy.error import Scapy_Exception
from scapy.sendrecv import AsyncSniffer

from .frames import Frame, frame_from_packet

logger = logging.getLogger(__name__)

CAPTURE_FILTER = "udp and dst port 53"


class CaptureError(RuntimeError):
    """Raised when the capture device or filter cannot be set up."""


class PacketCapture:
    """
    Sniff DNS-bound UDP traffic on one interface.

    Inputs (constructor):
        interface: Interface name to capture on
        on_frame: Callable invoked with a Frame for every captured packet
        packet_filter: BPF filter expression (default CAPTURE_FILTER)

    The listening socket is opened synchronously in start() so that device and
    filter errors surface as CaptureError before any frame is consumed. Frames
    are delivered on the sniffer thread.
    """

    def __init__(
        self,
        interface: str,
        on_frame: Callable[[Frame], None],
        packet_filter: str = CAPTURE_FILTER,
    ) -> None:
        self.interface = interface
        self.on_frame = on_frame
        self.packet_filter = packet_filter
        self._socket: Optional[Any] = None
        self._sniffer: Optional[AsyncSniffer] = None

    def _open_socket(self) -> Any:
        try:
            return conf.L2listen(iface=self.interface, filter=self.packet_filter)
        except (OSError, Scapy_Exception) as exc:
            raise CaptureError(
                f"cannot capture on {self.interface!r} "
                f"with filter {self.packet_filter!r}: {exc}"
            ) from exc

    def _handle_packet(self, packet: Any) -> None:
        try:
            self.on_frame(frame_from_packet(packet))
        except Exception:
            logger.debug("Dropping frame that failed processing", exc_info=True)

    def start(self) -> None:
        """Open the capture socket and start sniffing in the background.

        Raises:
          - CaptureError: when the interface cannot be opened or the filter
            does not compile.
        """
        if self._sniffer is not None:
            raise RuntimeError("capture already started")

        self._socket = self._open_socket()
        self._sniffer = AsyncSniffer(
            opened_socket=self._socket,
            prn=self._handle_packet,
            store=False,
        )
        self._sniffer.start()
        logger.info(
            "Capturing on interface %r with filter %r",
            self.interface,
            self.packet_filter,
        )

    @property
    def is_running(self) -> bool:
        sniffer = self._sniffer
        if sniffer is None or sniffer.thread is None:
            return False
        return sniffer.thread.is_alive()

    def stop(self) -> None:
        """Stop sniffing and close the socket; safe to call more than once."""
        sniffer, self._sniffer = self._sniffer, None
        sock, self._socket = self._socket, None

        if sniffer is not None and sniffer.running:
            try:
                sniffer.stop(join=True)
            except Scapy_Exception:
                logger.debug("Sniffer already stopped", exc_info=True)

        if sock is not None:
            try:
                sock.close()
            except OSError:
                logger.debug("Error closing capture socket", exc_info=True)
