"""
Decoded-frame projection used by the query classifiers.

A captured packet is reduced to the two things classification needs: the DNS
message carried in its UDP payload (if any) and the IPv4 source address (if
any). Decoding is total: anything that does not parse as DNS simply yields a
frame without a DNS message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from dnslib import OPCODE, DNSError, DNSRecord
from scapy.layers.inet import IP, UDP

logger = logging.getLogger(__name__)

OPCODE_QUERY = OPCODE.QUERY


@dataclass(frozen=True)
class DnsQuestion:
    """A single question entry: textual name (verbatim) and numeric qtype."""

    name: str
    qtype: int


@dataclass(frozen=True)
class DnsMessage:
    """
    Header fields and question list of a decoded DNS message.

    Inputs (constructor):
        opcode: Header opcode (0 == QUERY)
        is_response: True when the QR bit is set
        questions: Questions in wire order

    Example:
        >>> msg = DnsMessage(opcode=0, is_response=False, questions=())
        >>> msg.is_query
        True
    """

    opcode: int
    is_response: bool
    questions: Tuple[DnsQuestion, ...] = ()

    @property
    def is_query(self) -> bool:
        return self.opcode == OPCODE_QUERY and not self.is_response


@dataclass(frozen=True)
class Frame:
    """A captured frame as seen by the classifiers."""

    dns: Optional[DnsMessage] = None
    source: Optional[str] = None


def decode_dns(payload: bytes) -> Optional[DnsMessage]:
    """Decode raw DNS wire bytes into a DnsMessage.

    Inputs:
        payload: UDP payload bytes.

    Outputs:
        DnsMessage, or None when the payload is not a decodable DNS message.

    Example:
        >>> msg = decode_dns(DNSRecord.question("example.com").pack())
        >>> msg.questions[0].name
        'example.com.'
    """
    if not payload:
        return None
    try:
        record = DNSRecord.parse(payload)
        questions = tuple(
            DnsQuestion(name=str(q.qname), qtype=int(q.qtype))
            for q in record.questions
        )
    except DNSError:
        return None
    except Exception as exc:  # pragma: nocover malformed labels or rdata
        logger.debug("Failed to decode DNS payload: %s", exc)
        return None

    return DnsMessage(
        opcode=int(record.header.opcode),
        is_response=bool(record.header.qr),
        questions=questions,
    )


def frame_from_packet(packet: Any) -> Frame:
    """Project a scapy packet onto a Frame.

    Inputs:
        packet: scapy Packet as delivered by a sniffer.

    Outputs:
        Frame with ``source`` set for IPv4 packets and ``dns`` set when the UDP
        payload decodes as DNS.
    """
    source: Optional[str] = None
    if packet.haslayer(IP):
        source = str(packet[IP].src)

    dns: Optional[DnsMessage] = None
    if packet.haslayer(UDP):
        dns = decode_dns(bytes(packet[UDP].payload))

    return Frame(dns=dns, source=source)
