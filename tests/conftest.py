"""
Brief: Global pytest configuration: src on sys.path, per-test 10s timeout, and
packet/frame builders shared by the dnstally tests.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'dnstally' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from dnslib import DNSHeader, DNSQuestion, DNSRecord, QTYPE  # noqa: E402
from scapy.layers.inet import IP, UDP  # noqa: E402
from scapy.packet import Raw  # noqa: E402

from dnstally.frames import DnsMessage, DnsQuestion, Frame  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


def build_dns_payload(*names, qtype="A", response=False, opcode=0):
    """
    Brief: Build DNS wire bytes with one question per name.

    Inputs:
      - names: question names (e.g. "example.com")
      - qtype: record type name applied to every question, or a list of names
      - response: set the QR bit (build a reply)
      - opcode: header opcode (0 QUERY, 5 UPDATE, ...)

    Outputs:
      - bytes
    """
    qtypes = qtype if isinstance(qtype, (list, tuple)) else [qtype] * len(names)
    record = DNSRecord(DNSHeader(id=4242, opcode=opcode, rd=1))
    for name, qt in zip(names, qtypes):
        record.add_question(DNSQuestion(name, getattr(QTYPE, qt)))
    if response:
        record = record.reply()
    return record.pack()


def build_query_packet(*names, src="10.0.0.1", **kwargs):
    """
    Brief: Build a scapy IPv4/UDP packet to port 53 carrying a DNS message.

    Inputs:
      - names: question names
      - src: IPv4 source address
      - kwargs: forwarded to build_dns_payload

    Outputs:
      - scapy Packet
    """
    return (
        IP(src=src, dst="192.0.2.53")
        / UDP(sport=40000, dport=53)
        / Raw(load=build_dns_payload(*names, **kwargs))
    )


def make_frame(*names, source="10.0.0.1", qtype=1, response=False, opcode=0):
    """
    Brief: Build a Frame directly, bypassing wire decoding.

    Inputs:
      - names: question names, verbatim (include trailing dots as needed)
      - source: IPv4 source or None
      - qtype: numeric qtype applied to every question, or a list of them

    Outputs:
      - Frame
    """
    qtypes = qtype if isinstance(qtype, (list, tuple)) else [qtype] * len(names)
    questions = tuple(DnsQuestion(n, t) for n, t in zip(names, qtypes))
    return Frame(
        dns=DnsMessage(opcode=opcode, is_response=response, questions=questions),
        source=source,
    )


@pytest.fixture
def dns_payload():
    """Brief: Factory fixture returning build_dns_payload."""
    return build_dns_payload


@pytest.fixture
def query_packet():
    """Brief: Factory fixture returning build_query_packet."""
    return build_query_packet


@pytest.fixture
def frame():
    """Brief: Factory fixture returning make_frame."""
    return make_frame
