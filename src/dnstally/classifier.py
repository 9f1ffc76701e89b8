"""
Query classifiers: decide whether a frame is a countable A-record query and
pick the key it is counted under.

Two variants share one contract, ``classify(frame) -> (key, ok)``; one is
selected at startup by build_classifier() and used unchanged for the life of
the process.
"""

from __future__ import annotations

from typing import Iterator, Optional, Tuple

from dnslib import QTYPE

from .frames import DnsQuestion, Frame

QTYPE_A = QTYPE.A

_REJECT: Tuple[str, bool] = ("", False)


def _a_questions(frame: Frame) -> Iterator[DnsQuestion]:
    """Yield A-type questions of a DNS query frame, in question order."""
    msg = frame.dns
    if msg is None or not msg.is_query:
        return
    for question in msg.questions:
        if question.qtype == QTYPE_A:
            yield question


class HostnameClassifier:
    """
    Count queries by the queried hostname.

    The key is the name of the first A-type question, taken verbatim (no case
    folding, trailing dot kept).

    Example:
        >>> from dnstally.frames import DnsMessage, DnsQuestion, Frame
        >>> q = DnsQuestion("example.com.", 1)
        >>> HostnameClassifier().classify(Frame(dns=DnsMessage(0, False, (q,))))
        ('example.com.', True)
    """

    mode = "hostname"

    def classify(self, frame: Frame) -> Tuple[str, bool]:
        for question in _a_questions(frame):
            return question.name, True
        return _REJECT


class SourceClassifier:
    """
    Count queries for one target hostname by IPv4 source address.

    Every A-type question in the frame must equal the target exactly; a single
    mismatching question rejects the whole frame, even when another question
    matches.

    Inputs (constructor):
        target: Hostname compared verbatim against question names.
    """

    mode = "source"

    def __init__(self, target: str) -> None:
        self.target = target

    def classify(self, frame: Frame) -> Tuple[str, bool]:
        if frame.source is None:
            return _REJECT

        matched = False
        for question in _a_questions(frame):
            if question.name != self.target:
                return _REJECT
            matched = True

        if not matched:
            return _REJECT
        return frame.source, True


def build_classifier(target_hostname: Optional[str] = None):
    """Select the classifier variant for the configured mode.

    Inputs:
        target_hostname: When set, count sources querying this hostname;
            otherwise count hostnames.

    Outputs:
        HostnameClassifier or SourceClassifier instance.
    """
    if target_hostname:
        return SourceClassifier(target_hostname)
    return HostnameClassifier()
