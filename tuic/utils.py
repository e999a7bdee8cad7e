"""Server helpers: congestion control and relay mode choices, certificate and key loading."""

from __future__ import annotations

import base64
import binascii
import enum
import os
import re
import string
from pathlib import Path
from typing import Iterator, List, Tuple, Union

__all__ = [
    "CongestionControl",
    "UdpRelayMode",
    "parse_congestion_control",
    "load_certs",
    "load_private_key",
]

PathLike = Union[str, "os.PathLike[str]"]


class UdpRelayMode(enum.Enum):
    """How UDP packets are relayed over the connection."""

    NATIVE = "native"
    QUIC = "quic"

    def __str__(self) -> str:
        return self.value


class CongestionControl(enum.Enum):
    """Congestion control algorithm used by the QUIC transport."""

    CUBIC = "cubic"
    NEW_RENO = "new_reno"
    BBR = "bbr"


_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)

_CONGESTION_NAMES = {
    "cubic": CongestionControl.CUBIC,
    "new_reno": CongestionControl.NEW_RENO,
    "newreno": CongestionControl.NEW_RENO,
    "bbr": CongestionControl.BBR,
}


def parse_congestion_control(text: str) -> CongestionControl:
    """Parse a congestion control name, ignoring ASCII case."""
    if not isinstance(text, str):
        raise TypeError("congestion control must be a string")
    try:
        return _CONGESTION_NAMES[text.translate(_ASCII_LOWER)]
    except KeyError:
        raise ValueError("invalid congestion control") from None


_PEM_BLOCK = re.compile(
    rb"-----BEGIN ([^\r\n]+?)-----(.*?)-----END ([^\r\n]+?)-----",
    re.DOTALL,
)

_CERT_LABELS = frozenset({"CERTIFICATE"})
_KEY_LABELS = frozenset({"RSA PRIVATE KEY", "PRIVATE KEY", "EC PRIVATE KEY"})


def _pem_items(data: bytes) -> Iterator[Tuple[str, bytes]]:
    """Yield ``(label, der)`` for each PEM block, stopping at the first malformed one."""
    for match in _PEM_BLOCK.finditer(data):
        begin, body, end = match.groups()
        if begin != end:
            return
        try:
            der = base64.b64decode(b"".join(body.split()), validate=True)
        except (binascii.Error, ValueError):
            return
        yield begin.decode("ascii", "replace"), der


def load_certs(path: PathLike) -> List[bytes]:
    """Load DER certificates from a PEM file, or the whole file if it holds none."""
    data = Path(path).read_bytes()
    certs = [der for label, der in _pem_items(data) if label in _CERT_LABELS]
    return certs or [data]


def load_private_key(path: PathLike) -> bytes:
    """Load the last RSA, PKCS#8 or EC private key of a PEM file.

    If the file holds no such key, its whole contents are returned.
    """
    data = Path(path).read_bytes()
    keys = [der for label, der in _pem_items(data) if label in _KEY_LABELS]
    return keys[-1] if keys else data