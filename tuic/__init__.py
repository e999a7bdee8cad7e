"""TUIC protocol headers, codec, UDP fragment reassembly, connection model and server configuration."""

__version__ = "0.1.0"

__all__ = ["assembly", "authenticated", "codec", "config", "model", "protocol", "utils"]