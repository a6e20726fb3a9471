"""Citation resolution and atomic persistence for generated news digests."""

__version__ = "0.1.0"
