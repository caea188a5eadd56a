"""Static detection of token tax abuse in Solidity contracts."""

__version__ = "1.0.0"
