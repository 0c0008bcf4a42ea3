"""
Dataset Sync - keeps a local versioned dataset converged with a remote peer.

This package computes repository status, negotiates authentication and drives
pull/resolve/sync over git, with an MCP server exposing those operations.
"""

__version__ = "1.0.0"
__description__ = "Dataset synchronization over git"

from .server import main

__all__ = ["main"]
