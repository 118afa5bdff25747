#!/usr/bin/env python3
"""
VaultSync MCP Server

Git-backed synchronization for a local document vault, exposed as MCP tools
over stdio.
"""

from vaultsync.server import main


if __name__ == "__main__":
    main()
