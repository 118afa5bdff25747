"""
VaultSync - git-backed synchronization engine for a local document vault.

Keeps a directory of documents committed, pulled and pushed on a schedule,
reports conflicts for manual resolution, and relocates the directory safely.
"""

__version__ = "1.0.0"
__author__ = "VaultSync Team"
__description__ = "Git-backed synchronization engine for local document vaults"


def main():
    """Run the MCP server (imported lazily so the engine works without starting it)."""
    from .server import main as server_main
    server_main()


__all__ = ["main"]
