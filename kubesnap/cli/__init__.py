"""kubesnap command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubesnap`` script).
"""

from kubesnap.cli.main import cli

__all__ = ["cli"]
