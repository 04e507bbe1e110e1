"""Entry point for `python -m kubesnap`.

Usage:
    python -m kubesnap collect
    python -m kubesnap serve
"""

from __future__ import annotations

from kubesnap.cli import cli

cli()
