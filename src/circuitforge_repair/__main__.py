"""Module entrypoint for ``python -m circuitforge_repair``."""

from __future__ import annotations

from circuitforge_repair.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
