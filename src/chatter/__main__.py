"""chatter CLI bootstrap."""

from __future__ import annotations

from chatter.cli import app

if __name__ == "__main__":
    app()
