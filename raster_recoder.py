"""Convenience launcher for running the recoder from a source checkout.

Allows ``python raster_recoder.py ...`` from the repository root without
installing the package; the implementation lives in
``raster_recoder.cli``.
"""
from __future__ import annotations

from raster_recoder.cli import main


if __name__ == "__main__":  # pragma: no cover - exercised via integration test
    raise SystemExit(main())
