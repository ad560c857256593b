"""Filesystem helpers for the PUPU client."""

from __future__ import annotations

from pathlib import Path


def project_root() -> Path:
    """Return the repository root."""
    return Path(__file__).resolve().parents[3]


def config_dir() -> Path:
    """Directory storing local configuration."""
    root = project_root() / "desktop" / "pupu_client" / "config"
    root.mkdir(parents=True, exist_ok=True)
    return root
