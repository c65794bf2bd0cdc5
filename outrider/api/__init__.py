"""Operational HTTP surface: health probes and registry administration."""

from __future__ import annotations

from outrider.api.app import AppDependencies, create_app

__all__ = ["AppDependencies", "create_app"]
