"""Background execution of Outrider's periodic tasks with Dramatiq."""

from __future__ import annotations
