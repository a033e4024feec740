"""Hooks through which a run reports its progress without doing any output itself."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .config import EffectiveConfig
from .domain import Code, ItemResult


class Observer:
    """Receives run events; every hook does nothing unless a subclass overrides it.

    The runner calls the hooks from the thread that drives the run. Durations
    are in seconds.
    """

    def on_start(self, eff: EffectiveConfig) -> None:
        """Called as early as possible when a run starts."""

    def on_phase_done(self, name: str, fields: Mapping[str, Any], duration: float) -> None:
        """Called when a phase (scan, group, plan, exec) is finished or ready."""

    def on_item_done(
        self, idx: int, total: int, code: Code, result: ItemResult, duration: float
    ) -> None:
        """Called each time one code has been processed; ``idx`` counts from 1."""

    def on_progress(
        self,
        done: int,
        total: int,
        ok: int,
        fail: int,
        skip: int,
        active: int,
        active_codes: Sequence[str],
        elapsed: float,
    ) -> None:
        """Keepalive progress; the runner itself never calls it."""