"""Replay of recorded sensor sessions stored as JSON lines."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator

from .packets import Packet, parse_payload

logger = logging.getLogger(__name__)


def iter_replay(path: str) -> Iterator[Packet]:
    """Yield packets in file order; blank lines and ``#`` comments are skipped."""
    p = Path(path)
    if not p.is_file():
        raise ValueError(f"replay file not found: {p}")

    skipped = 0
    with p.open("r", encoding="utf-8") as fh:
        for lineno, raw_line in enumerate(fh, start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                payload = None
            packet = parse_payload(payload) if payload is not None else None
            if packet is None:
                skipped += 1
                logger.warning("[REPLAY] %s:%d: skipped malformed packet", p, lineno)
                continue
            yield packet

    if skipped:
        logger.info("[REPLAY] %s: %d malformed line(s) skipped", p, skipped)
