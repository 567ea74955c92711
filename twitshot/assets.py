from __future__ import annotations

from functools import lru_cache
from pathlib import Path

ASSETS_DIR = Path(__file__).resolve().parent / "assets"


@lru_cache()
def read_text(name: str) -> str:
    return (ASSETS_DIR / name).read_text(encoding="utf-8")


@lru_cache()
def read_bytes(name: str) -> bytes:
    return (ASSETS_DIR / name).read_bytes()
