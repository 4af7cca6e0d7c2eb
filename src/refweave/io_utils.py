"""I/O utilities for JSON files and document text.

orjson-backed JSON load/save used by the CLI and by TemplateData loading.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def dump_json(obj: Any, *, pretty: bool = True) -> bytes:
    """Serialize ``obj`` to JSON bytes; keys sorted, non-ASCII kept as-is."""
    opts = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS if pretty else orjson.OPT_SORT_KEYS
    return orjson.dumps(obj, option=opts)


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(dump_json(obj, pretty=pretty))


def read_document(path: Path) -> str:
    """Read a wikitext document as UTF-8, keeping line endings untouched."""
    return path.read_bytes().decode("utf-8")


def write_document(text: str, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))
