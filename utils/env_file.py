from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Iterator


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def parse_env_lines(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """
    Yield (key, value) pairs from `.env` style lines.
    Blank lines, `#` comments, lines without `=` and an `export ` prefix are handled.
    """
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        line = line.removeprefix("export ").lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        yield key, _unquote(value.strip())


def load_env_file(path: str | Path, *, override: bool = False) -> dict[str, str]:
    """
    Copy variables from a `.env` file into os.environ and return the ones applied.
    Existing variables win unless `override` is set. A missing file loads nothing.
    """
    env_path = Path(path)
    if not env_path.is_file():
        return {}

    applied: dict[str, str] = {}
    lines = env_path.read_text(encoding="utf-8").splitlines()
    for key, value in parse_env_lines(lines):
        if override or key not in os.environ:
            os.environ[key] = value
            applied[key] = value
    return applied
