from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


def _parse_line(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export ") :].lstrip()
    if "=" not in line:
        return None

    key, value = line.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def load_dotenv(
    paths: Iterable[str | Path] = (".env", ".dev.vars"),
    *,
    override: bool = False,
) -> list[Path]:
    """
    Load local env files into os.environ; returns the files that were read.

    - `.dev.vars` is the file the wiki's local worker setup keeps secrets in.
    - Real environment variables win unless `override` is set.
    - Never logs values (these files hold the bot token).
    """
    loaded: list[Path] = []
    for path in paths:
        env_path = Path(path)
        if not env_path.is_file():
            continue
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_line(raw_line)
            if parsed is None:
                continue
            key, value = parsed
            if not override and key in os.environ:
                continue
            os.environ[key] = value
        loaded.append(env_path)
        logger.debug("Loaded environment from %s", env_path)
    return loaded
