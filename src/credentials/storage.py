"""File helpers shared by the certificate store and the disk ticket cache."""

import json
import os
from pathlib import Path
from typing import Any

SECRET_FILE_MODE = 0o600


def atomic_write(path: Path, data: bytes, mode: int | None = None) -> None:
    """Write ``data`` to ``path`` so readers see either the old or the new file."""
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "wb") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())
    if mode is not None:
        os.chmod(tmp_path, mode)
    os.replace(tmp_path, path)


def write_json(path: Path, document: dict[str, Any], mode: int | None = None) -> None:
    atomic_write(path, json.dumps(document, indent=2).encode("utf-8"), mode=mode)


def read_json(path: Path) -> dict[str, Any]:
    """Read a JSON object.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content is not a JSON object.
    """
    document = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(document, dict):
        raise ValueError(f"{path.name} does not contain a JSON object")
    return document
