"""Atomic file writes shared by the routing and state backends."""

import os
from pathlib import Path

from tenacity import retry, stop_after_attempt, wait_exponential


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, max=1),
    reraise=True,
)
def write_file_atomic(path: str | Path, data: bytes) -> None:
    """Write data to file atomically using temporary file + rename.

    A reader either sees the previous content or the new content, never a
    partial write. Transient ``OSError``s are retried three times.
    """
    path = Path(path)
    temp_path = path.with_name(f"{path.name}.tmp")
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
