"""On-disk cache of the last assembled configuration document."""

from __future__ import annotations

import asyncio
from pathlib import Path

from vantage_controller.logging_abstraction import get_logger

__all__ = ["ConfigurationCache"]

logger = get_logger(__name__)


class ConfigurationCache:
    """Reads and writes the configuration document verbatim.

    ``load`` tries the primary path first, then each fallback path in order.
    ``save`` always writes the primary path.
    """

    lp: str = "cache:"

    def __init__(self, path: str | Path, fallback_paths: tuple[str | Path, ...] = ()) -> None:
        self.path = Path(path).expanduser()
        self.fallback_paths = tuple(Path(p).expanduser() for p in fallback_paths)

    def _read(self) -> str | None:
        lp = f"{self.lp}load:"
        for candidate in (self.path, *self.fallback_paths):
            if not candidate.is_file():
                continue
            try:
                with candidate.open("r", encoding="utf-8") as f:
                    document = f.read()
            except OSError:
                logger.exception("%s Failed to read cached configuration: %s", lp, candidate.as_posix())
                continue
            if document.strip():
                logger.info("%s Using cached configuration from %s", lp, candidate.as_posix())
                return document
            logger.warning("%s Ignoring empty cache file %s", lp, candidate.as_posix())
        return None

    def _write(self, document: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            _ = f.write(document)

    async def load(self) -> str | None:
        """Return the cached document, or None when no usable cache file exists."""
        return await asyncio.to_thread(self._read)

    async def save(self, document: str) -> bool:
        lp = f"{self.lp}save:"
        try:
            await asyncio.to_thread(self._write, document)
        except OSError:
            logger.exception("%s Failed to write configuration cache", lp)
            return False
        else:
            logger.info("%s Configuration cache written to %s", lp, self.path.as_posix())
            return True

    def clear(self) -> None:
        """Remove the primary cache file so the next run asks the controller."""
        lp = f"{self.lp}clear:"
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("%s %s", lp, e)
