"""
Artifact persistence for screenshots, DOM dumps and reports.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from browser_control.core.errors import ToolExecutionError

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Writes byte payloads under a single output directory."""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir).resolve()

    def resolve_path(self, filename: str, subdir: Optional[str] = None) -> Path:
        """Resolve a target path, refusing anything outside the output directory."""
        base = self.output_dir / subdir if subdir else self.output_dir
        target = (base / filename).resolve()
        if target != self.output_dir and self.output_dir not in target.parents:
            raise ToolExecutionError(
                f"Path escapes the output directory: {filename}",
                {"filename": filename, "output_dir": str(self.output_dir)},
            )
        return target

    def save(self, payload: bytes, filename: str, subdir: Optional[str] = None) -> Path:
        """Write payload and return the absolute path written."""
        target = self.resolve_path(filename, subdir)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as e:
            raise ToolExecutionError(f"Failed to write {target}: {e}", {"path": str(target)}) from e
        logger.info(f"Saved artifact: {target} ({len(payload)} bytes)")
        return target
