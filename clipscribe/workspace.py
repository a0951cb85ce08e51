"""Run-scoped working directory that owns every file a pipeline run creates."""

import logging
import shutil
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_RUN_ID_LENGTH = 255


def is_valid_run_id(run_id: str) -> bool:
    """Check that a run id is usable as a single directory name."""
    if not run_id or not isinstance(run_id, str):
        return False
    if ".." in run_id or "/" in run_id or "\\" in run_id or "\0" in run_id:
        return False
    return len(run_id) <= MAX_RUN_ID_LENGTH


class RunWorkspace:
    """Directory keyed by a run id plus the list of paths created in it.

    Cleanup removes every tracked path and the directory itself, exactly once,
    whatever way the run ends. Removal failures are logged and never raised.
    """

    def __init__(self, root: Path, run_id: str | None = None):
        run_id = run_id or uuid.uuid4().hex
        if not is_valid_run_id(run_id):
            raise ValueError(f"Invalid run id: {run_id!r}")

        self.run_id = run_id
        self.root = Path(root)
        self.directory = self.root / run_id
        self._paths: list[Path] = []
        self._cleaned = False

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(self._paths)

    @property
    def cleaned(self) -> bool:
        return self._cleaned

    def create(self) -> Path:
        """Create the run directory."""
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.debug("Created run workspace %s", self.directory)
        return self.directory

    def path_for(self, name: str) -> Path:
        """Return a tracked path for ``name`` inside the run directory."""
        path = self.directory / name
        self.track(path)
        return path

    def track(self, path: Path) -> None:
        """Register a path for deletion at cleanup."""
        path = Path(path)
        if path not in self._paths:
            self._paths.append(path)

    def cleanup(self) -> None:
        """Delete tracked files and the run directory (best effort, once)."""
        if self._cleaned:
            return
        self._cleaned = True

        for path in self._paths:
            try:
                if path.exists():
                    path.unlink()
                    logger.debug("Deleted temporary file: %s", path)
            except Exception as e:
                logger.warning("Error deleting temp file %s: %s", path, e)

        if self.directory.exists():
            try:
                shutil.rmtree(self.directory)
                logger.debug("Removed run workspace %s", self.directory)
            except Exception as e:
                logger.warning("Error removing workspace %s: %s", self.directory, e)

    def __enter__(self) -> "RunWorkspace":
        self.create()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    async def __aenter__(self) -> "RunWorkspace":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
