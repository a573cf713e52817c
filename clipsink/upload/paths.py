"""Choosing where an upload is stored.

Files land at ``{target_dir}/[{subdir}/]{stem}[_{n}]{suffix}``:

- ``subdir`` comes from the ``subdir`` named group of the configured
  regex, when subdirectory classification is enabled and it matches.
- ``_{n}`` is appended (n = 0, 1, 2, ...) only when the plain name is
  already taken.

Selection is check-then-create: two requests resolving the same name at
the same moment can both pick it, and the later write wins. Callers that
need strict uniqueness enable ``serialize_path_selection`` and hold the
lock from ``PathLocks.lock_for()`` until the file has been created.
"""
import logging
import re
import threading
from pathlib import Path
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from ..config import ClipsinkConfig
from .schemas import UNNAMED_FILENAME

logger = logging.getLogger(__name__)

SUBDIR_CAPTURE_NAME = "subdir"


class SubdirectoryClassifier:
    """Compiles the subdirectory regex once, on first use, and caches it.

    A pattern that fails to compile is logged and remembered, so every
    request after that simply skips classification.
    """

    def __init__(self, pattern: str) -> None:
        self._pattern = pattern
        self._compiled: Optional[re.Pattern] = None
        self._failed = False
        self._lock = threading.Lock()

    @property
    def pattern(self) -> str:
        return self._pattern

    def regex(self) -> Optional[re.Pattern]:
        if self._compiled is not None or self._failed:
            return self._compiled
        with self._lock:
            if self._compiled is None and not self._failed:
                try:
                    self._compiled = re.compile(self._pattern)
                except re.error as exc:
                    logger.error(
                        "Failed to compile subdirectory calculation regex %r: %s",
                        self._pattern,
                        exc,
                    )
                    self._failed = True
        return self._compiled

    def classify(self, filename: str) -> Optional[str]:
        """Return the ``subdir`` capture for ``filename``, if any."""
        regex = self.regex()
        if regex is None:
            return None
        match = regex.search(filename)
        if match is None or SUBDIR_CAPTURE_NAME not in regex.groupindex:
            return None
        subdir = match.group(SUBDIR_CAPTURE_NAME)
        if not subdir or subdir in (".", "..") or "/" in subdir or "\\" in subdir:
            return None
        return subdir


class PathLocks:
    """One lock per target directory, handed out on demand."""

    def __init__(self) -> None:
        self._locks: Dict[Path, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, directory: Path) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(directory)
            if lock is None:
                lock = self._locks[directory] = threading.Lock()
            return lock


def _safe_name(filename: str) -> Path:
    return Path(Path(filename).name or UNNAMED_FILENAME)


def _candidate_name(base: Path, suffix_number: int) -> str:
    return f"{base.stem}_{suffix_number}{base.suffix}"


class TargetPathResolver:
    """Derives the on-disk destination for an upload.

    Args:
        config: Loaded configuration; only read, never modified.
        classifier: Shared classifier for ``config.subdirectory_regex``.
        exists: Existence check, replaceable for tests.
        locks: Optional per-directory locks used by ``reserve``.
    """

    def __init__(
        self,
        config: ClipsinkConfig,
        classifier: SubdirectoryClassifier,
        exists: Callable[[Path], bool] = Path.exists,
        locks: Optional[PathLocks] = None,
    ) -> None:
        self._config = config
        self._classifier = classifier
        self._exists = exists
        self._locks = locks

    def target_directory(self, filename: str) -> Optional[Path]:
        """Return the (created) directory an upload belongs in, or None."""
        if self._config.target_dir is None:
            return None

        directory = Path(self._config.target_dir)
        if self._config.enable_subdirectories:
            subdir = self._classifier.classify(filename)
            if subdir:
                directory = directory / subdir

        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create nonexistent directory %s: %s", directory, exc)
            return None
        return directory

    def resolve(self, filename: str) -> Optional[Path]:
        """Pick a path for ``filename`` that does not exist yet.

        Returns None when persistence is disabled or the directory could
        not be created; the upload is then kept in a temporary file only.
        """
        base = _safe_name(filename)
        directory = self.target_directory(base.name)
        if directory is None:
            return None
        return self._first_free(directory, base)

    @contextmanager
    def reserve(self, filename: str) -> Iterator[Optional[Path]]:
        """Like ``resolve``, holding the directory lock while the block runs.

        Without ``locks`` this is exactly ``resolve`` and keeps its race.
        """
        base = _safe_name(filename)
        directory = self.target_directory(base.name)
        if directory is None:
            yield None
        elif self._locks is None:
            yield self._first_free(directory, base)
        else:
            with self._locks.lock_for(directory):
                yield self._first_free(directory, base)

    def _first_free(self, directory: Path, base: Path) -> Path:
        target = directory / base
        suffix_number = 0
        while self._exists(target):
            target = directory / _candidate_name(base, suffix_number)
            suffix_number += 1

        logger.debug("Resolved target path for %r: %s", base.name, target)
        return target
