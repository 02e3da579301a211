# replacer.py — crash-safe replacement of the embryo core on disk

import os
import time
import shutil
import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from errors import IntegrityError, ReplaceError, describe_error
from integrity import IntegrityMarker, missing_markers

logger = logging.getLogger(__name__)

# Fixed for the lifetime of the process so every reference to "the backup"
# during one run resolves to the same file.
BACKUP_SUFFIX = f".backup.{int(time.time() * 1000)}"

PathLike = Union[str, os.PathLike]


def _write_synced(path: Path, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())


class AtomicFileReplacer:
    """
    Replace a file by writing a sibling temp file, validating the content,
    moving the old file aside as a backup and renaming the temp file into
    place. Any failure puts the backup back and re-raises.

    The temp file lives in the target's directory so the final rename never
    crosses a filesystem boundary.
    """

    def __init__(
        self,
        backup_suffix: str = BACKUP_SUFFIX,
        markers: Optional[Iterable[IntegrityMarker]] = None
    ):
        self.backup_suffix = backup_suffix
        self.markers = list(markers) if markers is not None else None

    def backup_path(self, target: PathLike) -> Path:
        return Path(f"{target}{self.backup_suffix}")

    def temp_path(self, target: PathLike) -> Path:
        return Path(f"{target}.tmp.{int(time.time() * 1000)}")

    def _write_temp(self, tmp: Path, content: str, target: Path) -> None:
        try:
            _write_synced(tmp, content)
            if target.exists():
                shutil.copymode(target, tmp)
        except OSError as e:
            raise ReplaceError(f"Failed to write temp file {tmp}: {e}") from e

    def _validate(self, content: str) -> None:
        missing = missing_markers(content, self.markers)
        if missing:
            raise IntegrityError(
                f"Generated code failed integrity validation (missing: {', '.join(missing)})",
                missing=missing
            )

    def _backup(self, target: Path, backup: Path) -> bool:
        if not target.exists():
            return False
        if backup.exists():
            logger.warning(f"[REPLACE] Overwriting earlier backup {backup} from this run")
        try:
            os.replace(target, backup)
        except OSError as e:
            raise ReplaceError(f"Failed to back up {target} to {backup}: {e}") from e
        return True

    def _commit(self, tmp: Path, target: Path) -> None:
        try:
            os.replace(tmp, target)
        except OSError as e:
            raise ReplaceError(f"Failed to move {tmp} into place at {target}: {e}") from e

    def replace(self, content: str, target_path: PathLike) -> Optional[Path]:
        """
        Atomically replace `target_path` with `content`.

        Returns the backup path when a previous file was moved aside, None when
        the target did not exist. Raises IntegrityError or ReplaceError after
        rolling back.
        """
        target = Path(target_path)
        tmp = self.temp_path(target)
        backup = self.backup_path(target)
        backed_up = False

        try:
            self._write_temp(tmp, content, target)
            self._validate(content)
            backed_up = self._backup(target, backup)
            self._commit(tmp, target)
        except Exception as e:
            logger.error(f"[REPLACE] File update failed: {describe_error(e)}")
            self._quarantine_temp(tmp)
            if backed_up:
                self._restore(backup, target)
            raise

        if backed_up:
            logger.info(f"[REPLACE] File updated successfully. Backup: {backup}")
        else:
            logger.info(f"[REPLACE] File created at {target} (no previous version to back up)")
        return backup if backed_up else None

    def _quarantine_temp(self, tmp: Path) -> None:
        if not tmp.exists():
            return
        failed = Path(f"{tmp}.failed")
        try:
            os.replace(tmp, failed)
            logger.info(f"[REPLACE] Kept rejected candidate at {failed}")
        except OSError as e:
            logger.debug(f"[REPLACE] Could not rename {tmp} to {failed}: {e}")

    def _restore(self, backup: Path, target: Path) -> None:
        if not backup.exists():
            return
        try:
            os.replace(backup, target)
            logger.warning(f"[REPLACE] Restored {target} from backup")
        except OSError as e:
            logger.critical(
                f"[REPLACE] Could not restore {target} from {backup}: {e}; "
                f"the previous version is still at {backup}"
            )


def safe_write_with_backup(
    content: str,
    target_path: PathLike,
    markers: Optional[Iterable[IntegrityMarker]] = None
) -> Optional[Path]:
    """Validate `content` and atomically install it at `target_path`."""
    return AtomicFileReplacer(markers=markers).replace(content, target_path)
