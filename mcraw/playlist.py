"""Managing a folder of ``.mcraw`` files.

Covers listing the clips in a folder, soft-deleting a clip into a
``_deleted_mcraw_files_`` subfolder, and handing clips to the external
``motioncam-fs`` tool.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

MCRAW_EXTENSION = ".mcraw"
DELETED_FOLDER_NAME = "_deleted_mcraw_files_"
TOOL_NAME = "motioncam-fs.exe" if os.name == "nt" else "motioncam-fs"


def list_mcraw_files(folder: Any) -> List[Path]:
    """Return the ``.mcraw`` files directly inside ``folder``, sorted by path."""
    directory = Path(os.fspath(folder))
    return sorted(
        (entry for entry in directory.iterdir()
         if entry.is_file() and entry.suffix == MCRAW_EXTENSION),
        key=str,
    )


def soft_delete(path: Any) -> Path:
    """Move ``path`` into a ``_deleted_mcraw_files_`` folder beside it.

    When a file of the same name was deleted before, the new one is named
    ``<stem>_(<n>)<suffix>`` with the first free ``n``.  Returns the new path.
    """
    source = Path(os.fspath(path))
    if not source.is_file():
        raise FileNotFoundError(f"No such file: {source}")

    deleted = source.parent / DELETED_FOLDER_NAME
    if not deleted.exists():
        deleted.mkdir()
        logger.info("Created directory: %s", deleted)

    target = deleted / source.name
    counter = 1
    while target.exists():
        target = deleted / f"{source.stem}_({counter}){source.suffix}"
        counter += 1

    source.rename(target)
    logger.info("Moved '%s' to '%s'", source, target)
    return target


def _default_exe_dir() -> Path:
    if sys.argv and sys.argv[0]:
        return Path(sys.argv[0]).resolve().parent
    return Path.cwd()


def find_motioncam_fs(exe_dir: Any = None) -> Optional[Path]:
    """Locate the ``motioncam-fs`` tool.

    It is looked for first in ``exe_dir`` (by default the directory of the
    running program) and, except on Windows, then on ``PATH``.  Returns
    ``None`` when it is not found.
    """
    directory = _default_exe_dir() if exe_dir is None else Path(os.fspath(exe_dir))
    beside = directory / TOOL_NAME
    if beside.exists():
        return beside
    if os.name == "nt":
        return None
    found = shutil.which(TOOL_NAME)
    return Path(found) if found else None


def _launch_options() -> Dict[str, Any]:
    if os.name == "nt":
        flags = getattr(subprocess, "CREATE_NO_WINDOW", 0) | getattr(
            subprocess, "CREATE_NEW_PROCESS_GROUP", 0
        )
        return {"creationflags": flags}
    return {"start_new_session": True}


def send_to_motioncam_fs(paths: Iterable[Any], exe_dir: Any = None) -> Tuple[int, int]:
    """Start ``motioncam-fs -f <file>`` in the background for every file.

    Returns the number of launches that succeeded and that failed.  Raises
    :class:`FileNotFoundError` when the tool cannot be found.
    """
    tool = find_motioncam_fs(exe_dir)
    if tool is None:
        raise FileNotFoundError(
            f"{TOOL_NAME} not found at expected location or in system PATH"
        )

    ok = failed = 0
    for path in paths:
        command = [str(tool), "-f", os.fspath(path)]
        logger.info("Command: %s", command)
        try:
            subprocess.Popen(command, stdin=subprocess.DEVNULL, **_launch_options())
        except OSError as exc:
            logger.warning("Failed to launch %s for %s: %s", TOOL_NAME, path, exc)
            failed += 1
        else:
            ok += 1
    logger.info("Done. Success: %d, Fail: %d", ok, failed)
    return ok, failed