"""
Modification time and permission rules for files placed into layers.
"""
from datetime import datetime, timedelta
from fnmatch import fnmatchcase
from pathlib import Path

from ..MODELS.container_spec import EPOCH

# One second past the epoch; some runtimes treat the epoch itself as "unset".
DEFAULT_MODIFICATION_TIME = EPOCH + timedelta(seconds=1)

# Far enough in the future that compiled classes always look newer than
# their sources, and identical bytecode keeps an identical layer hash.
CLASS_FILE_MODIFICATION_TIME = EPOCH + timedelta(seconds=8589934591)

CLASS_FILE_PATTERN = "*.class"

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIRECTORY_MODE = 0o755


class TimestampPolicy:
    """
    Gives compiled class files a fixed far-future modification time and
    everything else the default modification time.
    """

    def __init__(self, pattern: str = CLASS_FILE_PATTERN):
        self.pattern = pattern

    def modification_time(self, source: Path, target: str) -> datetime:
        if fnmatchcase(Path(source).name, self.pattern):
            return CLASS_FILE_MODIFICATION_TIME
        return DEFAULT_MODIFICATION_TIME


class FilePermissionsPolicy:
    """
    Default permissions: 644 for files, 755 for directories.
    """

    def mode(self, source: Path, target: str, is_directory: bool) -> int:
        return DEFAULT_DIRECTORY_MODE if is_directory else DEFAULT_FILE_MODE
