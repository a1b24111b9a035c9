"""Flat-file CSV persistence.

Every collection lives in its own headerless CSV file inside ``DATA_DIR``.
Rewrites go through a temporary file and ``os.replace`` so an interrupted
write never leaves a half-written file behind.
"""

import csv
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

from libdesk.config import settings

logger = logging.getLogger(__name__)

# Default data directory. Tests (and callers) may override this before
# constructing a Library.
DATA_DIR: str = settings.data_dir

DOCUMENTS_FILE = "documents.csv"
USERS_FILE = "user.csv"
ACCOUNTS_FILE = "account.csv"
BORROWED_FILE = "borrowed.csv"
BORROW_LOG_FILE = "borrow_log.csv"
RATINGS_FILE = "ratings.csv"

PathLike = Union[str, "os.PathLike[str]"]
T = TypeVar("T")


def data_path(filename: str, data_dir: Optional[PathLike] = None) -> Path:
    """Resolve ``filename`` inside the data directory, creating the directory if needed."""
    base = Path(data_dir if data_dir is not None else DATA_DIR)
    base.mkdir(parents=True, exist_ok=True)
    return base / filename


def read_rows(path: PathLike) -> Iterator[Tuple[int, List[str]]]:
    """Yield ``(line_number, fields)`` for each non-blank row. A missing file yields nothing.

    Lines that are not valid UTF-8 are skipped with a warning.
    """
    if not os.path.exists(path):
        return
    with open(path, "rb") as f:
        position = [0]

        def decoded_lines() -> Iterator[str]:
            for line_num, raw in enumerate(f, 1):
                position[0] = line_num
                try:
                    yield raw.decode("utf-8")
                except UnicodeDecodeError as e:
                    logger.warning("Skipping malformed row %d in %s: %s", line_num, path, e)

        for row in csv.reader(decoded_lines()):
            if not row or all(not field.strip() for field in row):
                continue
            yield position[0], row


def load_records(path: PathLike, parse: Callable[[List[str]], T]) -> List[T]:
    """Parse every row of ``path`` with ``parse``; malformed rows are skipped and logged."""
    records: List[T] = []
    for line_num, row in read_rows(path):
        try:
            records.append(parse(row))
        except (ValueError, IndexError) as e:
            logger.warning("Skipping malformed row %d in %s: %s", line_num, path, e)
    logger.debug("Loaded %d records from %s", len(records), path)
    return records


def write_rows(path: PathLike, rows: Iterable[Sequence[str]]) -> None:
    """Atomically replace ``path`` with ``rows``."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".csv", dir=directory)
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            count = 0
            for row in rows:
                writer.writerow(row)
                count += 1
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.debug("Wrote %d rows to %s", count, path)


def append_row(path: PathLike, row: Sequence[str]) -> None:
    with open(path, "a", newline="", encoding="utf-8") as f:
        csv.writer(f).writerow(row)
