import pytest

from libdesk import storage
from libdesk.library import Library
from libdesk.main import LibraryManager
from libdesk.services.google_books_service import reset_daily_usage
from libdesk.utils.ui_helpers import OUTPUT_MODE_ENV


@pytest.fixture(autouse=True)
def google_books_usage():
    # The daily call counter is shared by the whole process
    reset_daily_usage()
    yield
    reset_daily_usage()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    # Each test gets its own set of CSV files
    directory = tmp_path / "data"
    directory.mkdir()
    monkeypatch.setattr(storage, "DATA_DIR", str(directory))
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)
    LibraryManager.reset()
    yield directory
    LibraryManager.reset()


@pytest.fixture
def lib(data_dir):
    return Library()
