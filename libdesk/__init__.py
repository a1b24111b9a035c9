"""libdesk - Library desk application package

This package contains the core application modules including:
- Library management logic (library.py)
- Admin accounts (accounts.py)
- CLI interface (main.py)
- Data models (document.py, user.py, records.py)
- CSV persistence layer (storage.py)
"""

__version__ = "1.0.0"
