import os
import tempfile
from pathlib import Path

# Point the app at a throwaway database before backend.config is imported
_db_dir = tempfile.mkdtemp(prefix="phrase_srs_test_")
os.environ.setdefault("PHRASE_SRS_DATABASE_URL", f"sqlite+aiosqlite:///{Path(_db_dir) / 'test.db'}")
