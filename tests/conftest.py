import os
import shutil
import sys
import tempfile

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Must be set before availability_service.database builds its engine.
_DB_DIR = tempfile.mkdtemp(prefix="availability-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_DB_DIR, "bookings.db")


def pytest_sessionfinish(session, exitstatus):
    from availability_service.database import engine

    engine.dispose()
    shutil.rmtree(_DB_DIR, ignore_errors=True)
