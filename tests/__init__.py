import os
import tempfile

# Keep logs and default documents of the test run out of the real data directory.
os.environ.setdefault("MTT_DATA_DIR", tempfile.mkdtemp(prefix="mtt-tests-"))
