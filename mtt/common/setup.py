import os
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Dataclass for accessing paths across program. Everything lives under one data directory, which is
# MTT_DATA_DIR when set and ~/.mtt otherwise.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path
    logs: Path
    current: Path
    snapshots: Path

    @property
    def settings_file(self):
        return self.data / "settings.json"

    @staticmethod
    def build(data_dir=None):
        if data_dir is None:
            data_dir = os.getenv("MTT_DATA_DIR") or (Path.home() / ".mtt")
        data = ensure_directory(Path(data_dir).expanduser())

        # Folders within the data folder
        logs = ensure_directory(data / "logs")
        current = ensure_directory(data / "current")
        snapshots = ensure_directory(data / "snapshots")

        return ProjectPaths(
            data = data,
            logs = logs,
            current = current,
            snapshots = snapshots,
        )
PATHS = ProjectPaths.build()
