from pathlib import Path
from typing import List, Optional

SYSTEM_DIR = ".orlap"
USER_DIRS = ("Inbox", "Exports", "Uploads")


class Workspace:
    """Folder layout of an orlap workspace.

    Documents are dropped into Inbox, review files land in Exports and
    photos sent through chat or pulled out of Word files go to Uploads.
    Everything the tool keeps for itself lives under .orlap/.
    """

    def __init__(self, root: Path):
        self.root = root.absolute()
        self.inbox, self.exports, self.uploads = (self.root / name for name in USER_DIRS)

        self.system = self.root / SYSTEM_DIR
        self.runs = self.system / "runs"
        self.sessions = self.system / "sessions"
        self.manifest_path = self.system / "manifest.jsonl"
        self.config_path = self.system / "config.yml"
        self.db_path = self.system / "db.json"

    def _dirs(self, system_only: bool) -> List[Path]:
        dirs = [self.system, self.runs, self.sessions]
        if not system_only:
            dirs += [self.inbox, self.exports, self.uploads]
        return dirs

    def ensure_structure(self, system_only: bool = False):
        """Create the workspace folders; ad-hoc runs only need the system ones."""
        for p in self._dirs(system_only):
            p.mkdir(parents=True, exist_ok=True)
        self.manifest_path.touch(exist_ok=True)

    def is_valid(self) -> bool:
        return self.system.is_dir() and self.manifest_path.exists()

    def export_path(self, kind: str, run_id: str, suffix: str) -> Path:
        """Exports/<kind>_<run_id><suffix>, creating Exports on demand."""
        self.exports.mkdir(parents=True, exist_ok=True)
        return self.exports / f"{kind}_{run_id}{suffix}"

    def run_path(self, run_id: str) -> Path:
        self.runs.mkdir(parents=True, exist_ok=True)
        return self.runs / f"{run_id}.json"


def get_workspace(path: Optional[Path] = None) -> Workspace:
    return Workspace(path if path is not None else Path.cwd())
