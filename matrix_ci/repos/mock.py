from pathlib import Path
from typing import Dict, List, Tuple

from matrix_ci.interfaces import Repo


class Mock(Repo):
    "A branch whose content is a mapping of relative path to file content"

    def __init__(self, *, files: Dict[str, str] = None, **kwargs):
        super().__init__(**kwargs)
        self.files = files or {}
        self.checkouts: List[Tuple[Path, float]] = []

    def checkout(self, dest: Path, timeout: float = None) -> None:
        dest = Path(dest)
        self.checkouts.append((dest, timeout))
        dest.mkdir(parents=True, exist_ok=True)
        for path, content in self.files.items():
            target = dest / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

    @classmethod
    def from_env(cls, **kwargs) -> "Mock":
        """
        Save whatever is provided to kwargs
        """
        return cls(**kwargs)
