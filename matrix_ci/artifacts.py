"""
Artifact storage for a run: compressed logs and outcome records of jobs.
"""
import csv
import lzma
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Tuple

from matrix_ci.logging import logger

OUTCOME_SUFFIX = "-outcome.csv"


class Artifacts:
    """
    A directory collecting the artifacts of every job of a run.

    Every file stored here is prefixed by the name of the job that produced
    it, so jobs never write to the same file.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.__lock__ = threading.Lock()

    def logging(self):
        return logger.bind(artifacts=str(self.root))

    def archive_zipped_log_files(self, job_name: str, directory: Path) -> List[Path]:
        """
        Compress every `*.log` file in `directory` to
        `<job_name>-<file>.log.xz`.
        """
        archived = []
        if not directory.is_dir():
            return archived
        for log in sorted(directory.glob("*.log")):
            if not log.is_file():
                continue
            dest = self.root / f"{job_name}-{log.name}.xz"
            with open(log, "rb") as src, lzma.open(dest, "wb") as out:
                shutil.copyfileobj(src, out)
            archived.append(dest)
        self.logging().info("Archived logs", job_name=job_name, n_logs=len(archived))
        return archived

    def stash_outcomes(self, job_name: str, directory: Path) -> Path:
        """
        Keep the outcome file that the test driver wrote for a job, if any.
        """
        name = f"{job_name}{OUTCOME_SUFFIX}"
        src = directory / name
        if not src.is_file():
            self.logging().warning("No outcome file", job_name=job_name)
            return None
        dest = self.root / name
        shutil.copyfile(src, dest)
        return dest

    def outcome_files(self) -> List[Path]:
        return sorted(self.root.glob(f"*{OUTCOME_SUFFIX}"))

    def write_timestamps(self, timestamps: Dict[str, Tuple]) -> Path:
        """
        Write start and end times of every job as a CSV file.
        """
        dest = self.root / "timestamps.csv"
        with self.__lock__, open(dest, "w", encoding="utf-8", newline="") as fl:
            writer = csv.writer(fl)
            writer.writerow(["job", "start", "end", "seconds"])
            for name, (start, end) in sorted(timestamps.items()):
                writer.writerow(
                    [name, start.isoformat(), end.isoformat(), (end - start).in_seconds()]
                )
        return dest
