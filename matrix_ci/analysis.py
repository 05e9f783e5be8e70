"""
Merges the outcome records of every job into one file and summarizes it.

Each line of an outcome file is a test case outcome:

    platform;configuration;test suite;test case;result;cause

where result is one of PASS, SKIP or FAIL.
"""
from collections import Counter
from pathlib import Path
from typing import Dict, List, NamedTuple, Tuple

from matrix_ci.artifacts import Artifacts
from matrix_ci.logging import logger

OUTCOMES_FILE = "outcomes.csv"


class Outcome(NamedTuple):
    platform: str
    configuration: str
    suite: str
    case: str
    result: str
    cause: str = ""

    @classmethod
    def parse(cls, line: str) -> "Outcome":
        fields = line.rstrip("\r\n").split(";", 5)
        if len(fields) < 5:
            return None
        return cls(*fields)


class Report(NamedTuple):
    """
    Everything known about a finished run.
    """

    name: str
    branch: str
    failed_builds: List[str]
    timestamps: Dict[str, Tuple]
    coverage: str
    counts: Dict[str, int]
    failed_cases: List[Outcome]

    @property
    def failed(self) -> bool:
        return bool(self.failed_builds)


def merge_outcomes(artifacts: Artifacts) -> Path:
    """
    Concatenate every job's outcome file into `outcomes.csv`.
    """
    dest = artifacts.root / OUTCOMES_FILE
    with open(dest, "w", encoding="utf-8") as out:
        for path in artifacts.outcome_files():
            content = path.read_text(encoding="utf-8")
            if content and not content.endswith("\n"):
                content += "\n"
            out.write(content)
    return dest


def read_outcomes(path: Path) -> List[Outcome]:
    outcomes = []
    with open(path, encoding="utf-8") as fl:
        for line in fl:
            outcome = Outcome.parse(line)
            if outcome is None:
                if line.strip():
                    logger.warning("Malformed outcome", line=line.strip())
                continue
            outcomes.append(outcome)
    return outcomes


def analyze(
    artifacts: Artifacts,
    *,
    name: str,
    branch: str,
    failed_builds,
    timestamps,
    coverage: str,
) -> Report:  # pylint: disable=too-many-arguments
    "Merge outcomes and build the report of a run"
    outcomes = read_outcomes(merge_outcomes(artifacts))
    counts = Counter(outcome.result for outcome in outcomes)
    report = Report(
        name=name,
        branch=branch,
        failed_builds=sorted(failed_builds),
        timestamps=dict(timestamps),
        coverage=coverage,
        counts={key: counts.get(key, 0) for key in ("PASS", "SKIP", "FAIL")},
        failed_cases=[outcome for outcome in outcomes if outcome.result == "FAIL"],
    )
    logger.info("Analyzed outcomes", n_outcomes=len(outcomes), **report.counts)
    return report
