from matrix_ci.analysis import Report
from matrix_ci.interfaces import Reporter


def __get_time_format__(start, end):
    s = (end - start).in_seconds()
    m = s // 60
    return f"{m:>3}:{s % 60:02}"


class Text(Reporter):
    def render(self, report: Report) -> str:
        """
        Returns a human readable report for a given run.
        """
        names = list(report.timestamps) + [report.name]
        max_name = max(len(name) for name in names)
        dot = "🔴" if report.failed else "🟢"
        header = (report.name + " " * max_name)[:max_name]
        lines = [f"╔ {dot} : {header} [branch {report.branch}]", "┃"]
        for name, (start, end) in sorted(report.timestamps.items()):
            status = "🔴" if name in report.failed_builds else "🟢"
            padded = (name + " " * max_name)[:max_name]
            lines.append(f"┃ {status} : {padded} {__get_time_format__(start, end)}")
        lines.append("┃")
        counts = ", ".join(f"{key}: {value}" for key, value in report.counts.items())
        lines.append(f"┃ Test cases {counts}")
        for case in report.failed_cases:
            lines.append(
                f"┃   FAIL {case.platform};{case.configuration};"
                f"{case.suite};{case.case}"
            )
        if report.failed_builds:
            lines.append(f"┃ Failures: {', '.join(report.failed_builds)}")
        lines.append("┗" + "━" * (max_name + 16))
        lines += ["", report.coverage]
        return "\n".join(lines)
