"""Run reporting: JSON and markdown summaries of an apply or destroy."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from engine.result import RunResult

OUTCOME_MARKS = {
    'created': '✅',
    'destroyed': '✅',
    'absent': '⏭️',
    'failed': '❌',
    'destroy_failed': '❌',
    'blocked': '⛔',
    'cancelled': '⏹️',
}


@dataclass
class RunReport:
    """Renders a RunResult and writes it to a report directory."""
    result: RunResult
    source: str = ''
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def status(self) -> str:
        if self.result.cancelled:
            return 'cancelled'
        return 'passed' if self.result.success else 'failed'

    def to_dict(self) -> dict:
        """Return report as dictionary for JSON output."""
        data = self.result.to_dict()
        if self.source:
            data['source'] = self.source

        # Include first error on failure
        if not self.result.success:
            for res in self.result.failures:
                if res.error:
                    data['error'] = f"{res.id}: {res.error}"
                    break
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def to_markdown(self) -> str:
        duration = self.result.duration or 0.0
        lines = [
            f"# {self.result.operation}",
            "",
        ]
        if self.source:
            lines.append(f"**Source**: {self.source}")
        lines.extend([
            f"**Status**: {self.status.upper()}",
            f"**Date**: {self.generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
            f"**Duration**: {duration:.1f}s",
            "",
            "## Resources",
            "",
            "| Resource | Outcome | Action | Duration | Detail |",
            "|----------|---------|--------|----------|--------|",
        ])

        for res in self.result.results.values():
            mark = OUTCOME_MARKS.get(res.outcome, '❓')
            detail = res.error or (f"blocked by {res.blocked_by}" if res.blocked_by else '')
            elapsed = f"{res.duration:.1f}s" if res.duration is not None else '-'
            lines.append(f"| {res.id} | {mark} {res.outcome} | {res.action or '-'} | {elapsed} | {detail} |")

        lines.extend(["", "---", f"Generated: {self.generated_at.isoformat()}"])
        return '\n'.join(lines)

    def write(self, report_dir: Path) -> list[Path]:
        """Write JSON and markdown reports.

        Returns:
            Paths of the written files
        """
        report_dir = Path(report_dir)
        report_dir.mkdir(parents=True, exist_ok=True)

        json_path = self._report_filename(report_dir, 'json')
        with open(json_path, 'w', encoding="utf-8") as f:
            f.write(self.to_json())

        md_path = self._report_filename(report_dir, 'md')
        with open(md_path, 'w', encoding="utf-8") as f:
            f.write(self.to_markdown())

        return [json_path, md_path]

    def _report_filename(self, report_dir: Path, ext: str) -> Path:
        timestamp = self.generated_at.strftime('%Y%m%d-%H%M%S')
        return report_dir / f"{timestamp}.{self.result.operation}.{self.status}.{ext}"


def format_summary(result: RunResult) -> str:
    """One line per resource, for terminal output."""
    lines = []
    width = max((len(r) for r in result.results), default=0)
    for res in result.results.values():
        line = f"  {res.id.ljust(width)}  {res.outcome}"
        if res.blocked_by:
            line += f" (blocked by {res.blocked_by})"
        elif res.error:
            line += f": {res.error}"
        lines.append(line)
    status = 'cancelled' if result.cancelled else ('succeeded' if result.success else 'failed')
    lines.append(f"{result.operation} {status}")
    return '\n'.join(lines)
