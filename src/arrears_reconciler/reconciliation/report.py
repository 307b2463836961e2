"""Report generation for arrears reconciliation runs."""

import json
import csv
import io

from .models import ArrearsRunReport, ProcessAction

CSV_COLUMNS = ["tenancy_id", "tenant_id", "action", "total_overdue", "days_overdue", "error"]


class ReportGenerator:
    """Generator for run reports in various formats."""

    def __init__(self, report: ArrearsRunReport):
        """Initialize the report generator.

        Args:
            report: The run report to generate output from.
        """
        self.report = report

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the report.

        Args:
            include_details: If True, include run metadata next to the summary.
            indent: JSON indentation level.

        Returns:
            JSON string representation of the report.
        """
        if include_details:
            data = self.report.to_full_dict()
        else:
            data = self.report.to_summary_dict()
        return json.dumps(data, indent=indent)

    def to_csv(self) -> str:
        """Generate CSV with one row per tenancy result."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_COLUMNS)
        for result in self.report.results:
            writer.writerow([
                result.tenancy_id,
                result.tenant_id,
                result.action.value,
                "" if result.total_overdue is None else f"{result.total_overdue:.2f}",
                "" if result.days_overdue is None else result.days_overdue,
                result.error or "",
            ])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the report."""
        report = self.report
        lines = [
            "=" * 60,
            "ARREARS RUN SUMMARY",
            "=" * 60,
            f"Run ID: {report.run_id}",
            f"Status: {report.status.value}",
            f"As Of: {report.as_of.isoformat()}",
            "",
            "Results:",
            f"  Processed: {report.processed}",
            f"  Created: {report.created}",
            f"  Updated: {report.updated}",
            f"  Resolved: {report.resolved}",
            f"  Skipped: {report.skipped}",
            "",
            f"Started At: {report.started_at.isoformat()}",
            f"Completed At: {report.completed_at.isoformat() if report.completed_at else 'N/A'}",
        ]

        failed = report.failed_results
        if failed:
            lines.extend(["", f"Errors ({len(failed)}):"])
            for r in failed:
                lines.append(f"  Tenancy {r.tenancy_id}: {r.error}")

        lines.append("=" * 60)
        return "\n".join(lines)

    def to_detailed_text(self) -> str:
        """Generate the summary followed by each tenancy, grouped by action."""
        lines = [self.to_summary_text(), ""]

        for action in ProcessAction:
            entries = [r for r in self.report.results if r.action == action]
            if not entries:
                continue
            lines.extend([f"{action.value.upper()} ({len(entries)})", "-" * 40])
            for r in entries:
                line = f"  Tenancy: {r.tenancy_id}, Tenant: {r.tenant_id or 'N/A'}"
                if r.total_overdue is not None:
                    line += f", Overdue: ${r.total_overdue:.2f} over {r.days_overdue} days"
                lines.append(line)
            lines.append("")

        return "\n".join(lines)

    def render(self, format: str = "json", include_details: bool = True) -> str:
        """Render the report in the named format.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            return self.to_json(include_details=include_details)
        elif format == "csv":
            return self.to_csv()
        elif format == "text":
            return self.to_summary_text()
        elif format == "detailed_text":
            return self.to_detailed_text()
        else:
            raise ValueError(f"Unsupported report format: {format}")
