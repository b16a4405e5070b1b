"""User interface components (terminal reports)."""

from storage_janitor.ui.report import ReportUI, duplicate_report, junk_report, photo_report

__all__ = ["ReportUI", "duplicate_report", "junk_report", "photo_report"]
