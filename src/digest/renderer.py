"""
Digest Renderer - builds the HTML body of a day-end digest.

Pure: no data fetching and no clock reads, so identical input always
produces byte-identical output. All interpolated text is HTML-escaped.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import List, Optional

from digest.summary import DEFAULT_TIMEZONE, TaskRecord, TaskSummary
from digest.timezones import ensure_aware_utc, resolve_timezone

NO_CLIENT = "N/A"
UNASSIGNED = "Unassigned"
NO_DUE_DATE = "No due date"
NO_OVERDUE = "No overdue tasks"
NO_REVIEW = "No tasks pending for review"


@dataclass(frozen=True)
class SectionSpec:
    """One titled bucket of a digest."""
    title: str
    bucket: str
    color: str
    placeholder: Optional[str] = None


OVERDUE = SectionSpec("Overdue Tasks", "overdue", "#e53e3e", NO_OVERDUE)
TODAY = SectionSpec("Due Today", "today", "#3182ce")
TOMORROW = SectionSpec("Due Tomorrow", "tomorrow", "#38a169")
REVIEW = SectionSpec("Pending Review", "review", "#805ad5", NO_REVIEW)
AWAITING = SectionSpec("Awaiting Client Data", "awaiting_client", "#d69e2e")
REMAINING = SectionSpec("Remaining Tasks", "remaining", "#718096")

INDIVIDUAL_SECTIONS = (OVERDUE, TODAY, TOMORROW, REVIEW, AWAITING, REMAINING)
PERSONAL_SECTIONS = (OVERDUE, TODAY, TOMORROW, AWAITING, REMAINING)
FIRM_SECTIONS = (OVERDUE, TODAY, TOMORROW, REVIEW, AWAITING, REMAINING)

CELL_STYLE = "padding: 8px; border: 1px solid #edf2f7;"


class DigestRenderer:
    """
    Render individual and aggregate (manager) digests.

    Args:
        brand_name: Shown in the footer
        subject: Default subject line for callers that need it
        date_format: strftime format for due dates in the firm's zone
    """

    def __init__(
        self,
        brand_name: str = "Practice Digest",
        subject: str = "Your daily task update",
        date_format: str = "%d %b %Y",
    ):
        self.brand_name = brand_name
        self.subject = subject
        self.date_format = date_format

    def render_individual(
        self,
        recipient_name: str,
        summary: TaskSummary,
        timezone_name: Optional[str] = None,
    ) -> str:
        """Single-summary digest for staff members."""
        body = [
            f"<p>Hello {self._escape(recipient_name)},</p>",
            "<p>Here is your daily summary of pending tasks.</p>",
        ]
        body.extend(
            self._render_section(section, getattr(summary, section.bucket), timezone_name)
            for section in INDIVIDUAL_SECTIONS
        )
        return self._layout("".join(body))

    def render_aggregate(
        self,
        recipient_name: str,
        personal: TaskSummary,
        firm: TaskSummary,
        timezone_name: Optional[str] = None,
    ) -> str:
        """Two-block digest for managers: their own tasks and the whole firm."""
        body = [
            f"<p>Hello {self._escape(recipient_name)},</p>",
            "<p>Here is the daily overview for your firm and personal tasks.</p>",
            self._render_block("Your Tasks", personal, PERSONAL_SECTIONS, timezone_name),
            self._render_block("Full Firm Overview", firm, FIRM_SECTIONS, timezone_name),
        ]
        return self._layout("".join(body))

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _render_block(self, title, summary, sections, timezone_name) -> str:
        parts = [
            '<h2 style="border-bottom: 2px solid #eee; padding-bottom: 10px; margin-top: 30px;">'
            f"{self._escape(title)}</h2>"
        ]
        parts.extend(
            self._render_section(section, getattr(summary, section.bucket), timezone_name)
            for section in sections
        )
        return "".join(parts)

    def _render_section(
        self,
        section: SectionSpec,
        tasks: List[TaskRecord],
        timezone_name: Optional[str],
    ) -> str:
        if not tasks:
            if section.placeholder is None:
                return ""
            return (
                '<div style="margin-bottom: 20px;">'
                f'<h3 style="color: {section.color}; opacity: 0.7;">{self._escape(section.title)}</h3>'
                f'<p style="color: #666; font-style: italic;">{self._escape(section.placeholder)}</p>'
                "</div>"
            )

        rows = "".join(self._render_row(task, timezone_name) for task in tasks)
        return (
            '<div style="margin-bottom: 20px;">'
            f'<h3 style="color: {section.color}; margin-bottom: 5px;">'
            f"{self._escape(section.title)} ({len(tasks)})</h3>"
            '<table style="width: 100%; border-collapse: collapse; font-size: 14px;">'
            '<thead><tr style="background-color: #f7fafc; text-align: left;">'
            f'<th style="{CELL_STYLE}">Task</th>'
            f'<th style="{CELL_STYLE}">Client</th>'
            f'<th style="{CELL_STYLE}">Assigned To</th>'
            f'<th style="{CELL_STYLE}">Due Date</th>'
            "</tr></thead>"
            f"<tbody>{rows}</tbody>"
            "</table>"
            "</div>"
        )

    def _render_row(self, task: TaskRecord, timezone_name: Optional[str]) -> str:
        cells = (
            task.title or "",
            task.client_name or NO_CLIENT,
            task.assignee_name or UNASSIGNED,
            self.format_due_date(task, timezone_name),
        )
        return "<tr>" + "".join(
            f'<td style="{CELL_STYLE}">{self._escape(value)}</td>' for value in cells
        ) + "</tr>"

    def format_due_date(self, task: TaskRecord, timezone_name: Optional[str]) -> str:
        """Due date in the firm's zone, or a placeholder for undated tasks."""
        if task.due_date is None:
            return NO_DUE_DATE
        tz, _ = resolve_timezone(timezone_name, DEFAULT_TIMEZONE)
        return ensure_aware_utc(task.due_date).astimezone(tz).strftime(self.date_format)

    def _layout(self, content: str) -> str:
        return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        {content}
        <div style="margin-top: 30px; font-size: 12px; color: #718096; border-top: 1px solid #eee; padding-top: 10px;">
            Sent by {self._escape(self.brand_name)}. To change your notification settings, please visit your dashboard.
        </div>
    </div>
</body>
</html>
"""

    @staticmethod
    def _escape(value) -> str:
        return html.escape(str(value), quote=True)
