"""
In-memory data model for one extraction run.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from app.time_tracking import strip_html


@dataclass
class UniqueWorkItem:
    item_id: Any
    item_type: str
    item: Dict
    event_type: str = "unknown"
    project: Optional[Dict] = None
    created: Optional[str] = None

    @property
    def ref(self):
        return self.item.get("ref") or self.item_id

    @property
    def subject(self) -> str:
        return self.item.get("subject") or "Unknown"

    @property
    def project_name(self) -> str:
        if not self.project:
            return "Unknown"
        return self.project["name"]


@dataclass
class CommentRecord:
    comment_html: str
    comment: str
    created_at: Optional[str]
    time_value: float

    @property
    def plain_text(self) -> str:
        return strip_html(self.comment_html)

    def to_dict(self) -> Dict:
        return {
            "comment_html": self.comment_html,
            "comment": self.comment,
            "created_at": self.created_at,
            "time_value": self.time_value,
        }


@dataclass
class TaskTimeSummary:
    total_time: float = 0
    comments: List[CommentRecord] = field(default_factory=list)


@dataclass(frozen=True)
class SkippedItem:
    item_id: Any
    item_type: Optional[str]
    stage: str
    reason: str


@dataclass(frozen=True)
class ResultRow:
    item_id: Any
    item_type: str
    item_ref: Any
    item_subject: str
    event_type: str
    comment: str
    time_value: float
    created: Optional[str]
    project_name: str
    comment_details: Tuple[CommentRecord, ...]

    def to_dict(self) -> Dict:
        return {
            "itemId": self.item_id,
            "itemType": self.item_type,
            "itemRef": self.item_ref,
            "itemSubject": self.item_subject,
            "eventType": self.event_type,
            "comment": self.comment,
            "timeValue": self.time_value,
            "created": self.created,
            "projectName": self.project_name,
            "commentDetails": [c.to_dict() for c in self.comment_details],
            # Legacy names kept for older frontends
            "taskId": self.item_id,
            "taskRef": self.item_ref,
            "taskSubject": self.item_subject,
        }


@dataclass(frozen=True)
class ExtractionSummary:
    total_items: int
    total_time: float
    pages_processed: int
    unique_tasks_found: int
    tasks_with_time_data: int
    cutoff_date: str
    extraction_date: str

    @property
    def total_time_formatted(self) -> str:
        return f"{self.total_time:,.2f}"

    def to_dict(self) -> Dict:
        return {
            "totalItems": self.total_items,
            "totalTime": self.total_time,
            "totalTimeFormatted": self.total_time_formatted,
            "pagesProcessed": self.pages_processed,
            "uniqueTasksFound": self.unique_tasks_found,
            "tasksWithTimeData": self.tasks_with_time_data,
            "cutoffDate": self.cutoff_date,
            "extractionDate": self.extraction_date,
        }


@dataclass(frozen=True)
class ExtractionReport:
    rows: Tuple[ResultRow, ...]
    summary: ExtractionSummary
    skipped: Tuple[SkippedItem, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "success": True,
            "items": [row.to_dict() for row in self.rows],
            "summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class ExtractionRequest:
    base_url: str
    auth_token: str
    user_id: str
