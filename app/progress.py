"""
Progress events for an extraction run.

The reporter turns pipeline milestones into ordered ProgressEvent objects and
hands each one to a sink. Batch mode uses `discard_sink`; streaming mode
passes a queue's `put` so every event is forwarded as soon as it is emitted.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict

TOTAL_STAGES = 3


@dataclass(frozen=True)
class ProgressEvent:
    event: str
    data: Dict[str, Any] = field(default_factory=dict)


def discard_sink(event: ProgressEvent) -> None:
    return None


class ProgressReporter:
    def __init__(self, sink: Callable[[ProgressEvent], None] = discard_sink):
        self.sink = sink

    def emit(self, event: str, **data) -> None:
        self.sink(ProgressEvent(event, data))

    def start(self):
        self.emit("start", message="Starting timeline extraction...")

    def stage(self, step: int, message: str, **counters):
        self.emit(
            "progress",
            message=message,
            step=step,
            total_steps=TOTAL_STAGES,
            **counters,
        )

    def page_fetched(self, page: int, message: str | None = None):
        self.emit(
            "timeline_page",
            message=message or f"Fetching timeline page {page}...",
            page=page,
        )

    def raw_response(self, item_id, item_type: str, api_url: str, records):
        self.emit(
            "raw_api_response",
            message=f"Raw comment API response for {item_type} #{item_id}",
            item_id=item_id,
            item_type=item_type,
            api_url=api_url,
            response_count=len(records) if isinstance(records, list) else 0,
            raw_response=records,
        )

    def item_comments_fetching(self, item, current: int, total: int):
        self.emit(
            "task_comments",
            message=f"Fetching comments for {item.item_type} #{item.ref} ({current}/{total})...",
            item_id=item.item_id,
            item_type=item.item_type,
            item_ref=item.ref,
            item_subject=item.subject,
            event_type=item.event_type,
            current=current,
            total=total,
            progress_percent=round(current / total * 100) if total else 100,
        )

    def time_found(self, item, value: float):
        self.emit(
            "time_found",
            message=f"Found {value:g} hours in {item.item_type} #{item.ref}",
            item_id=item.item_id,
            item_type=item.item_type,
            item_ref=item.ref,
            time_value=value,
        )

    def item_error(self, item, message: str):
        self.emit(
            "error",
            message=f"Error fetching comments for {item.item_type} {item.item_id}: {message}",
            item_id=item.item_id,
            item_type=item.item_type,
        )

    def completed(self, report):
        summary = report.summary
        self.emit(
            "complete",
            message="Extraction completed successfully!",
            total_items=summary.total_items,
            total_time=summary.total_time,
            total_time_formatted=summary.total_time_formatted,
        )
        self.sink(ProgressEvent("result", report.to_dict()))

    def failed(self, message: str):
        self.emit("error", success=False, error=message)

    def end(self, failed: bool = False):
        self.emit("end", message="Stream ended with error" if failed else "Stream ended")
