"""
Timeline extraction pipeline

Stage 1 → walk timeline pages until the month cutoff, dedup issues/tasks
Stage 2 → fetch each unique item's comments, sum the user's time-tokens
Stage 3 → assemble report rows for items with logged time
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from app.config import (
    PAGE_DELAY_SECONDS,
    COMMENT_DELAY_SECONDS,
    EXTRACTION_TIMEOUT_SECONDS,
    MAX_TIMELINE_ITEMS,
    TIMEZONE,
    EMIT_RAW_RESPONSES,
)
from app.errors import (
    AssemblyError,
    CommentFetchError,
    ExtractionCancelled,
    FatalError,
    FeedFetchError,
    ValidationError,
)
from app.models import (
    ExtractionReport,
    ExtractionRequest,
    ExtractionSummary,
    CommentRecord,
    ResultRow,
    SkippedItem,
    TaskTimeSummary,
    UniqueWorkItem,
)
from app.progress import ProgressReporter
from app.taiga import TaigaClient
from app.time_tracking import extract_time_from_comment_html

logger = logging.getLogger("pipeline")

REQUIRED_FIELDS = ("baseUrl", "authToken", "userId")
FATAL_MESSAGE = "A fatal error occurred during extraction"


# -------------------------------------------------
# Request validation
# -------------------------------------------------
def parse_request(data) -> ExtractionRequest:
    """Validate the inbound document; raises ValidationError naming the field."""
    if not isinstance(data, dict):
        raise ValidationError("body", "Invalid JSON input")

    for name in REQUIRED_FIELDS:
        value = data.get(name)
        if isinstance(value, bool) or not isinstance(value, (str, int, float, type(None))):
            raise ValidationError(name, f"Invalid value for field: {name}")
        if value is None or str(value).strip() == "":
            raise ValidationError(name)

    user_id = data["userId"]
    # JSON clients may send 20.0; Taiga user pks are integers
    if isinstance(user_id, float) and user_id.is_integer():
        user_id = int(user_id)

    return ExtractionRequest(
        base_url=str(data["baseUrl"]).strip().rstrip("/"),
        auth_token=str(data["authToken"]).strip(),
        user_id=str(user_id).strip(),
    )


# -------------------------------------------------
# Date helpers
# -------------------------------------------------
def first_day_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def parse_timestamp(value, tz) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        # Taiga sends "...Z"; older interpreters reject the suffix
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)


# -------------------------------------------------
# Timeline item classification
# -------------------------------------------------
def classify_timeline_item(item: Dict) -> Optional[UniqueWorkItem]:
    """
    Resolve the issue/task a timeline event refers to.

    event_type decides first ("issue" before "task"); otherwise a task
    payload wins over an issue payload. Unclassifiable events → None.
    """
    if not isinstance(item, dict):
        return None

    data = item.get("data") or {}
    if not isinstance(data, dict):
        return None
    event_type = item.get("event_type")

    item_type = None
    if isinstance(event_type, str):
        if "issue" in event_type and data.get("issue"):
            item_type = "issue"
        elif "task" in event_type and data.get("task"):
            item_type = "task"

    if item_type is None:
        if data.get("task"):
            item_type = "task"
        elif data.get("issue"):
            item_type = "issue"
        else:
            return None

    payload = data[item_type]
    if not isinstance(payload, dict) or not payload.get("id"):
        return None

    project = data.get("project")
    return UniqueWorkItem(
        item_id=payload["id"],
        item_type=item_type,
        item=payload,
        event_type=event_type or "unknown",
        project=project if project else None,
        created=item.get("created"),
    )


def summarize_user_comments(history: List[Dict], user_id) -> TaskTimeSummary:
    """
    Keep the target user's comments that carry time-tokens and sum them.
    Other users' records, empty comments and zero-time comments are left out.
    """
    summary = TaskTimeSummary()

    for record in history or []:
        if not isinstance(record, dict):
            continue

        user = record.get("user")
        if not isinstance(user, dict) or str(user.get("pk")) != str(user_id):
            continue

        comment_html = record.get("comment_html")
        if not comment_html:
            continue

        time_value = extract_time_from_comment_html(comment_html)
        if time_value <= 0:
            logger.debug(f"No time value in comment at {record.get('created_at')}")
            continue

        summary.total_time += time_value
        summary.comments.append(
            CommentRecord(
                comment_html=comment_html,
                comment=record.get("comment") or "",
                created_at=record.get("created_at"),
                time_value=time_value,
            )
        )

    return summary


# -------------------------------------------------
# Pipeline
# -------------------------------------------------
class ExtractionPipeline:
    def __init__(
        self,
        client: TaigaClient,
        user_id,
        reporter: Optional[ProgressReporter] = None,
        now: Optional[datetime] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
        timeout_seconds: float = EXTRACTION_TIMEOUT_SECONDS,
        max_timeline_items: int = MAX_TIMELINE_ITEMS,
        tz: str = TIMEZONE,
    ):
        self.client = client
        self.user_id = user_id
        self.reporter = reporter or ProgressReporter()
        self.tz = ZoneInfo(tz)
        self.now = now or datetime.now(self.tz)
        self.cutoff = first_day_of_month(self.now.astimezone(self.tz))
        self.sleep = sleep
        self.cancel_event = cancel_event
        self.max_timeline_items = max_timeline_items
        self._deadline = time.monotonic() + timeout_seconds

        # Run state (never shared between runs)
        self.pages_processed = 0
        self.timeline_item_count = 0
        self.unique_items: Dict = {}
        self.summaries: Dict = {}
        self.skipped: List[SkippedItem] = []

    # ---------------- checkpoints ----------------
    def _checkpoint(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ExtractionCancelled("Extraction cancelled by client")
        if time.monotonic() > self._deadline:
            raise FatalError("Extraction exceeded the time limit")

    def is_before_cutoff(self, created) -> bool:
        parsed = parse_timestamp(created, self.tz)
        if parsed is None:
            logger.warning(f"Error parsing date: {created!r}, keeping item")
            return False
        return parsed < self.cutoff

    # ---------------- stage 1 ----------------
    def collect_timeline(self) -> Dict:
        logger.info(f"📄 Collecting timeline for user {self.user_id} (cutoff {self.cutoff.date()})")
        self.reporter.stage(1, "Step 1: Collecting timeline items...")

        page = 1
        while True:
            self._checkpoint()
            self.reporter.page_fetched(page)

            try:
                page_data = self.client.fetch_timeline_page(self.user_id, page)
            except FeedFetchError as e:
                logger.error(f"❌ Error fetching timeline page {page}: {e}")
                break
            self.pages_processed += 1

            if not page_data:
                logger.info("Empty page data, stopping extraction")
                self.reporter.page_fetched(page, "No more timeline data found")
                break

            found_old_data = False
            for raw in page_data:
                created = raw.get("created") if isinstance(raw, dict) else None
                if self.is_before_cutoff(created):
                    logger.info(f"Found item from {created} which is before current month. Stopping extraction.")
                    found_old_data = True
                    break

                work_item = classify_timeline_item(raw)
                if work_item is None:
                    continue

                self.timeline_item_count += 1
                if self.timeline_item_count > self.max_timeline_items:
                    raise FatalError(f"Timeline exceeded {self.max_timeline_items} items")

                self.unique_items.setdefault(work_item.item_id, work_item)

            if found_old_data:
                break

            page += 1
            self.sleep(PAGE_DELAY_SECONDS)

        logger.info(
            f"✅ Found {len(self.unique_items)} unique tasks from "
            f"{self.timeline_item_count} timeline items ({self.pages_processed} pages)"
        )
        return self.unique_items

    # ---------------- stage 2 ----------------
    def fetch_comments(self) -> Dict:
        total = len(self.unique_items)
        self.reporter.stage(
            2,
            f"Step 2: Fetching comments for {total} unique tasks...",
            unique_tasks=total,
            timeline_items=self.timeline_item_count,
        )

        for current, item in enumerate(self.unique_items.values(), start=1):
            self._checkpoint()
            logger.info(f"💬 Fetching comments for {item.item_type} {item.item_id} ({current}/{total})")
            self.reporter.item_comments_fetching(item, current, total)

            try:
                history = self.client.fetch_item_comments(self.user_id, item.item_id, item.item_type)
            except CommentFetchError as e:
                logger.error(f"❌ Error fetching comments for {item.item_type} {item.item_id}: {e}")
                self.skipped.append(SkippedItem(item.item_id, item.item_type, "comments", str(e)))
                self.reporter.item_error(item, str(e))
                continue

            if EMIT_RAW_RESPONSES:
                self.reporter.raw_response(
                    item.item_id,
                    item.item_type,
                    self.client.history_url(item.item_type, item.item_id),
                    history,
                )

            summary = summarize_user_comments(history, self.user_id)
            if summary.total_time > 0:
                self.summaries[item.item_id] = summary
                self.reporter.time_found(item, summary.total_time)
                logger.info(f"⏱️ {item.item_type} {item.item_id}: {summary.total_time:g}h")

            self.sleep(COMMENT_DELAY_SECONDS)

        logger.info(f"✅ Found time data for {len(self.summaries)} tasks")
        return self.summaries

    # ---------------- stage 3 ----------------
    def build_row(self, item: UniqueWorkItem, summary: TaskTimeSummary) -> ResultRow:
        try:
            return ResultRow(
                item_id=item.item_id,
                item_type=item.item_type,
                item_ref=item.ref,
                item_subject=item.subject,
                event_type=item.event_type,
                comment=" | ".join(c.plain_text for c in summary.comments),
                time_value=summary.total_time,
                created=item.created,
                project_name=item.project_name,
                comment_details=tuple(summary.comments),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise AssemblyError(f"{type(e).__name__}: {e}") from e

    def assemble_report(self) -> ExtractionReport:
        self._checkpoint()
        self.reporter.stage(
            3,
            "Step 3: Processing final results...",
            tasks_with_time=len(self.summaries),
        )

        rows = []
        for item_id, summary in self.summaries.items():
            item = self.unique_items[item_id]
            try:
                rows.append(self.build_row(item, summary))
            except AssemblyError as e:
                logger.error(f"❌ Error processing {item.item_type} {item_id}: {e}")
                self.skipped.append(SkippedItem(item_id, item.item_type, "assembly", str(e)))

        total_time = sum(row.time_value for row in rows)
        summary = ExtractionSummary(
            total_items=len(rows),
            total_time=total_time,
            pages_processed=self.pages_processed,
            unique_tasks_found=len(self.unique_items),
            tasks_with_time_data=len(self.summaries),
            cutoff_date=self.cutoff.strftime("%Y-%m-%d"),
            extraction_date=datetime.now(self.tz).strftime("%Y-%m-%d %H:%M:%S"),
        )
        logger.info(f"🏁 Extraction completed. Total items: {len(rows)}, Total time: {total_time:g}")
        return ExtractionReport(rows=tuple(rows), summary=summary, skipped=tuple(self.skipped))

    def run(self) -> ExtractionReport:
        self.collect_timeline()
        self.fetch_comments()
        return self.assemble_report()


# -------------------------------------------------
# Entry point shared by batch + streaming
# -------------------------------------------------
def run_extraction(
    request: ExtractionRequest,
    reporter: Optional[ProgressReporter] = None,
    cancel_event: Optional[threading.Event] = None,
    client: Optional[TaigaClient] = None,
    **pipeline_kwargs,
) -> ExtractionReport:
    """
    Run one extraction end to end.

    Unexpected exceptions are logged and re-raised as FatalError with a
    generic message so internals never reach the caller.
    """
    reporter = reporter or ProgressReporter()
    owns_client = client is None
    if owns_client:
        client = TaigaClient(request.base_url, request.auth_token)
    logger.info(f"🚀 Starting timeline extraction for user {request.user_id}")

    try:
        pipeline = ExtractionPipeline(
            client,
            request.user_id,
            reporter=reporter,
            cancel_event=cancel_event,
            **pipeline_kwargs,
        )
        return pipeline.run()
    except (FatalError, ExtractionCancelled):
        raise
    except Exception as e:
        logger.error("❌ Timeline extraction fatal error", exc_info=True)
        raise FatalError(FATAL_MESSAGE) from e
    finally:
        if owns_client:
            client.close()
