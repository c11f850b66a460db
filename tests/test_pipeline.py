import threading

import pytest

from app.errors import ExtractionCancelled, FatalError, ValidationError
from app.pipeline import (
    ExtractionPipeline,
    classify_timeline_item,
    parse_request,
    run_extraction,
    summarize_user_comments,
)
from app.progress import ProgressReporter
from app.models import ExtractionRequest
from conftest import FakeTaigaClient, history_record, timeline_event

USER = "20"


def make_pipeline(client, now, events=None, **kwargs):
    reporter = ProgressReporter(sink=events.append) if events is not None else None
    return ExtractionPipeline(client, USER, reporter=reporter, now=now, sleep=lambda s: None, tz="UTC", **kwargs)


# -------------------------------------------------
# Classification
# -------------------------------------------------
def test_classify_prefers_event_type():
    event = {
        "event_type": "issues.issue.change",
        "data": {"issue": {"id": 7}, "task": {"id": 8}},
    }
    item = classify_timeline_item(event)
    assert (item.item_type, item.item_id) == ("issue", 7)


def test_classify_falls_back_to_task_then_issue():
    both = {"event_type": "projects.membership", "data": {"issue": {"id": 1}, "task": {"id": 2}}}
    assert classify_timeline_item(both).item_type == "task"

    issue_only = {"event_type": "tasks.task.create", "data": {"issue": {"id": 1}}}
    assert classify_timeline_item(issue_only).item_type == "issue"


def test_classify_drops_unusable_events():
    assert classify_timeline_item({"event_type": "projects.project.create", "data": {"project": {}}}) is None
    assert classify_timeline_item({"event_type": "issues.issue.create", "data": {"issue": {"subject": "x"}}}) is None
    assert classify_timeline_item("garbage") is None


def test_classify_defaults_event_type_and_project():
    item = classify_timeline_item({"data": {"task": {"id": 3}}})
    assert item.event_type == "unknown"
    assert item.project_name == "Unknown"
    assert item.ref == 3
    assert item.subject == "Unknown"


# -------------------------------------------------
# Comment filtering
# -------------------------------------------------
def test_summarize_keeps_only_target_user_with_time():
    history = [
        history_record(20, "<p>Time: 2</p>"),
        history_record(21, "<p>Time: 9</p>"),
        history_record(20, "<p>no time here</p>"),
        history_record(20, ""),
        {"comment_html": "Time: 5"},
        history_record("20", "Time::1.5"),
    ]
    summary = summarize_user_comments(history, USER)
    assert summary.total_time == pytest.approx(3.5)
    assert [c.time_value for c in summary.comments] == [2, 1.5]


# -------------------------------------------------
# Request validation
# -------------------------------------------------
def test_parse_request_trims_base_url():
    request = parse_request({"baseUrl": "https://taiga.test///", "authToken": "tok", "userId": 20})
    assert request == ExtractionRequest("https://taiga.test", "tok", "20")


def test_parse_request_whole_float_user_id_matches_comments():
    request = parse_request({"baseUrl": "https://taiga.test", "authToken": "tok", "userId": 20.0})
    assert request.user_id == "20"

    history = [history_record(20, "<p>Time: 3</p>")]
    assert summarize_user_comments(history, request.user_id).total_time == 3


@pytest.mark.parametrize("missing", ["baseUrl", "authToken", "userId"])
def test_parse_request_names_missing_field(missing):
    body = {"baseUrl": "https://taiga.test", "authToken": "tok", "userId": "20"}
    body[missing] = ""
    with pytest.raises(ValidationError) as exc:
        parse_request(body)
    assert exc.value.field == missing
    assert str(exc.value) == f"Missing required field: {missing}"


def test_parse_request_rejects_non_object():
    with pytest.raises(ValidationError) as exc:
        parse_request(["not", "an", "object"])
    assert str(exc.value) == "Invalid JSON input"


# -------------------------------------------------
# Stage 1
# -------------------------------------------------
def test_cutoff_keeps_earlier_items_and_stops(now):
    page1 = [
        timeline_event(1, created="2024-09-15T10:00:00Z"),
        timeline_event(2, item_type="task", created="2024-09-01T00:00:00Z"),
        timeline_event(3, created="2024-08-31T23:59:59Z"),
        timeline_event(4, created="2024-09-20T10:00:00Z"),
    ]
    client = FakeTaigaClient(pages=[page1, [timeline_event(5)]])
    pipeline = make_pipeline(client, now)

    unique = pipeline.collect_timeline()

    assert list(unique) == [1, 2]
    assert client.page_calls == [1]
    assert pipeline.pages_processed == 1


def test_empty_first_page_gives_empty_report(now):
    client = FakeTaigaClient(pages=[[]])
    report = make_pipeline(client, now).run()

    assert client.page_calls == [1]
    assert client.comment_calls == []
    assert report.rows == ()
    assert report.summary.pages_processed == 1
    assert report.summary.unique_tasks_found == 0
    assert report.summary.total_items == 0
    assert report.summary.total_time == 0


def test_dedup_first_seen_wins(now):
    page1 = [timeline_event(1, event_type="issues.issue.create", subject="first")]
    page2 = [
        timeline_event(1, event_type="issues.issue.change", subject="second"),
        timeline_event(2, item_type="task"),
    ]
    client = FakeTaigaClient(pages=[page1, page2])
    pipeline = make_pipeline(client, now)

    unique = pipeline.collect_timeline()

    assert list(unique) == [1, 2]
    assert unique[1].subject == "first"
    assert unique[1].event_type == "issues.issue.create"
    assert pipeline.timeline_item_count == 3
    assert pipeline.pages_processed == 3


def test_page_failure_keeps_partial_results(now, feed_error):
    client = FakeTaigaClient(pages=[[timeline_event(1)], feed_error])
    pipeline = make_pipeline(client, now)

    unique = pipeline.collect_timeline()

    assert list(unique) == [1]
    assert pipeline.pages_processed == 1


def test_unparseable_date_is_kept(now):
    client = FakeTaigaClient(pages=[[timeline_event(1, created="not-a-date")]])
    pipeline = make_pipeline(client, now)
    assert list(pipeline.collect_timeline()) == [1]


def test_item_ceiling_is_fatal(now):
    client = FakeTaigaClient(pages=[[timeline_event(i) for i in range(1, 6)]])
    pipeline = make_pipeline(client, now, max_timeline_items=3)
    with pytest.raises(FatalError):
        pipeline.collect_timeline()


def test_time_limit_is_fatal(now):
    client = FakeTaigaClient(pages=[[timeline_event(1)]])
    pipeline = make_pipeline(client, now, timeout_seconds=-1)
    with pytest.raises(FatalError):
        pipeline.run()


def test_cancel_stops_at_checkpoint(now):
    cancel = threading.Event()
    cancel.set()
    client = FakeTaigaClient(pages=[[timeline_event(1)]])
    pipeline = make_pipeline(client, now, cancel_event=cancel)
    with pytest.raises(ExtractionCancelled):
        pipeline.run()
    assert client.page_calls == []


# -------------------------------------------------
# Full runs
# -------------------------------------------------
def test_single_issue_with_time(now):
    client = FakeTaigaClient(
        pages=[[timeline_event(1, created="2024-09-18T08:00:00Z"), timeline_event(2, item_type="task", created="2024-09-18T07:00:00Z")]],
        comments={
            1: [history_record(20, "<p>Deployed fix</p><p>Time: 4</p>")],
            2: [history_record(20, "<p>looked into it</p>")],
        },
    )
    report = make_pipeline(client, now).run()

    assert len(report.rows) == 1
    row = report.rows[0]
    assert row.item_id == 1
    assert row.time_value == 4
    assert row.comment == "Deployed fixTime: 4"
    assert report.summary.total_time == 4
    assert report.summary.pages_processed == 2
    assert report.summary.unique_tasks_found == 2
    assert report.summary.tasks_with_time_data == 1
    assert report.summary.cutoff_date == "2024-09-01"


def test_comment_failure_skips_only_that_item(now, comment_error):
    client = FakeTaigaClient(
        pages=[[timeline_event(1), timeline_event(2, item_type="task")]],
        comments={1: comment_error, 2: [history_record(20, "Time: 1.5")]},
    )
    events = []
    report = make_pipeline(client, now, events=events).run()

    assert [row.item_id for row in report.rows] == [2]
    assert report.summary.tasks_with_time_data == 1
    assert report.summary.unique_tasks_found == 2
    assert [(s.item_id, s.stage) for s in report.skipped] == [(1, "comments")]
    item_errors = [e for e in events if e.event == "error"]
    assert item_errors[0].data["item_id"] == 1


def test_assembly_failure_skips_row(now):
    broken = timeline_event(1)
    broken["data"]["project"] = {"id": 9}  # no name
    client = FakeTaigaClient(
        pages=[[broken, timeline_event(2)]],
        comments={1: [history_record(20, "Time: 1")], 2: [history_record(20, "Time: 2")]},
    )
    report = make_pipeline(client, now).run()

    assert [row.item_id for row in report.rows] == [2]
    assert report.summary.total_time == 2
    assert report.summary.tasks_with_time_data == 2
    assert [(s.item_id, s.stage) for s in report.skipped] == [(1, "assembly")]


def test_rows_positive_and_unique(now):
    pages = [
        [timeline_event(1), timeline_event(2), timeline_event(1, event_type="issues.issue.change")],
        [timeline_event(2), timeline_event(3, item_type="task"), timeline_event(4)],
    ]
    comments = {
        1: [history_record(20, "Time: 1"), history_record(20, "Time::2")],
        2: [history_record(20, "nothing")],
        3: [history_record(30, "Time: 8")],
        4: [history_record(20, "<b>time:</b>0.5 Time:0.5")],
    }
    report = make_pipeline(FakeTaigaClient(pages, comments), now).run()

    ids = [row.item_id for row in report.rows]
    assert ids == [1, 4]
    assert len(ids) == len(set(ids))
    assert all(row.time_value > 0 for row in report.rows)
    assert report.rows[0].comment == "Time: 1 | Time::2"
    assert report.summary.total_time == 3.5


def test_progress_event_order(now):
    client = FakeTaigaClient(
        pages=[[timeline_event(1)]],
        comments={1: [history_record(20, "Time: 2")]},
    )
    events = []
    make_pipeline(client, now, events=events).run()

    assert [e.event for e in events] == [
        "progress",
        "timeline_page",
        "timeline_page",
        "timeline_page",
        "progress",
        "task_comments",
        "time_found",
        "progress",
    ]
    assert [e.data["step"] for e in events if e.event == "progress"] == [1, 2, 3]
    fetching = next(e for e in events if e.event == "task_comments")
    assert fetching.data["current"] == 1
    assert fetching.data["total"] == 1
    assert fetching.data["progress_percent"] == 100


def test_run_extraction_hides_unexpected_errors():
    class Exploding(FakeTaigaClient):
        def fetch_timeline_page(self, user_id, page):
            raise KeyError("internal detail")

    with pytest.raises(FatalError) as exc:
        run_extraction(ExtractionRequest("https://taiga.test", "tok", USER), client=Exploding())
    assert "internal detail" not in str(exc.value)
