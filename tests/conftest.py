"""Shared fixtures: a scripted Taiga client and timeline/history record builders.

The project root is added to sys.path so `import app` works without an
editable install.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.errors import CommentFetchError, FeedFetchError  # noqa: E402

NOW = datetime(2024, 9, 18, 12, 0, tzinfo=timezone.utc)


class FakeTaigaClient:
    """Scripted stand-in for TaigaClient.

    pages: list of page payloads (or exceptions) returned in order.
    comments: {item_id: history list or exception}.
    """

    def __init__(self, pages=None, comments=None):
        self.pages = list(pages or [])
        self.comments = dict(comments or {})
        self.page_calls = []
        self.comment_calls = []
        self.closed = False

    def fetch_timeline_page(self, user_id, page):
        self.page_calls.append(page)
        if page > len(self.pages):
            return []
        result = self.pages[page - 1]
        if isinstance(result, Exception):
            raise result
        return result

    def fetch_item_comments(self, user_id, item_id, item_type="issue"):
        self.comment_calls.append((item_id, item_type))
        result = self.comments.get(item_id, [])
        if isinstance(result, Exception):
            raise result
        return result

    def history_url(self, item_type, item_id):
        return f"https://taiga.test/api/v1/history/{item_type}/{item_id}"

    def close(self):
        self.closed = True


def timeline_event(item_id, item_type="issue", created="2024-09-10T09:00:00Z", event_type=None, project="Alpha", **fields):
    payload = {"id": item_id, "ref": item_id * 10, "subject": f"{item_type.title()} {item_id}", **fields}
    data = {item_type: payload}
    if project:
        data["project"] = {"name": project}
    return {
        "created": created,
        "event_type": event_type or f"projects.{item_type}.create",
        "data": data,
    }


def history_record(user_pk, comment_html, created_at="2024-09-10T10:00:00Z"):
    return {
        "user": {"pk": user_pk},
        "comment_html": comment_html,
        "comment": comment_html,
        "created_at": created_at,
    }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def feed_error():
    return FeedFetchError("HTTP error: 500")


@pytest.fixture
def comment_error():
    return CommentFetchError("Request error: connection reset")
