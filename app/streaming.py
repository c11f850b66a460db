"""
Server-Sent Events transport for live extraction progress.
"""

import json
import logging
import queue
import threading
from typing import Dict, Iterable, Iterator, Tuple

from app.errors import ExtractionCancelled, FatalError
from app.models import ExtractionRequest
from app.pipeline import FATAL_MESSAGE, run_extraction
from app.progress import ProgressEvent, ProgressReporter

logger = logging.getLogger("streaming")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_sse(event: str, data: Dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def iter_sse_events(lines: Iterable[str]) -> Iterator[Tuple[str, Dict]]:
    """
    Parse SSE text lines into (event, data) pairs.

    A blank line dispatches the pending frame. Frames without data are
    skipped; a missing event name defaults to "message".
    """
    event = None
    data_lines = []

    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        line = line.rstrip("\r")

        if line == "":
            if data_lines:
                payload = "\n".join(data_lines)
                try:
                    data = json.loads(payload)
                except ValueError:
                    data = {"message": payload}
                yield event or "message", data
            event, data_lines = None, []
            continue

        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event = value
        elif name == "data":
            data_lines.append(value)


def _run_worker(request: ExtractionRequest, reporter: ProgressReporter, cancel: threading.Event, **kwargs):
    """Run the pipeline and guarantee a terminal frame followed by `end`."""
    failed = False
    try:
        reporter.start()
        report = run_extraction(request, reporter=reporter, cancel_event=cancel, **kwargs)
        reporter.completed(report)
    except ExtractionCancelled:
        logger.info("🛑 Extraction cancelled, client disconnected")
        failed = True
    except FatalError as e:
        logger.error(f"❌ Streaming extraction failed: {e}")
        reporter.failed(str(e))
        failed = True
    except Exception:
        logger.error("❌ Unexpected streaming error", exc_info=True)
        reporter.failed(FATAL_MESSAGE)
        failed = True
    finally:
        reporter.end(failed=failed)


def stream_extraction(request: ExtractionRequest, **kwargs) -> Iterator[str]:
    """
    Yield SSE frames for one extraction.

    The pipeline runs on a worker thread and pushes events through a queue;
    frames are yielded in emission order until `end`. Closing the generator
    (client disconnect) sets the cancel event so the worker stops at its next
    checkpoint.
    """
    events: "queue.Queue[ProgressEvent]" = queue.Queue()
    cancel = threading.Event()
    reporter = ProgressReporter(sink=events.put)

    worker = threading.Thread(
        target=_run_worker,
        args=(request, reporter, cancel),
        kwargs=kwargs,
        name=f"extraction-{request.user_id}",
        daemon=True,
    )
    worker.start()

    try:
        while True:
            event = events.get()
            yield format_sse(event.event, event.data)
            if event.event == "end":
                break
    finally:
        if worker.is_alive():
            cancel.set()
