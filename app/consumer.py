"""
Client-side consumer for the extraction API.

Usage:
    python -m app.consumer --base-url https://taiga.example.com --token XXX --user-id 20
"""

import argparse
import enum
import logging
import threading
from typing import Callable, Dict, Optional

import requests

from app.config import API_URL
from app.streaming import iter_sse_events

logger = logging.getLogger("consumer")

CONNECTION_LOST = "Connection to server lost"
EXTRACT_PATH = "/timeline/extract"


class ConsumerState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATES = (ConsumerState.CONNECTING, ConsumerState.STREAMING)


class StreamError(Exception):
    pass


class ExtractionConsumer:
    """
    Drives one extraction at a time against the API.

    IDLE → CONNECTING → STREAMING → COMPLETED | FAILED | CANCELLED

    Frames are handled one at a time; a start request while CONNECTING or
    STREAMING is ignored. cancel() closes the live response and drops any
    partial result.
    """

    def __init__(self, api_url: str = API_URL, session: Optional[requests.Session] = None, timeout: float = 330):
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.state = ConsumerState.IDLE
        self.error: Optional[str] = None
        self.extracted_data: Optional[Dict] = None
        self._response = None
        self._lock = threading.Lock()

    # ---------------- state helpers ----------------
    @property
    def in_progress(self) -> bool:
        return self.state in ACTIVE_STATES

    def _begin(self) -> bool:
        with self._lock:
            if self.state in ACTIVE_STATES:
                logger.info("⏳ Extraction already in progress...")
                return False
            self.state = ConsumerState.CONNECTING
            self.error = None
            return True

    def _finish(self, state: ConsumerState, error: Optional[str] = None):
        with self._lock:
            if self.state == ConsumerState.CANCELLED:
                return
            self.state = state
            self.error = error
            self._response = None

    def clear_extracted_data(self):
        self.extracted_data = None

    @staticmethod
    def _params(base_url, auth_token, user_id) -> Dict:
        return {"baseUrl": base_url, "authToken": auth_token, "userId": user_id}

    @staticmethod
    def _error_from(resp) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return body["error"]
        return f"HTTP error! status: {resp.status_code}"

    # ---------------- streaming ----------------
    def extract_with_progress(
        self,
        base_url: str,
        auth_token: str,
        user_id,
        on_progress: Optional[Callable[[str, Dict], None]] = None,
    ) -> Optional[Dict]:
        """
        Run a streaming extraction; returns the result payload.

        Returns None when another extraction is active or this one was
        cancelled. Raises StreamError on server-reported or transport failure.
        """
        if not self._begin():
            return None

        params = {"stream": "true", **self._params(base_url, auth_token, user_id)}
        result = None
        server_error = None

        try:
            resp = self.session.get(
                f"{self.api_url}{EXTRACT_PATH}",
                params=params,
                stream=True,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"❌ EventSource failed: {e}")
            self._finish(ConsumerState.FAILED, CONNECTION_LOST)
            raise StreamError(CONNECTION_LOST) from e

        if resp.status_code != 200:
            message = self._error_from(resp)
            resp.close()
            self._finish(ConsumerState.FAILED, message)
            raise StreamError(message)

        with self._lock:
            if self.state == ConsumerState.CANCELLED:
                resp.close()
                return None
            self._response = resp
            self.state = ConsumerState.STREAMING

        ended = False
        try:
            for event, data in iter_sse_events(resp.iter_lines(decode_unicode=True)):
                if self.state == ConsumerState.CANCELLED:
                    break

                if on_progress:
                    on_progress(event, data)

                if event == "result":
                    result = data
                elif event == "error" and data.get("success") is False:
                    server_error = data.get("error") or "Stream error occurred"
                    logger.error(f"❌ Stream error: {server_error}")
                elif event == "end":
                    logger.info("Stream ended")
                    ended = True
                    break
        except Exception as e:
            # cancel() from another thread closes the socket under iter_lines
            if self.state == ConsumerState.CANCELLED:
                return None
            if not isinstance(e, (requests.RequestException, OSError)):
                self._finish(ConsumerState.FAILED, str(e))
                raise
            logger.error(f"❌ EventSource failed: {e}")
            self._finish(ConsumerState.FAILED, CONNECTION_LOST)
            raise StreamError(CONNECTION_LOST) from e
        finally:
            resp.close()

        if self.state == ConsumerState.CANCELLED:
            return None

        if not ended:
            logger.error("❌ Stream closed before end frame")
            self._finish(ConsumerState.FAILED, CONNECTION_LOST)
            raise StreamError(CONNECTION_LOST)

        if server_error or result is None:
            message = server_error or "Stream ended without a result"
            self._finish(ConsumerState.FAILED, message)
            raise StreamError(message)

        self.extracted_data = result
        self._finish(ConsumerState.COMPLETED)
        return result

    # ---------------- batch ----------------
    def extract(self, base_url: str, auth_token: str, user_id) -> Optional[Dict]:
        """Run a batch extraction (POST); returns the result payload."""
        if not self._begin():
            return None

        try:
            resp = self.session.post(
                f"{self.api_url}{EXTRACT_PATH}",
                json=self._params(base_url, auth_token, user_id),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"❌ Extraction failed: {e}")
            self._finish(ConsumerState.FAILED, CONNECTION_LOST)
            raise StreamError(CONNECTION_LOST) from e

        with self._lock:
            if self.state == ConsumerState.CANCELLED:
                return None

        if resp.status_code != 200:
            message = self._error_from(resp)
            self._finish(ConsumerState.FAILED, message)
            raise StreamError(message)

        try:
            result = resp.json()
        except ValueError:
            result = None
        if not isinstance(result, dict):
            message = "Invalid response from server"
            logger.error(f"❌ Extraction failed: {message}")
            self._finish(ConsumerState.FAILED, message)
            raise StreamError(message)

        if not result.get("success"):
            message = result.get("error") or "Unknown error occurred"
            self._finish(ConsumerState.FAILED, message)
            raise StreamError(message)

        summary = result.get("summary", {})
        logger.info(
            f"✅ Extraction completed! Found {summary.get('totalItems')} items "
            f"with total time: {summary.get('totalTimeFormatted')}"
        )
        self.extracted_data = result
        self._finish(ConsumerState.COMPLETED)
        return result

    # ---------------- cancellation ----------------
    def cancel(self):
        """Stop the ongoing extraction; no partial report is kept."""
        with self._lock:
            if self.state not in ACTIVE_STATES:
                return
            self.state = ConsumerState.CANCELLED
            resp, self._response = self._response, None

        if resp is not None:
            resp.close()
        logger.info("Extraction stopped")


# -------------------------------------------------
# CLI
# -------------------------------------------------
def _print_progress(event: str, data: Dict):
    if event == "result":
        return
    message = data.get("message") or data.get("error")
    if message:
        print(f"[{event}] {message}")


def main(argv=None):
    from app.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="Extract logged time from a Taiga timeline")
    parser.add_argument("--base-url", required=True)
    parser.add_argument("--token", required=True)
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--api-url", default=API_URL)
    parser.add_argument("--batch", action="store_true", help="Use the non-streaming endpoint")
    args = parser.parse_args(argv)

    setup_logging()
    consumer = ExtractionConsumer(args.api_url)

    try:
        if args.batch:
            result = consumer.extract(args.base_url, args.token, args.user_id)
        else:
            result = consumer.extract_with_progress(
                args.base_url, args.token, args.user_id, on_progress=_print_progress
            )
    except StreamError as e:
        print(f"❌ Extraction failed: {e}")
        return 1
    except KeyboardInterrupt:
        consumer.cancel()
        return 130

    for row in result["items"]:
        print(f"  {row['itemType']:<5} #{row['itemRef']:<6} {row['timeValue']:>7g}h  {row['itemSubject']}")
    summary = result["summary"]
    print(
        f"Total: {summary['totalTimeFormatted']}h across {summary['totalItems']} items "
        f"(since {summary['cutoffDate']})"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
