import logging
import warnings
from typing import List, Dict, Optional

import requests
from urllib3.exceptions import InsecureRequestWarning

from app.config import REQUEST_TIMEOUT_SECONDS, VERIFY_SSL, TAIGA_REFERER
from app.errors import FeedFetchError, CommentFetchError

logger = logging.getLogger("taiga")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/138.0.0.0 Safari/537.36"
)


class TaigaClient:
    """
    Taiga REST client for one extraction run.

    - One requests.Session per run (keep-alive across pages and items)
    - Bearer auth + browser-shaped headers on every call
    - No retries: failures surface as FeedFetchError / CommentFetchError
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str,
        verify_ssl: bool = VERIFY_SSL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.verify_ssl = verify_ssl
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "accept": "application/json, text/plain, */*",
                "accept-language": "en",
                "authorization": f"Bearer {auth_token}",
                "user-agent": USER_AGENT,
                "x-lazy-pagination": "true",
            }
        )
        if TAIGA_REFERER:
            self.session.headers["referer"] = TAIGA_REFERER

        if not verify_ssl:
            logger.warning(f"⚠️ TLS certificate validation disabled for {self.base_url}")

    # ------------------------------------------------------------------
    # Core HTTP
    # ------------------------------------------------------------------

    def _get(self, url: str, params: Optional[dict], error_cls) -> List[Dict]:
        try:
            with warnings.catch_warnings():
                if not self.verify_ssl:
                    warnings.simplefilter("ignore", InsecureRequestWarning)
                resp = self.session.get(
                    url,
                    params=params,
                    timeout=self.timeout,
                    verify=self.verify_ssl,
                    allow_redirects=True,
                )
        except requests.RequestException as e:
            raise error_cls(f"Request error: {e}") from e

        if resp.status_code != 200:
            raise error_cls(f"HTTP error: {resp.status_code}")

        try:
            return resp.json()
        except ValueError as e:
            raise error_cls(f"JSON decode error: {e}") from e

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def timeline_url(self, user_id) -> str:
        return f"{self.base_url}/api/v1/timeline/user/{user_id}"

    def fetch_timeline_page(self, user_id, page: int) -> List[Dict]:
        """Fetch one (1-indexed) page of the user's relevant timeline events."""
        data = self._get(
            self.timeline_url(user_id),
            {"only_relevant": "true", "page": page},
            FeedFetchError,
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise FeedFetchError("Timeline response is not a list")
        return data

    # ------------------------------------------------------------------
    # History / comments
    # ------------------------------------------------------------------

    def history_url(self, item_type: str, item_id) -> str:
        return f"{self.base_url}/api/v1/history/{item_type}/{item_id}"

    def fetch_item_comments(self, user_id, item_id, item_type: str = "issue") -> List[Dict]:
        """
        Fetch the raw comment history of an issue or task.
        Records are returned verbatim; user filtering happens in the pipeline.
        """
        data = self._get(
            self.history_url(item_type, item_id),
            {"type": "comment"},
            CommentFetchError,
        )
        if not isinstance(data, list):
            logger.warning(f"Comment response for {item_type} {item_id} (user {user_id}) is not a list")
            return []
        return data

    def close(self):
        self.session.close()
