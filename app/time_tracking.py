import re

from bs4 import BeautifulSoup

# "Time: 2", "time::1.5", "TIME:   3" ... one or more colons, no sign/exponent
TIME_TOKEN_RE = re.compile(r"Time:+\s*(\d+(?:\.\d+)?)", re.IGNORECASE)


def extract_time_from_comment_html(comment_html) -> float:
    """
    Sum every `Time:<n>` token found anywhere in the comment.

    - Markup is ignored: tokens are matched on the raw HTML
    - Empty / non-string input → 0
    """
    if not comment_html or not isinstance(comment_html, str):
        return 0

    return sum(float(value) for value in TIME_TOKEN_RE.findall(comment_html))


def strip_html(comment_html) -> str:
    if not comment_html or not isinstance(comment_html, str):
        return ""

    soup = BeautifulSoup(comment_html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text().strip()
