"""Availability and identity rules applied to webcast recordings.

Kept apart from the orchestrator so the availability heuristic can be
replaced without touching the control flow.
"""

DEFAULT_UNAVAILABLE_MARKER = "not-available"


def activity_id_from_url(url: str) -> str:
    """Extract the activity id, the final path segment of a URL or guid.

    Args:
        url: Detail-page link or episode guid.

    Returns:
        The last ``/``-delimited segment, ignoring a trailing slash.
    """
    if not url:
        return ""
    return url.rstrip("/").split("/")[-1]


def is_available(video_url: str, marker: str = DEFAULT_UNAVAILABLE_MARKER) -> bool:
    """Check whether a resolved video URL points at a real recording.

    The upstream service redirects withdrawn or embargoed recordings to a
    URL containing ``marker``. Anything else counts as available, including
    an empty string or an error page.
    """
    if not marker:
        return True
    return marker not in (video_url or "")
