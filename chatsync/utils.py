"""Small pure helpers shared by the comment and realtime modules."""
import time


def escape_html(text):
    """Escape angle brackets so message text cannot inject markup.

    Only ``<`` and ``>`` are replaced; ampersands are left alone so text that
    is escaped twice (local echo, then server echo) does not degrade.
    """
    if text is None:
        return None
    return str(text).replace("<", "&lt;").replace(">", "&gt;")


def now_millis() -> int:
    """Current wall clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def unescape_html(text):
    """Inverse of ``escape_html``."""
    if text is None:
        return None
    return str(text).replace("&lt;", "<").replace("&gt;", ">")
