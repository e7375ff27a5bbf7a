# --- Global log sanitizer: trim HTML error pages, redact secrets ----------------
import logging, re

from odoo_sync.config import settings

# Odoo behind a reverse proxy answers 502/504 with a full HTML page.
_HTML_RE  = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_NOISE_RE = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>|<[^>]+>')

REDACTED = "<redacted>"
HTML_TRIM_AT = 200


def _html_summary(body: str) -> str:
    m = _TITLE_RE.search(body)
    text = m.group(1) if m else body
    text = re.sub(r'\s+', ' ', _NOISE_RE.sub(' ', text)).strip()
    return f"{text[:HTML_TRIM_AT]} [HTML {len(body)} chars trimmed]"


def _secrets() -> list[str]:
    # Short values would redact ordinary words.
    vals = (settings.ODOO_API_KEY, settings.WEBHOOK_TOKEN, settings.ADMIN_PASS)
    return [v for v in vals if v and len(v) >= 6]


class _HtmlTrimFilter(logging.Filter):
    """If a log message contains a large HTML blob, replace it with a short summary."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except TypeError:
            return True  # malformed args: let the handler report it
        if isinstance(msg, str) and len(msg) > HTML_TRIM_AT and _HTML_RE.search(msg):
            record.msg = _html_summary(msg)
            record.args = ()
        return True


class _SecretRedactFilter(logging.Filter):
    """Mask the Odoo API key and webhook token wherever they show up."""
    def filter(self, record: logging.LogRecord) -> bool:
        secrets = _secrets()
        if not secrets:
            return True
        try:
            msg = record.getMessage()
        except TypeError:
            return True
        if not isinstance(msg, str):
            return True
        redacted = msg
        for s in secrets:
            redacted = redacted.replace(s, REDACTED)
        if redacted != msg:
            record.msg = redacted
            record.args = ()
        return True


# install once on common loggers (root + uvicorn family)
for _name in ("", "uvicorn", "uvicorn.error"):
    logging.getLogger(_name).addFilter(_HtmlTrimFilter())
    logging.getLogger(_name).addFilter(_SecretRedactFilter())
# --------------------------------------------------------------------------------
