"""Tests for turning raw IMAP records into cached message dicts."""

from datetime import datetime, timedelta, timezone

from app.services.message_normalizer import (
    NO_SUBJECT,
    SNIPPET_LENGTH,
    RawMessage,
    normalize_message,
)
from app.services.text_cleaner import html_to_text
from tests.fakes import make_raw_email


def _raw(data: bytes, flags=(), uid=42, seq=3) -> RawMessage:
    return RawMessage(seq=seq, uid=uid, flags=list(flags), raw=data)


def test_envelope_fields():
    record = normalize_message(_raw(make_raw_email(
        subject="Quarterly report",
        sender="Alice Example <alice@example.com>",
        to="Bob <bob@example.com>",
        date=datetime(2024, 3, 5, 10, 30),
        message_id="<q1@example.com>",
        text="Numbers attached.",
    )), folder="INBOX")

    assert record["message_id"] == "<q1@example.com>"
    assert record["uid"] == 42
    assert record["subject"] == "Quarterly report"
    assert record["sender_name"] == "Alice Example"
    assert record["sender_email"] == "alice@example.com"
    assert record["recipient_email"] == "bob@example.com"
    assert record["received_at"] == datetime(2024, 3, 5, 10, 30)
    assert record["folder"] == "INBOX"
    assert record["body_text"].strip() == "Numbers attached."
    assert record["snippet"].startswith("Numbers attached.")
    assert record["has_attachments"] is False


def test_date_converted_to_utc():
    offset = timezone(timedelta(hours=2))
    record = normalize_message(_raw(make_raw_email(date=datetime(2024, 3, 5, 12, 0, tzinfo=offset))))

    assert record["received_at"] == datetime(2024, 3, 5, 10, 0)
    assert record["received_at"].tzinfo is None


def test_missing_date():
    record = normalize_message(_raw(make_raw_email(date=None)))
    assert record["received_at"] is None


def test_flags():
    unread = normalize_message(_raw(make_raw_email()))
    seen = normalize_message(_raw(make_raw_email(), flags=["\\Seen", "\\Flagged"]))

    assert (unread["is_read"], unread["is_starred"]) == (False, False)
    assert (seen["is_read"], seen["is_starred"]) == (True, True)


def test_missing_subject():
    record = normalize_message(_raw(make_raw_email(subject=None)))
    assert record["subject"] == NO_SUBJECT


def test_blank_subject():
    record = normalize_message(_raw(make_raw_email(subject="   ")))
    assert record["subject"] == NO_SUBJECT


def test_missing_message_id_synthetic():
    record = normalize_message(_raw(make_raw_email(message_id=None), seq=9))

    assert record["message_id"].startswith("gen-")
    assert record["message_id"].endswith("-9")


def test_missing_message_id_uid_mode():
    raw = _raw(make_raw_email(message_id=None), uid=1234)

    first = normalize_message(raw, folder="Archive", fallback_ids="uid")
    second = normalize_message(raw, folder="Archive", fallback_ids="uid")

    assert first["message_id"] == second["message_id"] == "uid-Archive-1234"


def test_uid_mode_without_uid_falls_back_to_synthetic():
    record = normalize_message(_raw(make_raw_email(message_id=None), uid=None), fallback_ids="uid")
    assert record["message_id"].startswith("gen-")


def test_reply_header_is_not_stored_as_thread():
    data = make_raw_email().replace(
        b"Message-ID:", b"In-Reply-To: <parent@example.com>\nMessage-ID:", 1
    )
    record = normalize_message(_raw(data))
    assert record["thread_id"] is None


def test_multipart_alternative_keeps_both_bodies():
    record = normalize_message(_raw(make_raw_email(
        text="plain version",
        html="<p>html <b>version</b></p>",
    )))

    assert record["body_text"].strip() == "plain version"
    assert "<b>version</b>" in record["body_html"]
    assert record["snippet"].startswith("plain version")


def test_html_only_gets_text_body():
    html = "<html><body><p>Hello <b>there</b></p><script>x()</script></body></html>"
    record = normalize_message(_raw(make_raw_email(text=None, html=html)))

    assert "Hello" in record["body_text"]
    assert "<b>" not in record["body_text"]
    assert "x()" not in record["body_text"]
    assert "<b>there</b>" in record["body_html"]
    assert record["snippet"].startswith("Hello")


def test_attachments_detected():
    record = normalize_message(_raw(make_raw_email(attachment=("report.pdf", b"%PDF-1.4 data"))))

    assert record["has_attachments"] is True
    assert record["attachments"] == [
        {"filename": "report.pdf", "content_type": "application/octet-stream", "size": 13}
    ]


def test_snippet_truncated():
    record = normalize_message(_raw(make_raw_email(text="x" * 500)))

    assert len(record["snippet"]) == SNIPPET_LENGTH
    assert len(record["body_text"].strip()) == 500


def test_unparseable_body_falls_back_to_raw_snippet():
    data = (
        b"Message-ID: <broken@example.com>\r\n"
        b"Subject: Broken charset\r\n"
        b"Content-Type: text/plain; charset=\"x-no-such-charset\"\r\n"
        b"\r\n"
        b"body that cannot be decoded\r\n"
    )
    record = normalize_message(_raw(data))

    assert record["message_id"] == "<broken@example.com>"
    assert record["subject"] == "Broken charset"
    assert record["body_text"] is None
    assert record["body_html"] is None
    assert record["snippet"] == data.decode()[:SNIPPET_LENGTH]


def test_empty_record():
    record = normalize_message(_raw(b""))

    assert record["subject"] == NO_SUBJECT
    assert record["sender_email"] == ""
    assert record["message_id"].startswith("gen-")


def test_html_to_text_blank():
    assert html_to_text("") == ""
