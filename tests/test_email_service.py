"""Tests for listing, search and per-message operations on the local cache."""

import pytest

from app.exceptions import NotFoundError, ValidationError
from app.models.message import Message
from app.services import email_service
from app.services.email_service import build_pagination
from tests.fakes import make_raw_email


class TestPagination:
    def test_block(self):
        assert build_pagination(45, 2, 20) == {
            "total": 45, "page": 2, "limit": 20, "totalPages": 3, "hasMore": True
        }

    def test_last_page(self):
        assert build_pagination(40, 2, 20)["hasMore"] is False

    def test_empty(self):
        assert build_pagination(0, 1, 20) == {
            "total": 0, "page": 1, "limit": 20, "totalPages": 0, "hasMore": False
        }


class TestListEmails:
    def test_pages_cover_folder_without_overlap(self, db, account, add_message):
        for _ in range(7):
            add_message(account)

        seen = []
        for page in (1, 2, 3):
            result = email_service.list_emails(db, account.id, page=page, limit=3)
            seen.extend(e.id for e in result["emails"])

        assert len(seen) == 7
        assert len(set(seen)) == 7
        last = email_service.list_emails(db, account.id, page=3, limit=3)
        assert len(last["emails"]) == 1
        assert last["pagination"]["hasMore"] is False

    def test_newest_first(self, db, account, add_message):
        first = add_message(account)
        second = add_message(account)

        result = email_service.list_emails(db, account.id)

        assert [e.id for e in result["emails"]] == [second.id, first.id]

    def test_sort_ascending_by_subject(self, db, account, add_message):
        add_message(account, subject="b")
        add_message(account, subject="a")
        add_message(account, subject="c")

        result = email_service.list_emails(db, account.id, sort_by="subject", sort_order="asc")

        assert [e.subject for e in result["emails"]] == ["a", "b", "c"]

    def test_unknown_sort_field(self, db, account):
        with pytest.raises(ValidationError):
            email_service.list_emails(db, account.id, sort_by="body_html")

    def test_folder_and_account_scoped(self, db, account, other_account, add_message):
        add_message(account, folder="INBOX")
        add_message(account, folder="Archive")
        add_message(other_account, folder="INBOX")

        result = email_service.list_emails(db, account.id, folder="INBOX")

        assert result["pagination"]["total"] == 1
        assert result["emails"][0].account_id == account.id

    def test_page_past_end(self, db, account, add_message):
        add_message(account)

        result = email_service.list_emails(db, account.id, page=5, limit=10)

        assert result["emails"] == []
        assert result["pagination"]["total"] == 1


class TestSearch:
    def test_substring_match(self, db, account, add_message):
        hit = add_message(account, subject="fabulous offer")
        add_message(account, subject="nothing here")

        result = email_service.search_emails(db, account.id, "ab")

        assert [e.id for e in result["emails"]] == [hit.id]

    def test_matches_body_and_sender(self, db, account, add_message):
        by_body = add_message(account, body_text="meet at the lighthouse")
        by_sender = add_message(account, sender_email="lighthouse@keeper.org")
        add_message(account)

        result = email_service.search_emails(db, account.id, "lighthouse")

        assert {e.id for e in result["emails"]} == {by_body.id, by_sender.id}

    def test_wildcards_matched_literally(self, db, account, add_message):
        add_message(account, subject="100% off")
        add_message(account, subject="1000 items")

        assert email_service.search_emails(db, account.id, "0%")["pagination"]["total"] == 1
        assert email_service.search_emails(db, account.id, "_")["pagination"]["total"] == 0

    def test_spans_folders_not_accounts(self, db, account, other_account, add_message):
        add_message(account, subject="invoice", folder="INBOX")
        add_message(account, subject="invoice", folder="Archive")
        add_message(other_account, subject="invoice")

        assert email_service.search_emails(db, account.id, "invoice")["pagination"]["total"] == 2


class TestMessageState:
    def test_mark_as_read_idempotent(self, db, account, add_message):
        message = add_message(account)

        assert email_service.mark_as_read(db, account.id, message.id) is True
        assert email_service.mark_as_read(db, account.id, message.id) is True
        db.expire_all()
        assert db.get(Message, message.id).is_read is True

    def test_mark_as_read_other_account(self, db, account, other_account, add_message):
        message = add_message(other_account)

        assert email_service.mark_as_read(db, account.id, message.id) is False
        db.expire_all()
        assert db.get(Message, message.id).is_read is False

    def test_toggle_star_twice_restores(self, db, account, add_message):
        message = add_message(account)

        assert email_service.toggle_star(db, account.id, message.id).is_starred is True
        assert email_service.toggle_star(db, account.id, message.id).is_starred is False

    def test_toggle_star_missing(self, db, account):
        assert email_service.toggle_star(db, account.id, 12345) is None

    def test_folder_stats(self, db, account, add_message):
        add_message(account, folder="INBOX", is_read=True)
        add_message(account, folder="INBOX")
        add_message(account, folder="Archive")

        assert email_service.get_folder_stats(db, account.id) == [
            {"folder": "Archive", "total": 1, "unread": 1},
            {"folder": "INBOX", "total": 2, "unread": 1},
        ]


class TestFetchFresh:
    async def test_live_copy_leaves_cache_alone(self, db, account, add_message, mailbox, google_auth, imap_server):
        imap_server.add("Archive", make_raw_email(subject="Live subject"), uid=55)
        cached = add_message(account, subject="Cached subject", uid=55, folder="Archive")

        email = await email_service.fetch_fresh_email(db, account.id, cached.id, mailbox, google_auth)

        assert email["id"] == cached.id
        assert email["subject"] == "Live subject"
        db.expire_all()
        assert db.get(Message, cached.id).subject == "Cached subject"
        assert imap_server.all_closed

    async def test_no_uid(self, db, account, add_message, mailbox, google_auth):
        cached = add_message(account)

        with pytest.raises(ValidationError):
            await email_service.fetch_fresh_email(db, account.id, cached.id, mailbox, google_auth)

    async def test_unknown_message(self, db, account, mailbox, google_auth):
        with pytest.raises(NotFoundError):
            await email_service.fetch_fresh_email(db, account.id, 999, mailbox, google_auth)
