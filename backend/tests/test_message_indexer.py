"""
MessageIndexer tests.

Coverage:
  - SINCE criteria for today / week / month (including month-end clamping)
  - job relevance keywords and "job [CODE]" tokens
  - From header parsing, subject default, Date fallback
  - list_messages against the fake server: filters, order, attachment ids,
    nested part paths, resume detection, MAX_FETCH cap
  - list -> locate identity on part paths
"""

from datetime import date, datetime

import pytest

from app.models.mail import DateFilter, ListFilters
from app.services.attachment_locator import locate
from app.services.mail_session import open_session
from app.services.message_indexer import (
    build_search_criteria,
    is_job_related,
    is_resume_filename,
    list_messages,
    parse_received_at,
    parse_sender,
)
from tests.conftest import build_message, structure_of


class TestSearchCriteria:

    def test_none_is_all(self):
        assert build_search_criteria(DateFilter.NONE) == ["ALL"]

    def test_today(self):
        assert build_search_criteria(DateFilter.TODAY, today=date(2025, 3, 7)) == ["SINCE", date(2025, 3, 7)]

    def test_week(self):
        assert build_search_criteria(DateFilter.WEEK, today=date(2025, 3, 7)) == ["SINCE", date(2025, 2, 28)]

    def test_month(self):
        assert build_search_criteria(DateFilter.MONTH, today=date(2025, 3, 7)) == ["SINCE", date(2025, 2, 7)]

    def test_month_clamps_day(self):
        assert build_search_criteria(DateFilter.MONTH, today=date(2025, 3, 31)) == ["SINCE", date(2025, 2, 28)]

    def test_month_in_january(self):
        assert build_search_criteria(DateFilter.MONTH, today=date(2025, 1, 15)) == ["SINCE", date(2024, 12, 15)]


class TestHeuristics:

    @pytest.mark.parametrize(
        "subject",
        ["Application for Backend role", "My RESUME", "We're hiring!", "Re: job [DEV42]", "CV attached"],
    )
    def test_job_related(self, subject):
        assert is_job_related(subject)

    @pytest.mark.parametrize("subject", ["Lunch?", "Invoice 2025-03", "(No subject)"])
    def test_not_job_related(self, subject):
        assert not is_job_related(subject)

    @pytest.mark.parametrize("name", ["resume.PDF", "cv.docx", "CV.Doc", "me.rtf", "notes.txt", "x.odt"])
    def test_resume_extensions(self, name):
        assert is_resume_filename(name)

    @pytest.mark.parametrize("name", ["photo.png", "archive.zip", "pdf", "unknown-1"])
    def test_not_resume(self, name):
        assert not is_resume_filename(name)


class TestHeaderParsing:

    def test_name_and_address(self):
        sender = parse_sender('"Jane Doe" <jane@example.com>')
        assert (sender.name, sender.email) == ("Jane Doe", "jane@example.com")

    def test_bare_address_uses_raw_value_as_name(self):
        sender = parse_sender("bob@example.com")
        assert (sender.name, sender.email) == ("bob@example.com", "bob@example.com")

    def test_empty_header(self):
        sender = parse_sender("")
        assert (sender.name, sender.email) == ("", "")

    def test_received_at_iso(self):
        assert parse_received_at("Fri, 07 Mar 2025 09:30:00 +0000") == "2025-03-07T09:30:00+00:00"

    def test_unparseable_date_falls_back_to_now(self):
        value = datetime.fromisoformat(parse_received_at("not a date"))
        assert value.date() == datetime.now(value.tzinfo).date()


class TestListMessages:

    @pytest.mark.asyncio
    async def test_lists_all_in_server_order(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            summaries = await list_messages(session, ListFilters())
        assert [s.uid for s in summaries] == [101, 102, 103]
        assert [s.id for s in summaries] == ["101", "102", "103"]

    @pytest.mark.asyncio
    async def test_today_filter_returns_only_todays_message(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            summaries = await list_messages(session, ListFilters(date_filter=DateFilter.TODAY))
        assert [s.uid for s in summaries] == [101]
        assert ("SEARCH", ("SINCE", date.today())) in populated_server.commands

    @pytest.mark.asyncio
    async def test_week_and_month_windows(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            week = await list_messages(session, ListFilters(date_filter=DateFilter.WEEK))
            month = await list_messages(session, ListFilters(date_filter=DateFilter.MONTH))
        assert [s.uid for s in week] == [101]
        assert [s.uid for s in month] == [101, 102]

    @pytest.mark.asyncio
    async def test_summary_fields(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            first, second, third = await list_messages(session)

        assert first.sender.name == "Jane Doe"
        assert first.sender.email == "jane@example.com"
        assert first.subject == "Application for Python Engineer"
        assert first.received_at.startswith(date.today().isoformat())
        assert first.has_attachments
        [resume] = first.attachments
        assert resume.id == "att-101-1"
        assert resume.part_id == "2"
        assert resume.name == "resume.PDF"
        assert resume.content_type == "application/pdf"
        assert resume.encoding == "base64"
        assert resume.is_resume

        assert second.sender.name == "bob@example.com"
        assert [(a.id, a.part_id, a.name, a.is_resume) for a in second.attachments] == [
            ("att-102-1", "2", "photo.png", False),
            ("att-102-2", "3", "notes.txt", True),
        ]

        assert not third.has_attachments
        assert third.attachments == []

    @pytest.mark.asyncio
    async def test_job_and_attachment_filters(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            job = await list_messages(session, ListFilters(job_related=True))
            with_attachments = await list_messages(session, ListFilters(with_attachments=True))
        assert [s.uid for s in job] == [101]
        assert [s.uid for s in with_attachments] == [101, 102]

    @pytest.mark.asyncio
    async def test_missing_subject_defaults(self, credentials, mail_server):
        raw = build_message("", body="no subject here")
        mail_server.add(5, raw)
        async with open_session(credentials, connector=mail_server.connect) as session:
            [summary] = await list_messages(session)
        assert summary.subject == "(No subject)"

    @pytest.mark.asyncio
    async def test_max_fetch_keeps_most_recent(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            summaries = await list_messages(session, max_fetch=2)
        assert [s.uid for s in summaries] == [102, 103]

    @pytest.mark.asyncio
    async def test_empty_mailbox(self, credentials, mail_server):
        async with open_session(credentials, connector=mail_server.connect) as session:
            assert await list_messages(session) == []

    @pytest.mark.asyncio
    async def test_wire_shape_uses_from_alias(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            summary = (await list_messages(session))[0]
        payload = summary.model_dump(by_alias=True)
        assert payload["from"] == {"name": "Jane Doe", "email": "jane@example.com"}
        assert payload["receivedAt"] == summary.received_at
        assert payload["attachments"][0]["partId"] == "2"

    @pytest.mark.asyncio
    async def test_list_then_locate_is_identity(self, credentials, populated_server):
        async with open_session(credentials, connector=populated_server.connect) as session:
            summaries = await list_messages(session)

        for summary in summaries:
            structure = structure_of(populated_server.get(summary.uid))
            for descriptor in summary.attachments:
                located = locate(structure, descriptor.id)
                assert located.path == descriptor.part_id
                assert located.filename == descriptor.name
