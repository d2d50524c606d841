"""Unit tests for the plain-text session report."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from notathome.core.errors import NotFound
from notathome.services.address_recording import render_session_report


@pytest.mark.unit
class TestRenderSessionReport:
    def test_header_and_grouped_blocks(self, session_repo, make_address, clock):
        session = session_repo.add(
            code="4821", map_number=7, created_at=datetime(2026, 10, 19, 9, 30, 5, tzinfo=UTC)
        )
        addresses = [
            make_address(session.id, 1, address="12 Main Street"),
            make_address(session.id, 1, address="14 Main Street"),
            make_address(session.id, 10, latitude=-33.8688201, longitude=151.2092961),
        ]

        report = render_session_report(session, addresses, "Riverside Congregation")

        assert report == (
            "Not At Home - Riverside Congregation\n"
            "Session: 4821 - Map: 7\n"
            "Date: 2026-10-19 - Time: 09:30:05\n\n"
            "\n\nBlock 1\n-------\n"
            "\n12 Main Street"
            "\n14 Main Street"
            "\n\nBlock 10\n--------\n"
            "\nLat: -33.868820, Lng: 151.209296"
        )

    def test_blocks_sorted_numerically(self, session_repo, make_address):
        session = session_repo.add()
        addresses = [
            make_address(session.id, 10, address="ten"),
            make_address(session.id, 2, address="two"),
        ]

        report = render_session_report(session, addresses, "Riverside")

        assert report.index("Block 2") < report.index("Block 10")

    def test_no_addresses(self, session_repo):
        session = session_repo.add(code="4821")

        report = render_session_report(session, [], "Riverside")

        assert "Map: N/A" in report
        assert report.endswith("\nNo addresses recorded for this session.")


@pytest.mark.unit
class TestExportSession:
    async def test_export_uses_congregation_name(self, recording, session_repo, make_address):
        session = session_repo.add(code="4821")
        make_address(session.id, 3, address="5 Hill Road")

        report = await recording.export_session(session.id)

        assert report.startswith("Not At Home - Riverside Congregation\n")
        assert "Block 3" in report
        assert "5 Hill Road" in report

    async def test_export_missing_session(self, recording):
        with pytest.raises(NotFound):
            await recording.export_session(uuid4())

    async def test_export_orders_within_block_by_time(
        self, recording, session_repo, make_address, clock
    ):
        session = session_repo.add()
        make_address(session.id, 1, address="second", created_at=clock() + timedelta(minutes=2))
        make_address(session.id, 1, address="first")

        report = await recording.export_session(session.id)

        assert report.index("first") < report.index("second")
