"""
Unit tests for the ensemble CLI (in-memory backend)
"""

import pytest
from typer.testing import CliRunner

from ensemble.cli.event_cli import app

FIXTURE = """
events:
  - id: e1
    title: Gala
    status: published
    start: "2025-04-12T19:00:00Z"
    end: "2025-04-12T21:00:00Z"
  - id: e2
    title: Picnic
    status: draft
users:
  - uid: u1
    name: Ana Lee
    sections: [strings]
    instruments: [violin]
  - uid: u2
    firstName: Ben
    lastName: Cho
    section: brass
rsvps:
  - eventId: e1
    uid: u1
    status: accepted
  - eventId: e1
    uid: u2
    status: maybe
inquiries:
  - id: q1
    name: Dana Park
    email: dana@example.com
    event: {title: Spring Gala, date: "2025-05-02"}
    responses: {u1: accepted}
"""

runner = CliRunner()


@pytest.fixture
def fixture_file(tmp_path, monkeypatch):
    monkeypatch.delenv("PROXY_TARGET_URL", raising=False)
    path = tmp_path / "fixture.yaml"
    path.write_text(FIXTURE, encoding="utf-8")
    return path


def invoke(fixture_file, *args, **kwargs):
    return runner.invoke(app, ["--memory", "--fixture", str(fixture_file), *args], **kwargs)


class TestEnsembleCLI:
    """Test CLI commands against a seeded in-memory store"""

    def test_events_filtered_by_status(self, fixture_file):
        result = invoke(fixture_file, "events", "--status", "published")

        assert result.exit_code == 0
        assert "e1" in result.output
        assert "e2" not in result.output
        assert "1 件" in result.output

    def test_invalid_status_option(self, fixture_file):
        result = invoke(fixture_file, "events", "--status", "archived")
        assert result.exit_code != 0

    def test_rsvp_get(self, fixture_file):
        result = invoke(fixture_file, "rsvp-get", "e1", "u2")

        assert result.exit_code == 0
        assert "tentative" in result.output
        assert "availability" in result.output

    def test_rsvp_get_without_answer(self, fixture_file):
        result = invoke(fixture_file, "rsvp-get", "e1", "nobody")

        assert result.exit_code == 1
        assert "回答なし" in result.output

    def test_rsvp_set_rejects_unknown_status(self, fixture_file):
        result = invoke(fixture_file, "rsvp-set", "e1", "u3", "going")
        assert result.exit_code != 0

    def test_rsvp_set(self, fixture_file):
        result = invoke(fixture_file, "rsvp-set", "e1", "u3", "no")

        assert result.exit_code == 0
        assert "declined" in result.output

    def test_summary_report_to_stdout(self, fixture_file):
        result = invoke(fixture_file, "report", "summary")

        assert result.exit_code == 0
        assert "Event,Start,End,Yes,Maybe,No" in result.output
        assert "Gala,2025-04-12T19:00:00+00:00,2025-04-12T21:00:00+00:00,1,1,0" in result.output

    def test_report_to_file(self, fixture_file, tmp_path):
        output = tmp_path / "detail.csv"
        result = invoke(fixture_file, "report", "detail", "--output", str(output))

        assert result.exit_code == 0
        lines = output.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "eventId,title,uid,status,start,end"
        assert len(lines) == 3

    def test_unknown_report_kind(self, fixture_file):
        result = invoke(fixture_file, "report", "weekly")
        assert result.exit_code != 0

    def test_reconcile_dry_run_finds_nothing(self, fixture_file):
        result = invoke(fixture_file, "reconcile", "e1", "--dry-run")

        assert result.exit_code == 0
        assert "0 件検出" in result.output

    def test_cancel_draft_event(self, fixture_file):
        result = invoke(fixture_file, "cancel", "e2")
        assert result.exit_code == 0
        assert "cancelled" in result.output

    def test_missing_event_is_reported(self, fixture_file):
        result = invoke(fixture_file, "publish", "ghost")

        assert result.exit_code == 1
        assert "❌" in result.output

    def test_delete_requires_confirmation(self, fixture_file):
        result = invoke(fixture_file, "delete", "e1", input="n\n")
        assert result.exit_code == 1

        result = invoke(fixture_file, "delete", "e1", "--yes")
        assert result.exit_code == 0
        assert "e1" in result.output

    def test_status(self, fixture_file):
        result = invoke(fixture_file, "status")

        assert result.exit_code == 0
        assert "Firestore" in result.output
        assert "Not configured" in result.output

    def test_participants(self, fixture_file):
        result = invoke(fixture_file, "participants", "e1")

        assert result.exit_code == 0
        assert "u1" in result.output
        assert "tentative" in result.output
        assert "2 名" in result.output

    def test_inquiry_report(self, fixture_file):
        result = invoke(fixture_file, "inquiry-report", "--from", "2025-05-01", "--to", "2025-05-31")

        assert result.exit_code == 0
        assert "id,title,date,status,clientName,location,yesCount,yesNames" in result.output
        assert "q1,Spring Gala,2025-05-02T00:00:00+00:00,new,Dana Park,,1,Ana Lee" in result.output

    def test_inquiry_report_outside_range(self, fixture_file):
        result = invoke(fixture_file, "inquiry-report", "--from", "2025-06-01")

        assert result.exit_code == 0
        assert "Spring Gala" not in result.output

    def test_inquiry_report_rejects_bad_date(self, fixture_file):
        result = invoke(fixture_file, "inquiry-report", "--from", "soon")
        assert result.exit_code != 0
