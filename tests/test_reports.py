import csv
import datetime

from signin_sentry.reports import write_cycle_report

from conftest import make_event


def test_report_lists_new_events(tmp_path):
    new = [
        make_event("09:00", "alice@contoso.com", "1.1.1.1"),
        make_event("09:10", "bob@contoso.com", "2.2.2.2", code=None),
    ]

    path = write_cycle_report(new, str(tmp_path / "reports"), now=datetime.datetime(2024, 5, 1, 9, 15, 0))

    assert path.endswith("new_signin_events_20240501_091500.csv")
    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [row["principal"] for row in rows] == ["alice@contoso.com", "bob@contoso.com"]
    assert rows[0]["timestamp"] == "2024-05-01T09:00:00+00:00"
    assert rows[1]["error_code"] == ""


def test_nothing_written_without_new_events(tmp_path):
    assert write_cycle_report([], str(tmp_path / "reports")) is None
    assert not (tmp_path / "reports").exists()
