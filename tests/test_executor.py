"""
Tests for the EzUpdate batch executor.

Runs full batches against in-memory adapters and a temporary history
store.
"""

import pytest
from pathlib import Path


@pytest.fixture
def history(tmp_path: Path):
    from ezupdate.history import HistoryStore
    return HistoryStore(tmp_path / "ezupdate_history.log")


def make_executor(adapters, history, selector=None, reboot=False):
    from ezupdate.executor import BatchExecutor
    return BatchExecutor(adapters, history, selector=selector, reboot_check=lambda backends: reboot)


class RecordingSelector:
    """Selector double that remembers what it was offered."""

    def __init__(self, answer=None, pick_all=False):
        self.answer = answer
        self.pick_all = pick_all
        self.offered = None
        self.bulk_labels = None

    def select(self, pending, bulk_labels):
        self.offered = pending
        self.bulk_labels = bulk_labels
        if self.pick_all:
            return {label: [u.id for u in units] for label, units in pending.items()}
        return self.answer


# ---------------------------------------------------------------------------
# Tests: full runs
# ---------------------------------------------------------------------------

class TestBatchRun:

    @pytest.mark.unit
    def test_applied_changes_are_recorded(self, fake_adapter, history):
        apt = fake_adapter(pending={"curl": "2.0", "wget": "1.5"}, states={"curl": "1.0", "wget": "1.4"})

        report = make_executor([apt], history).run()

        records = list(history.scan_reverse())
        assert [r.unit for r in records] == ["wget", "curl"]
        assert {r.batch_id for r in records} == {report.batch_id}
        assert records[1].before == "1.0" and records[1].after == "2.0"
        assert report.applied_count == 2
        assert report.pending_count == 2
        assert report.history_path == history.path

    @pytest.mark.unit
    def test_record_timestamps_non_decreasing(self, fake_adapter, history):
        apt = fake_adapter(pending={f"pkg{i}": "2" for i in range(10)},
                           states={f"pkg{i}": "1" for i in range(10)})

        make_executor([apt], history).run()

        stamps = [r.timestamp for r in reversed(list(history.scan_reverse()))]
        assert stamps == sorted(stamps)

    @pytest.mark.unit
    def test_unchanged_units_not_recorded(self, fake_adapter, history):
        apt = fake_adapter(
            pending={"curl": "2.0", "wget": "1.5"},
            states={"curl": "1.0", "wget": "1.4"},
            stuck=("wget",),
        )

        report = make_executor([apt], history).run()

        assert [r.unit for r in history.scan_reverse()] == ["curl"]
        assert report.section("APT").unchanged == ["wget"]

    @pytest.mark.unit
    def test_nothing_pending(self, fake_adapter, history):
        apt = fake_adapter()

        report = make_executor([apt], history).run()

        assert apt.install_calls == []
        assert apt.cleaned is True
        assert report.section("APT").status == "up to date"
        assert history.exists is False

    @pytest.mark.unit
    def test_no_backends(self, fake_adapter, history):
        from common.exceptions import NoBackendsError

        with pytest.raises(NoBackendsError):
            make_executor([fake_adapter(detected=False)], history).run()

    @pytest.mark.unit
    def test_undetected_backend_skipped(self, fake_adapter, history):
        from ezupdate.records import Backend

        apt = fake_adapter(pending={"curl": "2.0"}, states={"curl": "1.0"})
        snap = fake_adapter(backend=Backend.SNAP, detected=False, pending={"firefox": "119"})

        report = make_executor([apt, snap], history).run()

        assert [s.label for s in report.sections] == ["APT"]
        assert snap.install_calls == []

    @pytest.mark.unit
    def test_reboot_flag_reported(self, fake_adapter, history):
        report = make_executor([fake_adapter()], history, reboot=True).run()
        assert report.reboot_required is True

    @pytest.mark.unit
    def test_progress_callback(self, fake_adapter, history):
        from ezupdate.executor import BatchPhase

        phases = []
        executor = make_executor([fake_adapter(pending={"curl": "2"})], history)
        executor.set_progress_callback(lambda phase, message, percent: phases.append(phase))

        executor.run()

        assert phases[0] == BatchPhase.DETECTING
        assert phases[-1] == BatchPhase.COMPLETE
        for phase in (BatchPhase.FETCHING, BatchPhase.SELECTING, BatchPhase.APPLYING, BatchPhase.CLEANING):
            assert phase in phases


# ---------------------------------------------------------------------------
# Tests: failure isolation
# ---------------------------------------------------------------------------

class TestBackendIsolation:

    @pytest.mark.unit
    def test_fetch_failure_confined_to_backend(self, fake_adapter, history):
        from ezupdate.records import Backend

        apt = fake_adapter(pending={"curl": "2.0"}, states={"curl": "1.0"})
        snap = fake_adapter(backend=Backend.SNAP, fetch_error=True)

        report = make_executor([snap, apt], history).run()

        assert report.section("SNAP").fetch_error is not None
        assert report.section("SNAP").apply_error is None
        assert report.section("SNAP").pending == []
        assert report.section("SNAP").status == "errored"
        assert report.section("APT").status == "updated"
        assert [r.unit for r in history.scan_reverse()] == ["curl"]
        assert snap.cleaned is True

    @pytest.mark.unit
    def test_apply_failure_still_records_changes(self, fake_adapter, history):
        apt = fake_adapter(
            pending={"curl": "2.0", "wget": "1.5"},
            states={"curl": "1.0", "wget": "1.4"},
            stuck=("wget",),
            install_error="E: Sub-process /usr/bin/dpkg returned an error code (1)",
        )

        report = make_executor([apt], history).run()

        section = report.section("APT")
        assert "dpkg returned an error code" in section.apply_error
        assert [r.unit for r in history.scan_reverse()] == ["curl"]
        assert report.errored

    @pytest.mark.unit
    def test_cleanup_failure_reported(self, fake_adapter, history):
        from ezupdate.records import Backend

        apt = fake_adapter(cleanup_error=True)
        snap = fake_adapter(backend=Backend.SNAP)

        report = make_executor([apt, snap], history).run()

        assert report.section("APT").cleanup_error is not None
        assert snap.cleaned is True

    @pytest.mark.unit
    def test_history_write_failure_reported(self, fake_adapter, history):
        from unittest.mock import patch

        apt = fake_adapter(pending={"curl": "2.0"}, states={"curl": "1.0"})

        with patch.object(history, "append", side_effect=OSError("No space left on device")):
            report = make_executor([apt], history).run()

        assert "history write failed" in report.section("APT").apply_error
        assert len(report.section("APT").applied) == 1


# ---------------------------------------------------------------------------
# Tests: selection
# ---------------------------------------------------------------------------

class TestSelection:

    @pytest.mark.unit
    def test_cancel_applies_nothing(self, fake_adapter, history):
        from ezupdate.executor import BatchPhase

        apt = fake_adapter(pending={"curl": "2.0"}, states={"curl": "1.0"})
        executor = make_executor([apt], history, selector=RecordingSelector(answer=None))

        report = executor.run()

        assert report.cancelled is True
        assert report.reboot_required is None
        assert apt.install_calls == []
        assert apt.cleaned is False
        assert history.exists is False
        assert executor.status == BatchPhase.CANCELLED

    @pytest.mark.unit
    def test_deselected_units_skipped(self, fake_adapter, history):
        apt = fake_adapter(pending={"curl": "2.0", "wget": "1.5"}, states={"curl": "1.0", "wget": "1.4"})
        selector = RecordingSelector(answer={"APT": ["wget"]})

        make_executor([apt], history, selector=selector).run()

        assert apt.install_calls == [["wget"]]
        assert [r.unit for r in history.scan_reverse()] == ["wget"]

    @pytest.mark.unit
    def test_bulk_backend_not_offered_but_always_applied(self, fake_adapter, history):
        from ezupdate.records import BULK_TRANSACTION, Backend

        apt = fake_adapter(pending={"curl": "2.0"}, states={"curl": "1.0"})
        dnf = fake_adapter(backend=Backend.DNF, bulk_only=True, pending={"kernel": "6.5"})
        selector = RecordingSelector(answer={"APT": []})

        report = make_executor([apt, dnf], history, selector=selector).run()

        assert list(selector.offered) == ["APT"]
        assert selector.bulk_labels == ["DNF"]
        assert apt.install_calls == []
        assert dnf.bulk_installs == 1

        records = list(history.scan_reverse())
        assert len(records) == 1
        assert records[0].backend == Backend.DNF
        assert records[0].unit == BULK_TRANSACTION
        assert records[0].before == records[0].after == "41"
        assert report.section("DNF").bulk is True


# ---------------------------------------------------------------------------
# Tests: real package-manager output
# ---------------------------------------------------------------------------

class TestCommandOutput:

    @pytest.mark.integration
    def test_undecodable_fetch_output_confined_to_backend(self, fake_adapter, fake_binary, history):
        from ezupdate.backends.snap import SnapAdapter

        fake_binary("snap", r"printf 'error: caf\351 \377\n' >&2" + "\nexit 1\n")
        apt = fake_adapter(pending={"curl": "2.0"}, states={"curl": "1.0"})

        report = make_executor([SnapAdapter(), apt], history).run()

        assert "error: caf\ufffd \ufffd" in report.section("SNAP").fetch_error
        assert report.section("APT").status == "updated"
        assert [r.unit for r in history.scan_reverse()] == ["curl"]

    @pytest.mark.unit
    def test_failed_state_query_writes_no_record(self, fake_adapter, history):
        from unittest.mock import patch
        from common.exceptions import StateQueryError

        apt = fake_adapter(pending={"curl": "2.0"}, states={"curl": "1.0"})
        failure = StateQueryError("APT", "curl", "dpkg-query: error: parsing file '/var/lib/dpkg/status'")

        with patch.object(apt, "query_state", side_effect=failure):
            report = make_executor([apt], history).run()

        assert "Could not read state of 'curl'" in report.section("APT").apply_error
        assert apt.install_calls == []
        assert history.exists is False
