"""
Unit tests for the pipeline coordinator

Uses the in-memory RecordingSink from conftest; sinks that block on a
threading.Event let the tests observe backpressure and cancellation.
"""
import threading
import time

import pytest

from customer_ingest.exceptions import BatchDeliveryError, SinkUnavailableError, SourceUnavailableError
from customer_ingest.ingestion.pipeline import (
    IngestionPipeline,
    IngestionSummary,
    PipelineState,
    iter_source_lines,
    run_pipeline,
)

pytestmark = pytest.mark.unit


def valid_line(national_id: int) -> str:
    return f"Cliente|Numero{national_id}|{national_id}|Activo|03/15/2021|false|true"


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def start_in_thread(pipeline, source, sink, **kwargs):
    outcome = {}

    def target():
        try:
            outcome['summary'] = pipeline.run(source, sink, **kwargs)
        except BaseException as e:
            outcome['error'] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread, outcome


def test_end_to_end_scenario(write_dat_file, recording_sink):
    """One valid line, one structural and one semantic rejection"""
    source = write_dat_file([
        "Ana|Gomez|12345678|Activo|01/10/2020|true|",
        "Bad|Line",
        "Luis|Diaz|999999999|Activo|05/05/2019|false|true",
    ])

    summary = run_pipeline(source, recording_sink)

    assert summary.valid_count == 1
    assert summary.invalid_count == 2
    assert summary.batches_delivered == 1
    assert len(recording_sink.delivered) == 1

    batch = recording_sink.delivered[0]
    assert len(batch) == 1
    record = batch.records[0]
    assert record.full_name == "Ana Gomez"
    assert record.is_pep is True
    assert record.is_obligated_subject is None


def test_batches_delivered_in_source_order(write_dat_file, recording_sink):
    source = write_dat_file([valid_line(n) for n in range(1, 8)])

    summary = run_pipeline(source, recording_sink, batch_size=3, handoff_capacity=1)

    assert [len(b) for b in recording_sink.delivered] == [3, 3, 1]
    assert [b.sequence for b in recording_sink.delivered] == [1, 2, 3]
    assert [r.national_id for r in recording_sink.delivered_records] == list(range(1, 8))
    assert summary == IngestionSummary(
        valid_count=7, invalid_count=0, batches_delivered=3,
        duration_seconds=summary.duration_seconds
    )


def test_sink_runs_on_consumer_thread(write_dat_file, recording_sink):
    source = write_dat_file([valid_line(n) for n in range(1, 5)])

    run_pipeline(source, recording_sink, batch_size=2)

    assert len(recording_sink.threads) == 1
    assert threading.current_thread().name not in recording_sink.threads


def test_failed_batch_does_not_stop_the_next(write_dat_file, make_sink):
    """A delivery failure on batch K is skipped and batch K+1 is still offered"""
    sink = make_sink(fail_on={2})
    source = write_dat_file([valid_line(n) for n in range(1, 8)] + ["broken"])

    summary = run_pipeline(source, sink, batch_size=3)

    assert [b.sequence for b in sink.offered] == [1, 2, 3]
    assert [b.sequence for b in sink.delivered] == [1, 3]
    assert summary.valid_count == 7
    assert summary.invalid_count == 1
    assert summary.batches_delivered == 2
    assert summary.batches_failed == 1
    assert summary.records_lost == 3


def test_any_non_fatal_exception_is_skipped(write_dat_file, make_sink):
    sink = make_sink(fail_on={1}, error=lambda batch: RuntimeError("driver exploded"))
    source = write_dat_file([valid_line(n) for n in range(1, 5)])

    summary = run_pipeline(source, sink, batch_size=2)

    assert summary.batches_failed == 1
    assert summary.batches_delivered == 1


def test_unavailable_sink_stops_the_run(write_dat_file, make_sink):
    sink = make_sink(fail_on={1}, error=lambda batch: SinkUnavailableError("database is gone"))
    source = write_dat_file([valid_line(n) for n in range(1, 101)])
    pipeline = IngestionPipeline(batch_size=1, handoff_capacity=1)

    with pytest.raises(SinkUnavailableError, match="database is gone"):
        pipeline.run(source, sink)

    assert pipeline.state is PipelineState.TERMINATED
    assert pipeline.summary is None
    assert pipeline.lines_read < 100
    assert len(sink.offered) == 1


def test_custom_fatal_predicate(write_dat_file, make_sink):
    sink = make_sink(fail_on={1})
    source = write_dat_file([valid_line(n) for n in range(1, 5)])
    pipeline = IngestionPipeline(
        batch_size=2,
        is_fatal=lambda error: isinstance(error, BatchDeliveryError)
    )

    with pytest.raises(SinkUnavailableError) as exc_info:
        pipeline.run(source, sink)

    assert isinstance(exc_info.value.__cause__, BatchDeliveryError)


class ConsumerHalted(BaseException):
    pass


def broken_predicate(error):
    raise TypeError("predicate bug")


def test_raising_fatal_predicate_ends_the_run(write_dat_file, make_sink):
    sink = make_sink(fail_on={1})
    source = write_dat_file([valid_line(n) for n in range(1, 51)])
    pipeline = IngestionPipeline(batch_size=1, handoff_capacity=1, is_fatal=broken_predicate)

    thread, outcome = start_in_thread(pipeline, source, sink)
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert pipeline.state is PipelineState.TERMINATED
    assert isinstance(outcome['error'], SinkUnavailableError)
    assert isinstance(outcome['error'].__cause__, BatchDeliveryError)
    assert pipeline.lines_read < 50


def test_base_exception_from_sink_ends_the_run(write_dat_file, make_sink):
    sink = make_sink(fail_on={1}, error=lambda batch: ConsumerHalted("halt"))
    source = write_dat_file([valid_line(n) for n in range(1, 51)])
    pipeline = IngestionPipeline(batch_size=1, handoff_capacity=1)

    thread, outcome = start_in_thread(pipeline, source, sink)
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert pipeline.state is PipelineState.TERMINATED
    assert isinstance(outcome['error'], ConsumerHalted)
    assert len(sink.offered) == 1


def test_reader_stops_when_handoff_is_full(write_dat_file, make_sink):
    """With a stalled sink the reader parks after capacity + 2 batches"""
    gate = threading.Event()
    sink = make_sink(gate=gate)
    source = write_dat_file([valid_line(n) for n in range(1, 51)])
    pipeline = IngestionPipeline(batch_size=1, handoff_capacity=2)

    thread, outcome = start_in_thread(pipeline, source, sink)
    try:
        assert sink.delivery_started.wait(timeout=5)
        assert wait_until(lambda: pipeline.pending_batches == 2)
        time.sleep(0.2)

        # one batch inside deliver, two queued, one blocked on put
        assert pipeline.lines_read == 4
        assert pipeline.pending_batches == 2
        assert pipeline.state is PipelineState.RUNNING
    finally:
        gate.set()
        thread.join(timeout=10)

    summary = outcome['summary']
    assert summary.valid_count == 50
    assert summary.batches_delivered == 50
    assert pipeline.state is PipelineState.TERMINATED


def test_cancel_stops_reading_and_drains(write_dat_file, make_sink):
    gate = threading.Event()
    sink = make_sink(gate=gate)
    source = write_dat_file([valid_line(n) for n in range(1, 51)])
    pipeline = IngestionPipeline(batch_size=1, handoff_capacity=2)

    thread, outcome = start_in_thread(pipeline, source, sink)
    try:
        assert wait_until(lambda: pipeline.lines_read == 4)
        pipeline.cancel()
    finally:
        gate.set()
        thread.join(timeout=10)

    summary = outcome['summary']
    assert summary.valid_count == 4
    assert summary.batches_delivered == 4
    assert [r.national_id for r in sink.delivered_records] == [1, 2, 3, 4]


def test_cancel_delivers_every_record_read(write_dat_file, make_sink):
    gate = threading.Event()
    sink = make_sink(gate=gate)
    source = write_dat_file([valid_line(n) for n in range(1, 101)])
    pipeline = IngestionPipeline(batch_size=3, handoff_capacity=1)

    thread, outcome = start_in_thread(pipeline, source, sink)
    try:
        assert wait_until(lambda: pipeline.lines_read == 9)
        pipeline.cancel()
    finally:
        gate.set()
        thread.join(timeout=10)

    summary = outcome['summary']
    assert summary.valid_count < 100
    assert sum(len(b) for b in sink.delivered) == summary.valid_count


def test_timeout_cancels_the_run(write_dat_file, make_sink):
    gate = threading.Event()
    sink = make_sink(gate=gate)
    source = write_dat_file([valid_line(n) for n in range(1, 51)])
    pipeline = IngestionPipeline(batch_size=1, handoff_capacity=2)

    thread, outcome = start_in_thread(pipeline, source, sink, timeout=0.1)
    time.sleep(0.5)
    gate.set()
    thread.join(timeout=10)

    summary = outcome["summary"]
    assert 0 < summary.valid_count <= 4
    assert summary.batches_delivered == summary.valid_count


def test_missing_source_is_unavailable(tmp_path, recording_sink):
    pipeline = IngestionPipeline()

    with pytest.raises(SourceUnavailableError):
        pipeline.run(tmp_path / "missing.dat", recording_sink)

    assert recording_sink.offered == []
    assert pipeline.state is PipelineState.TERMINATED


def test_pipeline_runs_only_once(write_dat_file, recording_sink):
    source = write_dat_file([valid_line(1)])
    pipeline = IngestionPipeline()
    pipeline.run(source, recording_sink)

    with pytest.raises(RuntimeError):
        pipeline.run(source, recording_sink)


def test_empty_source(write_dat_file, recording_sink):
    source = write_dat_file([])
    pipeline = IngestionPipeline()

    summary = pipeline.run(source, recording_sink)

    assert (summary.valid_count, summary.invalid_count) == (0, 0)
    assert recording_sink.offered == []
    assert pipeline.state is PipelineState.TERMINATED


def test_windows_line_endings(write_dat_file, recording_sink):
    source = write_dat_file([valid_line(1), valid_line(2)], terminator="\r\n")

    summary = run_pipeline(source, recording_sink)

    assert summary.valid_count == 2
    assert recording_sink.delivered_records[0].is_obligated_subject is True


def test_oversized_line_rejected_and_next_line_parsed(write_dat_file, recording_sink):
    source = write_dat_file([valid_line(1), "X" * 500, valid_line(2)])

    summary = run_pipeline(source, recording_sink, max_line_length=100)

    assert summary.valid_count == 2
    assert summary.invalid_count == 1
    assert [r.national_id for r in recording_sink.delivered_records] == [1, 2]


def test_iter_source_lines_marks_long_lines(tmp_path):
    path = tmp_path / "lines.dat"
    path.write_text("short\n" + "Y" * 25 + "\nlast", encoding="utf-8")

    with open(path, encoding="utf-8") as stream:
        lines = list(iter_source_lines(stream, max_line_length=10))

    assert lines == [("short", False), ("Y" * 10, True), ("last", False)]


def test_invalid_handoff_capacity():
    with pytest.raises(ValueError):
        IngestionPipeline(handoff_capacity=0)


def test_summary_report_mentions_failures():
    summary = IngestionSummary(valid_count=10, invalid_count=2, batches_delivered=1,
                               batches_failed=1, records_lost=5)

    report = summary.format_report()

    assert "Valid lines processed: 10" in report
    assert "Invalid lines discarded: 2" in report
    assert "5 records not persisted" in report
    assert summary.as_dict()['records_lost'] == 5
