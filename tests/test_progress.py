import math

from zipflow.Progress import NullSink, ProgressReporter, ProgressSample, compute_fraction


def test_compute_fraction_normal_ratio():
    assert compute_fraction(25, 100) == 0.25


def test_compute_fraction_clamps():
    assert compute_fraction(150, 100) == 1.0
    assert compute_fraction(-5, 100) == 0.0


def test_compute_fraction_zero_total_is_finite():
    assert compute_fraction(0, 0) == 1.0
    assert compute_fraction(-1, 0) == 0.0
    assert math.isfinite(compute_fraction(0, 0))


def test_reporter_forces_start_and_finish(samples, sink):
    reporter = ProgressReporter("a.zip", sink)
    reporter.start()
    reporter.report(3, 10)
    reporter.finish()
    assert samples == [
        ProgressSample("a.zip", 0.0),
        ProgressSample("a.zip", 0.3),
        ProgressSample("a.zip", 1.0),
    ]


def test_reporter_never_goes_backwards(samples, sink):
    reporter = ProgressReporter("a.zip", sink)
    reporter.start()
    reporter.report(6, 10)
    reporter.report(4, 10)
    assert [s.fraction for s in samples] == [0.0, 0.6, 0.6]


def test_abandon_resets_to_zero(samples, sink):
    reporter = ProgressReporter("a.zip", sink)
    reporter.start()
    reporter.report(5, 10)
    reporter.abandon()
    assert samples[-1].fraction == 0.0


def test_failing_sink_is_ignored(caplog):
    def broken(sample):
        raise RuntimeError("observer blew up")

    reporter = ProgressReporter("a.zip", broken)
    reporter.start()
    reporter.finish()
    assert reporter.last == 1.0
    assert "Progress sink failed" in caplog.text


def test_default_sink_is_null():
    assert isinstance(ProgressReporter("a.zip").sink, NullSink)
