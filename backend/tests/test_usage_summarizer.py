"""
Unit tests for usage summarization and series merging.
"""
from datetime import datetime, timezone

from rightsizer.engine.usage import AVERAGE_MERGE, SUM_MERGE, merge, merge_all, summarize, summarize_metric
from rightsizer.models.schemas import AggregationPolicy, Datapoint

from factories import points


def at(hour):
    return datetime(2024, 1, 1, hour, tzinfo=timezone.utc)


class TestMerge:
    """Test timestamp-aligned merging."""

    def test_sum_merge_adds_overlapping_points(self):
        """Test read+write series are added where timestamps coincide."""
        reads = points(10, 20, 30)
        writes = points(1, 2, start_hour=1)

        merged = merge(reads, writes, SUM_MERGE)

        assert [p.timestamp for p in merged] == [at(0), at(1), at(2)]
        assert [p.average for p in merged] == [10, 21, 32]

    def test_merge_output_sorted_and_unique(self):
        """Test unsorted input yields ascending unique timestamps."""
        a = list(reversed(points(1, 2, 3)))
        b = points(5, start_hour=2)

        merged = merge(a, b, SUM_MERGE)

        timestamps = [p.timestamp for p in merged]
        assert timestamps == sorted(set(timestamps))
        assert merged[-1].average == 8

    def test_missing_statistic_taken_from_other_side(self):
        """Test a statistic present on one side only is kept as-is."""
        a = [Datapoint(timestamp=at(0), average=4.0)]
        b = [Datapoint(timestamp=at(0), average=6.0, maximum=9.0)]

        merged = merge(a, b, AVERAGE_MERGE)

        assert merged[0].average == 5.0
        assert merged[0].maximum == 9.0
        assert merged[0].minimum is None

    def test_merge_all_folds_many_series(self):
        """Test merging across several volumes' series."""
        merged = merge_all([points(1, 1), points(2, 2), points(3)], SUM_MERGE)

        assert [p.average for p in merged] == [6, 3]

    def test_average_merge_is_true_mean_across_series(self):
        """Test three reports of one timestamp average evenly."""
        merged = merge_all([points(3.0), points(6.0), points(9.0)], AVERAGE_MERGE)

        assert merged[0].average == 6.0

    def test_duplicate_timestamps_within_one_input(self):
        """Test repeated timestamps inside one series are folded together."""
        a = [Datapoint(timestamp=at(0), average=v) for v in (2.0, 4.0, 12.0)]

        merged = merge(a, [], AVERAGE_MERGE)

        assert len(merged) == 1
        assert merged[0].average == 6.0

    def test_merge_empty(self):
        """Test merging nothing yields nothing."""
        assert merge([], [], SUM_MERGE) == []
        assert merge_all([], SUM_MERGE) == []


class TestSummarize:
    """Test summary statistics under both aggregation policies."""

    def test_average_policy(self):
        """Test AVERAGE: mean of averages, peak of averages."""
        series = [
            Datapoint(timestamp=at(0), average=10.0, minimum=2.0, maximum=50.0),
            Datapoint(timestamp=at(1), average=30.0, minimum=5.0, maximum=90.0),
        ]

        summary = summarize(series, AggregationPolicy.AVERAGE)

        assert summary.avg == 20.0
        assert summary.max == 30.0
        assert summary.min == 2.0
        assert summary.last.timestamp == at(1)

    def test_max_policy(self):
        """Test MAX: highest average and highest maximum."""
        series = [
            Datapoint(timestamp=at(0), average=10.0, maximum=50.0),
            Datapoint(timestamp=at(1), average=30.0, maximum=90.0),
        ]

        summary = summarize(series, AggregationPolicy.MAX)

        assert summary.avg == 30.0
        assert summary.max == 90.0

    def test_last_is_latest_timestamp(self):
        """Test last follows timestamps, not input order."""
        series = list(reversed(points(1, 2, 3)))

        summary = summarize(series, AggregationPolicy.AVERAGE)

        assert summary.last.average == 3

    def test_empty_series_is_unmonitored(self):
        """Test no datapoints means no statistics, not zero."""
        summary = summarize([], AggregationPolicy.AVERAGE)

        assert summary.is_empty
        assert summary.avg is None
        assert summary.zero_filled().avg == 0.0

    def test_summarize_metric_absent(self):
        """Test a missing metric summarizes to None."""
        assert summarize_metric({}, "mem_used_percent", AggregationPolicy.AVERAGE) is None
        assert summarize_metric({"CPUUtilization": points(5)}, "CPUUtilization",
                                AggregationPolicy.AVERAGE).avg == 5
