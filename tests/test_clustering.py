import pytest
from scenarios import GATE_A, GATE_B, make_sample, offset_north, two_gate_event

from gate_discovery.engine.clustering import (
    SpatialBuckets,
    bucket_precision,
    cluster_samples,
    dbscan,
    dominant_band,
    is_temporally_consistent,
    summarize_cluster,
)
from gate_discovery.engine.errors import ComputationError
from gate_discovery.engine.types import AccuracyBand, EngineConfig, Thresholds


def test_bucket_precision_follows_epsilon() -> None:
    assert bucket_precision(2.0) == 4
    assert bucket_precision(12.0) == 3
    assert bucket_precision(120.0) == 2
    assert bucket_precision(0.01) == 6
    assert bucket_precision(1_000_000.0) == 0


def test_bucketing_never_replaces_the_distance_test() -> None:
    # Same 0.001 degree cell, but 50m apart with a 12m radius
    near = make_sample(1, (51.5001, -0.1201))
    far = make_sample(2, offset_north((51.5001, -0.1201), 50.0))
    buckets = SpatialBuckets([near, far], 12.0)

    assert buckets.neighbors(0) == [0]
    assert buckets.neighbors(1) == [1]


def test_neighbours_found_across_cell_boundaries() -> None:
    # Straddles the 51.501 grid line
    below = make_sample(1, (51.500999, -0.12))
    above = make_sample(2, (51.501001, -0.12))
    buckets = SpatialBuckets([below, above], 12.0)

    assert buckets.neighbors(0) == [0, 1]


def test_dbscan_separates_distant_groups() -> None:
    samples = two_gate_event()
    regions, noise = dbscan(samples, 2.0, 3)

    assert len(regions) == 2
    assert noise == 0
    assert sorted(len(r) for r in regions) == [30, 30]


def test_dbscan_marks_isolated_points_as_noise() -> None:
    samples = [make_sample(i, GATE_A) for i in range(1, 5)]
    samples.append(make_sample(5, GATE_B))
    regions, noise = dbscan(samples, 12.0, 3)

    assert len(regions) == 1
    assert noise == 1


def test_dominant_band_prefers_looser_band_on_ties() -> None:
    samples = [make_sample(1, GATE_A, 5.0), make_sample(2, GATE_A, 25.0)]
    assert dominant_band(samples) == AccuracyBand.GOOD
    assert dominant_band([]) == AccuracyBand.FAIR


def test_temporal_consistency() -> None:
    short = [make_sample(i, GATE_A, minutes=i) for i in range(1, 4)]
    long = [make_sample(i, GATE_A, minutes=i * 20) for i in range(1, 4)]
    burst = [make_sample(i, GATE_A, minutes=0) for i in range(1, 11)]

    assert not is_temporally_consistent(short)
    assert is_temporally_consistent(long)
    assert is_temporally_consistent(burst)


def test_short_lived_small_cluster_is_discarded() -> None:
    samples = [make_sample(i, GATE_A, minutes=i) for i in range(1, 5)]
    result = cluster_samples(samples, Thresholds(), EngineConfig())

    assert result.clusters == []
    assert result.discarded_temporal == 1


def test_epsilon_follows_dominant_band() -> None:
    config = EngineConfig()
    precise = cluster_samples(two_gate_event(), Thresholds(), config)
    loose = cluster_samples(
        [make_sample(i, GATE_A, 40.0, minutes=i * 20) for i in range(1, 5)],
        Thresholds(),
        config,
    )

    assert precise.epsilon_meters == config.band_epsilons.high
    assert loose.epsilon_meters == config.band_epsilons.fair
    assert len(loose.clusters) == 1


def test_cluster_summary_statistics() -> None:
    members = [
        make_sample(1, GATE_A, 8.0, "VIP", minutes=0),
        make_sample(2, GATE_A, 12.0, "VIP", minutes=30),
        make_sample(3, GATE_A, 10.0, "General", minutes=90),
    ]
    candidate = summarize_cluster(members, 12.0, AccuracyBand.HIGH)

    assert candidate.member_count == 3
    assert candidate.centroid == pytest.approx(GATE_A)
    assert candidate.avg_accuracy == pytest.approx(10.0)
    assert candidate.category_distribution == {"General": 1, "VIP": 2}
    assert candidate.dominant_category == "VIP"
    assert candidate.temporal_span_hours == pytest.approx(1.5)
    assert candidate.active_hours == 2
    assert candidate.unique_attendees == 3


def test_empty_cluster_summary_is_a_computation_error() -> None:
    with pytest.raises(ComputationError):
        summarize_cluster([], 12.0, AccuracyBand.HIGH)
