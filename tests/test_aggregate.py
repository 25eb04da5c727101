from ttc_speed_cache.aggregate import aggregate, parse_speed_kmh, round1, summarize
from ttc_speed_cache.models import SpeedRecord, VehicleObservation


def _by_route(records):
    return {r.route_tag: r for r in records}


# ── Speed validation ─────────────────────────────────────────────────


def test_parse_speed_accepts_numbers():
    assert parse_speed_kmh("12.5") == 12.5
    assert parse_speed_kmh(" 7 ") == 7.0
    assert parse_speed_kmh(30) == 30.0


def test_parse_speed_zero_is_valid():
    assert parse_speed_kmh("0") == 0.0


def test_parse_speed_no_upper_bound():
    assert parse_speed_kmh("412") == 412.0


def test_parse_speed_rejects_invalid():
    for raw in (None, "", "   ", "abc", "-1", "-0.5", "nan", "inf", "-inf", "1,5", "1_5", "1_000"):
        assert parse_speed_kmh(raw) is None, raw


# ── Rounding ─────────────────────────────────────────────────────────


def test_round1_half_away_from_zero():
    assert round1(8.25) == 8.3
    assert round1(8.35) == 8.4
    assert round1(0.05) == 0.1
    assert round1(9.0) == 9.0
    assert round1(12.345) == 12.3


def test_round1_handles_huge_speeds():
    assert round1(1e30) == 1e30
    assert round1(1.7e308) == 1.7e308


# ── Aggregation ──────────────────────────────────────────────────────


def test_aggregate_averages_route():
    observations = [VehicleObservation("7", "8.9"), VehicleObservation("7", "9.1")]
    assert aggregate(observations, 1000) == [SpeedRecord(1000, "7", 9.0, 2)]


def test_aggregate_invalid_only_route_is_dropped():
    observations = [
        VehicleObservation("8", "-1"),
        VehicleObservation("8", ""),
        VehicleObservation("8", "abc"),
    ]
    assert aggregate(observations, 1000) == []


def test_aggregate_excluded_observations_do_not_count():
    observations = [
        VehicleObservation("29", "10"),
        VehicleObservation("29", "-4"),
        VehicleObservation("29", None),
        VehicleObservation("29", "20"),
    ]
    record = _by_route(aggregate(observations, 5))["29"]
    assert record.vehicle_count == 2
    assert record.speed_kmh == 15.0


def test_aggregate_stopped_vehicle_counts():
    observations = [VehicleObservation("504", "0"), VehicleObservation("504", "10")]
    record = _by_route(aggregate(observations, 5))["504"]
    assert record.vehicle_count == 2
    assert record.speed_kmh == 5.0


def test_aggregate_multiple_routes_share_timestamp():
    observations = [
        VehicleObservation("7", "10"),
        VehicleObservation("504", "3.33"),
        VehicleObservation("504", "3.34"),
        VehicleObservation("510", "21"),
        VehicleObservation("7", "12"),
    ]
    records = _by_route(aggregate(observations, 1769040000000))
    assert set(records) == {"7", "504", "510"}
    assert records["7"] == SpeedRecord(1769040000000, "7", 11.0, 2)
    assert records["504"] == SpeedRecord(1769040000000, "504", 3.3, 2)
    assert records["510"] == SpeedRecord(1769040000000, "510", 21.0, 1)


def test_aggregate_is_order_insensitive():
    observations = [
        VehicleObservation("7", "1"),
        VehicleObservation("8", "2"),
        VehicleObservation("7", "4"),
    ]
    forward = _by_route(aggregate(observations, 1))
    backward = _by_route(aggregate(list(reversed(observations)), 1))
    assert forward == backward


def test_aggregate_counts_match_valid_observations():
    speeds = ["3", "x", "5", "", "7", "-2", "0"]
    observations = [VehicleObservation("1", s) for s in speeds]
    valid = [float(s) for s in speeds if parse_speed_kmh(s) is not None]
    (record,) = aggregate(observations, 1)
    assert record.vehicle_count == len(valid)
    assert record.speed_kmh == round1(sum(valid) / len(valid))


def test_aggregate_empty():
    assert aggregate([], 1) == []


# ── Summary ──────────────────────────────────────────────────────────


def test_summarize():
    records = [
        SpeedRecord(0, "7", 9.0, 2),
        SpeedRecord(3_600_000, "7", 10.0, 2),
        SpeedRecord(7_200_000, "504", 4.0, 1),
    ]
    stats = summarize(records)
    assert stats.total_records == 3
    assert stats.unique_routes == 2
    assert stats.first_timestamp_ms == 0
    assert stats.last_timestamp_ms == 7_200_000
    assert stats.duration_hours == 2.0


def test_summarize_empty():
    stats = summarize([])
    assert stats.total_records == 0
    assert stats.duration_hours == 0.0


def test_aggregate_huge_speed_keeps_other_routes():
    observations = [VehicleObservation("7", "1e30"), VehicleObservation("504", "10")]
    by_route = _by_route(aggregate(observations, 1000))
    assert by_route["7"].speed_kmh == 1e30
    assert by_route["504"] == SpeedRecord(1000, "504", 10.0, 1)


def test_aggregate_overflowing_sum_still_averages():
    observations = [VehicleObservation("7", "1e308"), VehicleObservation("7", "1e308")]
    assert aggregate(observations, 1000) == [SpeedRecord(1000, "7", 1e308, 2)]
