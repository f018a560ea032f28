import random

import pytest

from accuracy_heatmap import (
    UNWEIGHTED_SENTINEL,
    HeatmapPoint,
    RawLocation,
    convert_to_heatmap_data,
    to_heatmap_point,
)


def test_complete_record_is_scaled_and_weighted_by_squared_accuracy():
    point = to_heatmap_point(RawLocation(407128000.0, -740060000.0, 10.0))

    assert point == HeatmapPoint(40.7128, -74.006, 100.0)


def test_fractional_accuracy_is_squared():
    point = to_heatmap_point(RawLocation(1.0, 1.0, 2.5))

    assert point.weight == pytest.approx(6.25)


def test_large_accuracy_is_not_clamped():
    point = to_heatmap_point(RawLocation(0.0, 0.0, 3_000_000.0))

    assert point.weight == 9_000_000_000_000.0


def test_zero_coordinates_are_not_treated_as_missing():
    point = to_heatmap_point(RawLocation(0.0, 0.0, 4.0))

    assert point == HeatmapPoint(0.0, 0.0, 16.0)


def test_missing_longitude_maps_to_zero_with_sentinel_weight():
    point = to_heatmap_point(RawLocation(latitude_e7=515007000.0, accuracy=5.0))

    assert point.latitude == pytest.approx(51.5007)
    assert point.longitude == 0.0
    assert point.weight == -100.0


def test_missing_latitude_maps_to_zero_with_sentinel_weight():
    point = to_heatmap_point(RawLocation(longitude_e7=-1277000.0, accuracy=5.0))

    assert point.latitude == 0.0
    assert point.longitude == pytest.approx(-0.1277)
    assert point.weight == UNWEIGHTED_SENTINEL


def test_missing_both_coordinates_yields_origin_with_sentinel_weight():
    assert to_heatmap_point(RawLocation(accuracy=12.0)) == HeatmapPoint(0.0, 0.0, -100.0)


def test_sentinel_is_not_tied_to_accuracy_value():
    # The accuracy is present in every admitted record; only the missing
    # coordinate decides the sentinel.
    for accuracy in (0.0, 1.0, 1000.0):
        assert to_heatmap_point(RawLocation(latitude_e7=1.0, accuracy=accuracy)).weight == -100.0
        assert to_heatmap_point(RawLocation(1.0, 1.0, accuracy)).weight == accuracy ** 2


def _records(count):
    rng = random.Random(1234)
    records = []
    for i in range(count):
        latitude = rng.randint(-900000000, 900000000) if i % 7 else None
        longitude = rng.randint(-1800000000, 1800000000) if i % 11 else None
        records.append(RawLocation(
            float(latitude) if latitude is not None else None,
            float(longitude) if longitude is not None else None,
            float(rng.randint(1, 2000)),
        ))
    return records


def test_one_point_per_record_in_input_order():
    records = _records(50)

    points = convert_to_heatmap_data(records, workers=1)

    assert points == [to_heatmap_point(r) for r in records]


def test_shuffling_input_yields_same_multiset_of_points():
    records = _records(200)
    shuffled = list(records)
    random.Random(99).shuffle(shuffled)

    original = convert_to_heatmap_data(records, workers=1)
    reordered = convert_to_heatmap_data(shuffled, workers=1)

    assert sorted(original) == sorted(reordered)


def test_worker_pool_matches_in_process_result():
    records = _records(1000)

    in_process = convert_to_heatmap_data(records, workers=1)
    pooled = convert_to_heatmap_data(records, workers=3, parallel_threshold=1)

    assert pooled == in_process


def test_small_inputs_stay_in_process(capsys):
    convert_to_heatmap_data(_records(10), workers=4, parallel_threshold=100)

    assert "in-process" in capsys.readouterr().out


def test_no_records_yield_no_points():
    assert convert_to_heatmap_data([], workers=1) == []
