from __future__ import annotations

import pytest

from conftest import T0
from config.constants import BreachMetric, EventType
from monitoring.models import BandwidthResult, Thresholds
from monitoring.thresholds import ThresholdEvaluator


def _result(download: float, upload: float, ping: float) -> BandwidthResult:
    return BandwidthResult(timestamp=T0, download=download, upload=upload, ping=ping)


def test_only_download_breaches_and_completion_still_fires() -> None:
    thresholds = Thresholds(min_download=50, min_upload=10, max_ping=100)

    events = ThresholdEvaluator().evaluate(_result(5, 10, 50), thresholds)

    assert [e.event_type for e in events] == [
        EventType.THRESHOLD_BREACH, EventType.SPEED_TEST_COMPLETE,
    ]
    breach = events[0].payload
    assert breach["breaches"] == ["Download: 5 Mbps (min: 50.0)"]
    assert breach["min_upload"] == 10


def test_healthy_result_only_completes() -> None:
    events = ThresholdEvaluator().evaluate(_result(100, 20, 15), Thresholds())
    assert [e.event_type for e in events] == [EventType.SPEED_TEST_COMPLETE]


@pytest.mark.parametrize(
    "result, expected",
    [
        (_result(50, 10, 100), []),
        (_result(49.99, 10, 100), [BreachMetric.DOWNLOAD]),
        (_result(50, 9.99, 100), [BreachMetric.UPLOAD]),
        (_result(50, 10, 100.01), [BreachMetric.PING]),
        (_result(1, 1, 500), [BreachMetric.DOWNLOAD, BreachMetric.UPLOAD, BreachMetric.PING]),
    ],
)
def test_comparisons_are_strict(result: BandwidthResult, expected: list) -> None:
    thresholds = Thresholds(min_download=50, min_upload=10, max_ping=100)
    assert [b.metric for b in ThresholdEvaluator.breaches(result, thresholds)] == expected


def test_zero_disables_a_check() -> None:
    thresholds = Thresholds(min_download=0, min_upload=0, max_ping=0)

    events = ThresholdEvaluator().evaluate(_result(0.1, 0.1, 9000), thresholds)

    assert [e.event_type for e in events] == [EventType.SPEED_TEST_COMPLETE]


def test_disabled_thresholds_render_as_na() -> None:
    thresholds = Thresholds(min_download=50, min_upload=0, max_ping=0)

    breach = ThresholdEvaluator().evaluate(_result(1, 1, 1), thresholds)[0]

    assert breach.payload["min_upload"] == "N/A"
    assert breach.payload["max_ping"] == "N/A"
