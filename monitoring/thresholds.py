"""
Threshold evaluation for bandwidth results.

A threshold of 0 disables that check.  Comparisons are strict: a download
exactly at ``min_download`` is not a breach.
"""

from dataclasses import dataclass
from typing import List

from config.constants import BreachMetric, EventType
from monitoring.models import BandwidthResult, MonitorEvent, Thresholds


@dataclass(frozen=True)
class Breach:
    metric: BreachMetric
    observed: float
    threshold: float

    @property
    def reason(self) -> str:
        if self.metric == BreachMetric.DOWNLOAD:
            return f"Download: {self.observed} Mbps (min: {self.threshold})"
        if self.metric == BreachMetric.UPLOAD:
            return f"Upload: {self.observed} Mbps (min: {self.threshold})"
        return f"Ping: {self.observed} ms (max: {self.threshold})"


class ThresholdEvaluator:
    """Turns a bandwidth result into ThresholdBreach / SpeedTestComplete events."""

    @staticmethod
    def breaches(result: BandwidthResult, thresholds: Thresholds) -> List[Breach]:
        found: List[Breach] = []

        if thresholds.min_download and result.download < thresholds.min_download:
            found.append(Breach(BreachMetric.DOWNLOAD, result.download, thresholds.min_download))

        if thresholds.min_upload and result.upload < thresholds.min_upload:
            found.append(Breach(BreachMetric.UPLOAD, result.upload, thresholds.min_upload))

        if thresholds.max_ping and result.ping > thresholds.max_ping:
            found.append(Breach(BreachMetric.PING, result.ping, thresholds.max_ping))

        return found

    def evaluate(self, result: BandwidthResult, thresholds: Thresholds) -> List[MonitorEvent]:
        """
        ThresholdBreach when anything is breached, then SpeedTestComplete
        unconditionally.
        """
        events: List[MonitorEvent] = []
        timestamp = result.timestamp.isoformat()

        found = self.breaches(result, thresholds)
        if found:
            events.append(MonitorEvent(
                EventType.THRESHOLD_BREACH,
                {
                    "download": result.download,
                    "upload": result.upload,
                    "ping": result.ping,
                    "min_download": thresholds.min_download or "N/A",
                    "min_upload": thresholds.min_upload or "N/A",
                    "max_ping": thresholds.max_ping or "N/A",
                    "breaches": [breach.reason for breach in found],
                    "timestamp": timestamp,
                },
                cooldown_key=EventType.THRESHOLD_BREACH.cooldown_class,
            ))

        events.append(MonitorEvent(
            EventType.SPEED_TEST_COMPLETE,
            {
                "download": result.download,
                "upload": result.upload,
                "ping": result.ping,
                "timestamp": timestamp,
            },
            cooldown_key=EventType.SPEED_TEST_COMPLETE.cooldown_class,
        ))

        return events
