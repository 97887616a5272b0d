"""Logging setup and Prometheus metrics for crawl and extraction runs.

- Prometheus counters/histograms/gauges in a private registry
- Service logger with the shared ``time | level | name | message`` format
"""

from __future__ import annotations

import datetime
import logging
import pathlib
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def init_logger(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """Configure the package logger once (stream + optional dated file)."""
    logger = logging.getLogger("phasecrawl")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if logger.handlers:
        return logger

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir:
        base_dir = pathlib.Path(log_dir)
        base_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.date.today().isoformat()
        handlers.append(logging.FileHandler(base_dir / f"{today}.log"))

    formatter = logging.Formatter(LOG_FORMAT)
    for h in handlers:
        h.setFormatter(formatter)
        logger.addHandler(h)

    return logger


class CrawlMetrics:
    """Prometheus metrics collector for crawler and extractor activity."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        # Browser interaction metrics
        self.interactions_total = Counter(
            'phasecrawl_interactions_total',
            'Browser interactions performed',
            ['kind', 'status'],
            registry=self.registry
        )

        self.phase_duration = Histogram(
            'phasecrawl_phase_duration_seconds',
            'Discovery phase duration in seconds',
            buckets=[0.5, 1, 2, 5, 10, 30, 60, 120],
            registry=self.registry
        )

        self.discoveries_total = Counter(
            'phasecrawl_discoveries_total',
            'Unique hyperlinks discovered',
            registry=self.registry
        )

        self.batch_size = Gauge(
            'phasecrawl_batch_size',
            'Current interaction batch size',
            registry=self.registry
        )

        self.tension = Gauge(
            'phasecrawl_tension',
            'Tension of the most recent phase',
            registry=self.registry
        )

        # Extraction metrics
        self.items_extracted_total = Counter(
            'phasecrawl_items_extracted_total',
            'Unique media items added by extractors',
            ['extractor'],
            registry=self.registry
        )

        self.extraction_errors_total = Counter(
            'phasecrawl_extraction_errors_total',
            'Extractor pass or run failures',
            ['extractor', 'stage'],
            registry=self.registry
        )

        # Download metrics
        self.downloads_total = Counter(
            'phasecrawl_downloads_total',
            'Media download outcomes',
            ['status'],
            registry=self.registry
        )

        self.download_duration = Histogram(
            'phasecrawl_download_duration_seconds',
            'Successful download duration in seconds',
            buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
            registry=self.registry
        )

        self.rate_gate_waits = Counter(
            'phasecrawl_rate_gate_waits_total',
            'Times the rate gate had to sleep',
            registry=self.registry
        )

    def render(self) -> bytes:
        """Prometheus exposition text for the private registry."""
        return generate_latest(self.registry)


_metrics: Optional[CrawlMetrics] = None


def get_metrics() -> CrawlMetrics:
    global _metrics
    if _metrics is None:
        _metrics = CrawlMetrics()
    return _metrics


def reset_metrics() -> None:
    global _metrics
    _metrics = None
