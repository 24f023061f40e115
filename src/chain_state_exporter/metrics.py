"""Prometheus projection of scrape passes.

ChainStateCollector is a custom prometheus_client collector: every call to
``collect()`` (one per HTTP scrape) runs a fresh pass and turns its samples
into metric families. Nothing is kept between calls.
"""
from __future__ import annotations

import logging
import time
from typing import Dict, Iterable, Iterator, List, Optional

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from .config import DEFAULT_NAMESPACE
from .scrape import ScrapeOrchestrator
from .types import MetricDescriptor, MetricKind, MetricSample, ScrapeError

log = logging.getLogger("chain-state-exporter.metrics")

COUNTER = MetricKind.COUNTER
GAUGE = MetricKind.GAUGE

DESCRIPTORS: Dict[str, MetricDescriptor] = {
    d.key: d
    for d in (
        MetricDescriptor("last_scrape_error", GAUGE,
                         "Whether the last scrape of metrics resulted in an error (1 for error, 0 for success)"),
        MetricDescriptor("last_scrape_duration_seconds", GAUGE,
                         "Time duration of last scrape in seconds"),
        MetricDescriptor("active_era_index", COUNTER, "From chain storage Staking.ActiveEra"),
        MetricDescriptor("session_index", COUNTER, "From chain storage Session.CurrentIndex"),
        MetricDescriptor("validators_total", GAUGE, "From chain storage Session.Validators"),
        MetricDescriptor("era_reward_points", COUNTER, "From chain storage Staking.ErasRewardPoints",
                         ("account_id", "address")),
        MetricDescriptor("best_confirmed_ethereum_block_number", COUNTER,
                         "From chain storage EthereumRelay.BestConfirmedBlockNumber"),
        MetricDescriptor("pending_headers_total", GAUGE,
                         "From chain storage EthereumRelay.PendingRelayHeaderParcels"),
        MetricDescriptor("pending_header_ethereum_block_number", GAUGE,
                         "Ethereum block number of each pending relay header parcel, "
                         "labeled by the block it was submitted at",
                         ("block_number",)),
        MetricDescriptor("mmr_roots_to_sign_total", GAUGE,
                         "From chain storage EthereumRelayAuthorities.MmrRootsToSignKeys"),
        MetricDescriptor("authorities_to_sign", GAUGE,
                         "Whether an authorities change is waiting for signatures "
                         "(EthereumRelayAuthorities.AuthoritiesToSign)"),
        MetricDescriptor("authorities_to_sign_votes", GAUGE,
                         "Signatures collected for EthereumRelayAuthorities.AuthoritiesToSign"),
        MetricDescriptor("next_authorities_deadline", GAUGE,
                         "From chain storage EthereumRelayAuthorities.NextAuthorities deadline"),
    )
}


class ChainStateCollector:
    """Exposes one scrape pass per collection."""

    def __init__(self, orchestrator: ScrapeOrchestrator, namespace: str = DEFAULT_NAMESPACE,
                 descriptors: Optional[Dict[str, MetricDescriptor]] = None):
        self.orchestrator = orchestrator
        self.namespace = namespace
        self.descriptors = descriptors if descriptors is not None else DESCRIPTORS

    def _name(self, key: str) -> str:
        return f"{self.namespace}_{key}" if self.namespace else key

    def _family(self, descriptor: MetricDescriptor) -> Metric:
        cls = CounterMetricFamily if descriptor.kind is MetricKind.COUNTER else GaugeMetricFamily
        return cls(self._name(descriptor.key), descriptor.help, labels=list(descriptor.labels))

    def describe(self) -> Iterator[Metric]:
        for descriptor in self.descriptors.values():
            yield self._family(descriptor)

    def collect(self) -> Iterator[Metric]:
        start = time.monotonic()

        samples: List[MetricSample] = []
        failed = 0.0
        try:
            samples = self.orchestrator.run()
        except ScrapeError as e:
            failed = 1.0
            log.warning(f"Scrape failed: {e}")
        except Exception:
            failed = 1.0
            log.exception("Scrape failed with an unexpected error")

        duration = max(0.0, time.monotonic() - start)
        bookkeeping = [
            MetricSample("last_scrape_error", failed),
            MetricSample("last_scrape_duration_seconds", duration),
        ]
        yield from self.project(list(samples) + bookkeeping)

    def project(self, samples: Iterable[MetricSample]) -> List[Metric]:
        """Group samples into metric families, dropping any that don't fit the schema."""
        families: Dict[str, Metric] = {}
        for sample in samples:
            descriptor = self.descriptors.get(sample.key)
            if descriptor is None:
                log.error(f"Dropping sample for unregistered metric {sample.key!r}")
                continue
            if len(sample.labels) != len(descriptor.labels):
                log.error(
                    f"Dropping sample for {sample.key!r}: labels {sample.labels!r} "
                    f"do not match {descriptor.labels!r}"
                )
                continue
            family = families.get(sample.key)
            if family is None:
                family = families[sample.key] = self._family(descriptor)
            family.add_metric(list(sample.labels), sample.value)
        return list(families.values())
