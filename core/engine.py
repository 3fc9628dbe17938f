import asyncio
import logging
from typing import Iterable, List, Optional

from core.aggregator import MatchAggregator, collapse_honeypot
from core.config import ScanConfig
from core.errors import FetchError
from core.evaluator import evaluate_main, evaluate_special
from core.plugins import NucleiRunner, PluginCorrelator
from fetch.http_client import ResponseFetcher, normalize_target
from models.detection import ScanResult
from models.fingerprint import ROOT_REQUEST
from rules.rules_loader import RuleStore


class Engine:
    def __init__(
        self,
        store: RuleStore,
        config: Optional[ScanConfig] = None,
        fetcher: Optional[ResponseFetcher] = None,
        correlator: Optional[PluginCorrelator] = None
    ):
        """Initialize the engine around an already loaded rule store.

        Args:
            store: Read-only fingerprint rules, shared by every scan
            config: Scan settings (defaults apply when omitted)
            fetcher: Probe executor, built from config when omitted
            correlator: Template correlator; built from config.plugins_path
                when omitted, and disabled if that is unset
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.config = config or ScanConfig()
        self.fetcher = fetcher or ResponseFetcher(self.config)
        if correlator is None and self.config.plugins_path:
            correlator = PluginCorrelator(
                self.config.plugins_path,
                NucleiRunner(self.config.tool, self.config.tool_timeout),
            )
        self.correlator = correlator
        self.logger.info(
            f"Engine ready: {len(store.main_rules())} main rules, "
            f"{len(store.special_rules())} special rules, "
            f"plugins {'on' if self.correlator else 'off'}"
        )

    async def scan(self, target: str) -> ScanResult:
        """Fingerprint one target. Never raises; failures mean less evidence."""
        target = normalize_target(target)
        result = ScanResult(url=target)
        aggregator = MatchAggregator()
        self.logger.debug(f"Starting scan of {target}")

        try:
            if self.config.scan_timeout:
                await asyncio.wait_for(self._probe(target, result, aggregator), timeout=self.config.scan_timeout)
            else:
                await self._probe(target, result, aggregator)
        except asyncio.TimeoutError:
            self.logger.warning(f"Scan of {target} timed out after {self.config.scan_timeout}s, keeping partial result")
        except Exception as e:
            self.logger.error(f"Error while probing {target}: {e}", exc_info=True)

        await self._finish(result, aggregator)
        return result

    async def _probe(self, target: str, result: ScanResult, aggregator: MatchAggregator) -> None:
        # 1. Root page, every redirect hop is evidence
        try:
            snapshots = await self.fetcher.fetch(target, ROOT_REQUEST, follow_redirects=True, is_special=False)
        except FetchError as e:
            self.logger.warning(f"Root probe failed for {target}: {e.reason}")
            snapshots = []

        for snapshot in snapshots:
            aggregator.add(evaluate_main(snapshot, self.store.main_rules()))
            if not result.title:
                result.title = snapshot.title
            result.length = snapshot.length

        # 2. Special probes, each scored only by its own rule
        for rule in self.store.special_rules():
            try:
                special_snapshots = await self.fetcher.fetch(
                    target, rule.request_template, follow_redirects=False, is_special=True
                )
            except FetchError as e:
                self.logger.debug(f"Special probe {rule.name} failed for {target}: {e.reason}")
                continue
            for snapshot in special_snapshots:
                aggregator.add(evaluate_special(snapshot, rule))

    async def _finish(self, result: ScanResult, aggregator: MatchAggregator) -> None:
        # 3. Honeypot collapse
        names = aggregator.names
        sentinel = collapse_honeypot(names, self.config.honeypot_threshold)
        if sentinel:
            self.logger.info(f"{result.url} matched {len(names)} products, flagged as honeypot")
            result.matched_names = {sentinel}
            result.honeypot = True
            return

        result.matched_names = names
        result.priority = aggregator.priority

        # 4. Plugin correlation
        if self.correlator and names:
            try:
                result.plugins = await self.correlator.correlate(result.url, names)
            except Exception as e:
                self.logger.error(f"Plugin correlation error for {result.url}: {e}", exc_info=True)

        self.logger.info(f"{result.url}: {sorted(result.matched_names)} (priority {result.priority})")

    async def scan_targets(self, targets: Iterable[str]) -> List[ScanResult]:
        """Scan many targets concurrently, bounded by config.concurrency."""
        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

        async def run_one(target: str) -> ScanResult:
            async with semaphore:
                return await self.scan(target)

        return await asyncio.gather(*(run_one(t) for t in targets))
