"""finding aggregation: merge duplicates, apply thresholds, order deterministically"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from config import AnalysisOptions, config
from models.findings import Confidence, Finding, Impact

logger = logging.getLogger(__name__)


class FindingAggregator:
    """
    combine findings from every detector and contract of a batch.

    mode "exact" merges findings that share a dedup key (detector, contract,
    function, instruction range); mode "off" keeps every finding.
    """

    def __init__(self, mode: Optional[str] = None):
        normalized_mode = (mode or getattr(config, "DEDUP_MODE", "exact")).lower()
        if normalized_mode not in {"off", "exact"}:
            normalized_mode = "exact"
        self.mode = normalized_mode

    def aggregate(self, findings: Iterable[Finding], options: Optional[AnalysisOptions] = None) -> List[Finding]:
        options = options or AnalysisOptions()
        findings = list(findings)
        merged = self.merge(findings) if self.mode == "exact" else findings
        kept = self.filter(merged, options.min_impact, options.min_confidence)
        kept.sort(key=lambda f: f.sort_key)
        logger.debug(
            f"Aggregated {len(findings)} findings into {len(kept)}",
            extra={
                "received": len(findings),
                "merged": len(merged),
                "kept": len(kept),
                "mode": self.mode,
            },
        )
        return kept

    def merge(self, findings: Iterable[Finding]) -> List[Finding]:
        by_key: Dict[Tuple, Finding] = {}
        for finding in findings:
            existing = by_key.get(finding.dedup_key)
            by_key[finding.dedup_key] = finding if existing is None else self._merge_pair(existing, finding)
        return list(by_key.values())

    def _merge_pair(self, a: Finding, b: Finding) -> Finding:
        # the stronger finding keeps its message and classification
        if (b.confidence.rank, b.impact.rank) > (a.confidence.rank, a.impact.rank):
            a, b = b, a
        evidence = tuple(dict.fromkeys(a.evidence + b.evidence))
        return replace(
            a,
            impact=max(a.impact, b.impact, key=lambda i: i.rank),
            confidence=max(a.confidence, b.confidence, key=lambda c: c.rank),
            evidence=evidence,
        )

    def filter(self, findings: Iterable[Finding], min_impact="informational", min_confidence="low") -> List[Finding]:
        impact_floor = Impact.parse(min_impact).rank
        confidence_floor = Confidence.parse(min_confidence).rank
        return [
            f for f in findings
            if f.impact.rank >= impact_floor and f.confidence.rank >= confidence_floor
        ]


def aggregate(findings: Iterable[Finding], options: Optional[AnalysisOptions] = None) -> List[Finding]:
    mode = options.dedup_mode if options is not None else None
    return FindingAggregator(mode=mode).aggregate(findings, options)
