#!/usr/bin/env python3
"""
Manual reconciliation run for a feed's category labels

Reads labels (JSON list of strings) and a catalog (JSON list of
{id, name, description}) and prints the suggested mappings by confidence
bucket. With --ai, uncertain labels are escalated to Claude
(needs ANTHROPIC_API_KEY).

Usage:
    python scripts/reconcile_labels.py labels.json catalog.json [--ai]
"""
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from feedmap.common.config import get_settings
from feedmap.common.logging_config import configure_logging
from feedmap.domain.reconciliation import CategoryReconciliationService, ReconciliationError

logger = structlog.get_logger()


async def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    use_ai = "--ai" in sys.argv

    if len(args) < 2:
        print("Usage: python scripts/reconcile_labels.py <labels.json> <catalog.json> [--ai]")
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)

    labels = json.loads(Path(args[0]).read_text(encoding="utf-8"))
    catalog = json.loads(Path(args[1]).read_text(encoding="utf-8"))

    service = CategoryReconciliationService.from_settings(settings, catalog)

    print("=" * 80)
    print(f"CATEGORY RECONCILIATION: {len(labels)} labels, {len(catalog)} categories")
    print("=" * 80)

    try:
        if use_ai:
            results = await service.reconcile(labels)
        else:
            results = service.match_batch(labels)
    except ReconciliationError as e:
        print(f"\n✗ AI mapping failed ({type(e).__name__}): {e}")
        sys.exit(2)

    buckets = service.bucket_by_confidence(results)
    for title, bucket in (
        ("HIGH (>80%)", buckets.high),
        ("MEDIUM (60-80%)", buckets.medium),
        ("LOW (40-60%)", buckets.low),
        ("NO MATCH (≤40%)", buckets.no_match),
    ):
        print(f"\n{title}: {len(bucket)}")
        print("-" * 80)
        for result in bucket:
            target = result.suggested_category.name if result.suggested_category else "-"
            print(f"  {result.xml_category} → {target} ({result.confidence:.1%}, {result.source.value})")
            for alt in result.alternatives:
                print(f"      alt: {alt.category.name} ({alt.confidence:.1%})")

    summary = service.summarize(results)
    print()
    print("=" * 80)
    print(f"Mapped: {summary.mapped}/{summary.total}  "
          f"Average confidence: {summary.average_confidence:.1%}")


if __name__ == "__main__":
    asyncio.run(main())
