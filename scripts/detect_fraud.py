#!/usr/bin/env python3
"""
Run fraud detection over the resolved childcare payment ledger.

Usage:
    python scripts/detect_fraud.py                 # Run all detectors
    python scripts/detect_fraud.py --summary       # Show open indicator summary only
    python scripts/detect_fraud.py --top 20        # Show 20 most severe open indicators
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from tracker.database import open_session
from tracker.fraud_analyzer import FraudAnalyzer
from tracker.models import IndicatorStatus
from tracker.queries import get_indicator_summary, get_top_vendors, list_fraud_indicators


def print_summary(db):
    print("\n" + "=" * 60)
    print("FRAUD INDICATOR SUMMARY")
    print("=" * 60)
    summary = get_indicator_summary(db)
    print(f"Total open indicators: {summary['total_open_indicators']}")
    print("\nBy severity:")
    for severity in ("critical", "high", "medium", "low"):
        print(f"  {severity}: {summary['by_severity'].get(severity, 0)}")
    print("\nBy type:")
    for indicator_type, count in sorted(summary['by_type'].items(), key=lambda x: -x[1]):
        print(f"  {indicator_type}: {count}")


def main():
    parser = argparse.ArgumentParser(description="Detect fraud indicators")
    parser.add_argument("--summary", action="store_true", help="Show indicator summary only")
    parser.add_argument("--top", type=int, default=0, help="Show top N open indicators")
    args = parser.parse_args()

    db = open_session()

    if args.summary:
        print_summary(db)
        db.close()
        return

    if args.top:
        print("\n" + "=" * 60)
        print(f"TOP {args.top} OPEN INDICATORS")
        print("=" * 60)
        page = list_fraud_indicators(db, status=IndicatorStatus.OPEN, limit=args.top)
        for i, indicator in enumerate(page.items, 1):
            provider = indicator.provider.name_display if indicator.provider else "Unresolved"
            print(f"\n{i}. [{indicator.severity.value.upper()}] {provider}")
            print(f"   Type: {indicator.indicator_type}")
            print(f"   {indicator.description}")
            print(f"   Created: {indicator.created_at:%Y-%m-%d}")
        db.close()
        return

    # Run full analysis
    print("\n" + "=" * 60)
    print("FRAUD ANALYZER")
    print("=" * 60)

    analyzer = FraudAnalyzer(db)
    result = analyzer.run()
    result.log_summary()

    print("\nDetection Results:")
    print("-" * 40)
    for name, count in result.detector_counts.items():
        print(f"  {name}: {count}")

    print("\n" + "=" * 60)
    print(f"Indicators created: {result.created}")
    print(f"Already recorded: {result.skipped}")
    print("=" * 60)

    print("\nTop vendors by payments:")
    for vendor in get_top_vendors(db, limit=5):
        print(f"  {vendor['provider_name']}: ${vendor['total_amount']:,.2f} ({vendor['payment_count']} payments)")

    print_summary(db)
    db.close()


if __name__ == "__main__":
    main()
