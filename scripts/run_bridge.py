#!/usr/bin/env python3
"""
Bridge scraped source documents into the unified provider ledger.

Usage:
    python scripts/run_bridge.py --source all                      # Bridge every source
    python scripts/run_bridge.py --source transparent_nh           # One source
    python scripts/run_bridge.py --source ccis --load roster.json  # Store a file, then bridge
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.logging import logger
from tracker.bridge import ADAPTERS, BridgePipeline, get_adapter, store_raw_document
from tracker.database import open_session


def main():
    parser = argparse.ArgumentParser(description="Bridge raw source documents")
    parser.add_argument(
        "--source",
        required=True,
        choices=["all", *ADAPTERS],
        help="Source key to bridge",
    )
    parser.add_argument("--load", type=Path, help="JSON file to store as a raw document first")
    args = parser.parse_args()

    if args.load and args.source == "all":
        parser.error("--load needs a specific --source")

    db = open_session()

    try:
        if args.load:
            with open(args.load) as f:
                content = json.load(f)
            document = store_raw_document(db, args.source, content, url=str(args.load))
            db.commit()
            logger.info(f"Stored {args.load} as raw document {document.id}")

        sources = list(ADAPTERS) if args.source == "all" else [args.source]

        totals = {"imported": 0, "updated": 0, "skipped": 0, "duplicates": 0, "errors": 0,
                  "fraud_indicators_created": 0, "pending_review": 0}
        for source in sources:
            pipeline = BridgePipeline(db, get_adapter(source))
            result = pipeline.run()
            result.log_summary()
            for key in totals:
                totals[key] += getattr(result, key)
    finally:
        db.close()

    print("\n" + "=" * 60)
    print("BRIDGE SUMMARY")
    print("=" * 60)
    for key, value in totals.items():
        print(f"  {key.replace('_', ' ').title()}: {value}")
    print("=" * 60)


if __name__ == "__main__":
    main()
