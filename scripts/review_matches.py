#!/usr/bin/env python3
"""
Review the entity resolution queue and maintain canonical providers.

Usage:
    python scripts/review_matches.py --list                          # Show pending matches
    python scripts/review_matches.py --approve 12 --reviewer alice   # Link to the candidate
    python scripts/review_matches.py --approve 12 --provider 7       # Link to another provider
    python scripts/review_matches.py --reject 12 --no-create         # Reject, leave unresolved
    python scripts/review_matches.py --merge 7 9                     # Fold provider 9 into 7
    python scripts/review_matches.py --deactivate 9 --reason closed  # Deactivate a provider
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from tracker.database import open_session
from tracker.entity_resolution import EntityResolver
from tracker.errors import ReviewError
from tracker.queries import list_pending_matches


def print_queue(db, limit: int):
    page = list_pending_matches(db, limit=limit)
    print("\n" + "=" * 60)
    print(f"PENDING MATCHES ({page.total})")
    print("=" * 60)
    for pending in page.items:
        candidate = pending.candidate_provider
        print(f"\n#{pending.id}  score {float(pending.match_score):.3f}")
        print(f"   Observation: {pending.source_name} ({pending.source_system}:{pending.source_identifier})")
        location = ", ".join(p for p in (pending.source_city, pending.source_zip) if p)
        if location:
            print(f"   Location: {location}")
        if candidate:
            print(f"   Candidate:   {candidate.name_display} (id={candidate.id}, zip={candidate.zip5 or '-'})")
        explanation = (pending.match_details or {}).get("explanation")
        if explanation:
            print(f"   Why: {explanation}")


def main():
    parser = argparse.ArgumentParser(description="Review pending entity matches")
    parser.add_argument("--list", action="store_true", help="List pending matches")
    parser.add_argument("--limit", type=int, default=50, help="Max matches to list")
    parser.add_argument("--approve", type=int, metavar="ID", help="Approve a pending match")
    parser.add_argument("--reject", type=int, metavar="ID", help="Reject a pending match")
    parser.add_argument("--provider", type=int, help="Provider to link to on approve")
    parser.add_argument("--no-create", action="store_true", help="On reject, do not create a provider")
    parser.add_argument("--reviewer", default="cli", help="Reviewer name for the audit log")
    parser.add_argument("--merge", type=int, nargs=2, metavar=("PRIMARY", "DUPLICATE"),
                        help="Merge a duplicate provider into the primary")
    parser.add_argument("--deactivate", type=int, metavar="ID", help="Deactivate a provider")
    parser.add_argument("--reason", help="Reason recorded with --deactivate")
    args = parser.parse_args()

    if not (args.list or args.approve or args.reject or args.merge or args.deactivate):
        parser.print_help()
        return

    db = open_session()
    resolver = EntityResolver(db)

    try:
        if args.approve:
            resolution = resolver.approve_pending(args.approve, args.reviewer, provider_id=args.provider)
            db.commit()
            print(f"Approved #{args.approve}: linked to provider {resolution.provider_id}")

        if args.reject:
            resolution = resolver.reject_pending(args.reject, args.reviewer, create_provider=not args.no_create)
            db.commit()
            if resolution.created:
                print(f"Rejected #{args.reject}: created provider {resolution.provider_id}")
            else:
                print(f"Rejected #{args.reject}: left unresolved")

        if args.merge:
            primary_id, duplicate_id = args.merge
            resolver.merge_providers(primary_id, duplicate_id, args.reviewer)
            db.commit()
            print(f"Merged provider {duplicate_id} into {primary_id}")

        if args.deactivate:
            resolver.deactivate_provider(args.deactivate, args.reviewer, reason=args.reason)
            db.commit()
            print(f"Deactivated provider {args.deactivate}")

        if args.list:
            print_queue(db, args.limit)
    except ReviewError as e:
        db.rollback()
        print(f"Review failed: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
