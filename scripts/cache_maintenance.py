#!/usr/bin/env python3
"""
Podcast Cache Maintenance Script

Prints central cache statistics and optionally deletes podcasts that have
not been re-fetched from Podscan for a while.

Usage:
  ./cache_maintenance.py [--cleanup] [--stale-days 30] [--base-url http://localhost:8000]

Recommended schedule: Weekly (Sundays at 8 PM)
"""

import requests
import sys
import argparse
from datetime import datetime


def print_stats(base_url: str) -> bool:
    """Fetch and print /api/cache/stats."""
    response = requests.get(f"{base_url}/api/cache/stats", timeout=30)
    response.raise_for_status()
    stats = response.json()["stats"]

    print("📊 Cache statistics:")
    print(f"   Podcasts cached: {stats['total_podcasts']}")
    print(f"   Podscan fetches: {stats['total_fetches']}")
    print(f"   Cache hits: {stats['total_cache_hits']} ({stats['cache_hit_rate'] * 100:.1f}% hit rate)")
    print(f"   Podscan calls saved: {stats['api_calls_saved']}")
    print(f"   With demographics: {stats['podcasts_with_demographics']}")
    print(f"   Stale: {stats['stale_podcasts']}")
    print(f"   Oldest fetch: {stats['oldest_fetch'] or '-'}")
    print()
    return True


def cleanup(base_url: str, stale_days: int) -> bool:
    """Delete podcasts older than `stale_days` via /api/cache/cleanup."""
    print(f"🧹 Removing podcasts not fetched in {stale_days} days...")
    response = requests.post(
        f"{base_url}/api/cache/cleanup",
        params={"stale_days": stale_days},
        timeout=120,
    )
    response.raise_for_status()
    data = response.json()
    print(f"✅ Deleted {data['deleted']} stale podcasts")
    print()
    return True


def run(base_url: str, do_cleanup: bool, stale_days: int) -> bool:
    print(f"🎙️  Podcast cache maintenance")
    print(f"📅 Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print()

    try:
        print_stats(base_url)
        if do_cleanup:
            cleanup(base_url, stale_days)
            print_stats(base_url)
        return True

    except requests.exceptions.ConnectionError:
        print(f"❌ Error: Could not connect to server at {base_url}")
        print("   Make sure the FastAPI server is running:")
        print("   cd podcast-booking && python3 -m uvicorn booking.main:app --host 0.0.0.0 --port 8000")
        return False
    except requests.exceptions.HTTPError as e:
        print(f"❌ Error: {e}")
        return False


def main():
    parser = argparse.ArgumentParser(description="Inspect and clean the central podcast cache")
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Delete podcasts not re-fetched within --stale-days"
    )
    parser.add_argument(
        "--stale-days",
        type=int,
        default=30,
        help="Age in days after which a podcast is removed (default: 30)"
    )
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="API server base URL (default: http://localhost:8000)"
    )

    args = parser.parse_args()

    success = run(args.base_url.rstrip("/"), args.cleanup, args.stale_days)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
