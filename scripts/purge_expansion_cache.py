#!/usr/bin/env python3
"""
Purge expired rows from the query expansion cache.

Expired rows are already ignored on read; this keeps the table small. Intended
for a daily cron.

Usage:
    python scripts/purge_expansion_cache.py
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import get_settings
from app.core.logging import get_logger
from app.db.expansion_cache import SupabaseExpansionCache

logger = get_logger(__name__)


def main():
    """Delete expired expansion cache rows."""
    parser = argparse.ArgumentParser(description="Purge expired query expansion cache rows")
    parser.parse_args()

    cache = SupabaseExpansionCache(ttl_days=get_settings().EXPANSION_CACHE_TTL_DAYS)
    try:
        removed = cache.purge_expired()
    except Exception as e:
        logger.error(f"Expansion cache purge failed: {e}")
        sys.exit(1)

    print(f"Removed {removed} expired expansions")


if __name__ == "__main__":
    main()
