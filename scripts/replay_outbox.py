"""Script de rejeu de l'outbox des jobs.

Republie les jobs écrits en base mais jamais publiés (broker indisponible au commit)
et sort avec un code non-zéro si des échecs persistent.
"""

from __future__ import annotations

import argparse
import sys
from datetime import timedelta

from sentinel.core.container import container
from sentinel.core.logging import setup_logging
from sentinel.infra.ops.post_commit import replay_outbox


def main(argv: list[str] | None = None) -> int:
    """Rejoue l'outbox et renvoie 1 si au moins un job n'a pas pu être publié."""
    parser = argparse.ArgumentParser(description="Replay pending job outbox rows")
    parser.add_argument("--max-items", type=int, default=100)
    parser.add_argument("--older-than-minutes", type=int, default=5)
    args = parser.parse_args(argv)

    setup_logging()
    container.startup()
    try:
        result = replay_outbox(
            container.session_factory,
            container.queues,  # type: ignore[arg-type]
            older_than=timedelta(minutes=args.older_than_minutes),
            limit=args.max_items,
        )
    finally:
        container.shutdown()
    print(f"dispatched={result['dispatched']} failed={result['failed']}")
    return 1 if result["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
