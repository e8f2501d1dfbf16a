import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Ensure repo root is on sys.path so "services.*" imports work when running scripts directly.
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import config  # noqa: E402
from auth.sos_auth import SosAuth  # noqa: E402
from services.db import DocumentStore  # noqa: E402
from services.inventory_processor import process_items  # noqa: E402
from services.inventory_reconciler import InventoryReconciler  # noqa: E402
from services.inventory_snapshot import run_inventory_snapshot  # noqa: E402
from services.inventory_store import InventoryWriter  # noqa: E402
from services.sos_api import SosApiClient  # noqa: E402

LOGGER = logging.getLogger("run_inventory_snapshot")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one SOS inventory snapshot outside the web server.")
    parser.add_argument(
        "--db",
        type=str,
        default=str(config.INVENTORY_DB_PATH),
        help="Path to inventory.db (default: INVENTORY_DB_PATH)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and process only; print the summary without writing",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s - %(message)s")
    args = parse_args(argv)
    client = SosApiClient(SosAuth(config.SOS_API_KEY))

    if args.dry_run:
        try:
            raw_items = asyncio.run(client.fetch_all_items())
            processed = process_items(raw_items)
        except Exception as exc:
            LOGGER.error("Dry run failed: %s", exc)
            return 1
        print(json.dumps(processed["summary"], indent=2, default=str))
        return 0

    store = DocumentStore(Path(args.db))
    writer = InventoryWriter(
        store,
        InventoryReconciler(
            store,
            max_batch_size=config.STORE_MAX_BATCH_OPERATIONS,
            safety_margin=config.STORE_BATCH_SAFETY_MARGIN,
        ),
    )
    try:
        result = asyncio.run(run_inventory_snapshot(client, writer))
    except Exception as exc:
        LOGGER.error("Snapshot failed: %s", exc)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
