"""Command line entry point for the nightly rate-parity run."""
from __future__ import annotations

import logging
import sys

from parity_core import create_config_from_env, run_parity_workflow

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)


def main() -> int:
    LOGGER.info("=== rate-parity run starting ===")
    try:
        config = create_config_from_env()
        result = run_parity_workflow(config)
    except Exception:
        LOGGER.exception("FATAL: rate-parity run aborted")
        return 1

    print(result.report)
    if result.delivery is not None and not result.delivery.complete:
        LOGGER.warning("Run completed with %d abandoned batch(es)", len(result.delivery.abandoned_batches))
    LOGGER.info("=== rate-parity run completed ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
