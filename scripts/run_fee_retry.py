# scripts/run_fee_retry.py
from __future__ import annotations

import argparse
import json
import logging
import os

from deps.services import get_cctp_orchestrator, get_fee_retry_queue
from services.observability import configure_logging


logger = logging.getLogger("chainpay.run_fee_retry")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one fee retry pass and one attestation sweep.")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--skip-sweep", action="store_true")
    args = parser.parse_args()

    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    summary = get_fee_retry_queue().process_once(args.batch_size)
    result = {"fee_retry": summary}
    if not args.skip_sweep:
        result["attestations_advanced"] = get_cctp_orchestrator().sweep_attestations()
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
