"""
Run a single expiry reconciliation cycle from the command line

Usage:
  python backend/scripts/run_expiry_cycle.py [--batch-size N]

Notes:
  - Reads FREE_PAYMENT_INSTRUCTION_ID, PINATA_JWT_TOKEN, PINATA_BACKEND_API_URL
    and DATABASE_URL from the environment (.env).
  - Exits non-zero if the cycle did not complete successfully.
"""

import asyncio
import argparse
import json
import logging
import sys

from app.core.config import settings
from app.core.database import engine
from app.core.logging import configure_logging
from app.services.expiry_reconciliation_service import ExpiryReconciliationService
from app.services.payment_instructions import PaymentInstructionsClient, PaymentInstructionsConfigError

logger = logging.getLogger("app.scripts.run_expiry_cycle")


async def main(batch_size: int) -> int:
    configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)

    try:
        payment_client = PaymentInstructionsClient()
    except PaymentInstructionsConfigError as e:
        logger.error(f"Payment instructions client could not be initialized: {e}")
        return 2

    service = ExpiryReconciliationService(payment_client=payment_client, batch_size=batch_size)
    if not service.free_payment_instruction_id:
        logger.error("FREE_PAYMENT_INSTRUCTION_ID is not configured")
        return 2

    try:
        result = await service.run_cycle()
    finally:
        await engine.dispose()

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.status == 'success' else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one expiry reconciliation cycle")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.EXPIRY_WORKER_BATCH_SIZE,
        help="Maximum entries to process (default: EXPIRY_WORKER_BATCH_SIZE)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.batch_size)))
