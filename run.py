#!/usr/bin/env python3
"""
cln-zapper - Entry Point

Publishes NIP-57 zap receipts for Core Lightning invoices paid with a zap request.
"""

import asyncio
import logging
import sys

from config import settings


def cli():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(name)s.%(levelname)s: %(message)s"
    )

    from app.main import main
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
