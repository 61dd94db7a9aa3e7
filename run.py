#!/usr/bin/env python3
"""
Account Ledger Entry Point

Builds the ledger system from LEDGER_* environment configuration and serves
the REST API with uvicorn.
"""

import sys

from ledger_core.api import run_server
from ledger_core.config import get_config
from ledger_core.logging_config import setup_logging
from ledger_core.system import LedgerSystem


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_file=config.log_file)

    try:
        system = LedgerSystem(config)
        logger.info(f"Starting ledger API on {config.api_host}:{config.api_port}")
        run_server(system, host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down ledger")
    except Exception:
        logger.exception("Error starting ledger")
        sys.exit(1)
