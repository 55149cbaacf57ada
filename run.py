#!/usr/bin/env python3
"""
Ledger Transfers Entry Point

Starts the FastAPI server with the store configured through LEDGER_* environment
variables (or a .env file).
"""

import sys

from ledger_transfers.api import run_server
from ledger_transfers.config import get_config


if __name__ == "__main__":
    config = get_config()
    print(f"Starting Ledger Transfers on http://{config.api_host}:{config.api_port}")
    print(f"Store: {config.database_url.split('@')[-1]}")
    print(f"Balances persisted to {config.balance_scale} decimal places")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Ledger Transfers...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
