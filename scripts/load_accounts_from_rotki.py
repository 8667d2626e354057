# scripts/load_accounts_from_rotki.py
"""
Push every Ethereum account tracked by a local rotki instance into a running
monitor through POST /accounts.

    ROTKI_API_URL          rotki REST API (default http://localhost:4242)
    LOADING_SCRIPTS_HOST   monitor base URL, e.g. http://localhost:3030
"""
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

logger = logging.getLogger("load_accounts_from_rotki")

ROTKI_ACCOUNTS_PATH = "/api/1/blockchains/eth/accounts"
TIMEOUT = 10


def fetch_rotki_accounts(session: requests.Session, rotki_url: str) -> List[Dict[str, str]]:
    r = session.get(f"{rotki_url.rstrip('/')}{ROTKI_ACCOUNTS_PATH}", timeout=TIMEOUT)
    r.raise_for_status()
    accounts = []
    for item in r.json().get("result") or []:
        address = item.get("address")
        if not address:
            continue
        # rotki labels are optional; the monitor requires one
        accounts.append({"address": address, "label": item.get("label") or address})
    return accounts


def push_accounts(session: requests.Session, monitor_url: str, accounts: List[Dict[str, Any]]) -> int:
    """Returns how many accounts the monitor rejected."""
    endpoint = f"{monitor_url.rstrip('/')}/accounts"
    failed = 0
    for account in accounts:
        try:
            r = session.post(endpoint, json=account, timeout=TIMEOUT)
            r.raise_for_status()
            logger.info(r.text.strip())
        except requests.RequestException as e:
            failed += 1
            logger.error(f"Could not register {account['address']}: {e}")
    return failed


def main(env: Optional[Dict[str, str]] = None, session: Optional[requests.Session] = None) -> int:
    if env is None:
        load_dotenv()
        env = dict(os.environ)

    monitor_url = (env.get("LOADING_SCRIPTS_HOST") or "").strip()
    if not monitor_url:
        logger.error("Missing LOADING_SCRIPTS_HOST")
        return 1
    rotki_url = (env.get("ROTKI_API_URL") or "http://localhost:4242").strip()

    session = session or requests.Session()
    try:
        accounts = fetch_rotki_accounts(session, rotki_url)
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Could not read accounts from rotki at {rotki_url}: {e}")
        return 1

    failed = push_accounts(session, monitor_url, accounts)
    logger.info(f"Pushed {len(accounts) - failed}/{len(accounts)} accounts to {monitor_url}")
    return 1 if failed else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
