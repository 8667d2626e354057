# app.py
import logging
import sys
from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from core.addressbook import normalize_address
from core.config import ConfigError, load_settings, setup_logging
from core.models import WatchedAccount
from core.monitor import AccountMonitor

logger = logging.getLogger("account_monitor")

# Registration bodies are tiny; anything bigger is not an account
MAX_BODY_BYTES = 16 * 1024

# ============================================================
# HELPERS
# ============================================================

def _limit_body(request: Request) -> None:
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > MAX_BODY_BYTES:
        raise HTTPException(status_code=413, detail="Payload too large")

# ============================================================
# FASTAPI APP
# ============================================================

def create_app(monitor: AccountMonitor, on_replay_done: Optional[Callable[[], None]] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await monitor.announce()
        monitor.start(on_replay_done)
        try:
            yield
        finally:
            await monitor.stop()

    app = FastAPI(lifespan=lifespan)
    app.state.monitor = monitor

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/metrics")
    def metrics():
        return Response(monitor.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/accounts", dependencies=[Depends(_limit_body)])
    def add_monitor_account(account: WatchedAccount):
        address = normalize_address(account.address)
        if address is None:
            return PlainTextResponse("Invalid account address", status_code=422)

        count = monitor.register(WatchedAccount(address=address, label=account.label))
        return PlainTextResponse(f"Watching {count} accounts\n", status_code=202)

    return app

# ============================================================
# ENTRY POINT
# ============================================================

def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(settings.log_level)

    monitor = AccountMonitor(settings)
    try:
        count = monitor.load_static_accounts()
    except ConfigError as e:
        logger.error(str(e))
        return 1
    logger.info(f"Watched Accounts: {count}")

    server: Optional[uvicorn.Server] = None

    def stop_server() -> None:
        # debug replay finished; uvicorn exits its serve loop on the next tick
        if server is not None:
            server.should_exit = True

    app = create_app(monitor, on_replay_done=stop_server)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.http_host,
            port=settings.http_port,
            log_level=settings.log_level.lower(),
        )
    )
    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
