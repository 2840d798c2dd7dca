# member_api.py
# Small HTTP API the website calls to ask whether a customer joined the guild.
from __future__ import annotations

import logging
import threading
from typing import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

log = logging.getLogger("ezb-bot.api")

MemberCheck = Callable[[int], Awaitable[bool]]


def create_app(api_secret: str, check_member: MemberCheck) -> FastAPI:
    app = FastAPI(title="EZBshop bot API", docs_url=None, redoc_url=None)
    expected = f"Bearer {api_secret}"

    @app.post("/check-member")
    async def check_member_route(request: Request):
        if request.headers.get("authorization") != expected:
            log.warning("check-member: authentication failed")
            return JSONResponse({"error": "Non autorisé"}, status_code=401)

        try:
            body = await request.json()
        except ValueError:
            body = None
        payload = body if isinstance(body, dict) else {}
        raw_id = str(payload.get("discordId") or "").strip()
        log.info("check-member: %s", raw_id or "<missing>")
        try:
            user_id = int(raw_id)
        except ValueError:
            # an id Discord would never resolve is simply not on the server
            return JSONResponse({"isOnServer": False})

        try:
            is_on_server = await check_member(user_id)
        except Exception:
            log.exception("check-member: lookup for %s failed", raw_id)
            is_on_server = False
        return JSONResponse({"isOnServer": bool(is_on_server)})

    return app


def start_api_thread(app: FastAPI, port: int) -> threading.Thread:
    # uvicorn gets its own thread so it never blocks the bot's event loop
    def _run():
        uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")

    t = threading.Thread(target=_run, name="member-api", daemon=True)
    t.start()
    log.info("Bot API listening on port %s", port)
    return t
