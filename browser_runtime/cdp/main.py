"""Evaluate one expression in a page target of a running browser.

    python -m browser_runtime.cdp.main --port 9222 --expression "document.title"

The context is created unacquired, so the configured acquisition mode
(BROWSER_RUNTIME_FIX_MODE) decides how its id is obtained.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .acquisition import ContextKind
from .config import RuntimeConfig
from .errors import CdpError
from .execution_context import ExecutionContext
from .realm import Realm
from .session_cdp import CdpConnection, discover_ws_url

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("browser_runtime.cdp")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--ws", help="browser websocket URL (default: discovered from --port)")
    parser.add_argument("--port", type=int, default=9222)
    parser.add_argument("--expression", required=True)
    parser.add_argument("--world", default="", help="named utility world instead of the main world")
    return parser.parse_args(argv)


async def run(ws_url: str, expression: str, *, world: str = "", config: RuntimeConfig | None = None) -> Any:
    config = config or RuntimeConfig.from_env()
    connection = await CdpConnection.connect(ws_url, config=config)
    try:
        targets = await connection.send("Target.getTargets")
        pages = [t for t in targets.get("targetInfos") or [] if t.get("type") == "page"]
        if not pages:
            raise CdpError("No page target to evaluate in")
        session = await connection.create_session(str(pages[0]["targetId"]))
        tree = await session.send("Page.getFrameTree")
        frame_id = ((tree.get("frameTree") or {}).get("frame") or {}).get("id")

        kind = ContextKind.UTILITY_WORLD if world else ContextKind.MAIN_WORLD
        payload: dict[str, Any] = {"id": int(kind), "auxData": {"frameId": frame_id}}
        if world:
            payload["name"] = world
        realm = Realm(session)
        context = ExecutionContext(session, payload, realm, config=config)
        realm.set_context(context)
        value = await context.evaluate(expression)
        logger.info("evaluated in context id=%s", context.id)
        return value
    finally:
        await connection.close()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        ws_url = args.ws or discover_ws_url(args.port)
        value = asyncio.run(run(ws_url, args.expression, world=args.world))
    except CdpError as exc:
        logger.error("evaluation failed: %s", exc)
        return 1
    sys.stdout.write(json.dumps(value, ensure_ascii=False, default=str) + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
