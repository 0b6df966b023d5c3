"""
HTTP proxy function

Forwards an inbound POST verbatim to ``PROXY_TARGET_URL`` and relays the
upstream body and status code.

Usage:
    uvicorn ensemble.functions.proxy:app --port 8080
"""

import logging
import os
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from ..config import Settings, load_settings

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "Proxy target is not configured"
PROXY_ERROR_MESSAGE = "Proxy error"

# Hop-by-hop / recomputed headers that must not be copied to the client
_DROPPED_RESPONSE_HEADERS = {"content-length", "content-encoding", "transfer-encoding", "connection"}


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = 30.0
) -> FastAPI:
    """
    プロキシアプリを作成

    Args:
        settings: 設定（省略時は環境変数から読み込み）
        transport: httpx transport（テスト用の MockTransport など）
        timeout: upstream timeout in seconds
    """
    settings = settings or load_settings()
    app = FastAPI(title="ensemble-proxy", docs_url=None, redoc_url=None, openapi_url=None)

    @app.post("/")
    async def forward(request: Request) -> Response:
        target = settings.proxy_target_url
        if not target:
            logger.error("PROXY_TARGET_URL が設定されていません")
            return PlainTextResponse(NOT_CONFIGURED_MESSAGE, status_code=500)

        try:
            body = await request.body()
            headers = {}
            if request.headers.get("content-type"):
                headers["content-type"] = request.headers["content-type"]

            async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
                upstream = await client.post(target, content=body, headers=headers)
        except Exception as e:
            logger.error(f"プロキシエラー: {target} - {str(e)}")
            return PlainTextResponse(PROXY_ERROR_MESSAGE, status_code=500)

        logger.info(f"プロキシ転送: {target} -> {upstream.status_code}")
        relayed = {
            key: value for key, value in upstream.headers.items()
            if key.lower() not in _DROPPED_RESPONSE_HEADERS
        }
        return Response(content=upstream.content, status_code=upstream.status_code, headers=relayed)

    return app


app = create_app()


def main() -> None:
    """直接実行用エントリポイント"""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))


if __name__ == "__main__":
    main()
