"""
HTTPプロキシ関数のコントラクトテスト。

POST / で受けたリクエストボディをそのまま転送先へ送り、
転送先のステータスコードとボディを返すことを検証します。
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from ensemble.functions.proxy import NOT_CONFIGURED_MESSAGE, PROXY_ERROR_MESSAGE, create_app

TARGET = "https://upstream.example.com/hook"


class TestProxyAPI:
    """プロキシAPIコントラクトテスト。"""

    @pytest.fixture
    def captured(self):
        """転送先が受け取ったリクエスト。"""
        return []

    @pytest.fixture
    def client(self, settings, captured) -> TestClient:
        """MockTransport経由で転送するテスト用クライアント。"""
        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(
                201,
                json={"received": json.loads(request.content)},
                headers={"x-upstream": "yes"},
            )

        return TestClient(create_app(settings, transport=httpx.MockTransport(handler)))

    def test_forwards_body_and_relays_response(self, client, captured):
        """ボディ・Content-Typeが転送され、ステータスとボディが返ること。"""
        response = client.post("/", json={"eventId": "E1", "status": "accepted"})

        assert response.status_code == 201
        assert response.json() == {"received": {"eventId": "E1", "status": "accepted"}}
        assert response.headers["x-upstream"] == "yes"

        assert len(captured) == 1
        forwarded = captured[0]
        assert forwarded.method == "POST"
        assert str(forwarded.url) == TARGET
        assert forwarded.headers["content-type"] == "application/json"
        assert json.loads(forwarded.content) == {"eventId": "E1", "status": "accepted"}

    def test_upstream_error_status_is_relayed(self, settings):
        """転送先のエラーステータスもそのまま返すこと。"""
        transport = httpx.MockTransport(lambda request: httpx.Response(404, text="missing"))
        client = TestClient(create_app(settings, transport=transport))

        response = client.post("/", content=b"ping", headers={"content-type": "text/plain"})

        assert response.status_code == 404
        assert response.text == "missing"

    def test_target_not_configured(self, settings, captured):
        """転送先未設定の場合は500とメッセージを返すこと。"""
        unconfigured = settings.model_copy(update={"proxy_target_url": None})
        transport = httpx.MockTransport(lambda request: captured.append(request))
        client = TestClient(create_app(unconfigured, transport=transport))

        response = client.post("/", json={})

        assert response.status_code == 500
        assert response.text == NOT_CONFIGURED_MESSAGE
        assert captured == []

    def test_upstream_failure(self, settings):
        """転送先への接続失敗は500 "Proxy error" になること。"""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = TestClient(create_app(settings, transport=httpx.MockTransport(handler)))

        response = client.post("/", json={"eventId": "E1"})

        assert response.status_code == 500
        assert response.text == PROXY_ERROR_MESSAGE

    def test_only_post_is_routed(self, client):
        """POST以外は受け付けないこと。"""
        response = client.get("/")
        assert response.status_code == 405
