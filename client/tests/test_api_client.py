"""Tests for the backend REST client."""
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from conftest import backend_client
from pickup.api.client import BackendClient, BackendError
from pickup.config import BackendSettings


@pytest.fixture
def stub_app():
    app = FastAPI()
    app.state.posted = []

    @app.post("/message")
    async def post_message(request: Request):
        body = await request.json()
        app.state.posted.append(body)
        return {"_id": "m1", **body}

    @app.post("/auth/login")
    async def login(request: Request):
        body = await request.json()
        if body["password"] != "secret":
            return JSONResponse(status_code=401, content={"error": "Invalid credentials"})
        return {"token": "t-1", "user": {"_id": "u1", "username": body["username"]}}

    @app.get("/auth/user/{user_id}")
    async def get_user(user_id: str):
        if user_id != "u1":
            return JSONResponse(status_code=404, content={})
        return {"_id": "u1", "username": "ann"}

    return app


class TestBackendClient:
    @pytest.mark.asyncio
    async def test_post_message_body(self, stub_app):
        client = backend_client(stub_app)
        reply = await client.post_message("game-1", "u1", "yo")

        assert stub_app.state.posted == [
            {"gameId": "game-1", "userId": "u1", "message": "yo", "messageType": "text"}
        ]
        assert reply["_id"] == "m1"

    @pytest.mark.asyncio
    async def test_login(self, stub_app):
        reply = await backend_client(stub_app).login("ann", "secret")
        assert reply["token"] == "t-1"

    @pytest.mark.asyncio
    async def test_error_detail_comes_from_body(self, stub_app):
        with pytest.raises(BackendError) as exc_info:
            await backend_client(stub_app).login("ann", "wrong")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_error_without_detail_uses_reason(self, stub_app):
        with pytest.raises(BackendError) as exc_info:
            await backend_client(stub_app).get_user("nobody")

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Not Found"

    @pytest.mark.asyncio
    async def test_get_user(self, stub_app):
        assert (await backend_client(stub_app).get_user("u1"))["username"] == "ann"

    @pytest.mark.asyncio
    async def test_owned_http_client_is_closed(self):
        async with BackendClient(BackendSettings(base_url="http://backend.test/")) as client:
            assert client.settings.base_url == "http://backend.test"
        assert client._http.is_closed
