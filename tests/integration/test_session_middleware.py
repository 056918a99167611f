"""Integration tests for database-backed sessions."""
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi import FastAPI, Request
from sqlalchemy import select, update

from streamhooks.middleware.session import DatabaseSessionMiddleware
from streamhooks.models.session import SessionRecord

COOKIE = "test_session"


def session_app(database) -> FastAPI:
    app = FastAPI()
    app.add_middleware(DatabaseSessionMiddleware, database=database, secret="k", cookie_name=COOKIE)

    @app.get("/set/{value}")
    async def set_value(value: str, request: Request):
        request.session["value"] = value
        return {"ok": True}

    @app.get("/get")
    async def get_value(request: Request):
        return {"value": request.session.get("value")}

    @app.get("/clear")
    async def clear(request: Request):
        request.session.clear()
        return {"ok": True}

    return app


def client_for(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


async def stored_sessions(database):
    async with database.session_factory() as db:
        return list(await db.scalars(select(SessionRecord)))


@pytest.mark.integration
@pytest.mark.asyncio
class TestDatabaseSessionMiddleware:
    async def test_untouched_session_sets_no_cookie(self, database):
        async with client_for(session_app(database)) as client:
            response = await client.get("/get")

        assert response.json() == {"value": None}
        assert COOKIE not in response.cookies
        assert await stored_sessions(database) == []

    async def test_session_round_trip(self, database):
        async with client_for(session_app(database)) as client:
            response = await client.get("/set/hello")
            assert COOKIE in response.cookies

            response = await client.get("/get")

        assert response.json() == {"value": "hello"}
        (record,) = await stored_sessions(database)
        assert record.data == '{"value": "hello"}'

    async def test_unchanged_session_is_not_rewritten(self, database):
        async with client_for(session_app(database)) as client:
            await client.get("/set/hello")
            response = await client.get("/get")

        assert COOKIE not in response.cookies

    async def test_tampered_cookie_is_ignored(self, database):
        app = session_app(database)
        async with client_for(app) as client:
            await client.get("/set/hello")
            session_id = client.cookies[COOKIE].rsplit(".", 1)[0]
            client.cookies.clear()
            client.cookies.set(COOKIE, f"{session_id}.forged")

            response = await client.get("/get")

        assert response.json() == {"value": None}

    async def test_cleared_session_is_deleted(self, database):
        async with client_for(session_app(database)) as client:
            await client.get("/set/hello")
            response = await client.get("/clear")

        assert await stored_sessions(database) == []
        assert response.headers["set-cookie"].startswith(f"{COOKIE}=")

    async def test_expired_session_is_discarded(self, database):
        async with client_for(session_app(database)) as client:
            await client.get("/set/hello")
            async with database.session_factory() as db:
                await db.execute(
                    update(SessionRecord).values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
                )
                await db.commit()

            response = await client.get("/get")

        assert response.json() == {"value": None}
        assert await stored_sessions(database) == []

    async def test_signature_round_trip(self, database):
        middleware = DatabaseSessionMiddleware(FastAPI(), database=database, secret="k")
        assert middleware.unsign(middleware.sign("abc")) == "abc"
        assert middleware.unsign("abc.wrong") is None
        assert middleware.unsign(None) is None
        assert DatabaseSessionMiddleware(FastAPI(), database=database, secret="other").unsign(middleware.sign("abc")) is None
