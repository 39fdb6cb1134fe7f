from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from sqlpractice_bff.api_client import SqlPracticeApi
from sqlpractice_bff.auth_utils import InvalidTokenError, NotAuthenticatedError

BASE_URL = "http://testserver/api"


def _run(storage, handler: Callable[[httpx.Request], httpx.Response], call: Callable[[SqlPracticeApi], Any]) -> Any:
    async def scenario() -> Any:
        async with SqlPracticeApi(storage, base_url=BASE_URL, transport=httpx.MockTransport(handler)) as api:
            return await call(api)

    return asyncio.run(scenario())


def test_check_complete_wraps_single_id_and_uses_token_user(storage, token_factory, fresh_claims) -> None:
    token = token_factory(**fresh_claims)
    storage.save(token, "R1")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"questionId": 3, "status": "AC", "completed": "done"}])

    result = _run(storage, handler, lambda api: api.executor.check_complete(3))

    assert result[0]["status"] == "AC"
    assert seen[0].url.path == "/api/app/submit-history/check/complete"
    assert json.loads(seen[0].content) == {"questionIds": [3], "userId": 42}
    assert seen[0].headers["Authorization"] == f"Bearer {token}"
    assert seen[0].headers["Content-Type"] == "application/json"


def test_get_history_builds_user_path_and_paging(storage, token_factory) -> None:
    storage.save(token_factory(sub="u-17"))
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"content": [], "totalElements": 0})

    result = _run(storage, handler, lambda api: api.executor.get_history("q-9", page=2))

    assert result == {"content": [], "totalElements": 0}
    assert seen[0].url.path == "/api/app/submit-history/user/u-17"
    assert dict(seen[0].url.params) == {"questionId": "q-9", "page": "2", "size": "10"}


def test_history_calls_need_a_decodable_token(storage) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(NotAuthenticatedError):
        _run(storage, handler, lambda api: api.executor.check_complete([1, 2]))

    storage.save("garbage", "R1")
    with pytest.raises(InvalidTokenError):
        _run(storage, handler, lambda api: api.executor.get_history(1))


def test_dry_run_and_submit_post_query(storage) -> None:
    storage.save("A1", "R1")
    seen: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"status": 1, "result": [], "timeExec": 0.01})

    query = {"questionId": 5, "sql": "SELECT 1", "typeDatabaseId": 2}

    async def call(api: SqlPracticeApi) -> Any:
        await api.executor.submit(query)
        return await api.executor.dry_run(query)

    result = _run(storage, handler, call)

    assert result["status"] == 1
    assert seen == [("/api/app/executor/submit", query), ("/api/app/executor/user", query)]


def test_question_search_and_detail(storage) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"content": [{"id": 1}], "body": json.loads(request.content)})
        return httpx.Response(200, json={"id": request.url.path.rsplit("/", 1)[-1]})

    async def call(api: SqlPracticeApi) -> Any:
        found = await api.questions.search({"page": 0, "size": 20, "keyword": "join"})
        detail = await api.questions.get_detail(1)
        return found, detail

    found, detail = _run(storage, handler, call)

    assert found["body"]["keyword"] == "join"
    assert detail == {"id": "1"}


def test_non_auth_errors_raise_without_refresh(storage) -> None:
    storage.save("A1", "R1")
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(500, json={"message": "grader down"})

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        _run(storage, handler, lambda api: api.executor.dry_run({"sql": "SELECT 1"}))

    assert exc_info.value.response.status_code == 500
    assert paths == ["/api/app/executor/user"]
    assert storage.access_token == "A1"


def test_ptit_login_skips_bearer_header(storage) -> None:
    storage.save("A1", "R1")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"accessToken": "A9", "refreshToken": "R9"})

    result = _run(storage, handler, lambda api: api.auth.ptit_login("student", "secret"))

    assert result["accessToken"] == "A9"
    assert seen[0].url.path == "/api/auth/auth/ptit-login"
    assert "Authorization" not in seen[0].headers
    assert json.loads(seen[0].content) == {"username": "student", "password": "secret"}


def test_history_calls_need_a_user_claim(storage, token_factory) -> None:
    storage.save(token_factory(name="anonymous"), "R1")

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(InvalidTokenError):
        _run(storage, handler, lambda api: api.executor.check_complete(1))
    with pytest.raises(InvalidTokenError):
        _run(storage, handler, lambda api: api.executor.get_history(1))
