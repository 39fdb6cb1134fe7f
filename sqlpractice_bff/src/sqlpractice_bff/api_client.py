# src/sqlpractice_bff/api_client.py

import typing
from typing import Any, Callable, Dict, Iterable, Optional, Union

import httpx

from .auth_utils import (
    InvalidTokenError,
    NotAuthenticatedError,
    TokenRefreshCoordinator,
    decode_token_claims,
    is_retried,
    user_id_from_claims,
)
from .config import settings

JSON_HEADERS = {"Content-Type": "application/json"}


def _new_http_client(
        base_url: Optional[str],
        transport: Optional[httpx.AsyncBaseTransport],
        timeout: Optional[float],
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url or settings.API_BASE_URL,
        headers=JSON_HEADERS,
        transport=transport,
        timeout=timeout or settings.REQUEST_TIMEOUT_SECONDS,
    )


class AuthApi:
    """
    Login and refresh calls.
    They use a client of their own with no refresh handling, so a 401 from the
    refresh endpoint can never start another refresh.
    """

    def __init__(
            self,
            base_url: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None,
            timeout: Optional[float] = None,
    ):
        self._client = _new_http_client(base_url, transport, timeout)

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        response = await self._client.post(settings.REFRESH_TOKEN_PATH, json={"refreshToken": refresh_token})
        response.raise_for_status()
        return response.json()

    async def ptit_login(self, username: str, password: str) -> Dict[str, Any]:
        response = await self._client.post("/auth/auth/ptit-login", json={"username": username, "password": password})
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


class ApiClient:
    """
    Authenticated client for the grading API.
    Every request carries the stored access token. A 401 is handed to the refresh
    coordinator and the request is replayed once with the token it returns.
    """

    def __init__(
            self,
            storage,
            coordinator: TokenRefreshCoordinator,
            base_url: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None,
            timeout: Optional[float] = None,
    ):
        self.storage = storage
        self.coordinator = coordinator
        self._client = _new_http_client(base_url, transport, timeout)

    @staticmethod
    def _authorize(request: httpx.Request, token: Optional[str]) -> None:
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        request = self._client.build_request(method, url, **kwargs)
        self._authorize(request, self.storage.access_token)
        response = await self._client.send(request)

        if response.status_code != 401 or is_retried(request):
            return response

        token = await self.coordinator.recover(request)
        self._authorize(request, token)
        print(f"API_CLIENT: Replaying {method} {request.url.path} with refreshed token.")
        return await self._client.send(request)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        self.coordinator.discard()
        await self._client.aclose()


def _json_or_raise(response: httpx.Response) -> Any:
    response.raise_for_status()
    return response.json()


class QuestionApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def search(self, params: Dict[str, Any]) -> Any:
        return _json_or_raise(await self.client.post("/app/question/search", json=params))

    async def get_detail(self, question_id: Union[int, str]) -> Any:
        return _json_or_raise(await self.client.get(f"/app/question/{question_id}"))


class ExecutorApi:
    def __init__(self, client: ApiClient, storage):
        self.client = client
        self.storage = storage

    def _current_user_id(self) -> Any:
        token = self.storage.access_token
        if not token:
            raise NotAuthenticatedError("No token")
        # InvalidTokenError propagates for an undecodable token
        user_id = user_id_from_claims(decode_token_claims(token))
        if user_id is None:
            raise InvalidTokenError("Token carries no userId, id or sub claim")
        return user_id

    async def dry_run(self, data: Dict[str, Any]) -> Any:
        """Runs the query against the grader without recording a submission."""
        return _json_or_raise(await self.client.post("/app/executor/user", json=data))

    async def submit(self, data: Dict[str, Any]) -> Any:
        return _json_or_raise(await self.client.post("/app/executor/submit", json=data))

    async def check_complete(self, question_ids: Union[Iterable[Union[int, str]], int, str]) -> Any:
        user_id = self._current_user_id()
        if isinstance(question_ids, (str, int)):
            question_ids = [question_ids]
        payload = {"questionIds": list(question_ids), "userId": user_id}
        return _json_or_raise(await self.client.post("/app/submit-history/check/complete", json=payload))

    async def get_history(self, question_id: Union[int, str], page: int = 0, size: int = 10) -> Any:
        """Submission history of the current user for one question, paged."""
        user_id = self._current_user_id()
        params = {"questionId": question_id, "page": page, "size": size}
        return _json_or_raise(await self.client.get(f"/app/submit-history/user/{user_id}", params=params))


class SqlPracticeApi:
    """
    Wires the token storage, refresh coordinator and endpoint wrappers together.
    `session` is re-synchronised on every refresh; `navigate` receives the login path
    when the session cannot be recovered.
    """

    def __init__(
            self,
            storage,
            session=None,
            navigate: Optional[Callable[[str], None]] = None,
            base_url: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None,
            timeout: Optional[float] = None,
    ):
        self.storage = storage
        self.auth = AuthApi(base_url, transport, timeout)
        self.coordinator = TokenRefreshCoordinator(
            storage,
            self.auth.refresh_token,
            on_token_refreshed=session.sync_token if session is not None else None,
            on_session_expired=navigate,
        )
        self.client = ApiClient(storage, self.coordinator, base_url, transport, timeout)
        self.questions = QuestionApi(self.client)
        self.executor = ExecutorApi(self.client, storage)

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.auth.aclose()

    async def __aenter__(self) -> "SqlPracticeApi":
        return self

    async def __aexit__(self, *exc_info: typing.Any) -> None:
        await self.aclose()
