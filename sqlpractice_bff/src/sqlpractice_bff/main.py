# src/sqlpractice_bff/main.py

import typing

import httpx
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from .config import settings

# Never forwarded upstream; httpx sets its own
REQUEST_HEADER_DENY_LIST = {"host", "connection", "content-length"}
PROXY_REQUEST_HEADER_DENY_LIST = {"host", "connection"}
# httpx hands back a decoded body, so the upstream framing headers no longer apply
RESPONSE_HEADER_DENY_LIST = {"content-encoding", "transfer-encoding", "content-length"}

FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def cors_headers(include_max_age: bool = False) -> typing.Dict[str, str]:
    headers = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": ", ".join(settings.CORS_ALLOW_METHODS),
        "Access-Control-Allow-Headers": ", ".join(settings.CORS_ALLOW_HEADERS),
    }
    if include_max_age:
        headers["Access-Control-Max-Age"] = str(settings.CORS_MAX_AGE)
    return headers


def filter_headers(
        headers: typing.Iterable[typing.Tuple[str, str]],
        deny: typing.Set[str],
) -> typing.List[typing.Tuple[str, str]]:
    # Pairs, not a dict: repeated headers such as Set-Cookie must each survive
    return [(key, value) for key, value in headers if key.lower() not in deny]


def echo_response(
        status_code: int,
        header_pairs: typing.Iterable[typing.Tuple[str, str]],
        overrides: typing.Dict[str, str],
        content: typing.Optional[bytes] = None,
) -> Response:
    response = Response(content=content, status_code=status_code)
    overridden = {key.lower() for key in overrides}
    for key, value in header_pairs:
        if key.lower() not in overridden:
            response.headers.append(key, value)
    for key, value in overrides.items():
        response.headers[key] = value
    return response


def build_target_url(path: str, query: str) -> str:
    target = f"{settings.UPSTREAM_ROOT}{path}"
    if query:
        target = f"{target}?{query}"
    return target


async def get_upstream_client() -> typing.AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SECONDS) as client:
        yield client


async def forward(
        client: httpx.AsyncClient,
        request: Request,
        target_url: str,
        header_deny_list: typing.Set[str],
) -> httpx.Response:
    headers = filter_headers(request.headers.items(), header_deny_list)
    body = None
    if request.method not in ("GET", "HEAD"):
        body = await request.body()
    return await client.request(request.method, target_url, headers=headers, content=body)


# --- FastAPI App Setup ---
app = FastAPI(
    title="SQLPractice-BFF API",
    description="Forwards browser calls to the SQL practice grading API.",
    version="0.1.0"
)


@app.get("/")
async def home():
    return {"message": "SQLPractice BFF is running!", "upstream": settings.UPSTREAM_ROOT}


# Registered before the catch-all /api route so it wins for /api/proxy/...
@app.api_route("/api/proxy/{path:path}", methods=FORWARDED_METHODS)
async def proxy_rewritten(
        path: str,
        request: Request,
        client: httpx.AsyncClient = Depends(get_upstream_client),
):
    upstream_path = request.url.path.replace("/api/proxy", "/api", 1)
    target_url = build_target_url(upstream_path, request.url.query)

    try:
        upstream = await forward(client, request, target_url, PROXY_REQUEST_HEADER_DENY_LIST)
    except httpx.RequestError as e:
        print(f"PROXY: Request error forwarding {request.method} {target_url}: {e}")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(e)})

    response_headers = filter_headers(upstream.headers.multi_items(), RESPONSE_HEADER_DENY_LIST)

    if request.method == "OPTIONS":
        return echo_response(status.HTTP_204_NO_CONTENT, response_headers, cors_headers())

    return echo_response(upstream.status_code, response_headers, cors_headers(), content=upstream.content)


@app.api_route("/api/{path:path}", methods=FORWARDED_METHODS)
async def proxy(
        path: str,
        request: Request,
        client: httpx.AsyncClient = Depends(get_upstream_client),
):
    if request.method == "OPTIONS":
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors_headers(include_max_age=True))

    target_url = build_target_url(request.url.path, request.url.query)
    print(f"PROXY: Proxying to: {target_url}")

    try:
        upstream = await forward(client, request, target_url, REQUEST_HEADER_DENY_LIST)
    except httpx.RequestError as e:
        print(f"PROXY: Request error forwarding {request.method} {target_url}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(e)},
            headers={"Access-Control-Allow-Origin": "*"},
        )

    response_headers = filter_headers(upstream.headers.multi_items(), RESPONSE_HEADER_DENY_LIST)
    return echo_response(
        upstream.status_code, response_headers, {"Access-Control-Allow-Origin": "*"}, content=upstream.content
    )


@app.on_event("startup")
async def startup_event():
    print("--- SQLPractice-BFF (FastAPI) Starting Up ---")
    print(f"Upstream API: {settings.UPSTREAM_ROOT}")
    print(f"Upstream timeout: {settings.UPSTREAM_TIMEOUT_SECONDS}s")
    print(f"CORS methods: {settings.CORS_ALLOW_METHODS}")
    print(f"CORS headers: {settings.CORS_ALLOW_HEADERS}")
    print("-------------------------------------------")
