import httpx
import pytest

from app.contests.client import ContestAPIError, ContestClient


def client_for(handler):
    return ContestClient("http://contest.test", "abc.def", transport=httpx.MockTransport(handler))


async def test_requests_carry_the_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json={"id": "ATT_1", "contestId": "CONTEST_1"})

    async with client_for(handler) as client:
        attempt = await client.start_attempt("CONTEST_1")

    assert attempt["id"] == "ATT_1"
    assert seen == {"auth": "Bearer abc.def", "path": "/student/contests/CONTEST_1/start"}


async def test_denial_codes_are_exposed():
    def handler(request):
        return httpx.Response(403, json={"detail": {"message": "Payment not approved", "code": "NOT_APPROVED"}})

    async with client_for(handler) as client:
        with pytest.raises(ContestAPIError) as exc:
            await client.get_questions("CONTEST_1")

    assert exc.value.status_code == 403
    assert exc.value.code == "NOT_APPROVED"
    assert exc.value.message == "Payment not approved"


async def test_plain_errors_keep_their_message():
    def handler(request):
        if request.url.path.endswith("/start"):
            return httpx.Response(404, json={"detail": "Contest not found"})
        return httpx.Response(502, text="bad gateway")

    async with client_for(handler) as client:
        with pytest.raises(ContestAPIError) as missing:
            await client.start_attempt("CONTEST_X")
        with pytest.raises(ContestAPIError) as gateway:
            await client.submit("CONTEST_X", {}, 0)

    assert (missing.value.status_code, missing.value.message, missing.value.code) == (404, "Contest not found", None)
    assert (gateway.value.status_code, gateway.value.message) == (502, "Bad Gateway")
