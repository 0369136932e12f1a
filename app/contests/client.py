"""
Exam client
Thin httpx wrapper over the student contest endpoints, used by the proctoring
session. Non-2xx responses become ContestAPIError carrying the server's
denial code when there is one.
"""

from typing import Dict, Optional

import httpx


class ContestAPIError(Exception):
    def __init__(self, status_code: int, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code


class ContestClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            raise _api_error(response)
        return response.json()

    async def get_questions(self, contest_id: str) -> dict:
        """{contest, questions, registration}; answer keys are never included"""
        return await self._request("GET", f"/student/contests/{contest_id}/questions")

    async def start_attempt(self, contest_id: str) -> dict:
        return await self._request("POST", f"/student/contests/{contest_id}/start")

    async def submit(
        self,
        contest_id: str,
        answers: Dict[str, str],
        tab_switch_count: int,
        auto_submitted: bool = False
    ) -> dict:
        return await self._request(
            "POST",
            f"/student/contests/{contest_id}/submit",
            json={
                "answers": answers,
                "tabSwitchCount": tab_switch_count,
                "autoSubmitted": auto_submitted,
            },
        )


def _api_error(response: httpx.Response) -> ContestAPIError:
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None

    if isinstance(detail, dict):
        return ContestAPIError(response.status_code, detail.get("message", ""), detail.get("code"))
    return ContestAPIError(response.status_code, detail or response.reason_phrase)
