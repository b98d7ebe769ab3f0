"""
Remote judge client - HTTP client for the execution/judging API.
Supports single execution, judging, and concurrent batch judging.
"""
import asyncio
from typing import Dict, List, Optional

import aiohttp
from tqdm import tqdm


class RemoteJudgeClient:
    def __init__(self, base_url: str = "http://localhost:8000", api_key: str = "",
                 max_concurrency: int = 4, timeout_s: float = 120.0):
        """
        Args:
            base_url: judge server address
            api_key: shared secret sent in the X-API-Key header
            max_concurrency: how many batch submissions may be in flight at once
            timeout_s: total time allowed for one HTTP round trip
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_concurrency = max_concurrency
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    async def _post(self, session: aiohttp.ClientSession, path: str, payload: dict) -> Dict:
        try:
            async with session.post(f"{self.base_url}{path}", json=payload, headers=self._headers()) as response:
                result = await response.json()
                if response.status != 200:
                    return {
                        "success": False,
                        "status": None,
                        "error": result.get("error", f"HTTP {response.status}"),
                        "httpStatus": response.status,
                    }
                return result
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"success": False, "status": None, "error": f"Request failed: {e}"}

    async def execute(self, language: str, code: str, stdin: str = "",
                      time_limit_ms: Optional[int] = None) -> Dict:
        payload = {"language": language, "code": code, "input": stdin}
        if time_limit_ms:
            payload["timeLimitMs"] = time_limit_ms
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            return await self._post(session, "/execute", payload)

    async def judge(self, language: str, code: str, test_cases: List[Dict],
                    time_limit_ms: Optional[int] = None,
                    session: Optional[aiohttp.ClientSession] = None) -> Dict:
        """
        Args:
            test_cases: [{"input": ..., "expectedOutput": ..., "points": ...}]

        Returns:
            the verdict dictionary returned by the server
        """
        payload = {"language": language, "code": code, "testCases": test_cases}
        if time_limit_ms:
            payload["timeLimitMs"] = time_limit_ms
        if session is not None:
            return await self._post(session, "/judge", payload)
        async with aiohttp.ClientSession(timeout=self.timeout) as own_session:
            return await self._post(own_session, "/judge", payload)

    async def batch_judge(self, language: str, batch_code: List[str], test_cases: List[Dict],
                          time_limit_ms: Optional[int] = None, progress: bool = True) -> Dict:
        """
        Judge many submissions against the same test cases.

        Returns:
            {"accepted": n, "errors": n, "acceptRate": float, "results": [...]}
            where results keep the order of batch_code
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results: List[Optional[Dict]] = [None] * len(batch_code)

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            with tqdm(total=len(batch_code), desc=f"Judging {language}", disable=not progress) as pbar:

                async def one(idx: int, code: str):
                    async with semaphore:
                        results[idx] = await self.judge(language, code, test_cases, time_limit_ms, session)
                    pbar.update(1)

                await asyncio.gather(*(one(idx, code) for idx, code in enumerate(batch_code)))

        accepted = sum(1 for r in results if r.get("status") == "SUCCESS")
        errors = sum(1 for r in results if r.get("status") is None)
        valid = len(results) - errors
        return {
            "accepted": accepted,
            "errors": errors,
            "acceptRate": accepted / valid if valid else 0.0,
            "results": results,
        }

    def judge_sync(self, language: str, code: str, test_cases: List[Dict],
                   time_limit_ms: Optional[int] = None) -> Dict:
        """Blocking wrapper around ``judge`` for scripts."""
        return asyncio.run(self.judge(language, code, test_cases, time_limit_ms))


# Example usage
if __name__ == "__main__":
    import os

    client = RemoteJudgeClient(
        base_url=os.environ.get("JUDGE_URL", "http://localhost:8000"),
        api_key=os.environ.get("JUDGE_API_SECRET_KEY", "change-me"),
    )
    code = "a, b = map(int, input().split())\nprint(a + b)\n"
    result = client.judge_sync(
        "python",
        code,
        [{"input": "3 4", "expectedOutput": "7"}, {"input": "-1 1", "expectedOutput": "0"}],
    )
    print(f"Status: {result.get('status')}")
    print(f"Score: {result.get('totalScore')}/{result.get('maxScore')}")
