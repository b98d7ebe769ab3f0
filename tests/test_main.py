import json

import pytest
from fastapi.testclient import TestClient

from codejudge import main
from codejudge.config import Settings
from codejudge.judge import Judge
from codejudge.main import RateLimiter, create_app

from conftest import ADD_PROGRAM, ECHO_PROGRAM, LOOP_PROGRAM

AUTH = {"X-API-Key": "test-secret"}


@pytest.fixture
def app(settings, registry):
    return create_app(settings, registry)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def workspace_entries(settings):
    return list(settings.workspace_root.iterdir())


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert "python" in body["supportedLanguages"]
    assert body["uptime"] >= 0


def test_languages(client):
    body = client.get("/languages").json()
    by_id = {lang["id"]: lang for lang in body}
    assert by_id["python"]["extension"] == "py"
    assert by_id["java"]["defaultTimeoutMs"] == 10000
    assert by_id["cpp"]["compiled"] is True
    assert "Solution" in by_id["java"]["template"]
    assert by_id["python"]["displayName"] == "Python 3"


def test_missing_api_key_is_rejected_before_any_work(client, settings):
    resp = client.post("/execute", json={"language": "python", "code": ECHO_PROGRAM})
    assert resp.status_code == 401
    assert resp.json()["success"] is False
    assert workspace_entries(settings) == []


def test_wrong_api_key_is_rejected(client):
    resp = client.post("/judge", json={}, headers={"X-API-Key": "nope"})
    assert resp.status_code == 401


def test_bearer_authorization_is_accepted(client):
    resp = client.post(
        "/execute",
        json={"language": "python", "code": ECHO_PROGRAM, "input": "x"},
        headers={"Authorization": "Bearer test-secret"},
    )
    assert resp.status_code == 200


def test_execute_echo(client, settings):
    resp = client.post("/execute", json={"language": "python", "code": ECHO_PROGRAM, "input": "hello"}, headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "SUCCESS"
    assert body["success"] is True
    assert body["output"].strip() == "hello"
    assert body["memory"] == 0
    assert workspace_entries(settings) == []


def test_execute_time_limit(client):
    resp = client.post(
        "/execute", json={"language": "python", "code": LOOP_PROGRAM, "timeLimitMs": 500}, headers=AUTH
    )
    body = resp.json()
    assert body["status"] == "TIME_LIMIT_EXCEEDED"
    assert body["runtimeMs"] == 500
    assert body["success"] is False


def test_execute_runtime_error(client):
    resp = client.post("/execute", json={"language": "python", "code": "1/0\n"}, headers=AUTH)
    body = resp.json()
    assert resp.status_code == 200
    assert body["status"] == "RUNTIME_ERROR"
    assert "ZeroDivisionError" in body["error"]


def test_missing_code_is_bad_request(client):
    resp = client.post("/execute", json={"language": "python"}, headers=AUTH)
    assert resp.status_code == 400
    assert "code" in resp.json()["error"]


def test_unsupported_language_is_bad_request(client, settings):
    resp = client.post("/execute", json={"language": "cobol", "code": "DISPLAY 'HI'."}, headers=AUTH)
    assert resp.status_code == 400
    assert "Unsupported language" in resp.json()["error"]
    assert workspace_entries(settings) == []


def test_code_length_limit(client, settings):
    code = "#" * (settings.max_code_length + 1)
    resp = client.post("/execute", json={"language": "python", "code": code}, headers=AUTH)
    assert resp.status_code == 400
    assert "Code length" in resp.json()["error"]


def test_input_length_limit(client, settings):
    resp = client.post(
        "/execute",
        json={"language": "python", "code": ECHO_PROGRAM, "input": "x" * (settings.max_input_length + 1)},
        headers=AUTH,
    )
    assert resp.status_code == 400


def test_oversized_body_is_refused(settings, registry):
    small = settings.model_copy(update={"max_body_bytes": 200})
    with TestClient(create_app(small, registry)) as c:
        resp = c.post("/execute", json={"language": "python", "code": "x" * 500}, headers=AUTH)
    assert resp.status_code == 413


def test_streamed_body_without_length_is_refused(settings, registry):
    small = settings.model_copy(update={"max_body_bytes": 200})
    payload = json.dumps({"language": "python", "code": "x" * 500}).encode()

    def chunks():
        yield payload[:100]
        yield payload[100:]

    headers = {**AUTH, "Content-Type": "application/json"}
    with TestClient(create_app(small, registry)) as c:
        resp = c.post("/execute", content=chunks(), headers=headers)
    assert resp.status_code == 413
    assert resp.json()["success"] is False
    assert list(small.workspace_root.iterdir()) == []


def test_small_streamed_body_is_accepted(client):
    payload = json.dumps({"language": "python", "code": ECHO_PROGRAM, "input": "hi"}).encode()
    headers = {**AUTH, "Content-Type": "application/json"}
    resp = client.post("/execute", content=iter([payload]), headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "SUCCESS"


    assert resp.status_code == 413


def test_judge_addition_example(client, settings):
    payload = {
        "language": "python",
        "code": ADD_PROGRAM,
        "testCases": [{"input": "3 4", "expectedOutput": "7"}, {"input": "-1 1", "expectedOutput": "0"}],
    }
    body = client.post("/judge", json=payload, headers=AUTH).json()
    assert body["status"] == "SUCCESS"
    assert body["success"] is True
    assert body["totalScore"] == 2
    assert body["maxScore"] == 2
    assert body["testCasesPassed"] == 2
    assert body["totalTestCases"] == 2
    assert body["maxMemory"] == 0
    assert [r["testCaseIndex"] for r in body["testCaseResults"]] == [0, 1]
    assert body["testCaseResults"][0]["actualOutput"] == "7"
    assert workspace_entries(settings) == []


def test_judge_partial_success_with_points(client):
    payload = {
        "language": "python",
        "code": ADD_PROGRAM,
        "testCases": [
            {"input": "1 2", "expectedOutput": "3", "points": 4},
            {"input": "1 2", "expectedOutput": "4", "points": 6},
        ],
    }
    body = client.post("/judge", json=payload, headers=AUTH).json()
    assert body["status"] == "PARTIAL_SUCCESS"
    assert body["totalScore"] == 4
    assert body["maxScore"] == 10
    assert body["testCaseResults"][1]["status"] == "WRONG_ANSWER"


def test_judge_requires_test_cases(client):
    body = {"language": "python", "code": ECHO_PROGRAM, "testCases": []}
    assert client.post("/judge", json=body, headers=AUTH).status_code == 400
    body.pop("testCases")
    assert client.post("/judge", json=body, headers=AUTH).status_code == 400


def test_judge_case_missing_expected_output_is_per_case_error(client):
    payload = {
        "language": "python",
        "code": ECHO_PROGRAM,
        "testCases": [{"input": "a", "expectedOutput": "a"}, {"input": "b"}],
    }
    body = client.post("/judge", json=payload, headers=AUTH).json()
    assert body["status"] == "PARTIAL_SUCCESS"
    assert body["testCaseResults"][1]["status"] == "INTERNAL_ERROR"
    assert body["totalTestCases"] == 2


def test_judge_internal_failure_is_contained(client, monkeypatch, settings):
    async def broken(self, test_cases, time_limit=None):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(Judge, "run", broken)
    payload = {"language": "python", "code": ECHO_PROGRAM, "testCases": [{"input": "a", "expectedOutput": "a"}]}
    resp = client.post("/judge", json=payload, headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "INTERNAL_ERROR"
    assert body["error"] == "Internal server error"
    assert len(body["testCaseResults"]) == 1


def test_single_test_endpoint(client):
    payload = {"language": "python", "code": ECHO_PROGRAM, "input": "ping", "expectedOutput": "ping\r\n"}
    body = client.post("/test", json=payload, headers=AUTH).json()
    assert body["passed"] is True
    assert body["status"] == "SUCCESS"
    assert body["points"] == 1
    assert body["actualOutput"] == "ping"

    payload["expectedOutput"] = "pong"
    body = client.post("/test", json=payload, headers=AUTH).json()
    assert body["passed"] is False
    assert body["status"] == "WRONG_ANSWER"


def test_rate_limit(settings, registry):
    strict = settings.model_copy(update={"rate_limit_max_requests": 2})
    with TestClient(create_app(strict, registry)) as c:
        payload = {"language": "python", "code": ECHO_PROGRAM, "input": "x"}
        codes = [c.post("/execute", json=payload, headers=AUTH).status_code for _ in range(3)]
    assert codes == [200, 200, 429]


def test_rate_limiter_window_resets():
    limiter = RateLimiter(max_requests=1, window_ms=1000)
    assert limiter.hit("a", now=0.0)
    assert not limiter.hit("a", now=0.5)
    assert limiter.hit("b", now=0.5)
    assert limiter.hit("a", now=1.5)


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("JUDGE_API_SECRET_KEY", "from-env")
    monkeypatch.setenv("JUDGE_MAX_EXECUTION_TIME_MS", "2500")
    s = Settings(workspace_root=tmp_path)
    assert s.api_secret_key == "from-env"
    assert s.max_execution_time_ms == 2500


def test_server_builds_the_app_through_the_factory(monkeypatch):
    calls = []
    monkeypatch.setattr("uvicorn.run", lambda target, **kwargs: calls.append((target, kwargs)))
    main.serve()
    target, kwargs = calls[0]
    assert target == "codejudge.main:create_app"
    assert kwargs["factory"] is True
    # nothing is built at import time
    assert not hasattr(main, "app")
