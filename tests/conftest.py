"""
Shared fixtures for SOAR engine tests.

External systems are faked with httpx.MockTransport; collaborators use the
in-memory store.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from socint.config import EngineSettings, NotificationSettings
from socint.soar.context import ExecutionContext
from socint.soar.dispatcher import ActionDispatcher
from socint.soar.engine import PlaybookGraphWalker
from socint.soar.execution_log import ExecutionLogger
from socint.soar.handlers import StepHandlers
from socint.soar.models import Connector, Playbook, RevisitPolicy
from socint.soar.service import PlaybookExecutionService
from socint.soar.storage import InMemorySoarStore


class FakeApi:
    """
    Canned HTTP responses keyed by (method, url).

    A route registered with several responses returns them in order and
    keeps returning the last one. Unknown routes answer 404.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Tuple[int, Any, Optional[str]]]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        status_code: int = 200,
        json_body: Any = None,
        text: Optional[str] = None,
    ) -> None:
        body = json_body if json_body is not None else {}
        self.routes.setdefault((method.upper(), url), []).append((status_code, body, text))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responses = self.routes.get((request.method, str(request.url)))
        if not responses:
            return httpx.Response(404, json={"error": "not found"})
        status_code, body, text = responses.pop(0) if len(responses) > 1 else responses[0]
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=body)

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and str(r.url) == url
        ]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def dispatcher(fake_api):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler))
    return ActionDispatcher(client=client)


@pytest.fixture
def engine_settings():
    return EngineSettings(
        internal_api_url="http://soc.local",
        default_timeout_ms=2000,
        retry_backoff_ms=0,
    )


@pytest.fixture
def notification_settings():
    return NotificationSettings(
        sendgrid_api_key="sg-test",
        slack_bot_token="xoxb-test",
        slack_channel_id="C-SOC",
        twilio_auth_token="tw-test",
        twilio_phone_number="+15550000000",
    )


@pytest.fixture
def store():
    return InMemorySoarStore(
        connectors=[
            Connector(
                name="CrowdStrike",
                type="EDR",
                configuration={"baseUrl": "http://edr.local", "apiKey": "edr-key"},
            ),
            Connector(
                name="PaloAlto",
                type="FIREWALL",
                configuration={"baseUrl": "http://fw.local", "apiKey": "fw-key"},
            ),
            Connector(
                name="AzureAD",
                type="IDENTITY",
                configuration={"baseUrl": "http://idp.local", "apiKey": "idp-key"},
            ),
        ],
        alerts={
            42: {"id": 42, "title": "Beaconing to known C2", "severity": "critical",
                 "sourceIp": "10.0.0.15"},
        },
        incidents={
            7: {"id": 7, "title": "Compromised workstation", "severity": "high"},
        },
    )


@pytest.fixture
def handlers(dispatcher, store, engine_settings, notification_settings):
    return StepHandlers(
        dispatcher,
        store,
        store,
        settings=engine_settings,
        notification_settings=notification_settings,
    )


@pytest.fixture
def make_playbook():
    def _make(steps, playbook_id: int = 1, name: str = "Test Playbook") -> Playbook:
        return Playbook.model_validate({"id": playbook_id, "name": name, "steps": steps})

    return _make


@pytest.fixture
def make_walker(handlers):
    def _make(
        playbook: Playbook,
        revisit_policy: RevisitPolicy = RevisitPolicy.PER_PATH,
        context: Optional[ExecutionContext] = None,
    ) -> PlaybookGraphWalker:
        return PlaybookGraphWalker(
            playbook,
            handlers,
            context or ExecutionContext(),
            ExecutionLogger(1),
            execution_id=1,
            revisit_policy=revisit_policy,
        )

    return _make


@pytest.fixture
def service(store, dispatcher, engine_settings, notification_settings):
    return PlaybookExecutionService(
        playbooks=store,
        executions=store,
        entities=store,
        connectors=store,
        dispatcher=dispatcher,
        settings=engine_settings,
        notification_settings=notification_settings,
    )
