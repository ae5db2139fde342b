"""
Tests for the step handlers.
"""

from typing import List

import pytest

from socint.soar.context import ExecutionContext
from socint.soar.execution_log import ExecutionLogger
from socint.soar.handlers import HandlerContext
from socint.soar.models import Connector, LogLevel, Playbook, PlaybookStep


def make_step(step_type, config=None, step_id="s1", name="Step"):
    return PlaybookStep.model_validate(
        {"id": step_id, "name": name, "type": step_type, "config": config or {}}
    )


@pytest.fixture
def hctx():
    async def no_fan_out(steps, context) -> List[bool]:
        return []

    return HandlerContext(
        execution_id=1,
        playbook=Playbook(id=1, name="Contain Host"),
        context=ExecutionContext(),
        log=ExecutionLogger(1),
        fan_out=no_fan_out,
    )


class TestConnectorActions:
    """Test EDR, firewall and identity actions."""

    @pytest.mark.asyncio
    async def test_block_ip_records_result(self, handlers, hctx, fake_api):
        fake_api.add("POST", "http://fw.local/api/v1/blocklist/ip", json_body={"ruleId": "r-1"})
        step = make_step("firewall_block_ip", {"ip": "203.0.113.9", "firewallSystem": "PaloAlto"})

        assert await handlers.handle(step, hctx) is True

        result = hctx.context["firewallActions"]["blockIp"]
        assert result["ip"] == "203.0.113.9"
        assert result["firewallSystem"] == "PaloAlto"
        assert result["duration"] == "24h"
        assert result["success"] is True
        assert result["response"] == {"ruleId": "r-1"}
        assert "timestamp" in result
        assert hctx.context["steps"]["s1"] == result

        request = fake_api.requests[0]
        assert request.headers["Authorization"] == "Bearer fw-key"
        assert fake_api.body(request) == {
            "ip": "203.0.113.9",
            "duration": "24h",
            "reason": "Blocked by SOC-Inteligente SOAR playbook: Contain Host",
        }

    @pytest.mark.asyncio
    async def test_block_ip_keeps_explicit_reason(self, handlers, hctx, fake_api):
        fake_api.add("POST", "http://fw.local/api/v1/blocklist/ip")
        step = make_step(
            "firewall_block_ip",
            {"ip": "203.0.113.9", "firewallSystem": "PaloAlto", "duration": "1h",
             "reason": "C2 traffic"},
        )

        assert await handlers.handle(step, hctx) is True
        assert fake_api.body(fake_api.requests[0])["reason"] == "C2 traffic"
        assert fake_api.body(fake_api.requests[0])["duration"] == "1h"

    @pytest.mark.asyncio
    async def test_isolate_host(self, handlers, hctx, fake_api):
        url = "http://edr.local/api/v1/hosts/ws-042/actions/isolate"
        fake_api.add("POST", url, json_body={"status": "pending"})
        step = make_step("edr_isolate_host", {"host": "ws-042", "edrSystem": "CrowdStrike"})

        assert await handlers.handle(step, hctx) is True

        assert fake_api.body(fake_api.calls("POST", url)[0]) == {
            "comment": "Isolated by SOC-Inteligente SOAR playbook: Contain Host",
            "isolationType": "full",
        }
        assert hctx.context["edrActions"]["isolateHost"]["host"] == "ws-042"
        assert "Successfully isolated host 'ws-042'" in hctx.log.messages()

    @pytest.mark.asyncio
    async def test_scan_host_extracts_scan_id(self, handlers, hctx, fake_api):
        fake_api.add(
            "POST", "http://edr.local/api/v1/hosts/ws-042/actions/scan",
            json_body={"scanId": "scan-9"},
        )
        step = make_step("edr_scan_host", {"host": "ws-042", "edrSystem": "CrowdStrike"})

        assert await handlers.handle(step, hctx) is True

        result = hctx.context["edrActions"]["scanHost"]
        assert result["scanId"] == "scan-9"
        assert fake_api.body(fake_api.requests[0])["priority"] == "high"

    @pytest.mark.asyncio
    async def test_process_list_counts_processes(self, handlers, hctx, fake_api):
        fake_api.add(
            "GET", "http://edr.local/api/v1/hosts/ws-042/processes",
            json_body={"processes": [{"pid": 1}, {"pid": 2}]},
        )
        step = make_step("edr_get_process_list", {"host": "ws-042", "edrSystem": "CrowdStrike"})

        assert await handlers.handle(step, hctx) is True

        result = hctx.context["edrActions"]["processList"]
        assert result["count"] == 2
        assert result["processes"] == [{"pid": 1}, {"pid": 2}]

    @pytest.mark.asyncio
    async def test_kill_process(self, handlers, hctx, fake_api):
        url = "http://edr.local/api/v1/hosts/ws-042/processes/4711/actions/terminate"
        fake_api.add("POST", url)
        step = make_step(
            "edr_kill_process", {"host": "ws-042", "edrSystem": "CrowdStrike", "processId": 4711}
        )

        assert await handlers.handle(step, hctx) is True
        assert len(fake_api.calls("POST", url)) == 1

    @pytest.mark.asyncio
    async def test_unblock_ip_uses_delete(self, handlers, hctx, fake_api):
        url = "http://fw.local/api/v1/blocklist/ip/203.0.113.9"
        fake_api.add("DELETE", url)
        step = make_step("firewall_unblock_ip", {"ip": "203.0.113.9", "firewallSystem": "PaloAlto"})

        assert await handlers.handle(step, hctx) is True
        assert hctx.context["firewallActions"]["unblockIp"]["ip"] == "203.0.113.9"

    @pytest.mark.asyncio
    async def test_disable_user(self, handlers, hctx, fake_api):
        fake_api.add("POST", "http://idp.local/api/v1/users/jdoe/disable")
        step = make_step("identity_disable_user", {"username": "jdoe", "identitySystem": "AzureAD"})

        assert await handlers.handle(step, hctx) is True
        assert fake_api.body(fake_api.requests[0]) == {
            "reason": "Disabled by SOC-Inteligente SOAR playbook: Contain Host"
        }

    @pytest.mark.asyncio
    async def test_add_to_group(self, handlers, hctx, fake_api):
        fake_api.add("POST", "http://idp.local/api/v1/groups/quarantine/members")
        step = make_step(
            "identity_add_to_group",
            {"username": "jdoe", "groupName": "quarantine", "identitySystem": "AzureAD"},
        )

        assert await handlers.handle(step, hctx) is True
        assert fake_api.body(fake_api.requests[0]) == {
            "username": "jdoe",
            "requestedBy": "SOC-Inteligente SOAR playbook: Contain Host",
        }
        assert hctx.context["identityActions"]["addToGroup"]["groupName"] == "quarantine"

    @pytest.mark.asyncio
    async def test_missing_connector(self, handlers, hctx, fake_api):
        step = make_step("firewall_block_ip", {"ip": "203.0.113.9", "firewallSystem": "Fortinet"})

        assert await handlers.handle(step, hctx) is False

        assert "Firewall connector 'Fortinet' not found" in hctx.log.messages(LogLevel.ERROR)
        assert fake_api.requests == []
        assert "firewallActions" not in hctx.context

    @pytest.mark.asyncio
    async def test_http_failure(self, handlers, hctx, fake_api):
        fake_api.add("POST", "http://fw.local/api/v1/blocklist/ip", status_code=500)
        step = make_step("firewall_block_ip", {"ip": "203.0.113.9", "firewallSystem": "PaloAlto"})

        assert await handlers.handle(step, hctx) is False

        errors = hctx.log.messages(LogLevel.ERROR)
        assert errors == ["Failed to block IP '203.0.113.9': HTTP error: 500 Internal Server Error"]
        assert "firewallActions" not in hctx.context

    @pytest.mark.asyncio
    async def test_step_retry_block(self, handlers, hctx, fake_api):
        url = "http://fw.local/api/v1/blocklist/ip"
        fake_api.add("POST", url, status_code=503)
        fake_api.add("POST", url)
        step = make_step(
            "firewall_block_ip",
            {"ip": "203.0.113.9", "firewallSystem": "PaloAlto",
             "retry": {"maxAttempts": 2, "backoffMs": 0}},
        )

        assert await handlers.handle(step, hctx) is True
        assert len(fake_api.calls("POST", url)) == 2
        assert "retry" not in hctx.context["firewallActions"]["blockIp"]


HOST = {"host": "ws-042", "edrSystem": "CrowdStrike"}
USER = {"username": "jdoe", "identitySystem": "AzureAD"}
GROUP = {"username": "jdoe", "groupName": "quarantine", "identitySystem": "AzureAD"}

# step type, config, method, url, (namespace, key), response, extra result fields
CONNECTOR_CASES = [
    ("edr_isolate_host", HOST, "POST",
     "http://edr.local/api/v1/hosts/ws-042/actions/isolate",
     ("edrActions", "isolateHost"), {}, {}),
    ("edr_unisolate_host", HOST, "POST",
     "http://edr.local/api/v1/hosts/ws-042/actions/unisolate",
     ("edrActions", "unisolateHost"), {}, {}),
    ("edr_scan_host", HOST, "POST",
     "http://edr.local/api/v1/hosts/ws-042/actions/scan",
     ("edrActions", "scanHost"), {"scanId": "scan-1"}, {"scanId": "scan-1"}),
    ("edr_get_process_list", HOST, "GET",
     "http://edr.local/api/v1/hosts/ws-042/processes",
     ("edrActions", "processList"), {"processes": [{"pid": 1}]},
     {"processes": [{"pid": 1}], "count": 1}),
    ("edr_kill_process", {**HOST, "processId": "99"}, "POST",
     "http://edr.local/api/v1/hosts/ws-042/processes/99/actions/terminate",
     ("edrActions", "killProcess"), {}, {}),
    ("firewall_block_ip", {"ip": "198.51.100.7", "firewallSystem": "PaloAlto"}, "POST",
     "http://fw.local/api/v1/blocklist/ip",
     ("firewallActions", "blockIp"), {}, {}),
    ("firewall_unblock_ip", {"ip": "198.51.100.7", "firewallSystem": "PaloAlto"}, "DELETE",
     "http://fw.local/api/v1/blocklist/ip/198.51.100.7",
     ("firewallActions", "unblockIp"), {}, {}),
    ("firewall_block_domain", {"domain": "evil.example", "firewallSystem": "PaloAlto"}, "POST",
     "http://fw.local/api/v1/blocklist/domain",
     ("firewallActions", "blockDomain"), {}, {}),
    ("firewall_unblock_domain", {"domain": "evil.example/x?y", "firewallSystem": "PaloAlto"},
     "DELETE", "http://fw.local/api/v1/blocklist/domain/evil.example%2Fx%3Fy",
     ("firewallActions", "unblockDomain"), {}, {}),
    ("identity_disable_user", USER, "POST",
     "http://idp.local/api/v1/users/jdoe/disable",
     ("identityActions", "disableUser"), {}, {}),
    ("identity_enable_user", USER, "POST",
     "http://idp.local/api/v1/users/jdoe/enable",
     ("identityActions", "enableUser"), {}, {}),
    ("identity_reset_password", USER, "POST",
     "http://idp.local/api/v1/users/jdoe/reset-password",
     ("identityActions", "resetPassword"), {"temporaryPassword": "Tmp-123"},
     {"temporaryPassword": "Tmp-123"}),
    ("identity_add_to_group", GROUP, "POST",
     "http://idp.local/api/v1/groups/quarantine/members",
     ("identityActions", "addToGroup"), {}, {}),
    ("identity_remove_from_group", GROUP, "DELETE",
     "http://idp.local/api/v1/groups/quarantine/members/jdoe",
     ("identityActions", "removeFromGroup"), {}, {}),
]


class TestConnectorActionTable:
    """Every connector-backed step type against its endpoint."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "step_type,config,method,url,slot,response,extras",
        CONNECTOR_CASES,
        ids=[case[0] for case in CONNECTOR_CASES],
    )
    async def test_action(
        self, handlers, hctx, fake_api, step_type, config, method, url, slot, response, extras
    ):
        fake_api.add(method, url, json_body=response)
        step = make_step(step_type, config)

        assert await handlers.handle(step, hctx) is True

        assert len(fake_api.calls(method, url)) == 1
        assert fake_api.requests[0].headers["Authorization"].startswith("Bearer ")

        namespace, key = slot
        result = hctx.context[namespace][key]
        assert result["success"] is True
        assert result["response"] == response
        for field, value in extras.items():
            assert result[field] == value
        assert hctx.context["steps"]["s1"] == result

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "step_type,config,method,url,slot,response,extras",
        CONNECTOR_CASES,
        ids=[case[0] for case in CONNECTOR_CASES],
    )
    async def test_action_failure_records_nothing(
        self, handlers, hctx, fake_api, step_type, config, method, url, slot, response, extras
    ):
        fake_api.add(method, url, status_code=502)
        step = make_step(step_type, config)

        assert await handlers.handle(step, hctx) is False

        assert slot[0] not in hctx.context
        assert len(hctx.log.messages(LogLevel.ERROR)) == 1

    def test_table_covers_every_connector_step_type(self):
        from socint.soar.handlers import CONNECTOR_ACTIONS

        assert {case[0] for case in CONNECTOR_CASES} == {t.value for t in CONNECTOR_ACTIONS}

    @pytest.mark.asyncio
    async def test_reset_password_body(self, handlers, hctx, fake_api):
        url = "http://idp.local/api/v1/users/jdoe/reset-password"
        fake_api.add("POST", url, json_body={"temporaryPassword": "Tmp-123"})
        step = make_step("identity_reset_password", {**USER, "sendEmail": False})

        assert await handlers.handle(step, hctx) is True
        assert fake_api.body(fake_api.requests[0]) == {
            "sendEmail": False,
            "requestedBy": "SOC-Inteligente SOAR playbook: Contain Host",
        }


class TestConfigErrors:
    """Test handler-level failures for bad steps."""

    @pytest.mark.asyncio
    async def test_invalid_config(self, handlers, hctx, fake_api):
        step = make_step("firewall_block_ip", {"firewallSystem": "PaloAlto"})

        assert await handlers.handle(step, hctx) is False

        errors = hctx.log.messages(LogLevel.ERROR)
        assert len(errors) == 1
        assert errors[0].startswith("Invalid config for step 's1' (firewall_block_ip)")
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_unsupported_step_type(self, handlers, hctx):
        step = make_step("quarantine_mailbox")

        assert await handlers.handle(step, hctx) is False
        assert "Unsupported step type: quarantine_mailbox" in hctx.log.messages(LogLevel.WARNING)


class TestNotifications:
    """Test email, Slack and SMS notifications."""

    @pytest.mark.asyncio
    async def test_slack_uses_fallback_settings(self, handlers, hctx, fake_api):
        fake_api.add(
            "POST", "https://slack.com/api/chat.postMessage", json_body={"ok": True, "ts": "17.1"}
        )
        step = make_step("notify_slack", {"message": "Host ws-042 isolated"})

        assert await handlers.handle(step, hctx) is True

        request = fake_api.requests[0]
        assert request.headers["Authorization"] == "Bearer xoxb-test"
        assert fake_api.body(request)["channel"] == "C-SOC"
        assert fake_api.body(request)["text"] == "Host ws-042 isolated"

        result = hctx.context["notificationActions"]["slack"]
        assert result["channel"] == "C-SOC"
        assert result["messageTs"] == "17.1"

    @pytest.mark.asyncio
    async def test_slack_not_ok_is_failure(self, handlers, hctx, fake_api):
        fake_api.add(
            "POST", "https://slack.com/api/chat.postMessage",
            json_body={"ok": False, "error": "channel_not_found"},
        )
        step = make_step("notify_slack", {"channel": "#nope", "message": "hi"})

        assert await handlers.handle(step, hctx) is False
        assert hctx.log.messages(LogLevel.ERROR) == [
            "Failed to send Slack notification to channel '#nope': channel_not_found"
        ]

    @pytest.mark.asyncio
    async def test_email_uses_email_connector(self, handlers, hctx, fake_api, store):
        store.add_connector(
            Connector(
                name="Mailer",
                type="EMAIL",
                configuration={
                    "baseUrl": "http://mail.local",
                    "apiKey": "mail-key",
                    "fromEmail": "soar@example.com",
                },
            )
        )
        fake_api.add("POST", "http://mail.local/api/send-email", json_body={"messageId": "m-1"})
        step = make_step(
            "notify_email",
            {"to": "soc@example.com", "subject": "Isolated", "body": "<p>done</p>"},
        )

        assert await handlers.handle(step, hctx) is True

        body = fake_api.body(fake_api.requests[0])
        assert body["from"] == "soar@example.com"
        assert body["isHtml"] is True
        assert hctx.context["notificationActions"]["email"]["messageId"] == "m-1"

    @pytest.mark.asyncio
    async def test_sms_falls_back_to_twilio(self, handlers, hctx, fake_api):
        fake_api.add(
            "POST", "https://api.twilio.com/2010-04-01/api/send-sms", json_body={"messageId": "sm-1"}
        )
        step = make_step("notify_sms", {"phoneNumber": "+15551234567", "message": "P1 incident"})

        assert await handlers.handle(step, hctx) is True

        body = fake_api.body(fake_api.requests[0])
        assert body == {"to": "+15551234567", "body": "P1 incident", "from": "+15550000000"}
        assert hctx.context["notificationActions"]["sms"]["phoneNumber"] == "+15551234567"


class TestAnalysis:
    """Test enrichment and analysis steps."""

    @pytest.mark.asyncio
    async def test_enrich_ioc(self, handlers, hctx, fake_api):
        fake_api.add("POST", "http://soc.local/api/iocs/enrich", json_body={"reputation": "bad"})
        step = make_step("enrich_ioc", {"ioc": "203.0.113.9", "iocType": "ip"})

        assert await handlers.handle(step, hctx) is True

        assert fake_api.body(fake_api.requests[0]) == {"value": "203.0.113.9", "type": "ip"}
        assert hctx.context["analysisActions"]["enrichIoc"]["enrichment"] == {"reputation": "bad"}

    @pytest.mark.asyncio
    async def test_analyze_alert(self, handlers, hctx, fake_api):
        fake_api.add(
            "POST", "http://soc.local/api/alerts/42/analyze", json_body={"threatLevel": "high"}
        )
        step = make_step("ai_analyze_alert", {"alertId": 42})

        assert await handlers.handle(step, hctx) is True

        result = hctx.context["analysisActions"]["aiAnalyzeAlert"]
        assert result["alertId"] == 42
        assert result["threatLevel"] == "high"

    @pytest.mark.asyncio
    async def test_analyze_unknown_alert(self, handlers, hctx, fake_api):
        step = make_step("ai_analyze_alert", {"alertId": 999})

        assert await handlers.handle(step, hctx) is False
        assert "Alert with ID '999' not found" in hctx.log.messages(LogLevel.ERROR)
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_lookup_threat_intel(self, handlers, hctx, fake_api):
        fake_api.add(
            "POST", "http://soc.local/api/threat-intel/lookup",
            json_body={"results": [{"source": "otx"}, {"source": "misp"}]},
        )
        step = make_step("lookup_threat_intel", {"indicator": "evil.example", "type": "domain"})

        assert await handlers.handle(step, hctx) is True

        result = hctx.context["analysisActions"]["lookupThreatIntel"]
        assert result["matchCount"] == 2
        assert result["type"] == "domain"


class TestControlFlow:
    """Test condition, wait and call_api steps."""

    @pytest.mark.asyncio
    async def test_condition_step_succeeds(self, handlers, hctx):
        assert await handlers.handle(make_step("condition"), hctx) is True

    @pytest.mark.asyncio
    async def test_wait(self, handlers, hctx):
        assert await handlers.handle(make_step("wait", {"duration": 5}), hctx) is True
        assert "Wait completed for 5 milliseconds" in hctx.log.messages()

    @pytest.mark.asyncio
    async def test_negative_wait_is_rejected(self, handlers, hctx):
        assert await handlers.handle(make_step("wait", {"duration": -1}), hctx) is False

    @pytest.mark.asyncio
    async def test_call_api(self, handlers, hctx, fake_api):
        fake_api.add("POST", "http://api.local/hook", status_code=201, json_body={"id": 5})
        step = make_step(
            "call_api",
            {"url": "http://api.local/hook", "method": "post",
             "headers": {"X-Token": "t"}, "body": {"event": "contained"}},
        )

        assert await handlers.handle(step, hctx) is True

        request = fake_api.requests[0]
        assert request.headers["X-Token"] == "t"
        assert fake_api.body(request) == {"event": "contained"}

        result = hctx.context["apiCalls"]["POST_http://api.local/hook"]
        assert result["statusCode"] == 201
        assert result["response"] == {"id": 5}

    @pytest.mark.asyncio
    async def test_parallel_with_no_steps(self, handlers, hctx):
        step = make_step("parallel", {"steps": []})

        assert await handlers.handle(step, hctx) is True
        assert "No steps provided for parallel execution" in hctx.log.messages(LogLevel.WARNING)
