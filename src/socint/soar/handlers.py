"""
Step handlers: one per playbook step type.

Each handler validates the step's config, turns it into an action dispatcher
call, and on success records a result object in the execution context.
Handlers report failure by returning False; configuration problems and
unexpected errors are logged and never propagate to the graph walker.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

from ..config import EngineSettings, NotificationSettings
from .context import ExecutionContext
from .dispatcher import ActionDispatcher
from .errors import ConnectorNotFoundError, StepConfigError
from .execution_log import ExecutionLogger
from .models import ActionOutcome, Playbook, PlaybookStep, RetryPolicy, StepType, utcnow
from .step_configs import ActionStepConfig, StepConfig
from .storage import ConnectorRegistry, EntityStore

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

FanOut = Callable[[List[PlaybookStep], ExecutionContext], Awaitable[List[bool]]]


@dataclass
class HandlerContext:
    """What a handler may touch while running one step."""

    execution_id: int
    playbook: Playbook
    context: ExecutionContext
    log: ExecutionLogger
    fan_out: FanOut


def _field(data: Any, key: str) -> Any:
    """Read a key from a JSON object response (None for any other payload)."""
    return data.get(key) if isinstance(data, dict) else None


def _count(items: Any) -> int:
    return len(items) if isinstance(items, list) else 0


@dataclass(frozen=True)
class ConnectorAction:
    """
    Description of an action executed against a named connector.

    `path`, `body`, `started`, `done` and `failed` receive the typed step
    config; `body` also receives the attribution builder for default
    comments. `extract` maps the response payload to extra result fields.
    """

    family: str
    label: str
    namespace: str
    result_key: str
    method: str
    connector_field: str
    path: Callable[[Any], str]
    started: Callable[[Any], str]
    done: Callable[[Any], str]
    failed: Callable[[Any], str]
    body: Optional[Callable[[Any, Callable[[str], str]], Dict[str, Any]]] = None
    extract: Optional[Callable[[Any], Dict[str, Any]]] = None


CONNECTOR_ACTIONS: Dict[StepType, ConnectorAction] = {
    # EDR
    StepType.EDR_ISOLATE_HOST: ConnectorAction(
        family="edr",
        label="EDR",
        namespace="edrActions",
        result_key="isolateHost",
        method="POST",
        connector_field="edr_system",
        path=lambda c: f"/api/v1/hosts/{c.host}/actions/isolate",
        body=lambda c, by: {
            "comment": by("Isolated"),
            "isolationType": c.isolation_type,
        },
        started=lambda c: f"Isolating host '{c.host}' in EDR system '{c.edr_system}'",
        done=lambda c: f"Successfully isolated host '{c.host}'",
        failed=lambda c: f"Failed to isolate host '{c.host}'",
    ),
    StepType.EDR_UNISOLATE_HOST: ConnectorAction(
        family="edr",
        label="EDR",
        namespace="edrActions",
        result_key="unisolateHost",
        method="POST",
        connector_field="edr_system",
        path=lambda c: f"/api/v1/hosts/{c.host}/actions/unisolate",
        body=lambda c, by: {"comment": by("Isolation removed")},
        started=lambda c: (
            f"Removing isolation for host '{c.host}' in EDR system '{c.edr_system}'"
        ),
        done=lambda c: f"Successfully removed isolation for host '{c.host}'",
        failed=lambda c: f"Failed to remove isolation for host '{c.host}'",
    ),
    StepType.EDR_SCAN_HOST: ConnectorAction(
        family="edr",
        label="EDR",
        namespace="edrActions",
        result_key="scanHost",
        method="POST",
        connector_field="edr_system",
        path=lambda c: f"/api/v1/hosts/{c.host}/actions/scan",
        body=lambda c, by: {
            "scanType": c.scan_type,
            "priority": "high",
            "comment": by("Scan initiated"),
        },
        extract=lambda data: {"scanId": _field(data, "scanId")},
        started=lambda c: (
            f"Initiating {c.scan_type} scan for host '{c.host}' "
            f"in EDR system '{c.edr_system}'"
        ),
        done=lambda c: f"Successfully initiated scan for host '{c.host}'",
        failed=lambda c: f"Failed to initiate scan for host '{c.host}'",
    ),
    StepType.EDR_GET_PROCESS_LIST: ConnectorAction(
        family="edr",
        label="EDR",
        namespace="edrActions",
        result_key="processList",
        method="GET",
        connector_field="edr_system",
        path=lambda c: f"/api/v1/hosts/{c.host}/processes",
        extract=lambda data: {
            "processes": _field(data, "processes"),
            "count": _count(_field(data, "processes")),
        },
        started=lambda c: (
            f"Getting process list for host '{c.host}' from EDR system '{c.edr_system}'"
        ),
        done=lambda c: f"Successfully retrieved process list for host '{c.host}'",
        failed=lambda c: f"Failed to get process list for host '{c.host}'",
    ),
    StepType.EDR_KILL_PROCESS: ConnectorAction(
        family="edr",
        label="EDR",
        namespace="edrActions",
        result_key="killProcess",
        method="POST",
        connector_field="edr_system",
        path=lambda c: f"/api/v1/hosts/{c.host}/processes/{c.process_id}/actions/terminate",
        body=lambda c, by: {"comment": by("Process terminated")},
        started=lambda c: (
            f"Killing process '{c.process_id}' on host '{c.host}' "
            f"in EDR system '{c.edr_system}'"
        ),
        done=lambda c: f"Successfully terminated process '{c.process_id}' on host '{c.host}'",
        failed=lambda c: f"Failed to terminate process '{c.process_id}' on host '{c.host}'",
    ),
    # Firewall
    StepType.FIREWALL_BLOCK_IP: ConnectorAction(
        family="firewall",
        label="Firewall",
        namespace="firewallActions",
        result_key="blockIp",
        method="POST",
        connector_field="firewall_system",
        path=lambda c: "/api/v1/blocklist/ip",
        body=lambda c, by: {
            "ip": c.ip,
            "duration": c.duration,
            "reason": c.reason or by("Blocked"),
        },
        started=lambda c: (
            f"Blocking IP '{c.ip}' in firewall system '{c.firewall_system}' "
            f"for duration '{c.duration}'"
        ),
        done=lambda c: f"Successfully blocked IP '{c.ip}'",
        failed=lambda c: f"Failed to block IP '{c.ip}'",
    ),
    StepType.FIREWALL_UNBLOCK_IP: ConnectorAction(
        family="firewall",
        label="Firewall",
        namespace="firewallActions",
        result_key="unblockIp",
        method="DELETE",
        connector_field="firewall_system",
        path=lambda c: f"/api/v1/blocklist/ip/{c.ip}",
        started=lambda c: f"Unblocking IP '{c.ip}' in firewall system '{c.firewall_system}'",
        done=lambda c: f"Successfully unblocked IP '{c.ip}'",
        failed=lambda c: f"Failed to unblock IP '{c.ip}'",
    ),
    StepType.FIREWALL_BLOCK_DOMAIN: ConnectorAction(
        family="firewall",
        label="Firewall",
        namespace="firewallActions",
        result_key="blockDomain",
        method="POST",
        connector_field="firewall_system",
        path=lambda c: "/api/v1/blocklist/domain",
        body=lambda c, by: {
            "domain": c.domain,
            "duration": c.duration,
            "reason": c.reason or by("Blocked"),
        },
        started=lambda c: (
            f"Blocking domain '{c.domain}' in firewall system '{c.firewall_system}' "
            f"for duration '{c.duration}'"
        ),
        done=lambda c: f"Successfully blocked domain '{c.domain}'",
        failed=lambda c: f"Failed to block domain '{c.domain}'",
    ),
    StepType.FIREWALL_UNBLOCK_DOMAIN: ConnectorAction(
        family="firewall",
        label="Firewall",
        namespace="firewallActions",
        result_key="unblockDomain",
        method="DELETE",
        connector_field="firewall_system",
        path=lambda c: f"/api/v1/blocklist/domain/{quote(c.domain, safe='')}",
        started=lambda c: (
            f"Unblocking domain '{c.domain}' in firewall system '{c.firewall_system}'"
        ),
        done=lambda c: f"Successfully unblocked domain '{c.domain}'",
        failed=lambda c: f"Failed to unblock domain '{c.domain}'",
    ),
    # Identity
    StepType.IDENTITY_DISABLE_USER: ConnectorAction(
        family="identity",
        label="Identity",
        namespace="identityActions",
        result_key="disableUser",
        method="POST",
        connector_field="identity_system",
        path=lambda c: f"/api/v1/users/{c.username}/disable",
        body=lambda c, by: {"reason": c.reason or by("Disabled")},
        started=lambda c: (
            f"Disabling user '{c.username}' in identity system '{c.identity_system}'"
        ),
        done=lambda c: f"Successfully disabled user '{c.username}'",
        failed=lambda c: f"Failed to disable user '{c.username}'",
    ),
    StepType.IDENTITY_ENABLE_USER: ConnectorAction(
        family="identity",
        label="Identity",
        namespace="identityActions",
        result_key="enableUser",
        method="POST",
        connector_field="identity_system",
        path=lambda c: f"/api/v1/users/{c.username}/enable",
        body=lambda c, by: {"reason": c.reason or by("Enabled")},
        started=lambda c: (
            f"Enabling user '{c.username}' in identity system '{c.identity_system}'"
        ),
        done=lambda c: f"Successfully enabled user '{c.username}'",
        failed=lambda c: f"Failed to enable user '{c.username}'",
    ),
    StepType.IDENTITY_RESET_PASSWORD: ConnectorAction(
        family="identity",
        label="Identity",
        namespace="identityActions",
        result_key="resetPassword",
        method="POST",
        connector_field="identity_system",
        path=lambda c: f"/api/v1/users/{c.username}/reset-password",
        body=lambda c, by: {"sendEmail": c.send_email, "requestedBy": by(None)},
        extract=lambda data: {"temporaryPassword": _field(data, "temporaryPassword")},
        started=lambda c: (
            f"Resetting password for user '{c.username}' "
            f"in identity system '{c.identity_system}'"
        ),
        done=lambda c: f"Successfully reset password for user '{c.username}'",
        failed=lambda c: f"Failed to reset password for user '{c.username}'",
    ),
    StepType.IDENTITY_ADD_TO_GROUP: ConnectorAction(
        family="identity",
        label="Identity",
        namespace="identityActions",
        result_key="addToGroup",
        method="POST",
        connector_field="identity_system",
        path=lambda c: f"/api/v1/groups/{c.group_name}/members",
        body=lambda c, by: {"username": c.username, "requestedBy": by(None)},
        started=lambda c: (
            f"Adding user '{c.username}' to group '{c.group_name}' "
            f"in identity system '{c.identity_system}'"
        ),
        done=lambda c: f"Successfully added user '{c.username}' to group '{c.group_name}'",
        failed=lambda c: f"Failed to add user '{c.username}' to group '{c.group_name}'",
    ),
    StepType.IDENTITY_REMOVE_FROM_GROUP: ConnectorAction(
        family="identity",
        label="Identity",
        namespace="identityActions",
        result_key="removeFromGroup",
        method="DELETE",
        connector_field="identity_system",
        path=lambda c: f"/api/v1/groups/{c.group_name}/members/{c.username}",
        started=lambda c: (
            f"Removing user '{c.username}' from group '{c.group_name}' "
            f"in identity system '{c.identity_system}'"
        ),
        done=lambda c: (
            f"Successfully removed user '{c.username}' from group '{c.group_name}'"
        ),
        failed=lambda c: (
            f"Failed to remove user '{c.username}' from group '{c.group_name}'"
        ),
    ),
}


class StepHandlers:
    """
    Executes individual playbook steps.

    Holds the collaborators handlers need (dispatcher, connector registry,
    entity store, settings); per-run state arrives with each call in a
    HandlerContext.
    """

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        connectors: ConnectorRegistry,
        entities: EntityStore,
        settings: Optional[EngineSettings] = None,
        notification_settings: Optional[NotificationSettings] = None,
    ):
        """
        Initialize step handlers.

        Args:
            dispatcher: Action dispatcher for all external calls
            connectors: Registry resolving named connectors
            entities: Alert / incident lookup (used by ai_analyze_alert)
            settings: Engine settings (timeouts, retry defaults, internal API URL)
            notification_settings: Fallback notification channel configuration
        """
        self.dispatcher = dispatcher
        self.connectors = connectors
        self.entities = entities
        self.settings = settings or EngineSettings()
        self.notification_settings = notification_settings or NotificationSettings()

        self._handlers = {
            StepType.NOTIFY_EMAIL: self.notify_email,
            StepType.NOTIFY_SLACK: self.notify_slack,
            StepType.NOTIFY_SMS: self.notify_sms,
            StepType.ENRICH_IOC: self.enrich_ioc,
            StepType.AI_ANALYZE_ALERT: self.ai_analyze_alert,
            StepType.LOOKUP_THREAT_INTEL: self.lookup_threat_intel,
            StepType.CONDITION: self.condition,
            StepType.WAIT: self.wait,
            StepType.PARALLEL: self.parallel,
            StepType.CALL_API: self.call_api,
        }

    async def handle(self, step: PlaybookStep, hctx: HandlerContext) -> bool:
        """
        Run the handler for a step's type.

        Args:
            step: The step to execute
            hctx: Per-run handler context

        Returns:
            True if the action succeeded, False otherwise
        """
        step_type = step.step_type
        if step_type is None:
            hctx.log.warning(f"Unsupported step type: {step.type}")
            return False

        try:
            config = step.typed_config()
            action = CONNECTOR_ACTIONS.get(step_type)
            if action is not None:
                return await self.run_connector_action(step, config, action, hctx)
            return await self._handlers[step_type](step, config, hctx)
        except StepConfigError as e:
            hctx.log.error(str(e))
            return False
        except Exception as e:
            hctx.log.error(f"Error executing {step.type} step '{step.name}': {e}")
            return False

    # Helpers

    def _attribution(self, playbook: Playbook) -> Callable[[Optional[str]], str]:
        """Builder for "<Verb> by <product> SOAR playbook: <name>" texts."""
        source = f"{self.settings.product_name} SOAR playbook: {playbook.name}"

        def by(verb: Optional[str]) -> str:
            return f"{verb} by {source}" if verb else source

        return by

    def _retry_for(self, config: StepConfig, family: str) -> RetryPolicy:
        if isinstance(config, ActionStepConfig) and config.retry is not None:
            return config.retry
        return RetryPolicy(
            max_attempts=self.settings.max_attempts_for(family),
            backoff_ms=self.settings.retry_backoff_ms,
            max_backoff_ms=self.settings.retry_max_backoff_ms,
        )

    def _timeout_for(self, config: StepConfig) -> int:
        timeout = getattr(config, "timeout", None)
        return timeout or self.settings.default_timeout_ms

    @staticmethod
    def _bearer(token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _dispatch(
        self,
        config: StepConfig,
        family: str,
        url: str,
        method: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> ActionOutcome:
        return await self.dispatcher.call(
            url,
            method=method,
            headers=headers,
            body=body,
            timeout_ms=self._timeout_for(config),
            retry=self._retry_for(config, family),
        )

    @staticmethod
    def _result(inputs: Dict[str, Any], **fields) -> Dict[str, Any]:
        """Context result object: inputs, success flag, timestamp, payload fields."""
        result = dict(inputs)
        result["success"] = True
        result["timestamp"] = utcnow().isoformat()
        result.update(fields)
        return result

    # Connector-backed actions (EDR, firewall, identity)

    async def run_connector_action(
        self,
        step: PlaybookStep,
        config: StepConfig,
        action: ConnectorAction,
        hctx: HandlerContext,
    ) -> bool:
        """Execute an EDR, firewall or identity action against its named connector."""
        hctx.log.info(action.started(config))

        connector_name = getattr(config, action.connector_field)
        try:
            connector = await self.connectors.require_connector(connector_name)
        except ConnectorNotFoundError:
            hctx.log.error(f"{action.label} connector '{connector_name}' not found")
            return False

        base_url = str(connector.configuration.get("baseUrl", "")).rstrip("/")
        body = action.body(config, self._attribution(hctx.playbook)) if action.body else None

        outcome = await self._dispatch(
            config,
            action.family,
            f"{base_url}{action.path(config)}",
            action.method,
            headers=self._bearer(connector.configuration.get("apiKey")),
            body=body,
        )

        if not outcome.success:
            hctx.log.error(f"{action.failed(config)}: {outcome.error}")
            return False

        hctx.log.info(action.done(config))
        extras = action.extract(outcome.data) if action.extract else {}
        hctx.context.record(
            action.namespace,
            action.result_key,
            self._result(config.inputs(), response=outcome.data, **extras),
            step.id,
        )
        return True

    # Notifications

    async def _channel_config(self, connector_type: str, fallback: Dict[str, Any]) -> Dict[str, Any]:
        """Configuration of the first connector of a type, else the settings fallback."""
        connector = await self.connectors.get_connector_by_type(connector_type)
        if connector is not None and connector.configuration:
            return connector.configuration
        return fallback

    async def notify_email(self, step, config, hctx: HandlerContext) -> bool:
        hctx.log.info(f"Sending email notification to '{config.to}'")

        ns = self.notification_settings
        email_config = await self._channel_config(
            "EMAIL",
            {
                "baseUrl": ns.sendgrid_base_url,
                "apiKey": ns.sendgrid_api_key,
                "fromEmail": ns.notify_email_from,
            },
        )

        outcome = await self._dispatch(
            config,
            "notification",
            f"{str(email_config.get('baseUrl', '')).rstrip('/')}/api/send-email",
            "POST",
            headers=self._bearer(email_config.get("apiKey")),
            body={
                "to": config.to,
                "cc": config.cc,
                "bcc": config.bcc,
                "subject": config.subject,
                "body": config.body,
                "from": email_config.get("fromEmail"),
                "isHtml": True,
            },
        )

        if not outcome.success:
            hctx.log.error(f"Failed to send email notification to '{config.to}': {outcome.error}")
            return False

        hctx.log.info(f"Successfully sent email notification to '{config.to}'")
        hctx.context.record(
            "notificationActions",
            "email",
            self._result(config.inputs(), messageId=_field(outcome.data, "messageId")),
            step.id,
        )
        return True

    async def notify_slack(self, step, config, hctx: HandlerContext) -> bool:
        ns = self.notification_settings
        slack_config = await self._channel_config(
            "SLACK",
            {"botToken": ns.slack_bot_token, "defaultChannel": ns.slack_channel_id},
        )

        channel = config.channel or slack_config.get("defaultChannel")
        if not channel:
            hctx.log.error("No Slack channel configured")
            return False

        hctx.log.info(f"Sending Slack notification to channel '{channel}'")

        outcome = await self._dispatch(
            config,
            "notification",
            slack_config.get("apiUrl") or SLACK_POST_MESSAGE_URL,
            "POST",
            headers=self._bearer(slack_config.get("botToken")),
            body={"channel": channel, "text": config.message, "attachments": config.attachments},
        )

        # Slack reports API errors with HTTP 200 and ok=false
        if not outcome.success or not _field(outcome.data, "ok"):
            error = _field(outcome.data, "error") or outcome.error
            hctx.log.error(f"Failed to send Slack notification to channel '{channel}': {error}")
            return False

        hctx.log.info(f"Successfully sent Slack notification to channel '{channel}'")
        inputs = config.inputs()
        inputs["channel"] = channel
        hctx.context.record(
            "notificationActions",
            "slack",
            self._result(inputs, messageTs=_field(outcome.data, "ts")),
            step.id,
        )
        return True

    async def notify_sms(self, step, config, hctx: HandlerContext) -> bool:
        hctx.log.info(f"Sending SMS notification to '{config.phone_number}'")

        ns = self.notification_settings
        sms_config = await self._channel_config(
            "SMS",
            {
                "baseUrl": ns.twilio_base_url,
                "apiKey": ns.twilio_auth_token,
                "accountSid": ns.twilio_account_sid,
                "fromNumber": ns.twilio_phone_number,
            },
        )

        outcome = await self._dispatch(
            config,
            "notification",
            f"{str(sms_config.get('baseUrl', '')).rstrip('/')}/api/send-sms",
            "POST",
            headers=self._bearer(sms_config.get("apiKey")),
            body={
                "to": config.phone_number,
                "body": config.message,
                "from": sms_config.get("fromNumber"),
            },
        )

        if not outcome.success:
            hctx.log.error(
                f"Failed to send SMS notification to '{config.phone_number}': {outcome.error}"
            )
            return False

        hctx.log.info(f"Successfully sent SMS notification to '{config.phone_number}'")
        hctx.context.record(
            "notificationActions",
            "sms",
            self._result(config.inputs(), messageId=_field(outcome.data, "messageId")),
            step.id,
        )
        return True

    # Enrichment and analysis

    def _internal_url(self, path: str) -> str:
        return f"{self.settings.internal_api_url.rstrip('/')}{path}"

    async def enrich_ioc(self, step, config, hctx: HandlerContext) -> bool:
        hctx.log.info(f"Enriching IOC '{config.ioc}' of type '{config.ioc_type}'")

        outcome = await self._dispatch(
            config,
            "analysis",
            self._internal_url("/api/iocs/enrich"),
            "POST",
            body={"value": config.ioc, "type": config.ioc_type},
        )

        if not outcome.success:
            hctx.log.error(f"Failed to enrich IOC '{config.ioc}': {outcome.error}")
            return False

        hctx.log.info(f"Successfully enriched IOC '{config.ioc}'")
        hctx.context.record(
            "analysisActions",
            "enrichIoc",
            self._result(config.inputs(), enrichment=outcome.data),
            step.id,
        )
        return True

    async def ai_analyze_alert(self, step, config, hctx: HandlerContext) -> bool:
        alert_id = config.alert_id
        hctx.log.info(f"Analyzing alert with ID '{alert_id}' using AI")

        alert = await self.entities.get_alert(alert_id)
        if alert is None:
            hctx.log.error(f"Alert with ID '{alert_id}' not found")
            return False

        outcome = await self._dispatch(
            config,
            "analysis",
            self._internal_url(f"/api/alerts/{alert_id}/analyze"),
            "POST",
        )

        if not outcome.success:
            hctx.log.error(f"Failed to analyze alert with ID '{alert_id}': {outcome.error}")
            return False

        hctx.log.info(f"Successfully analyzed alert with ID '{alert_id}'")
        hctx.context.record(
            "analysisActions",
            "aiAnalyzeAlert",
            self._result(
                config.inputs(),
                analysis=outcome.data,
                threatLevel=_field(outcome.data, "threatLevel"),
            ),
            step.id,
        )
        return True

    async def lookup_threat_intel(self, step, config, hctx: HandlerContext) -> bool:
        indicator = config.indicator
        hctx.log.info(
            f"Looking up threat intelligence for indicator '{indicator}' "
            f"of type '{config.indicator_type}'"
        )

        outcome = await self._dispatch(
            config,
            "analysis",
            self._internal_url("/api/threat-intel/lookup"),
            "POST",
            body={"indicator": indicator, "type": config.indicator_type},
        )

        if not outcome.success:
            hctx.log.error(
                f"Failed to look up threat intelligence for indicator '{indicator}': "
                f"{outcome.error}"
            )
            return False

        hctx.log.info(f"Successfully looked up threat intelligence for indicator '{indicator}'")
        results = _field(outcome.data, "results")
        hctx.context.record(
            "analysisActions",
            "lookupThreatIntel",
            self._result(config.inputs(), results=results, matchCount=_count(results)),
            step.id,
        )
        return True

    # Control flow

    async def condition(self, step, config, hctx: HandlerContext) -> bool:
        # Flow control only; the condition itself is evaluated by the walker
        return True

    async def wait(self, step, config, hctx: HandlerContext) -> bool:
        hctx.log.info(f"Waiting for {config.duration:g} milliseconds")
        await asyncio.sleep(config.duration / 1000)
        hctx.log.info(f"Wait completed for {config.duration:g} milliseconds")
        return True

    async def parallel(self, step, config, hctx: HandlerContext) -> bool:
        """
        Run the listed sub-steps concurrently.

        Succeeds if at least one sub-step succeeds. Unknown step IDs are
        dropped; an empty list succeeds with a warning.
        """
        if not config.steps:
            hctx.log.warning("No steps provided for parallel execution")
            return True

        hctx.log.info(f"Executing {len(config.steps)} steps in parallel")

        sub_steps = []
        for step_id in config.steps:
            sub_step = hctx.playbook.get_step(step_id)
            if sub_step is None:
                hctx.log.warning(f"Parallel sub-step not found: {step_id}")
                continue
            sub_steps.append(sub_step)

        results = await hctx.fan_out(sub_steps, hctx.context)

        succeeded = sum(1 for r in results if r)
        hctx.log.info(f"Completed parallel execution: {succeeded}/{len(results)} steps succeeded")
        return succeeded > 0

    async def call_api(self, step, config, hctx: HandlerContext) -> bool:
        method = config.method.upper()
        hctx.log.info(f"Calling external API: {method} {config.url}")

        outcome = await self.dispatcher.call(
            config.url,
            method=method,
            headers=config.headers,
            body=config.body,
            timeout_ms=config.timeout,
            retry=self._retry_for(config, "api"),
        )

        if not outcome.success:
            hctx.log.error(f"Failed to call external API: {method} {config.url} - {outcome.error}")
            return False

        hctx.log.info(f"Successfully called external API: {method} {config.url}")
        hctx.context.record(
            "apiCalls",
            f"{method}_{config.url}",
            self._result(
                {"url": config.url, "method": method},
                statusCode=outcome.status_code,
                response=outcome.data,
            ),
            step.id,
        )
        return True
