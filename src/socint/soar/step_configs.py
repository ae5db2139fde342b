"""
Typed configuration models, one per playbook step type.

Stored playbooks keep an untyped `config` map per step; handlers work on the
validated model selected by the step's type.
"""

from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import StepConfigError
from .models import PlaybookStep, RetryPolicy, StepType, step_id_list


class StepConfig(BaseModel):
    """Base for all step configs."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def inputs(self) -> Dict[str, Any]:
        """Step inputs as recorded in the execution context (wire names)."""
        return self.model_dump(
            by_alias=True, exclude={"retry", "timeout"}, exclude_none=True
        )


class ActionStepConfig(StepConfig):
    """Config shared by steps that call an external system."""

    retry: Optional[RetryPolicy] = None
    timeout: Optional[int] = Field(default=None, ge=1)  # milliseconds


# EDR

class EdrHostConfig(ActionStepConfig):
    host: str
    edr_system: str = Field(alias="edrSystem")


class EdrIsolateHostConfig(EdrHostConfig):
    isolation_type: str = Field(default="full", alias="isolationType")


class EdrScanHostConfig(EdrHostConfig):
    scan_type: str = Field(default="full", alias="scanType")


class EdrKillProcessConfig(EdrHostConfig):
    process_id: Union[int, str] = Field(alias="processId")


# Firewall

class FirewallIpConfig(ActionStepConfig):
    ip: str
    firewall_system: str = Field(alias="firewallSystem")


class FirewallBlockIpConfig(FirewallIpConfig):
    duration: str = "24h"
    reason: Optional[str] = None


class FirewallDomainConfig(ActionStepConfig):
    domain: str
    firewall_system: str = Field(alias="firewallSystem")


class FirewallBlockDomainConfig(FirewallDomainConfig):
    duration: str = "24h"
    reason: Optional[str] = None


# Identity

class IdentityUserConfig(ActionStepConfig):
    username: str
    identity_system: str = Field(alias="identitySystem")
    reason: Optional[str] = None


class IdentityResetPasswordConfig(ActionStepConfig):
    username: str
    identity_system: str = Field(alias="identitySystem")
    send_email: bool = Field(default=True, alias="sendEmail")


class IdentityGroupConfig(ActionStepConfig):
    username: str
    group_name: str = Field(alias="groupName")
    identity_system: str = Field(alias="identitySystem")


# Notification

class EmailNotificationConfig(ActionStepConfig):
    to: Union[str, List[str]]
    subject: str = ""
    body: str = ""
    cc: Optional[Union[str, List[str]]] = None
    bcc: Optional[Union[str, List[str]]] = None


class SlackNotificationConfig(ActionStepConfig):
    channel: Optional[str] = None
    message: str
    attachments: Optional[List[Any]] = None


class SmsNotificationConfig(ActionStepConfig):
    phone_number: str = Field(alias="phoneNumber")
    message: str


# Enrichment and analysis

class EnrichIocConfig(ActionStepConfig):
    ioc: str
    ioc_type: str = Field(alias="iocType")


class AnalyzeAlertConfig(ActionStepConfig):
    alert_id: int = Field(alias="alertId")


class ThreatIntelLookupConfig(ActionStepConfig):
    indicator: str
    indicator_type: str = Field(alias="type")


# Control flow

class ConditionStepConfig(StepConfig):
    pass


class WaitConfig(StepConfig):
    duration: float = Field(ge=0)  # milliseconds


class ParallelConfig(StepConfig):
    steps: List[str] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return step_id_list(v)


class CallApiConfig(ActionStepConfig):
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout: int = Field(default=10000, ge=1)

    def inputs(self) -> Dict[str, Any]:
        return {"url": self.url, "method": self.method}


STEP_CONFIG_MODELS: Dict[StepType, Type[StepConfig]] = {
    StepType.EDR_ISOLATE_HOST: EdrIsolateHostConfig,
    StepType.EDR_UNISOLATE_HOST: EdrHostConfig,
    StepType.EDR_SCAN_HOST: EdrScanHostConfig,
    StepType.EDR_GET_PROCESS_LIST: EdrHostConfig,
    StepType.EDR_KILL_PROCESS: EdrKillProcessConfig,
    StepType.FIREWALL_BLOCK_IP: FirewallBlockIpConfig,
    StepType.FIREWALL_UNBLOCK_IP: FirewallIpConfig,
    StepType.FIREWALL_BLOCK_DOMAIN: FirewallBlockDomainConfig,
    StepType.FIREWALL_UNBLOCK_DOMAIN: FirewallDomainConfig,
    StepType.IDENTITY_DISABLE_USER: IdentityUserConfig,
    StepType.IDENTITY_ENABLE_USER: IdentityUserConfig,
    StepType.IDENTITY_RESET_PASSWORD: IdentityResetPasswordConfig,
    StepType.IDENTITY_ADD_TO_GROUP: IdentityGroupConfig,
    StepType.IDENTITY_REMOVE_FROM_GROUP: IdentityGroupConfig,
    StepType.NOTIFY_EMAIL: EmailNotificationConfig,
    StepType.NOTIFY_SLACK: SlackNotificationConfig,
    StepType.NOTIFY_SMS: SmsNotificationConfig,
    StepType.ENRICH_IOC: EnrichIocConfig,
    StepType.AI_ANALYZE_ALERT: AnalyzeAlertConfig,
    StepType.LOOKUP_THREAT_INTEL: ThreatIntelLookupConfig,
    StepType.CONDITION: ConditionStepConfig,
    StepType.WAIT: WaitConfig,
    StepType.PARALLEL: ParallelConfig,
    StepType.CALL_API: CallApiConfig,
}


def parse_step_config(step: PlaybookStep) -> StepConfig:
    """
    Validate a step's raw config map into its typed model.

    Args:
        step: The step whose config to validate

    Returns:
        The config model instance for the step type

    Raises:
        StepConfigError: If the type is unsupported or the config is invalid
    """
    step_type = step.step_type
    if step_type is None:
        raise StepConfigError(step.id, step.type, "unsupported step type")

    model = STEP_CONFIG_MODELS[step_type]
    try:
        return model.model_validate(step.config)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise StepConfigError(step.id, step.type, details) from e
