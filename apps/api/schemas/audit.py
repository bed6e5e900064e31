from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuditActor(_CamelModel):
    id: str
    role: str = "initiator"
    type: str = "SYSTEM"


class AuditResource(_CamelModel):
    type: str
    id: str


class AuditRequest(_CamelModel):
    tenant_id: str
    business_id: str | None = None
    transaction_id: str
    actor: AuditActor
    group: str = "CONSENT_LIFECYCLE"
    component: str
    action_type: str
    initiator: str
    resource: AuditResource
    context: dict = Field(default_factory=dict)
    status: str
    timestamp: str
