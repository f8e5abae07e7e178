# /flowgate/models/flow.py

from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


class IntegrationType(str, Enum):
    REST_API = "rest_api"
    GOOGLE_CALENDAR = "google_calendar"


class SourceType(str, Enum):
    OWNER = "owner"
    STATIC = "static"
    VARIABLE = "variable"


class TransformConfig(BaseModel):
    """Field mapping from an external record to a DataItem."""
    id_field: str = Field(default="id", alias="idField")
    title_field: str = Field(default="name", alias="titleField")
    description_field: Optional[str] = Field(default=None, alias="descriptionField")

    class Config:
        populate_by_name = True
        frozen = True


class DataItem(BaseModel):
    """Normalized option returned to the client for every dropdown-like component."""
    id: str
    title: str
    description: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class IntegrationConfig(BaseModel):
    """
    Binds one component of a Flow screen to an integration handler.

    A config without `depends_on` is "initial": it is fetched on INIT and on a
    BACK into a `refresh_on_back` screen. A config with `depends_on` is
    fetched when a data_exchange submission contains that field.
    """
    component_name: str = Field(..., alias="componentName")
    integration_type: str = Field(..., alias="integrationType")
    source_type: SourceType = Field(default=SourceType.STATIC, alias="sourceType")
    source_id: Optional[str] = Field(default=None, alias="sourceId")
    source_variable: Optional[str] = Field(default=None, alias="sourceVariable")
    action: str = "fetch"
    params: Dict[str, Any] = Field(default_factory=dict)
    transform_to: TransformConfig = Field(default_factory=TransformConfig, alias="transformTo")
    depends_on: Optional[str] = Field(default=None, alias="dependsOn")
    filter_param: Optional[str] = Field(default=None, alias="filterParam")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("params", mode="before")
    @classmethod
    def null_params_to_empty(cls, v):
        return v or {}

    @property
    def is_initial(self) -> bool:
        return not self.depends_on


class ComponentDataSourceConfig(BaseModel):
    """Older generic data-source binding: fixed REST fetch plus dot-path extraction."""
    component_name: str = Field(..., alias="componentName")
    data_source_id: str = Field(..., alias="dataSourceId")
    connection_id: Optional[str] = Field(default=None, alias="connectionId")
    endpoint: str = ""
    data_key: str = Field(default="data", alias="dataKey")
    transform_to: TransformConfig = Field(default_factory=TransformConfig, alias="transformTo")
    depends_on: Optional[str] = Field(default=None, alias="dependsOn")
    filter_param: Optional[str] = Field(default=None, alias="filterParam")

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def is_initial(self) -> bool:
        return not self.depends_on


class ScreenDefinition(BaseModel):
    id: str
    terminal: bool = False
    refresh_on_back: bool = False
    layout: Optional[Dict[str, Any]] = None

    class Config:
        extra = "ignore"
        frozen = True


class FlowDefinition(BaseModel):
    """
    Read-only view of a stored Flow: its screens, routing model and the
    component data bindings kept in the Flow's metadata.
    """
    id: Optional[str] = None
    external_id: Optional[str] = None
    name: Optional[str] = None
    screens: List[ScreenDefinition] = Field(default_factory=list)
    routing_model: Optional[Dict[str, List[str]]] = None
    integration_configs: List[IntegrationConfig] = Field(default_factory=list)
    data_source_configs: List[ComponentDataSourceConfig] = Field(default_factory=list)
    owner_user_id: Optional[str] = None

    class Config:
        frozen = True

    @property
    def first_screen_id(self) -> Optional[str]:
        return self.screens[0].id if self.screens else None

    def screen_ids(self) -> List[str]:
        return [screen.id for screen in self.screens]

    def get_screen(self, screen_id: Optional[str]) -> Optional[ScreenDefinition]:
        for screen in self.screens:
            if screen.id == screen_id:
                return screen
        return None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "FlowDefinition":
        """Builds a definition from a stored flow document (Flow JSON + metadata)."""
        flow_json = doc.get("flow_json") or doc.get("flowJson") or {}
        metadata = doc.get("metadata") or {}

        data_source_configs = metadata.get("dataSourceConfigs") or metadata.get("data_source_configs") or []
        single_config = metadata.get("dataSourceConfig")
        if isinstance(single_config, dict) and single_config.get("componentName"):
            data_source_configs = [*data_source_configs, single_config]

        return cls(
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
            external_id=doc.get("whatsapp_flow_id") or doc.get("whatsappFlowId"),
            name=doc.get("name"),
            screens=flow_json.get("screens", []),
            routing_model=flow_json.get("routing_model"),
            integration_configs=metadata.get("integrationConfigs") or metadata.get("integration_configs") or [],
            data_source_configs=data_source_configs,
            owner_user_id=doc.get("owner_user_id") or doc.get("userId"),
        )


class FlowExecutionContext(BaseModel):
    """Runtime facts handed to integration handlers alongside the form data."""
    flow_token: Optional[str] = None
    context_id: Optional[str] = None
    node_id: Optional[str] = None
    chatbot_user_id: Optional[str] = None
