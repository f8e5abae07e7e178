# /flowgate/models/data_source.py

from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator

from flowgate.models.flow import TransformConfig

# External REST systems ("data sources") and the pre-configured requests
# against them ("connections"), as stored by the administration side.


class AuthType(str, Enum):
    NONE = "NONE"
    BEARER = "BEARER"
    API_KEY = "API_KEY"
    BASIC = "BASIC"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class DataSource(BaseModel):
    id: str
    name: str = ""
    base_url: str = Field(default="", alias="baseUrl")
    auth_type: AuthType = Field(default=AuthType.NONE, alias="authType")
    auth_token: Optional[str] = Field(default=None, alias="authToken")
    auth_header_name: Optional[str] = Field(default=None, alias="authHeaderName")
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[int] = None  # milliseconds
    is_active: bool = Field(default=True, alias="isActive")

    class Config:
        populate_by_name = True

    @field_validator("headers", mode="before")
    @classmethod
    def null_headers_to_empty(cls, v):
        return v or {}

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self.headers or {})

        if not self.auth_token:
            return headers
        if self.auth_type == AuthType.BEARER:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        elif self.auth_type == AuthType.API_KEY:
            headers[self.auth_header_name or "X-API-Key"] = self.auth_token
        elif self.auth_type == AuthType.BASIC:
            # auth_token is already base64("user:password")
            headers["Authorization"] = f"Basic {self.auth_token}"
        return headers

    def check_auth_config(self) -> None:
        """Raises ValueError when the auth type needs credentials that are missing."""
        if self.auth_type == AuthType.NONE:
            return
        if not self.auth_token:
            raise ValueError(f"Authentication token is required for auth type: {self.auth_type.value}")
        if self.auth_type == AuthType.API_KEY and not self.auth_header_name:
            raise ValueError("Header name is required for API_KEY authentication type")


class DataSourceConnection(BaseModel):
    """
    A stored request against a DataSource. A connection with
    `depends_on_connection_id` is resolved with the parent connection's
    selected record as context, mapping values into params via JSONPath.
    """
    id: str
    name: str = ""
    data_source_id: str = Field(..., alias="dataSourceId")
    endpoint: str = ""
    method: HttpMethod = HttpMethod.GET
    default_params: Dict[str, Any] = Field(default_factory=dict, alias="defaultParams")
    default_body: Optional[Any] = Field(default=None, alias="defaultBody")
    data_key: Optional[str] = Field(default=None, alias="dataKey")
    transform_config: Optional[TransformConfig] = Field(default=None, alias="transformConfig")
    depends_on_connection_id: Optional[str] = Field(default=None, alias="dependsOnConnectionId")
    param_mapping: Dict[str, str] = Field(default_factory=dict, alias="paramMapping")
    is_active: bool = Field(default=True, alias="isActive")

    class Config:
        populate_by_name = True

    @field_validator("default_params", "param_mapping", mode="before")
    @classmethod
    def null_mapping_to_empty(cls, v):
        return v or {}

    @property
    def is_chained(self) -> bool:
        return bool(self.depends_on_connection_id)
