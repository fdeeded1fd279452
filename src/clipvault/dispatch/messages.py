from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from clipvault.config.schema import WebDAVConfig
from clipvault.models import SaveContext, SaveResult


class SaveRequest(BaseModel):
    type: Literal["save"] = "save"
    context: SaveContext
    strategy: str


class ConnectionTestRequest(BaseModel):
    type: Literal["test_connection"] = "test_connection"
    webdav: WebDAVConfig


class SaveResponse(BaseModel):
    type: Literal["save"] = "save"
    result: SaveResult


class ConnectionTestResponse(BaseModel):
    type: Literal["test_connection"] = "test_connection"
    reachable: bool


RelayRequest = Annotated[SaveRequest | ConnectionTestRequest, Field(discriminator="type")]
RelayResponse = Annotated[SaveResponse | ConnectionTestResponse, Field(discriminator="type")]

request_adapter: TypeAdapter[RelayRequest] = TypeAdapter(RelayRequest)
response_adapter: TypeAdapter[RelayResponse] = TypeAdapter(RelayResponse)
