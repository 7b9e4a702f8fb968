"""Pydantic schemas for shipment orders.

Request bodies accept snake_case or camelCase keys.
"""

import uuid
from datetime import date, datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tradeflow.models.shipment_order import ComplianceStatus, DocumentSlot, OrderStatus


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Destination(_Request):
    country: str | None = None
    port: str | None = None
    city: str | None = None


class Consignee(_Request):
    name: str | None = None
    address: str | None = None
    contact: str | None = None
    email: str | None = None


class OrderDetails(_Request):
    destination: Destination | None = None
    consignee: Consignee | None = None
    transport_mode: Literal["sea", "air", "road"] | None = None
    estimated_shipment_date: date | None = None
    special_instructions: str | None = None


class ProductLine(_Request):
    name: str
    description: str | None = None
    quantity: float = 0
    unit: str | None = None
    value: float = 0
    weight: float = 0
    hs_code: str | None = None
    suggested_hs_code: str | None = None
    origin: str | None = None
    specifications: str | dict | None = None


class ShipmentOrderCreate(_Request):
    order_details: OrderDetails = Field(default_factory=OrderDetails)
    products: list[ProductLine] = Field(default_factory=list)
    client_id: uuid.UUID | None = Field(default=None, validation_alias=AliasChoices("client_id", "clientId", "client"))
    notes: str | None = None


class ShipmentOrderUpdate(_Request):
    order_details: OrderDetails | None = None
    products: list[ProductLine] | None = None
    client_id: uuid.UUID | None = Field(default=None, validation_alias=AliasChoices("client_id", "clientId", "client"))
    notes: str | None = None


class AttachDocumentRequest(_Request):
    document_id: uuid.UUID
    slot: DocumentSlot = Field(
        default=DocumentSlot.OTHER, validation_alias=AliasChoices("slot", "documentType", "document_type")
    )


class StageAssignmentIn(_Request):
    # Plain strings; unknown stages are rejected by the service
    stage: str
    forwarder_id: str
    estimated_completion: datetime | None = None
    notes: str | None = None


class AssignStagesRequest(_Request):
    stage_assignments: list[StageAssignmentIn] = Field(default_factory=list)


class ShipmentOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    exporter_id: uuid.UUID
    client_id: uuid.UUID | None = None
    assigned_forwarder_id: uuid.UUID | None = None
    status: OrderStatus
    compliance_status: ComplianceStatus
    order_details: dict[str, Any]
    products: list[dict[str, Any]]
    commercial_invoice_id: uuid.UUID | None = None
    packing_list_id: uuid.UUID | None = None
    certificate_ids: list[str]
    other_document_ids: list[str]
    compliance: dict[str, Any]
    financial: dict[str, Any]
    audit_trail: list[dict[str, Any]]
    notes: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class ShipmentOrderEnvelope(BaseModel):
    success: bool = True
    message: str
    order: ShipmentOrderResponse


class ShipmentOrderListResponse(BaseModel):
    success: bool = True
    message: str
    orders: list[ShipmentOrderResponse]
    total: int
    page: int
    per_page: int
