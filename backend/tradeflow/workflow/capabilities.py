"""Single capability check used by every workflow operation and handler.

``check_capability`` is pure: it looks only at the actor, the resource and
the supplied context, and answers allow/deny with a reason.
"""

import enum
from dataclasses import dataclass

from tradeflow.config import settings
from tradeflow.models.document import Document
from tradeflow.models.forwarder_assignment import ForwarderAssignment, Stage
from tradeflow.models.shipment_order import ShipmentOrder
from tradeflow.models.user import User, UserRole
from tradeflow.workflow.errors import AuthorizationError


class Capability(str, enum.Enum):
    CREATE_ORDER = "create_order"
    VIEW_ORDER = "view_order"
    EDIT_ORDER = "edit_order"
    SUBMIT_ORDER = "submit_order"
    ASSIGN_STAGES = "assign_stages"
    OPERATE_STAGE = "operate_stage"
    VIEW_ASSIGNMENT = "view_assignment"
    MANAGE_DOCUMENT = "manage_document"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True, "allowed")


def _deny(reason: str) -> Decision:
    return Decision(False, reason)


def is_admin_forwarder(user: User, admin_email: str | None = None) -> bool:
    """Forwarder whose designation mentions "admin" or who owns the admin mailbox."""
    if user.role != UserRole.FORWARDER:
        return False
    admin_email = admin_email if admin_email is not None else settings.admin_forwarder_email
    designation = (user.designation or "").lower()
    return "admin" in designation or (user.email or "").lower() == admin_email.lower()


def _check_order(actor: User, order: ShipmentOrder, capability: Capability, ctx: dict) -> Decision:
    owns = actor.role == UserRole.EXPORTER and order.exporter_id == actor.id

    if capability == Capability.VIEW_ORDER:
        if actor.role == UserRole.ADMIN or owns:
            return ALLOW
        if actor.role == UserRole.FORWARDER and (
            order.assigned_forwarder_id == actor.id or ctx.get("participant")
        ):
            return ALLOW
        return _deny("You do not have access to this shipment order")

    if capability in (Capability.EDIT_ORDER, Capability.SUBMIT_ORDER):
        if actor.role != UserRole.EXPORTER:
            return _deny("Only exporters can modify or submit shipment orders")
        if not owns:
            return _deny("You can only modify or submit your own shipment orders")
        return ALLOW

    if capability == Capability.ASSIGN_STAGES:
        if actor.role != UserRole.FORWARDER or not is_admin_forwarder(actor, ctx.get("admin_email")):
            return _deny("Only the admin forwarder can assign stages")
        if order.assigned_forwarder_id != actor.id:
            return _deny("This shipment order is not assigned to you")
        return ALLOW

    return _deny(f"Capability {capability.value} does not apply to shipment orders")


def _check_assignment(
    actor: User, assignment: ForwarderAssignment, capability: Capability, ctx: dict
) -> Decision:
    if capability == Capability.OPERATE_STAGE:
        if actor.role != UserRole.FORWARDER:
            return _deny("Only forwarders can operate stages")
        stage = ctx.get("stage")
        if stage is None or assignment.stage_for(Stage(stage), actor.id) is None:
            return _deny("You are not assigned to this stage")
        return ALLOW

    if capability == Capability.VIEW_ASSIGNMENT:
        if actor.role == UserRole.ADMIN or assignment.is_participant(actor.id):
            return ALLOW
        order = ctx.get("order")
        if order is not None and order.assigned_forwarder_id == actor.id:
            return ALLOW
        return _deny("You are not part of this assignment")

    return _deny(f"Capability {capability.value} does not apply to assignments")


def check_capability(actor: User, resource, capability: Capability, **ctx) -> Decision:
    """Decide whether ``actor`` may exercise ``capability`` on ``resource``.

    ``resource`` is a ShipmentOrder, ForwarderAssignment, Document or None
    (for capabilities that create something). Extra context:
    ``stage`` for OPERATE_STAGE, ``order`` for VIEW_ASSIGNMENT,
    ``participant`` for VIEW_ORDER, ``admin_email`` to override the
    configured admin-forwarder mailbox.
    """
    if capability == Capability.CREATE_ORDER:
        if actor.role != UserRole.EXPORTER:
            return _deny("Only exporters can create shipment orders")
        return ALLOW

    if isinstance(resource, ShipmentOrder):
        return _check_order(actor, resource, capability, ctx)
    if isinstance(resource, ForwarderAssignment):
        return _check_assignment(actor, resource, capability, ctx)
    if isinstance(resource, Document) and capability == Capability.MANAGE_DOCUMENT:
        if actor.role == UserRole.ADMIN or resource.uploaded_by_id == actor.id:
            return ALLOW
        return _deny("You do not have access to this document")

    return _deny("Access denied")


def require_capability(actor: User, resource, capability: Capability, **ctx) -> None:
    decision = check_capability(actor, resource, capability, **ctx)
    if not decision.allowed:
        raise AuthorizationError(decision.reason, {"capability": capability.value})
