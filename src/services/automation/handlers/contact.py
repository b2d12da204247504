from core.errors import ActionError
from db.base import to_uuid
from db.models import Contact
from services.automation.types import ActionContext, ActionResult, ContactState
from services.automation.variables import resolve_variables


def _contact_row(ctx: ActionContext, action: str) -> Contact:
    if ctx.contact is None:
        raise ActionError(f'Action "{action}" requires a contact')
    row = (
        ctx.db.query(Contact)
        .filter(Contact.id == to_uuid(ctx.contact.id), Contact.user_id == ctx.profile.id)
        .first()
    )
    if row is None:
        raise ActionError(f"Contact {ctx.contact.id} not found")
    return row


def _save(ctx: ActionContext, row: Contact) -> ContactState:
    ctx.db.add(row)
    ctx.db.commit()
    ctx.db.refresh(row)
    return ContactState.model_validate(row)


def add_tag(ctx: ActionContext) -> ActionResult:
    tag = resolve_variables(ctx.config.tag or "", ctx.variables).strip()
    if not tag:
        raise ActionError("Tag to add is not configured")
    row = _contact_row(ctx, "add_tag")
    tags = list(row.tags or [])
    if tag in tags:
        return ActionResult(
            details=f"Contact already tagged '{tag}'",
            updated_contact=ContactState.model_validate(row),
        )
    row.tags = tags + [tag]
    return ActionResult(details=f"Tag '{tag}' added to contact", updated_contact=_save(ctx, row))


def remove_tag(ctx: ActionContext) -> ActionResult:
    tag = resolve_variables(ctx.config.tag or "", ctx.variables).strip()
    if not tag:
        raise ActionError("Tag to remove is not configured")
    row = _contact_row(ctx, "remove_tag")
    tags = list(row.tags or [])
    if tag not in tags:
        return ActionResult(
            details=f"Contact was not tagged '{tag}'",
            updated_contact=ContactState.model_validate(row),
        )
    row.tags = [t for t in tags if t != tag]
    return ActionResult(details=f"Tag '{tag}' removed from contact", updated_contact=_save(ctx, row))


def set_custom_field(ctx: ActionContext) -> ActionResult:
    variables = ctx.variables
    field_name = resolve_variables(ctx.config.field_name or "", variables).strip()
    if not field_name:
        raise ActionError("Custom field name is not configured")
    field_value = resolve_variables(ctx.config.field_value, variables)
    row = _contact_row(ctx, "set_custom_field")
    row.custom_fields = {**(row.custom_fields or {}), field_name: field_value}
    return ActionResult(
        details=f"Field '{field_name}' set to '{field_value}'",
        updated_contact=_save(ctx, row),
    )
