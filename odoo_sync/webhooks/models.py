from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from odoo_sync.models.jobs import ACTIONS


class _ChangeEvent(BaseModel):
    module: str = Field(..., min_length=1, max_length=64, description="Module id, e.g. 'crm'")
    entity_type: str = Field(..., min_length=1, max_length=64, description="Entity type within the module")
    action: str = Field(..., description="create | update | delete")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Opaque job payload")
    priority: int = Field(5, ge=1, le=10, description="1 = most urgent")

    # Accepts arbitrary extra fields
    model_config = ConfigDict(extra="allow")

    @field_validator("action")
    @classmethod
    def _known_action(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ACTIONS:
            raise ValueError(f"action must be one of {', '.join(ACTIONS)}")
        return v


class WpChangeEvent(_ChangeEvent):
    """A local (WordPress-side) entity changed."""
    wp_id: int = Field(..., gt=0)
    odoo_id: Optional[int] = Field(None, ge=0)
    data: Optional[Dict[str, Any]] = Field(None, description="Current local field values, when the sender has them")


class OdooChangeEvent(_ChangeEvent):
    """An Odoo record changed (sent by an Odoo automated action)."""
    odoo_id: int = Field(..., gt=0)
    wp_id: Optional[int] = Field(None, ge=0)
