"""Order handler - the party allowed to act on an order."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from agrilease.models.enums import HandlerKind

# Any administrator may act on an administrator-handled order.
ADMINISTRATOR_HANDLER_ID = "admin"


class AdministratorHandler(BaseModel):
    """Order handled by any administrator."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["administrator"] = "administrator"

    @property
    def handler_kind(self) -> HandlerKind:
        return HandlerKind.ADMINISTRATOR

    @property
    def handler_id(self) -> str:
        return ADMINISTRATOR_HANDLER_ID


class DistributorHandler(BaseModel):
    """Order handled by one specific distributor."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["distributor"] = "distributor"
    distributor_id: str

    @property
    def handler_kind(self) -> HandlerKind:
        return HandlerKind.DISTRIBUTOR

    @property
    def handler_id(self) -> str:
        return self.distributor_id


Handler = Annotated[
    Union[AdministratorHandler, DistributorHandler],
    Field(discriminator="kind"),
]


def handler_from_columns(
    kind: HandlerKind, handler_id: str
) -> AdministratorHandler | DistributorHandler:
    """Rebuild a handler from its stored (kind, id) pair."""
    if kind == HandlerKind.ADMINISTRATOR:
        return AdministratorHandler()
    return DistributorHandler(distributor_id=handler_id)
