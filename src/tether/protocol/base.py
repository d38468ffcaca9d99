from pydantic import BaseModel, ConfigDict


class ProtocolModel(BaseModel):
    """Base for models that cross the protocol boundary.

    Fields are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_protocol(self) -> dict:
        """Serialize using wire field names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
