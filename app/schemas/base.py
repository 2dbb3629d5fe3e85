from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for records exchanged with the UI: camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,  # Allows both workflow_id and workflowId
    )

    def to_dict(self) -> dict:
        """JSON-compatible dict using the wire (camelCase) names"""
        return self.model_dump(by_alias=True, mode="json")
