"""Base schema with camelCase serialization for UI-facing payloads."""

from pydantic import BaseModel, ConfigDict


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


class BaseSchema(BaseModel):
    """Base schema for payloads consumed by the presentation layer.

    Converts snake_case Python attributes to camelCase in JSON output
    (``is_final`` -> ``isFinal``). Provider wire formats keep their own
    snake_case field names and use plain ``BaseModel`` instead.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
