from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    # Responses are built straight from ORM rows and service dataclasses.
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
