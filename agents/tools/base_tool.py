"""
Code Agent - Base Tool Class

Abstract base class for every capability the agent can invoke.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Type

from pydantic import BaseModel, ValidationError

from agents.shared.schemas import ToolSchema
from orchestrator.errors import InvalidToolInput

logger = logging.getLogger(__name__)

TOOL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


class BaseTool(ABC):
    """
    Abstract base class for all tools.

    A tool declares:
    - A unique name and a description for the model's tool-selection prompt
    - An input model (pydantic) from which its JSON schema is derived
    - An async execute operation and an optional async release

    Validation is the tool's own capability: the orchestrator calls
    validate_input() and hands the result to execute().
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name"""

    @property
    @abstractmethod
    def description(self) -> str:
        """What the tool does, for the model"""

    @property
    @abstractmethod
    def input_model(self) -> Type[BaseModel]:
        """Pydantic model describing the tool's input"""

    @property
    def schema(self) -> Dict[str, Any]:
        """JSON schema for the tool's parameters"""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def validate_input(self, raw: Any) -> BaseModel:
        """
        Validate a parsed payload against the tool's input model.

        Args:
            raw: Parsed JSON payload

        Returns:
            Validated input model instance

        Raises:
            InvalidToolInput: If the payload does not match the schema
        """
        if not isinstance(raw, dict):
            raise InvalidToolInput(
                f"Input for '{self.name}' must be a JSON object, got {type(raw).__name__}",
                tool_name=self.name
            )
        try:
            return self.input_model.model_validate(raw)
        except ValidationError as e:
            errors = [
                {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ]
            missing = [".".join(str(p) for p in err["loc"]) for err in errors if err["type"] == "missing"]
            message = f"Invalid input for '{self.name}'"
            if missing:
                message += f": missing required field(s) {', '.join(missing)}"
            raise InvalidToolInput(message, tool_name=self.name, validation_errors=errors) from e

    @abstractmethod
    async def execute(self, tool_input: BaseModel) -> Any:
        """
        Run the tool.

        Args:
            tool_input: Validated input model instance

        Returns:
            JSON-serializable result
        """

    async def release(self) -> None:
        """Clean up resources at session teardown. Default does nothing."""
        return None

    def describe(self) -> ToolSchema:
        """Catalog entry for this tool"""
        return ToolSchema(
            name=self.name,
            description=self.description,
            input_schema=self.schema
        )

    def to_openai_tool(self) -> Dict[str, Any]:
        return self.describe().to_openai_tool()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
