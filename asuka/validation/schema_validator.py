"""Structural validation of action parameters"""
from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    create_model,
)


_SCALAR_TYPES: dict[str, Any] = {
    "string": StrictStr,
    "integer": StrictInt,
    "number": Union[StrictInt, StrictFloat],
    "boolean": StrictBool,
    "object": dict[str, Any],
    "null": type(None),
}


class _ParamsBase(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=False)


class SchemaValidator:
    """
    Compiles JSON-schema parameter declarations into pydantic models and
    checks untrusted parameters against them.

    Validation is structural only: declared types, required fields and
    enumerations. Anything the action needs beyond that belongs in its
    executor.
    """

    @staticmethod
    def validate_schema(schema: dict[str, Any]) -> tuple[bool, Optional[str]]:
        """
        Check that a parameter schema is a supported object schema.

        Returns:
            (is_valid, error_message)
        """
        if not isinstance(schema, dict):
            return False, "Parameter schema must be an object"

        if schema.get("type", "object") != "object":
            return False, "Parameter schema must have type 'object'"

        properties = schema.get("properties", {})
        if not isinstance(properties, dict):
            return False, "'properties' must be a mapping"

        for name, prop in properties.items():
            if not isinstance(prop, dict):
                return False, f"Property '{name}' must be an object"
            prop_type = prop.get("type")
            if prop_type is not None and prop_type not in _SCALAR_TYPES and prop_type != "array":
                return False, f"Property '{name}' has unsupported type '{prop_type}'"

        required = schema.get("required", [])
        missing = [name for name in required if name not in properties]
        if missing:
            return False, f"Required fields not declared in properties: {', '.join(missing)}"

        return True, None

    @staticmethod
    def _annotation_for(prop: dict[str, Any]) -> Any:
        if "enum" in prop and prop["enum"]:
            return Literal[tuple(prop["enum"])]

        prop_type = prop.get("type")
        if prop_type is None:
            return Any
        if prop_type == "array":
            items = prop.get("items")
            if isinstance(items, dict):
                return list[SchemaValidator._annotation_for(items)]
            return list[Any]
        return _SCALAR_TYPES[prop_type]

    @staticmethod
    def compile(name: str, schema: dict[str, Any]) -> type[BaseModel]:
        """Build a pydantic model for the schema. Call validate_schema first."""
        properties: dict[str, Any] = schema.get("properties", {})
        required = set(schema.get("required", []))

        fields: dict[str, Any] = {}
        for index, (prop_name, prop) in enumerate(properties.items()):
            annotation = SchemaValidator._annotation_for(prop)
            # Internal field names avoid clashes with BaseModel attributes
            if prop_name in required:
                fields[f"p{index}"] = (annotation, Field(..., alias=prop_name))
            else:
                fields[f"p{index}"] = (
                    Optional[annotation],
                    Field(prop.get("default"), alias=prop_name),
                )

        model_name = "".join(part.capitalize() for part in name.replace("-", "_").split("_"))
        return create_model(f"{model_name or 'Action'}Params", __base__=_ParamsBase, **fields)

    @staticmethod
    def check_params(
        model: type[BaseModel],
        raw_params: Any,
    ) -> tuple[bool, list[str], dict[str, Any]]:
        """
        Validate untrusted parameters.

        Returns:
            (is_valid, problems, cleaned_params) where cleaned_params only
            contains keys the caller supplied or that carry a default.
        """
        if raw_params is None:
            raw_params = {}
        if not isinstance(raw_params, dict):
            return False, [f"parameters must be an object, got {type(raw_params).__name__}"], {}

        try:
            parsed = model.model_validate(raw_params)
        except ValidationError as exc:
            problems = []
            for error in exc.errors():
                location = ".".join(str(part) for part in error["loc"]) or "<root>"
                problems.append(f"{location}: {error['msg']}")
            return False, problems, {}

        cleaned = parsed.model_dump(by_alias=True, exclude_unset=False)
        cleaned = {
            key: value
            for key, value in cleaned.items()
            if key in raw_params or value is not None
        }
        return True, [], cleaned
