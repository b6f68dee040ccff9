"""
NAMD configuration templates.

A template is a YAML document with typed variables and a Jinja2 body::

    id: namd_production
    name: Production MD
    variables:
      temperature:
        type: number
        default: 300
        min: 0
        max: 1000
      coordinates:
        type: file
        extensions: [.pdb]
    config_template: |
      coordinates {{ coordinates }}
      temperature {{ temperature }}

Rendering runs in a sandboxed environment with strict undefined handling,
so a placeholder with no value is an error rather than an empty string.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Dict, List, Optional, Union

import yaml
from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .exceptions import ValidationError
from .paths import input_file_reference

logger = logging.getLogger(__name__)

BUILTIN_TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


class VariableType(str, Enum):
    NUMBER = "number"
    TEXT = "text"
    BOOLEAN = "boolean"
    FILE = "file"


_TRUE_WORDS = ("true", "yes", "on", "1")
_FALSE_WORDS = ("false", "no", "off", "0")


@dataclass
class VariableDefinition:
    """Definition of a template variable."""

    key: str
    type: VariableType
    label: str = ""
    description: str = ""
    default: Any = None
    min: Optional[float] = None
    max: Optional[float] = None
    extensions: List[str] = field(default_factory=list)
    required: bool = True

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "VariableDefinition":
        try:
            var_type = VariableType(data["type"])
        except (KeyError, ValueError) as e:
            raise ValidationError(
                f"Variable '{key}' has an invalid type: {data.get('type')!r}",
                operation=key,
            ) from e
        return cls(
            key=key,
            type=var_type,
            label=data.get("label", key.replace("_", " ").title()),
            description=data.get("description", ""),
            default=data.get("default"),
            min=data.get("min"),
            max=data.get("max"),
            extensions=[e.lower() for e in data.get("extensions", [])],
            required=data.get("required", True),
        )

    def validate(self, value: Any) -> List[str]:
        """Validate a value against this definition.

        Args:
            value: The value to validate

        Returns:
            List of error messages (empty if valid)
        """
        if value is None or value == "":
            if self.required and self.default is None:
                return [f"Variable '{self.key}' is required"]
            return []

        errors = []
        if self.type == VariableType.NUMBER:
            try:
                number = _to_number(value)
            except (TypeError, ValueError):
                return [f"Variable '{self.key}' must be a number"]
            if self.min is not None and number < self.min:
                errors.append(f"Variable '{self.key}' must be >= {self.min}")
            if self.max is not None and number > self.max:
                errors.append(f"Variable '{self.key}' must be <= {self.max}")

        elif self.type == VariableType.BOOLEAN:
            if not isinstance(value, bool) and str(value).lower() not in _TRUE_WORDS + _FALSE_WORDS:
                errors.append(f"Variable '{self.key}' must be a boolean")

        elif self.type == VariableType.TEXT:
            if not isinstance(value, str):
                errors.append(f"Variable '{self.key}' must be text")

        elif self.type == VariableType.FILE:
            if not isinstance(value, (str, PurePath)):
                errors.append(f"Variable '{self.key}' must be a file path")
            elif self.extensions:
                suffix = PurePath(str(value)).suffix.lower()
                if suffix not in self.extensions:
                    errors.append(
                        f"File for '{self.key}' must have one of {self.extensions}, got '{suffix or 'none'}'"
                    )
        return errors

    def format_value(self, value: Any) -> str:
        """Render a value the way it should appear in the NAMD config."""
        if value is None:
            value = self.default
        if self.type == VariableType.NUMBER:
            return _format_number(_to_number(value))
        if self.type == VariableType.BOOLEAN:
            return "yes" if _to_bool(value) else "no"
        if self.type == VariableType.FILE:
            return input_file_reference(file_basename(value))
        return str(value)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("booleans are not numbers")
    return float(value)


def _format_number(number: float) -> str:
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in _TRUE_WORDS


def file_basename(path: Union[str, PurePath]) -> str:
    """Bare filename of a local path given in either POSIX or Windows form."""
    text = str(path).replace("\\", "/")
    return posixpath.basename(text.rstrip("/"))


@dataclass
class Template:
    """A NAMD configuration template."""

    id: str
    name: str
    config_template: str
    variables: Dict[str, VariableDefinition] = field(default_factory=dict)
    description: str = ""
    version: str = "1.0"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        """Create a Template from a dictionary (loaded from YAML)."""
        for required in ("id", "config_template"):
            if required not in data:
                raise ValidationError(
                    f"Template is missing required field '{required}'", operation=required
                )
        variables = {
            key: VariableDefinition.from_dict(key, spec or {})
            for key, spec in (data.get("variables") or {}).items()
        }
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            version=str(data.get("version", "1.0")),
            variables=variables,
            config_template=data["config_template"],
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "Template":
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ValidationError(
                f"Could not read template {path}", operation="template_id", details=str(e)
            ) from e
        if not isinstance(data, dict):
            raise ValidationError(f"Template {path} is empty or malformed", operation="template_id")
        return cls.from_dict(data)

    def file_variables(self) -> List[VariableDefinition]:
        return [v for v in self.variables.values() if v.type == VariableType.FILE]

    def validate_values(self, values: Dict[str, Any]) -> List[str]:
        errors = []
        for key in values:
            if key not in self.variables:
                errors.append(f"Unknown variable '{key}' for template '{self.id}'")
        for var in self.variables.values():
            errors.extend(var.validate(values.get(var.key)))
        return errors

    def render(self, values: Dict[str, Any]) -> str:
        """
        Render the config with validated values.

        File variables render as ``input_files/<basename>``.

        Raises:
            ValidationError: On invalid values or unresolved placeholders
        """
        errors = self.validate_values(values)
        if errors:
            raise ValidationError(
                f"Invalid values for template '{self.id}': {'; '.join(errors)}",
                operation="template_values",
                target=self.id,
            )

        context = {
            key: var.format_value(values.get(key))
            for key, var in self.variables.items()
            if values.get(key) is not None or var.default is not None
        }
        env = SandboxedEnvironment(
            undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True
        )
        try:
            return env.from_string(self.config_template).render(**context)
        except TemplateError as e:
            raise ValidationError(
                f"Template '{self.id}' could not be rendered: {e}",
                operation="template_values",
                target=self.id,
            ) from e


class TemplateRegistry:
    """Loads templates from the built-in directory plus an optional user directory."""

    def __init__(self, template_dir: Optional[Path] = None, include_builtin: bool = True):
        self._templates: Dict[str, Template] = {}
        dirs = [BUILTIN_TEMPLATE_DIR] if include_builtin else []
        if template_dir is not None:
            dirs.append(Path(template_dir).expanduser())
        for directory in dirs:
            self._load_dir(directory)

    def _load_dir(self, directory: Path) -> None:
        if not directory.is_dir():
            logger.warning(f"Template directory not found: {directory}")
            return
        for path in sorted(directory.glob("*.yaml")):
            try:
                template = Template.from_yaml(path)
            except ValidationError as e:
                logger.error(f"Skipping template {path.name}: {e}")
                continue
            self._templates[template.id] = template
            logger.debug(f"Loaded template {template.id} from {path}")

    def register(self, template: Template) -> None:
        self._templates[template.id] = template

    def get(self, template_id: str) -> Template:
        template = self._templates.get(template_id)
        if template is None:
            raise ValidationError(
                f"Template not found: {template_id}", operation="template_id", target=template_id
            )
        return template

    def list_templates(self) -> List[Template]:
        return sorted(self._templates.values(), key=lambda t: t.id)
