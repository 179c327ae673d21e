"""
Versioned JSON schemas for publication records and timestamps.

Schemas are compiled once into a process-wide SchemaRegistry. Callers that
need different schemas (tests, newer schema packages) build their own
registry and pass it wherever a registry is accepted.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator

from common.logging_config import get_logger

logger = get_logger(__name__)

PUBLICATION = "publication"
TIMESTAMP = "timestamp"

_DIGEST_PATTERN = "^[0-9a-f]{64}$"

PUBLICATION_SCHEMA_1_0_0: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Publication",
    "type": "object",
    "required": ["version", "finding", "legal"],
    "additionalProperties": False,
    "properties": {
        "version": {"const": "1.0.0"},
        "name": {"type": "string", "minLength": 1},
        "affiliation": {"type": "string", "minLength": 1},
        "finding": {"type": "string", "minLength": 1},
        "safety": {"type": "string", "minLength": 1},
        "legal": {"type": "string", "minLength": 1},
        "links": {
            "type": "array",
            "uniqueItems": True,
            "items": {"type": "string", "pattern": _DIGEST_PATTERN},
        },
        "metadata": {
            "type": "object",
            "additionalProperties": {
                "type": "array",
                "items": {"type": "string"},
            },
        },
        "attachments": {
            "type": "array",
            "uniqueItems": True,
            "items": {"type": "string", "pattern": _DIGEST_PATTERN},
        },
    },
}

TIMESTAMP_SCHEMA_1_0_0: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Timestamp",
    "type": "object",
    "required": ["timestamp", "signature", "version"],
    "additionalProperties": False,
    "properties": {
        "version": {"const": "1.0.0"},
        "signature": {"type": "string", "pattern": "^[0-9a-f]{128}$"},
        "timestamp": {
            "type": "object",
            "required": ["digest", "uri", "time"],
            "additionalProperties": False,
            "properties": {
                "digest": {"type": "string", "pattern": _DIGEST_PATTERN},
                "uri": {"type": "string", "minLength": 1},
                "time": {"type": "string", "minLength": 1},
            },
        },
    },
}


def parse_version(version: str) -> Tuple[int, ...]:
    """
    Parse a semantic version string for ordering.

    Args:
        version: Version such as "1.10.2"

    Returns:
        Tuple of integers, e.g. (1, 10, 2)

    Raises:
        ValueError: If any component is not an integer
    """
    return tuple(int(part) for part in version.split("."))


def schema_version(schema: Dict[str, Any]) -> str:
    """Read the version a schema pins through its `version` const."""
    return schema["properties"]["version"]["const"]


class SchemaRegistry:
    """
    Compiled validators keyed by (kind, version).

    Usage:
        registry = SchemaRegistry()
        registry.register(PUBLICATION, schema)
        errors = registry.validate(document, PUBLICATION)
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._validators: Dict[str, Dict[str, Draft202012Validator]] = {}

    def register(self, kind: str, schema: Dict[str, Any]) -> str:
        """
        Compile and register a schema.

        Args:
            kind: Document kind (PUBLICATION or TIMESTAMP)
            schema: JSON schema whose `version` property is a const

        Returns:
            The registered version string
        """
        Draft202012Validator.check_schema(schema)
        version = schema_version(schema)
        parse_version(version)
        self._validators.setdefault(kind, {})[version] = Draft202012Validator(schema)
        return version

    def load_directory(self, path: Path) -> int:
        """
        Register every `<kind>/<version>.json` schema file under path.

        Returns:
            Number of schemas registered
        """
        count = 0
        for schema_file in sorted(Path(path).glob("*/*.json")):
            with open(schema_file, "r") as f:
                schema = json.load(f)
            self.register(schema_file.parent.name, schema)
            count += 1
        logger.info(f"Loaded {count} schemas [path={path}]")
        return count

    def versions(self, kind: str) -> List[str]:
        """Registered versions of kind, oldest first."""
        return sorted(self._validators.get(kind, {}), key=parse_version)

    def latest(self, kind: str) -> str:
        """
        Greatest registered semantic version of kind.

        Raises:
            KeyError: If no schema of kind is registered
        """
        versions = self.versions(kind)
        if not versions:
            raise KeyError(f"No {kind} schema registered")
        return versions[-1]

    def validator(self, kind: str, version: Optional[str] = None) -> Optional[Draft202012Validator]:
        """Validator for kind at version (latest if None); None if unknown."""
        if version is None:
            version = self.latest(kind)
        return self._validators.get(kind, {}).get(version)

    def validate(self, document: Any, kind: str, version: Optional[str] = None) -> List[str]:
        """
        Validate a document and list its structural errors.

        The schema version is the explicit version if given, else the
        document's own `version` field, else the latest registered.

        Args:
            document: Parsed JSON document
            kind: Document kind
            version: Optional version to validate against

        Returns:
            Sorted error strings; empty if the document is valid
        """
        if version is None and isinstance(document, dict) and isinstance(document.get("version"), str):
            version = document["version"]
        validator = self.validator(kind, version)
        if validator is None:
            return [f"unknown {kind} schema version: {version}"]
        errors = []
        for e in sorted(validator.iter_errors(document), key=str):
            errors.append(f"{list(e.absolute_path)}: {e.message}")
        return errors


def build_default_registry() -> SchemaRegistry:
    """Registry holding the schemas shipped with this package."""
    registry = SchemaRegistry()
    registry.register(PUBLICATION, PUBLICATION_SCHEMA_1_0_0)
    registry.register(TIMESTAMP, TIMESTAMP_SCHEMA_1_0_0)
    return registry


DEFAULT_REGISTRY = build_default_registry()


def validate_schema(
    document: Any,
    kind: str,
    version: Optional[str] = None,
    registry: Optional[SchemaRegistry] = None
) -> List[str]:
    """Validate document against the default (or given) registry."""
    return (registry or DEFAULT_REGISTRY).validate(document, kind, version)
