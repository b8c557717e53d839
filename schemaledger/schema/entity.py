"""
Entity definition input for the metadata parser.

Entities are supplied as data: a table name, a timestamps flag and a list
of fields, each carrying declarative tags such as ``column``,
``varchar 100`` or ``enum active,banned``. They can be built in code or
loaded from YAML/JSON files:

    table: users
    timestamps: true
    fields:
      id: [column, autonumber]
      username: [column, varchar 100, unique]
      status: [column, "enum active,inactive", default active]
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from schemaledger.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tag:
    """
    One declarative tag attached to a field.

    Attributes:
        name: Tag name without the leading '@' (lowercase)
        value: Text following the tag name, if any
    """

    name: str
    value: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> 'Tag':
        """
        Parse a tag from its textual form.

        Example:
            >>> Tag.parse('@varchar 100')
            Tag(name='varchar', value='100')
            >>> Tag.parse('enum active, banned')
            Tag(name='enum', value='active, banned')
        """
        text = text.strip().lstrip('@')
        if not text:
            raise ValueError("Empty tag")

        parts = text.split(None, 1)
        name = parts[0].lower()
        value = parts[1].strip() if len(parts) > 1 else None
        return cls(name, value or None)

    def __str__(self) -> str:
        if self.value is None:
            return f"@{self.name}"
        return f"@{self.name} {self.value}"


@dataclass
class FieldDefinition:
    """
    One field of an entity.

    Attributes:
        name: Field name (becomes the column name)
        tags: Declarative tags in declaration order
        static: Class-level configuration, never persisted
    """

    name: str
    tags: List[Tag] = field(default_factory=list)
    static: bool = False

    @classmethod
    def from_tags(cls, name: str, *tags: Union[str, Tag], static: bool = False) -> 'FieldDefinition':
        parsed = [t if isinstance(t, Tag) else Tag.parse(t) for t in tags]
        return cls(name, parsed, static)

    def has(self, tag_name: str) -> bool:
        return any(t.name == tag_name for t in self.tags)

    def get(self, tag_name: str) -> Optional[Tag]:
        for tag in self.tags:
            if tag.name == tag_name:
                return tag
        return None


@dataclass
class EntityDefinition:
    """
    A persisted type: table facts plus its fields.

    Attributes:
        table: Table name
        fields: Fields in declaration order
        timestamps: Entity expects date_created/date_modified columns
        name: Human-readable entity name (defaults to table)
    """

    table: str
    fields: List[FieldDefinition] = field(default_factory=list)
    timestamps: bool = False
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.table

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EntityDefinition':
        """
        Build an entity from a mapping.

        ``fields`` may be a mapping of field name to tag list, or a list
        of ``{name, tags, static}`` mappings.
        """
        if 'table' not in data:
            raise ConfigError("Entity definition is missing 'table'")

        raw_fields = data.get('fields') or {}
        fields = []
        if isinstance(raw_fields, dict):
            for name, tags in raw_fields.items():
                fields.append(FieldDefinition.from_tags(name, *_tag_list(tags)))
        else:
            for item in raw_fields:
                fields.append(FieldDefinition.from_tags(
                    item['name'],
                    *_tag_list(item.get('tags', [])),
                    static=bool(item.get('static', False)),
                ))

        return cls(
            table=data['table'],
            fields=fields,
            timestamps=bool(data.get('timestamps', False)),
            name=data.get('name'),
        )


def _tag_list(tags: Union[str, Iterable[str], None]) -> List[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        # "@column @varchar 100" style single string
        return ['@' + t for t in tags.split('@') if t.strip()]
    return [str(t) for t in tags]


def load_entities(path: Union[str, Path]) -> List[EntityDefinition]:
    """
    Load entity definitions from a YAML or JSON file.

    The file holds either one entity mapping, a list of them, or a
    mapping with an ``entities`` list.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Entity file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as fp:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(fp)
            else:
                data = json.load(fp)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot parse entity file {path}: {e}") from e

    if isinstance(data, dict) and 'entities' in data:
        data = data['entities']
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ConfigError(f"Entity file {path} must hold a mapping or a list")

    entities = [EntityDefinition.from_dict(item) for item in data]
    logger.debug("Loaded %d entities from %s", len(entities), path)
    return entities
