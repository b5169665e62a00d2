from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from rumi.exceptions import ParseError

U64_MAX = 2 ** 64 - 1

# catalogs may carry nanoseconds; datetime only keeps microseconds
_FRACTION = re.compile(r'\.(\d+)')


@dataclass(frozen=True)
class Credentials:
    host: str
    username: str
    port: int = 22
    public_key_path: Optional[str] = None
    private_key_path: Optional[str] = None
    password: Optional[str] = None

    def __repr__(self):
        # never leak the password into logs
        return (
            f"Credentials(host={self.host!r}, port={self.port!r}, username={self.username!r}, "
            f"public_key_path={self.public_key_path!r}, private_key_path={self.private_key_path!r}, "
            f"password={'***' if self.password else None})"
        )


@dataclass(frozen=True)
class CommandOutcome:
    command: str
    stdout: str
    stderr: str
    exit_code: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class BackupKind(str, Enum):
    WEBSITE = 'Website'
    SERVER = 'Server'
    DATABASE = 'Database'
    CONFIGURATION = 'Configuration'


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as RFC3339 UTC with a trailing Z."""
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC3339 timestamp into an aware UTC datetime.

    Fractional seconds of any precision are accepted and truncated to
    microseconds. Naive timestamps are rejected.

    Raises:
        ParseError: If the value is not a valid RFC3339 timestamp
    """
    if not isinstance(value, str):
        raise ParseError(f"Timestamp must be a string, got {type(value).__name__}")

    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ParseError(f"Invalid timestamp {value!r}: {e}")

    if parsed.tzinfo is None:
        raise ParseError(f"Timestamp has no timezone: {value!r}")

    return parsed.astimezone(timezone.utc)


def parse_size(value) -> int:
    """
    Parse a byte count as an unsigned 64-bit integer.

    Accepts ints and decimal strings (surrounding whitespace is ignored).

    Raises:
        ParseError: If the value is not an integer in [0, 2**64 - 1]
    """
    if isinstance(value, bool):
        raise ParseError(f"Invalid size: {value!r}")

    if isinstance(value, int):
        size = value
    elif isinstance(value, str) and value.strip().isdigit():
        size = int(value.strip())
    else:
        raise ParseError(f"Invalid size: {value!r}")

    if size < 0 or size > U64_MAX:
        raise ParseError(f"Size out of range: {size}")

    return size


@dataclass(frozen=True)
class BackupRecord:
    id: str
    deployment_name: str
    domain: str
    created_at: datetime
    kind: BackupKind
    artifact_path: str
    size_bytes: int
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'deployment_name': self.deployment_name,
            'domain': self.domain,
            'created_at': format_timestamp(self.created_at),
            'kind': self.kind.value,
            'artifact_path': self.artifact_path,
            'size_bytes': self.size_bytes,
            'description': self.description,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> 'BackupRecord':
        if not isinstance(data, dict):
            raise ParseError(f"Backup metadata must be an object, got {type(data).__name__}")

        try:
            record_id = data['id']
            deployment_name = data['deployment_name']
            domain = data['domain']
            created_at = data['created_at']
            kind = data['kind']
            artifact_path = data['artifact_path']
            size_bytes = data['size_bytes']
        except KeyError as e:
            raise ParseError(f"Backup metadata missing field: {e}")

        for field_name, field_value in (
            ('id', record_id),
            ('deployment_name', deployment_name),
            ('domain', domain),
            ('artifact_path', artifact_path),
        ):
            if not isinstance(field_value, str):
                raise ParseError(f"Field {field_name} must be a string")

        description = data.get('description')
        if description is not None and not isinstance(description, str):
            raise ParseError("Field description must be a string or null")

        try:
            backup_kind = BackupKind(kind)
        except ValueError:
            raise ParseError(f"Unknown backup kind: {kind!r}")

        return cls(
            id=record_id,
            deployment_name=deployment_name,
            domain=domain,
            created_at=parse_timestamp(created_at),
            kind=backup_kind,
            artifact_path=artifact_path,
            size_bytes=parse_size(size_bytes),
            description=description,
        )

    @classmethod
    def from_json(cls, text: str) -> 'BackupRecord':
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ParseError(f"Invalid backup metadata JSON: {e}")
        return cls.from_dict(data)
