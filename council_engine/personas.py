"""
Persona Store — file-backed persona definitions, one ``<role>.json`` per role.

File I/O runs in a worker thread so the event loop never blocks on disk.
"""
import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any

from council_engine.exceptions import CouncilValidationError, PersonaNotFoundError
from council_engine.models import Persona

logger = logging.getLogger("council.engine.personas")

REQUIRED_PERSONA_FIELDS = ("role", "name", "emoji", "model", "coreIdentity")
_ROLE_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def validate_role(role: str) -> str:
    if not isinstance(role, str) or not _ROLE_RE.match(role):
        raise CouncilValidationError(f"Invalid persona role: {role!r}")
    return role


def validate_persona_payload(data: Any) -> Persona:
    """Check required fields and build a Persona.

    Raises:
        CouncilValidationError: payload is not an object or misses a field.
    """
    if not isinstance(data, dict):
        raise CouncilValidationError("Persona payload must be an object")
    for field_name in REQUIRED_PERSONA_FIELDS:
        if not data.get(field_name):
            raise CouncilValidationError(f"Missing required field: {field_name}")
    values = data.get("values", [])
    if not isinstance(values, list):
        raise CouncilValidationError("Field 'values' must be a list")
    validate_role(data["role"])
    return Persona.from_dict(data)


class PersonaStore:
    """
    Read/write persona JSON files.

    Usage:
        store = PersonaStore(config.personas_path)
        persona = await store.get("visionary")
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _file_for(self, role: str) -> Path:
        return self._path / f"{validate_role(role)}.json"

    def _read(self, file: Path) -> Persona:
        with open(file, encoding="utf-8") as f:
            data = json.load(f)
        return Persona.from_dict(data)

    def _read_all(self) -> list[Persona]:
        if not self._path.is_dir():
            return []
        personas = []
        for file in sorted(self._path.glob("*.json")):
            try:
                personas.append(self._read(file))
            except (OSError, ValueError, KeyError) as e:
                logger.warning("Skipping unreadable persona file %s: %s", file.name, e)
        return personas

    def _write(self, file: Path, persona: Persona) -> None:
        file.parent.mkdir(parents=True, exist_ok=True)
        tmp = file.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(persona.to_dict(), indent=2), encoding="utf-8")
        tmp.replace(file)

    async def list_all(self) -> list[Persona]:
        """All personas, sorted by role."""
        return await asyncio.to_thread(self._read_all)

    async def get(self, role: str) -> Persona:
        """
        Load one persona.

        Raises:
            PersonaNotFoundError: no file for that role, or it cannot be parsed.
        """
        file = self._file_for(role)
        try:
            return await asyncio.to_thread(self._read, file)
        except FileNotFoundError:
            raise PersonaNotFoundError(f"Persona not found: {role}")
        except (ValueError, KeyError) as e:
            logger.warning("Persona %s is malformed: %s", role, e)
            raise PersonaNotFoundError(f"Persona not found: {role}", details="malformed persona file")

    async def exists(self, role: str) -> bool:
        return await asyncio.to_thread(self._file_for(role).is_file)

    async def save(self, role: str, data: Any) -> Persona:
        """
        Replace an existing persona.

        Raises:
            CouncilValidationError: invalid payload or body role != path role.
            PersonaNotFoundError: no persona with that role exists.
        """
        persona = validate_persona_payload(data)
        if persona.role != role:
            raise CouncilValidationError(
                f"Persona role mismatch: body has {persona.role!r}, path has {role!r}"
            )
        file = self._file_for(role)
        if not await asyncio.to_thread(file.is_file):
            raise PersonaNotFoundError(f"Persona not found: {role}")
        await asyncio.to_thread(self._write, file, persona)
        logger.info("Persona %s updated", role)
        return persona

    async def save_all(self, items: Any) -> list[Persona]:
        """Replace several existing personas; nothing is written if any is invalid."""
        if not isinstance(items, list):
            raise CouncilValidationError("Expected a list of personas")
        personas = [validate_persona_payload(item) for item in items]
        for persona in personas:
            if not await self.exists(persona.role):
                raise PersonaNotFoundError(f"Persona not found: {persona.role}")
        for persona in personas:
            await asyncio.to_thread(self._write, self._file_for(persona.role), persona)
        logger.info("Updated %d personas", len(personas))
        return personas
