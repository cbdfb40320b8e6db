"""
Flag definition store for the Feature Flag Service.
"""

import asyncio
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, Any, Awaitable, Callable, List, Mapping, Optional, Union

from shared.logging import get_logger
from shared.errors import (
    BackendUnavailableError, FlagAlreadyExistsError, FlagNotFoundError, ValidationError
)
from ..flags.models import FlagDefinition, FlagKey, flag_key, utcnow
from ..flags.registry import FlagRegistry, default_definitions
from ..flags.validation import build_definition, validate_dependencies, dependents_of
from .repository import FlagRepository


class ChangeOperation(str, Enum):
    """Store mutation kinds."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


ChangeListener = Callable[[str, ChangeOperation], Awaitable[None]]

# Fields managed by the store itself
_PROTECTED_FIELDS = ("flag", "created_at", "updated_at")
_NESTED_FIELDS = ("metadata", "conditions")


class ConfigStore:
    """Registry of flag definitions with write-through persistence.

    Readers see an immutable mapping that is replaced wholesale on every
    mutation, so they never lock and never observe a half-applied change.
    Writers are serialised and always write the repository before swapping
    the snapshot.
    """

    def __init__(
        self,
        repository: FlagRepository,
        registry: Optional[FlagRegistry] = None,
        seed_defaults: bool = True,
        ping_timeout: float = 1.0,
        clock: Callable[[], datetime] = utcnow
    ):
        self.repository = repository
        self.registry = registry or FlagRegistry.default()
        self.seed_defaults = seed_defaults
        self.ping_timeout = ping_timeout
        self.logger = get_logger("feature_flags.store")

        self._clock = clock
        self._snapshot: Mapping[str, FlagDefinition] = MappingProxyType({})
        self._write_lock = asyncio.Lock()
        self._listeners: List[ChangeListener] = []

        self.loaded = False

    async def start(self):
        """Start the underlying repository."""
        await self.repository.start()

    async def stop(self):
        """Stop the underlying repository."""
        await self.repository.stop()

    def add_listener(self, listener: ChangeListener):
        """Register a coroutine called with (flag, operation) after each mutation."""
        self._listeners.append(listener)

    @property
    def snapshot(self) -> Mapping[str, FlagDefinition]:
        return self._snapshot

    async def load(self) -> int:
        """Populate the snapshot from the repository.

        Records that fail validation or name unknown flags are skipped.
        Default definitions missing from the repository are seeded when
        ``seed_defaults`` is set. On a backend failure the previous snapshot
        stays in place and BackendUnavailableError is raised.
        """
        try:
            records = await self.repository.load_all()
        except BackendUnavailableError as e:
            self.logger.error("Failed to load flag definitions", backend=self.repository.name, error=e.message)
            raise

        definitions: Dict[str, FlagDefinition] = {}
        for record in records:
            try:
                definition = build_definition(record)
                self.registry.require(definition.flag)
            except ValidationError as e:
                self.logger.warning(
                    "Skipping invalid flag record",
                    flag=record.get("flag") if isinstance(record, dict) else None,
                    error=e.message,
                    details=e.details
                )
                continue
            definitions[definition.flag] = definition

        if self.seed_defaults:
            for definition in default_definitions(self.registry):
                if definition.flag in definitions:
                    continue
                definitions[definition.flag] = definition
                try:
                    await self.repository.save(definition.flag, definition.to_record())
                except BackendUnavailableError as e:
                    self.logger.warning("Could not persist default flag", flag=definition.flag, error=e.message)

        self._swap(definitions)
        self.loaded = True

        self.logger.info(
            "Flag definitions loaded",
            count=len(definitions),
            registry_version=self.registry.version
        )
        return len(definitions)

    def find(self, flag: FlagKey) -> Optional[FlagDefinition]:
        """Return the definition for ``flag`` or None.

        Raises BackendUnavailableError when no snapshot was ever loaded, as
        absence then says nothing about the flag.
        """
        if not self.loaded:
            raise BackendUnavailableError("store", "Flag definitions not loaded")
        return self._snapshot.get(flag_key(flag))

    def get(self, flag: FlagKey) -> FlagDefinition:
        """Return the definition for ``flag`` or raise FlagNotFoundError."""
        definition = self.find(flag)
        if definition is None:
            raise FlagNotFoundError(flag_key(flag))
        return definition

    def list(self) -> List[FlagDefinition]:
        """All definitions in the current snapshot."""
        return list(self._snapshot.values())

    def dependents(self, flag: FlagKey) -> List[str]:
        """Flags that depend on ``flag`` directly or transitively."""
        return dependents_of(flag_key(flag), self._snapshot.values())

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, flag: object) -> bool:
        return isinstance(flag, str) and flag_key(flag) in self._snapshot

    async def create(self, data: Union[FlagDefinition, Mapping[str, Any]]) -> FlagDefinition:
        """Add a new definition."""
        definition = build_definition(data)

        async with self._write_lock:
            self.registry.require(definition.flag)
            if definition.flag in self._snapshot:
                raise FlagAlreadyExistsError(definition.flag)

            now = self._clock()
            definition = definition.model_copy(update={"created_at": now, "updated_at": now})
            validate_dependencies(definition, self._snapshot, self.registry)

            await self.repository.save(definition.flag, definition.to_record())

            definitions = dict(self._snapshot)
            definitions[definition.flag] = definition
            self._swap(definitions)

            await self._notify(definition.flag, ChangeOperation.CREATE)

        self.logger.info("Flag created", flag=definition.flag, strategy=definition.strategy.value)
        return definition

    async def update(self, flag: FlagKey, changes: Mapping[str, Any]) -> FlagDefinition:
        """Merge ``changes`` into an existing definition and re-validate."""
        key = flag_key(flag)

        for field_name in _PROTECTED_FIELDS:
            if field_name in changes and not (field_name == "flag" and flag_key(changes["flag"]) == key):
                raise ValidationError(f"Field '{field_name}' cannot be updated", {"flag": key, "field": field_name})

        async with self._write_lock:
            current = self._snapshot.get(key)
            if current is None:
                raise FlagNotFoundError(key)

            merged = current.model_dump()
            for field_name, value in changes.items():
                if field_name in _NESTED_FIELDS and isinstance(value, Mapping) and merged.get(field_name):
                    merged[field_name] = {**merged[field_name], **value}
                else:
                    merged[field_name] = value
            merged["updated_at"] = self._clock()

            definition = build_definition(merged)
            validate_dependencies(definition, self._snapshot, self.registry)

            await self.repository.save(key, definition.to_record())

            definitions = dict(self._snapshot)
            definitions[key] = definition
            self._swap(definitions)

            await self._notify(key, ChangeOperation.UPDATE)

        self.logger.info("Flag updated", flag=key, fields=sorted(changes))
        return definition

    async def delete(self, flag: FlagKey) -> FlagDefinition:
        """Remove a definition."""
        key = flag_key(flag)

        async with self._write_lock:
            current = self._snapshot.get(key)
            if current is None:
                raise FlagNotFoundError(key)

            dependents = self.dependents(key)
            if dependents:
                self.logger.warning("Deleting flag with dependents", flag=key, dependents=dependents)

            await self.repository.delete(key)

            definitions = dict(self._snapshot)
            del definitions[key]
            self._swap(definitions)

            await self._notify(key, ChangeOperation.DELETE)

        self.logger.info("Flag deleted", flag=key)
        return current

    async def ping(self) -> bool:
        """Check durable repository reachability."""
        try:
            return bool(await asyncio.wait_for(self.repository.ping(), self.ping_timeout))
        except Exception as e:
            self.logger.warning("Flag repository ping failed", backend=self.repository.name, error=str(e))
            return False

    def _swap(self, definitions: Dict[str, FlagDefinition]):
        self._snapshot = MappingProxyType(definitions)

    async def _notify(self, flag: str, operation: ChangeOperation):
        for listener in self._listeners:
            try:
                await listener(flag, operation)
            except Exception as e:
                self.logger.error(
                    "Flag change listener failed",
                    flag=flag,
                    operation=operation.value,
                    error=str(e)
                )
