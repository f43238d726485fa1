"""PocketBase tool and resource registry exposed over MCP.

Each tool declares a pydantic model for its arguments; the model's JSON
Schema is published through ``tools/list`` and arguments are validated
against it on ``tools/call``. Backend failures are reported in-band as
``isError`` results so the agent can read PocketBase's field-level
validation messages.
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pbgateway.app.core.logging import get_logger
from pbgateway.app.exceptions import BackendError
from pbgateway.app.mcp.protocol import InvalidParamsError
from pbgateway.app.providers.pocketbase import PocketBaseClient

logger = get_logger(__name__)

SCHEMA_RESOURCE_URI = "pocketbase://schema"

# Reported to the client as tool errors; InvalidURL is not an HTTPError
BACKEND_FAILURES = (BackendError, httpx.HTTPError, httpx.InvalidURL)

ToolHandler = Callable[[PocketBaseClient, Any], Awaitable[Any]]


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def ok(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}]}


def err(error: Exception) -> dict:
    if isinstance(error, BackendError):
        # Keep the backend response so field-level details reach the caller
        message = _to_text(error.to_dict())
    else:
        message = str(error) or type(error).__name__
    return {"content": [{"type": "text", "text": message}], "isError": True}


class ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NoArgs(ToolArgs):
    pass


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    args_model: Type[ToolArgs]
    handler: ToolHandler

    def to_dict(self) -> dict:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


class ToolRegistry:
    """Name-indexed collection of tool definitions."""

    def __init__(self):
        self._tools: Dict[str, ToolDefinition] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def tool(self, name: str, description: str, args_model: Type[ToolArgs] = NoArgs):
        """Register the decorated coroutine as tool ``name``."""
        def decorator(func: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"Tool already registered: {name}")
            self._tools[name] = ToolDefinition(name, description, args_model, func)
            return func
        return decorator

    def definitions(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    async def call(self, name: str, arguments: Optional[dict], pb: PocketBaseClient) -> dict:
        """Validate ``arguments`` and run tool ``name`` against ``pb``.

        Raises:
            InvalidParamsError: Unknown tool or arguments that fail validation
        """
        definition = self._tools.get(name)
        if definition is None:
            raise InvalidParamsError(f"Unknown tool: {name}")

        try:
            args = definition.args_model.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidParamsError(
                f"Invalid arguments for tool {name}: {e.errors(include_url=False)}"
            ) from e

        try:
            return ok(_to_text(await definition.handler(pb, args)))
        except BACKEND_FAILURES as e:
            logger.warning(f"Tool call failed: {e}", extra={"tool": name})
            return err(e)


registry = ToolRegistry()


# Argument models

class CollectionArgs(ToolArgs):
    collection: str = Field(..., description="Collection name or ID")


class CreateCollectionArgs(ToolArgs):
    name: str = Field(..., description="Collection name")
    type: Literal["base", "auth", "view"] = Field("base", description="Collection type")
    field_defs: List[Dict[str, Any]] = Field(
        ..., alias="fields", description="Array of field definitions"
    )


class UpdateCollectionArgs(CollectionArgs):
    updates: Dict[str, Any] = Field(
        ..., description="Fields to update (name, fields, rules, etc.)"
    )


class ImportCollectionsArgs(ToolArgs):
    collections: List[Dict[str, Any]] = Field(
        ..., description="Array of collection definitions to import"
    )
    delete_missing: bool = Field(
        False,
        alias="deleteMissing",
        description="Delete collections not present in the import",
    )


class ListRecordsArgs(CollectionArgs):
    filter: Optional[str] = Field(None, description="PocketBase filter expression")
    sort: Optional[str] = Field(None, description="Sort expression (e.g. '-created')")
    page: int = Field(1, description="Page number")
    per_page: int = Field(30, alias="perPage", description="Items per page")
    expand: Optional[str] = Field(None, description="Relations to expand")
    field_list: Optional[str] = Field(
        None, alias="fields", description="Comma-separated fields to return"
    )


class GetRecordArgs(CollectionArgs):
    id: str = Field(..., description="Record ID")
    expand: Optional[str] = Field(None, description="Relations to expand")
    field_list: Optional[str] = Field(
        None, alias="fields", description="Comma-separated fields to return"
    )


class CreateRecordArgs(CollectionArgs):
    data: Dict[str, Any] = Field(..., description="Record data as key-value pairs")


class UpdateRecordArgs(CollectionArgs):
    id: str = Field(..., description="Record ID")
    data: Dict[str, Any] = Field(..., description="Fields to update as key-value pairs")


class RecordArgs(CollectionArgs):
    id: str = Field(..., description="Record ID")


class CreateBackupArgs(ToolArgs):
    name: Optional[str] = Field(
        None, description="Optional backup name (auto-generated if omitted)"
    )


class BackupArgs(ToolArgs):
    key: str = Field(..., description="Backup file key/name")


class FileUrlArgs(CollectionArgs):
    record_id: str = Field(..., alias="recordId", description="Record ID")
    filename: str = Field(..., description="Filename from the record's file field")
    thumb: Optional[str] = Field(None, description="Thumbnail size (e.g. '100x100')")


class UpdateSettingsArgs(ToolArgs):
    settings: Dict[str, Any] = Field(..., description="Settings key-value pairs to update")


class ListLogsArgs(ToolArgs):
    filter: Optional[str] = Field(None, description="PocketBase filter expression")
    sort: Optional[str] = Field(None, description="Sort expression")
    page: int = Field(1, description="Page number")
    per_page: int = Field(30, alias="perPage", description="Items per page")


# Schema & admin

@registry.tool("pb_health", "PocketBase health check")
async def pb_health(pb: PocketBaseClient, args: NoArgs) -> Any:
    return await pb.health()


@registry.tool("pb_list_collections", "List all collections with full field schemas")
async def pb_list_collections(pb: PocketBaseClient, args: NoArgs) -> Any:
    return await pb.list_collections()


@registry.tool(
    "pb_get_collection_schema",
    "Get a single collection's full schema (fields, rules, indexes)",
    CollectionArgs,
)
async def pb_get_collection_schema(pb: PocketBaseClient, args: CollectionArgs) -> Any:
    return await pb.get_collection(args.collection)


@registry.tool("pb_create_collection", "Create a new collection", CreateCollectionArgs)
async def pb_create_collection(pb: PocketBaseClient, args: CreateCollectionArgs) -> Any:
    return await pb.create_collection(
        {"name": args.name, "type": args.type, "fields": args.field_defs}
    )


@registry.tool(
    "pb_update_collection", "Update a collection's schema or rules", UpdateCollectionArgs
)
async def pb_update_collection(pb: PocketBaseClient, args: UpdateCollectionArgs) -> Any:
    return await pb.update_collection(args.collection, args.updates)


@registry.tool("pb_delete_collection", "Delete a collection", CollectionArgs)
async def pb_delete_collection(pb: PocketBaseClient, args: CollectionArgs) -> Any:
    return await pb.delete_collection(args.collection)


@registry.tool(
    "pb_import_collections",
    "Bulk import/overwrite collection schemas (for migrations)",
    ImportCollectionsArgs,
)
async def pb_import_collections(pb: PocketBaseClient, args: ImportCollectionsArgs) -> Any:
    return await pb.import_collections(args.collections, args.delete_missing)


# Records

@registry.tool("pb_list_records", "List/search records in a collection", ListRecordsArgs)
async def pb_list_records(pb: PocketBaseClient, args: ListRecordsArgs) -> Any:
    return await pb.list_records(
        args.collection,
        page=args.page,
        per_page=args.per_page,
        filter=args.filter,
        sort=args.sort,
        expand=args.expand,
        fields=args.field_list,
    )


@registry.tool("pb_get_record", "Get a single record by ID", GetRecordArgs)
async def pb_get_record(pb: PocketBaseClient, args: GetRecordArgs) -> Any:
    return await pb.get_record(
        args.collection, args.id, expand=args.expand, fields=args.field_list
    )


@registry.tool("pb_create_record", "Create a new record in a collection", CreateRecordArgs)
async def pb_create_record(pb: PocketBaseClient, args: CreateRecordArgs) -> Any:
    return await pb.create_record(args.collection, args.data)


@registry.tool("pb_update_record", "Update an existing record", UpdateRecordArgs)
async def pb_update_record(pb: PocketBaseClient, args: UpdateRecordArgs) -> Any:
    return await pb.update_record(args.collection, args.id, args.data)


@registry.tool("pb_delete_record", "Delete a record by ID", RecordArgs)
async def pb_delete_record(pb: PocketBaseClient, args: RecordArgs) -> Any:
    return await pb.delete_record(args.collection, args.id)


# Backups

@registry.tool("pb_list_backups", "List available backups")
async def pb_list_backups(pb: PocketBaseClient, args: NoArgs) -> Any:
    return await pb.list_backups()


@registry.tool("pb_create_backup", "Create a new backup", CreateBackupArgs)
async def pb_create_backup(pb: PocketBaseClient, args: CreateBackupArgs) -> Any:
    return await pb.create_backup(args.name or "")


@registry.tool("pb_delete_backup", "Delete a backup by key", BackupArgs)
async def pb_delete_backup(pb: PocketBaseClient, args: BackupArgs) -> Any:
    return await pb.delete_backup(args.key)


# Files

@registry.tool("pb_get_file_url", "Get download URL for a file field", FileUrlArgs)
async def pb_get_file_url(pb: PocketBaseClient, args: FileUrlArgs) -> str:
    record = await pb.get_record(args.collection, args.record_id)
    return pb.file_url(record, args.filename, thumb=args.thumb)


# Settings & ops

@registry.tool("pb_get_settings", "Get app settings")
async def pb_get_settings(pb: PocketBaseClient, args: NoArgs) -> Any:
    return await pb.get_settings()


@registry.tool("pb_update_settings", "Update app settings", UpdateSettingsArgs)
async def pb_update_settings(pb: PocketBaseClient, args: UpdateSettingsArgs) -> Any:
    return await pb.update_settings(args.settings)


@registry.tool("pb_list_logs", "Query request logs", ListLogsArgs)
async def pb_list_logs(pb: PocketBaseClient, args: ListLogsArgs) -> Any:
    return await pb.list_logs(
        page=args.page, per_page=args.per_page, filter=args.filter, sort=args.sort
    )


# Resources

RESOURCES = [
    {
        "uri": SCHEMA_RESOURCE_URI,
        "name": "schema",
        "description": (
            "All PocketBase collection schemas. Provides full field "
            "definitions, rules, and indexes."
        ),
        "mimeType": "application/json",
    },
]


async def read_resource(uri: str, pb: PocketBaseClient) -> dict:
    """Read resource ``uri``; backend failures are embedded in the content.

    Raises:
        InvalidParamsError: Unknown resource URI
    """
    if uri != SCHEMA_RESOURCE_URI:
        raise InvalidParamsError(f"Unknown resource: {uri}")

    try:
        text = _to_text(await pb.list_collections())
    except BACKEND_FAILURES as e:
        logger.warning(f"Schema resource read failed: {e}")
        text = json.dumps({"error": str(e)})

    return {
        "contents": [
            {"uri": uri, "mimeType": "application/json", "text": text},
        ]
    }
