"""Data steps: database operations and file uploads."""

from typing import Any, Dict

from core.exceptions import StepExecutionError
from integrations.side_effects import DatabaseOperation, FileOperation
from tasks.base_task import BaseStepHandler, StepContext

DB_OPERATIONS = ("select", "insert", "update", "delete")


class DatabaseStepHandler(BaseStepHandler):
    """Run a database operation.

    Config:
        operation: select | insert | update | delete (default: select)
        query: raw query text, or
        table / data / where: structured operation
    """

    step_type = "database"
    display_name = "Database"
    description = "Run a database operation"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        operation = config.get("operation", "select")
        if operation not in DB_OPERATIONS:
            raise StepExecutionError(f"Unsupported database operation: {operation}")
        if not config.get("query") and not config.get("table"):
            raise StepExecutionError("Database step requires a 'query' or a 'table'")

        executor = self.require(self.side_effects.database, "database executor")
        result = await executor.execute(DatabaseOperation(
            operation=operation,
            query=config.get("query"),
            table=config.get("table"),
            data=config.get("data", {}),
            where=config.get("where", {}),
            tenant_id=context.tenant_id,
        ))
        return {
            "db_id": context.reference("db"),
            "operation": operation,
            "query": config.get("query"),
            "result": {"rows_affected": result.rows_affected, "data": result.rows},
        }


class FileUploadStepHandler(BaseStepHandler):
    """Store an uploaded file.

    Config:
        source: where the file currently lives (defaults to input["file"])
        destination: target location (default: /uploads)
        allowed_types: list of extensions or ["*"]
        max_size: bytes (default: 10 MiB)
    """

    step_type = "file_upload"
    display_name = "File Upload"
    description = "Store an uploaded file"

    async def execute(self, config, input, variables, context: StepContext) -> Dict[str, Any]:
        allowed_types = config.get("allowed_types") or ["*"]
        max_size = config.get("max_size", 10 * 1024 * 1024)
        source = config.get("source") or input.get("file")

        if source and "*" not in allowed_types:
            extension = str(source).rsplit(".", 1)[-1].lower() if "." in str(source) else ""
            if extension not in [t.lower().lstrip(".") for t in allowed_types]:
                raise StepExecutionError(f"File type '{extension}' is not allowed")

        store = self.require(self.side_effects.files, "file store")
        result = await store.handle(FileOperation(
            operation="upload",
            source=source,
            destination=config.get("destination", "/uploads"),
            allowed_types=list(allowed_types),
            max_size=max_size,
            options=config.get("options", {}),
            tenant_id=context.tenant_id,
        ))
        if result.size is not None and result.size > max_size:
            raise StepExecutionError(f"File exceeds maximum size of {max_size} bytes")

        return {
            "file_id": result.file_id,
            "allowed_types": list(allowed_types),
            "max_size": max_size,
            "destination": result.location or config.get("destination", "/uploads"),
            "status": result.status,
        }


DATA_STEP_TYPES = {
    "database": DatabaseStepHandler,
    "file_upload": FileUploadStepHandler,
}
