"""Report of a media offload migration run."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TableMigrationResult(BaseModel):
    processed: int = 0
    errors: int = 0


class MigrationReport(BaseModel):
    """Serialized with camelCase keys: {totalProcessed, totalErrors, perTable}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_processed: int = 0
    total_errors: int = 0
    per_table: dict[str, TableMigrationResult] = Field(default_factory=dict)

    def record(self, table: str, result: TableMigrationResult) -> None:
        self.per_table[table] = result
        self.total_processed += result.processed
        self.total_errors += result.errors
