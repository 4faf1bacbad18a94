"""
Export of records selected for eviction.

Each category's candidates are written to one file per sweep, CSV by
default or Parquet through pyarrow, and the written file is read back to
confirm every row landed before the engine is allowed to delete anything.
"""

import asyncio
import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('csv', 'parquet')


class RetentionExportError(Exception):
    """Raised when an export cannot be written or verified."""
    pass


class RetentionExporter:
    """Writes eviction candidates to archive files."""

    def __init__(self, directory: str, export_format: str = 'csv', compression: str = 'snappy'):
        """
        Initialize the exporter.

        Args:
            directory: Output directory, created on first export
            export_format: 'csv' or 'parquet'
            compression: Parquet compression codec
        """
        export_format = export_format.lower()
        if export_format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {export_format}")
        self.directory = Path(directory)
        self.export_format = export_format
        self.compression = compression

    def build_path(self, category: str, now: datetime, attempt: int = 0) -> Path:
        stem = f"{category}_{now.strftime('%Y%m%d_%H%M%S')}"
        if attempt:
            stem = f"{stem}_{attempt}"
        return self.directory / f"{stem}.{self.export_format}"

    def _reserve_path(self, category: str, now: datetime) -> Path:
        """Create an empty file under the first free name so no export is overwritten."""
        self.directory.mkdir(parents=True, exist_ok=True)
        attempt = 0
        while True:
            path = self.build_path(category, now, attempt)
            try:
                with open(path, 'x'):
                    pass
                return path
            except FileExistsError:
                attempt += 1

    async def export(self, category: str, records: List[Dict[str, Any]],
                     now: Optional[datetime] = None) -> str:
        """
        Export records for one category.

        Returns:
            Path of the written file

        Raises:
            RetentionExportError: If the file cannot be written or verified
        """
        return await asyncio.to_thread(self._write, category, records, now or datetime.now(timezone.utc))

    def _write(self, category: str, records: List[Dict[str, Any]], now: datetime) -> str:
        try:
            path = self._reserve_path(category, now)
            df = pd.DataFrame.from_records(records)

            if self.export_format == 'parquet':
                df.to_parquet(path, engine='pyarrow', compression=self.compression, index=False)
                written_rows = pq.read_metadata(path).num_rows
            else:
                df.to_csv(path, index=False)
                written_rows = len(pd.read_csv(path)) if records else 0
        except (OSError, ValueError, pa.ArrowException) as e:
            raise RetentionExportError(f"Failed to export {category}: {e}") from e

        if written_rows != len(records):
            raise RetentionExportError(
                f"Export verification failed for {path.name}: "
                f"expected {len(records)} rows, found {written_rows}"
            )

        logger.info(f"Exported {len(records)} records to {path} (sha256 {self._checksum(path)[:12]})")
        return str(path)

    @staticmethod
    def _checksum(path: Path) -> str:
        digest = hashlib.sha256()
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(65536), b''):
                digest.update(chunk)
        return digest.hexdigest()
