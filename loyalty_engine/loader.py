"""
Seed a record store from CSV reference data
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from dateutil import parser
from loguru import logger

from .data_access import DataAccessPort
from .exceptions import PermanentDataAccessError
from .models import RecordType

KNOWN_RECORD_TYPES = {t.value for t in RecordType}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp cell; naive values are taken as UTC

    Args:
        value: Cell value (string, datetime or blank)

    Returns:
        Timezone-aware datetime, or None for blank cells
    """
    if value is None or (isinstance(value, float) and pd.isna(value)) or str(value).strip() == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parser.parse(str(value).strip())
        except (ValueError, OverflowError) as e:
            raise PermanentDataAccessError(f"Could not parse timestamp '{value}': {e}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def records_from_dataframe(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert a frame to record field dicts: blanks become None, created_on is parsed"""
    records = []
    for row in df.to_dict(orient="records"):
        fields = {
            str(key).strip(): (None if isinstance(value, float) and pd.isna(value) else value)
            for key, value in row.items()
        }
        if "created_on" in fields:
            fields["created_on"] = parse_timestamp(fields["created_on"])
        records.append(fields)
    return records


class RecordLoader:
    """
    Loads reference data CSV files into a DataAccessPort.

    Each file holds one record type, named after its file stem
    (e.g. loyalty_card_type.csv). Every file needs an 'id' column.
    """

    def __init__(self, data_dir: str = "data"):
        """
        Initialize record loader

        Args:
            data_dir: Directory containing one CSV file per record type
        """
        self.data_dir = Path(data_dir)

    def load_into(self, store: DataAccessPort) -> Dict[str, int]:
        """
        Load every known record type found in the data directory

        Returns:
            Number of records loaded per record type
        """
        if not self.data_dir.exists():
            logger.warning(f"Data directory {self.data_dir} does not exist")
            return {}

        csv_files = sorted(self.data_dir.glob("*.csv"))
        logger.info(f"Found {len(csv_files)} data files")

        counts = {}
        for csv_file in csv_files:
            record_type = csv_file.stem
            if record_type not in KNOWN_RECORD_TYPES:
                logger.warning(f"Skipping {csv_file.name}: unknown record type '{record_type}'")
                continue
            counts[record_type] = self.load_file(store, record_type, csv_file)

        logger.info(f"Loaded {sum(counts.values())} records across {len(counts)} record types")
        return counts

    def load_file(self, store: DataAccessPort, record_type: str, csv_file: Path) -> int:
        # Read everything as text so ids keep leading zeros; models convert numbers
        df = pd.read_csv(csv_file, dtype=str)
        if "id" not in df.columns:
            raise PermanentDataAccessError(f"{csv_file.name} has no 'id' column")

        records = records_from_dataframe(df)
        for fields in records:
            store.create_record(record_type, fields)

        logger.debug(f"Loaded {len(records)} {record_type} records from {csv_file.name}")
        return len(records)
