"""
Replay record events through the engine from a DataFrame or CSV file
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd
from loguru import logger

from .config import EngineConfig, get_config
from .core import LoyaltyEngine
from .data_access import DataAccessPort
from .exceptions import LoyaltyEngineError
from .models import PurchaseResult, RedemptionResult, TierEvaluation

REQUIRED_COLUMNS = ["record_type", "record_id"]

OUTPUT_COLUMNS = [
    "record_type",
    "record_id",
    "status",
    "points_earned",
    "points_applied",
    "total_points",
    "transition",
    "tier",
    "error",
    "processed_at",
]


class BatchReplay:
    """
    Feeds a sequence of (record_type, record_id) events to LoyaltyEngine in order.

    Every event is handled independently, the way the host would dispatch
    them: a rejected event is reported in its output row and does not stop
    the events after it.
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or get_config()
        self.engine = LoyaltyEngine(store, self.config)

    def process_dataframe(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Process every event row

        Args:
            df: Frame with record_type and record_id columns

        Returns:
            One output row per input event
        """
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Event frame is missing columns: {missing}")

        rows = []
        for event in df.to_dict(orient="records"):
            rows.append(self._process_event(str(event["record_type"]).strip(), str(event["record_id"]).strip()))

        return pd.DataFrame(rows, columns=OUTPUT_COLUMNS)

    def process_csv_file(self, input_file: str, output_file: Optional[str] = None) -> Dict[str, Any]:
        """
        Process an events CSV and write the results CSV

        Args:
            input_file: Path to the events CSV
            output_file: Output path (defaults to output/results.csv)

        Returns:
            Summary statistics for the run
        """
        logger.info(f"Processing events CSV: {input_file}")
        df = pd.read_csv(input_file, dtype=str)
        result_df = self.process_dataframe(df)

        output_path = Path(output_file or "output/results.csv")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        result_df.to_csv(output_path, index=False)

        summary = {
            "total_events": len(result_df),
            "processed": int((result_df["status"] == "processed").sum()),
            "skipped": int((result_df["status"] == "skipped").sum()),
            "rejected": int((result_df["status"] == "rejected").sum()),
            "output_file": str(output_path),
        }
        logger.info(
            f"Replayed {summary['total_events']} events: {summary['processed']} processed, "
            f"{summary['skipped']} skipped, {summary['rejected']} rejected"
        )
        return summary

    def _process_event(self, record_type: str, record_id: str) -> Dict[str, Any]:
        row = {column: None for column in OUTPUT_COLUMNS}
        row.update(record_type=record_type, record_id=record_id,
                   processed_at=datetime.now(timezone.utc).isoformat())

        try:
            result = self.engine.handle_record_event(record_type, record_id)
        except LoyaltyEngineError as e:
            row.update(status="rejected", error=str(e))
            return row

        if result is None:
            row["status"] = "skipped"
            return row

        row["status"] = "processed"
        evaluation = result if isinstance(result, TierEvaluation) else result.tier_evaluation
        if isinstance(result, PurchaseResult):
            row.update(points_earned=str(result.points_earned),
                       points_applied=str(result.points_applied),
                       total_points=str(result.total_points))
        elif isinstance(result, RedemptionResult):
            row.update(points_applied=str(-result.points_required),
                       total_points=str(result.total_points))
        else:
            row["total_points"] = str(result.total_points)

        if evaluation is not None:
            row["transition"] = evaluation.transition.value
            if evaluation.eligible_tier is not None:
                row["tier"] = evaluation.eligible_tier.name
        return row
