import time
from datetime import datetime
from typing import Dict

from pydantic import BaseModel, Field

from .models import BatchResult, SaveReport
from .storage import Workspace


class RunMetrics(BaseModel):
    run_id: str
    start_time: float
    end_time: float = 0.0
    total_files: int = 0
    failed_files: int = 0
    records: int = 0
    valid: int = 0
    invalid: int = 0
    duplicates: int = 0
    missing_references: int = 0
    saved: int = 0

    stage_times: Dict[str, float] = Field(default_factory=dict)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class Telemetry:
    def __init__(self, workspace: Workspace):
        self.workspace = workspace
        self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.metrics = RunMetrics(
            run_id=self.run_id,
            start_time=time.time()
        )
        self._starts: Dict[str, float] = {}

    def start_stage(self, stage_name: str):
        self._starts[stage_name] = time.time()

    def end_stage(self, stage_name: str):
        start = self._starts.pop(stage_name, None)
        if start:
            self.metrics.stage_times[stage_name] = time.time() - start

    def log_batch(self, result: BatchResult):
        m = self.metrics
        m.total_files += len(result.files)
        m.failed_files += len(result.errors)
        m.records += len(result.records)
        m.valid += result.validation.summary.valid
        m.invalid += result.validation.summary.invalid
        rec = result.reconciliation
        m.duplicates += len(rec.duplicates)
        m.missing_references += (
            len(rec.missing_customers) + len(rec.missing_orders) + len(rec.missing_field_staff)
        )

    def log_save(self, report: SaveReport):
        self.metrics.saved += len(report.saved_ids)

    def save(self):
        self.metrics.end_time = time.time()
        run_file = self.workspace.run_path(self.run_id)
        with open(run_file, "w") as f:
            f.write(self.metrics.model_dump_json(indent=2))
        return run_file
