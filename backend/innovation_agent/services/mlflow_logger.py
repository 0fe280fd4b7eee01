import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import mlflow
from configs.config import Config

SCORE_AXES = ("feasibility_score", "sustainability_score", "innovation_score")


class MLFlowLogger:
    """Records model round trips and submission outcomes as MLflow runs.

    Every call is a no-op when no tracking URI is configured, and tracking
    failures are logged rather than raised so they never break a submission.
    """

    _logger = logging.getLogger("MLFlowLogger")

    def __init__(self, tracking_uri: Optional[str] = None, experiment_name: Optional[str] = None):
        self._initialized = False
        self.tracking_uri = tracking_uri or Config.MLFLOW_TRACKING_URI
        self.experiment_name = experiment_name or Config.MLFLOW_EXPERIMENT
        if not self.tracking_uri:
            return

        try:
            mlflow.set_tracking_uri(self.tracking_uri)
            mlflow.set_experiment(self.experiment_name)
            self._initialized = True
        except Exception as e:
            self._logger.error(f"MLFlow initialization failed: {str(e)}")

    @property
    def enabled(self) -> bool:
        return self._initialized

    @staticmethod
    def _run_name(kind: str, key: str) -> str:
        return f"{kind}_{key}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    @contextmanager
    def _run(self, run_name: str) -> Iterator[bool]:
        """Open a run for the block; yields False when tracking is off or the run failed to start."""
        if not self._initialized:
            yield False
            return

        try:
            run = mlflow.start_run(run_name=run_name)
        except Exception as e:
            self._logger.error(f"Failed to start run {run_name}: {str(e)}")
            yield False
            return

        try:
            yield True
        except Exception as e:
            self._logger.error(f"Failed to log run {run.info.run_id}: {str(e)}")
        finally:
            try:
                mlflow.end_run()
            except Exception as e:
                self._logger.error(f"Failed to end run: {str(e)}")

    def log_generation(self, prompt: Dict, response: str, metadata: Optional[Dict] = None) -> None:
        """Log one round trip to the solution model."""
        with self._run(self._run_name("Generation", "llm")) as active:
            if not active:
                return
            mlflow.log_dict(prompt, "llm_prompt.json")
            mlflow.log_text(response, "llm_response.txt")
            if metadata:
                mlflow.log_dict(metadata, "llm_metadata.json")
            mlflow.set_tag("type", "llm_interaction")

    def log_submission(self, problem_id: str, outcome: Dict[str, Any]) -> None:
        """Record the outcome of one pipeline run with mean scores per axis."""
        with self._run(self._run_name("Submission", problem_id)) as active:
            if not active:
                return
            solutions = outcome.get("solutions") or []
            mlflow.log_param("problem_id", problem_id)
            mlflow.log_param("source", outcome.get("source") or "none")
            mlflow.log_metric("solutions_count", len(solutions))
            for axis in SCORE_AXES:
                if solutions:
                    mlflow.log_metric(f"mean_{axis}", sum(s[axis] for s in solutions) / len(solutions))
            mlflow.log_dict(outcome, f"submission_{problem_id}.json")
            mlflow.set_tag("type", "submission")
            mlflow.set_tag("status", "success" if outcome.get("success") else "failure")

    async def alog_generation(self, prompt: Dict, response: str, metadata: Optional[Dict] = None) -> None:
        """``log_generation`` on a worker thread so the event loop keeps serving."""
        if self._initialized:
            await asyncio.to_thread(self.log_generation, prompt, response, metadata)

    async def alog_submission(self, problem_id: str, outcome: Dict[str, Any]) -> None:
        if self._initialized:
            await asyncio.to_thread(self.log_submission, problem_id, outcome)
