# /hepnet/src/hepnet/preprocessing/core/pipeline_orchestrator.py

"""
PreprocessingPipeline: State Machine-Based Preprocessing Run

Runs one preprocessing task end to end: draws the training set from the
configured samples while maintaining the event-index ledger, fits and applies
the configured transformations, and writes everything the external network
trainer and later evaluation steps need.

Key Features:
- Explicit state machine; every stage transition is validated
- Stage timing and error history kept in the pipeline context
- Outputs: training table, ledger, transform module and its parameters,
  network description for the trainer, and a run summary

Architecture:
- Immutable pipeline context, replaced on every state transition
- Components (builder, transforms) created from PreprocessingConfig
- Failures are recorded, logged and re-raised as PipelineExecutionError
"""

import json
import logging
import traceback
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from .exceptions import HepnetError, StateError
from .sources import ReaderFactory
from .training_set import BuildResult, TrainingSetBuilder
from .transforms import Transform, create_transforms, fit_transform_chain, render_transform_module
from ..utils.logging import get_pipeline_logger, stage_logging

if TYPE_CHECKING:
    from ..config.preprocessing_config import PreprocessingConfig


class PipelineState(Enum):
    """Pipeline execution states."""
    INITIALIZED = "initialized"
    BUILDING_TRAINING_SET = "building_training_set"
    TRAINING_SET_BUILT = "training_set_built"
    FITTING_TRANSFORMS = "fitting_transforms"
    TRANSFORMS_FITTED = "transforms_fitted"
    WRITING_OUTPUTS = "writing_outputs"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineContext:
    """
    Immutable pipeline execution context.
    """
    pipeline_id: str
    task_name: str
    start_time: datetime
    current_state: PipelineState
    build_result: Optional[BuildResult] = None
    transforms: List[Transform] = field(default_factory=list)
    output_paths: Dict[str, str] = field(default_factory=dict)
    error_history: List[Dict[str, Any]] = field(default_factory=list)
    stage_durations: Dict[str, float] = field(default_factory=dict)

    def add_error(self, stage: str, error: Exception) -> None:
        self.error_history.append({
            'stage': stage,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc(),
            'timestamp': datetime.now().isoformat()
        })

    def transition_to(self, new_state: PipelineState, **changes) -> 'PipelineContext':
        """Create new context with state transition."""
        return replace(
            self,
            current_state=new_state,
            error_history=self.error_history.copy(),
            stage_durations=self.stage_durations.copy(),
            **changes
        )

    @property
    def total_duration(self) -> float:
        return (datetime.now() - self.start_time).total_seconds()


class PipelineStateMachine:
    """
    Allowed transitions between pipeline states.
    """

    VALID_TRANSITIONS = {
        PipelineState.INITIALIZED: [PipelineState.BUILDING_TRAINING_SET, PipelineState.FAILED],
        PipelineState.BUILDING_TRAINING_SET: [PipelineState.TRAINING_SET_BUILT, PipelineState.FAILED],
        PipelineState.TRAINING_SET_BUILT: [PipelineState.FITTING_TRANSFORMS, PipelineState.FAILED],
        PipelineState.FITTING_TRANSFORMS: [PipelineState.TRANSFORMS_FITTED, PipelineState.FAILED],
        PipelineState.TRANSFORMS_FITTED: [PipelineState.WRITING_OUTPUTS, PipelineState.FAILED],
        PipelineState.WRITING_OUTPUTS: [PipelineState.COMPLETED, PipelineState.FAILED],
        PipelineState.FAILED: [],
        PipelineState.COMPLETED: []  # Terminal state
    }

    @classmethod
    def validate_transition(cls, current_state: PipelineState,
                            new_state: PipelineState) -> bool:
        return new_state in cls.VALID_TRANSITIONS.get(current_state, [])


class PreprocessingPipeline:
    """
    Runs a preprocessing task described by a PreprocessingConfig.

    Examples:
        config = load_preprocessing_config("tth.yaml")
        results = PreprocessingPipeline(config).run()
        print(results['output_paths']['training_file'])
    """

    def __init__(self, config: 'PreprocessingConfig', open_reader: Optional[ReaderFactory] = None):
        """
        Initialize the pipeline.

        Args:
            config: PreprocessingConfig of the task
            open_reader: Factory returning a SampleReader for a sample (CSV files by default)
        """
        self.config = config
        self.open_reader = open_reader
        self.logger = logging.getLogger(__name__)
        self.pipeline_logger = get_pipeline_logger(__name__)
        self.state_machine = PipelineStateMachine()
        self.context: Optional[PipelineContext] = None

        self.output_dir = Path(config.output.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.logger.info("preprocessing_pipeline.initialized", extra={
            "task_name": config.task_name,
            "output_dir": str(self.output_dir),
            "preprocessing": list(config.input.preprocessing)
        })

    def run(self) -> Dict[str, Any]:
        """
        Execute all stages.

        Returns:
            Run summary (also written next to the outputs)

        Raises:
            PipelineExecutionError: If any stage fails; the cause is chained
        """
        pipeline_id = f"{self.config.task_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        context = PipelineContext(
            pipeline_id=pipeline_id,
            task_name=self.config.task_name,
            start_time=datetime.now(),
            current_state=PipelineState.INITIALIZED
        )
        self.context = context

        self.logger.info("pipeline.started", extra={"pipeline_id": pipeline_id})

        try:
            self.pipeline_logger.set_context(pipeline_id=pipeline_id, task_name=self.config.task_name)

            with stage_logging(self.pipeline_logger, "training_set_build"):
                context = self._execute_training_set_build(context)
            with stage_logging(self.pipeline_logger, "transform_fitting"):
                context = self._execute_transform_fitting(context)
            with stage_logging(self.pipeline_logger, "output_writing"):
                context = self._execute_output_writing(context)

            context = self._transition_state(context, PipelineState.COMPLETED)

            results = self._save_pipeline_results(context)
            self.pipeline_logger.log_performance_metrics()

            self.logger.info("pipeline.completed", extra={
                "pipeline_id": pipeline_id,
                "total_duration": context.total_duration,
                "n_events": len(context.build_result.training_set)
            })

            return results

        except Exception as e:
            # Stages transition on their own copies; the latest one names the failing stage
            context = self.context
            self.logger.error("pipeline.failed", extra={
                "pipeline_id": pipeline_id,
                "error": str(e),
                "current_state": context.current_state.value
            })

            context.add_error(context.current_state.value, e)
            if self.state_machine.validate_transition(context.current_state, PipelineState.FAILED):
                context = self._transition_state(context, PipelineState.FAILED)

            raise PipelineExecutionError(f"Pipeline {pipeline_id} failed: {e}", context) from e

    def _execute_training_set_build(self, context: PipelineContext) -> PipelineContext:
        context = self._transition_state(context, PipelineState.BUILDING_TRAINING_SET)
        self.pipeline_logger.start_timer("training_set_build")

        builder = TrainingSetBuilder(
            self.config.input.variables,
            reweighting=self.config.network.rescale_weights,
            rng=self.config.output.random_seed,
            open_reader=self.open_reader
        )

        build_result = builder.build(
            [sample.to_source() for sample in self.config.input.samples],
            ledger_path=self.config.ledger_path,
            extend_ledger=self.config.output.extend_ledger
        )

        self.pipeline_logger.increment_counter("events_sampled", len(build_result.training_set))
        context.stage_durations['training_set_build'] = self.pipeline_logger.stop_timer("training_set_build")
        return self._transition_state(context, PipelineState.TRAINING_SET_BUILT, build_result=build_result)

    def _execute_transform_fitting(self, context: PipelineContext) -> PipelineContext:
        context = self._transition_state(context, PipelineState.FITTING_TRANSFORMS)
        self.pipeline_logger.start_timer("transform_fitting")

        training_set = context.build_result.training_set
        transforms = create_transforms(
            self.config.input.preprocessing,
            training_set.n_features,
            self.config.input.transform_options()
        )
        fit_transform_chain(transforms, list(training_set))

        context.stage_durations['transform_fitting'] = self.pipeline_logger.stop_timer("transform_fitting")
        return self._transition_state(context, PipelineState.TRANSFORMS_FITTED, transforms=transforms)

    def _execute_output_writing(self, context: PipelineContext) -> PipelineContext:
        context = self._transition_state(context, PipelineState.WRITING_OUTPUTS)
        self.pipeline_logger.start_timer("output_writing")

        config = self.config
        training_set = context.build_result.training_set

        for path in (config.training_path, config.code_path, config.network_file_path):
            path.parent.mkdir(parents=True, exist_ok=True)

        training_set.write_csv(config.training_path)

        config.code_path.write_text(render_transform_module(
            context.transforms,
            f"Input transformations of task {config.task_name}.\n\n"
            f"Variables: {', '.join(config.input.variables)}"
        ))

        with open(config.parameters_path, 'w') as f:
            json.dump({
                'task_name': config.task_name,
                'variables': list(config.input.variables),
                'transforms': [transform.to_dict() for transform in context.transforms]
            }, f, indent=2)

        with open(config.network_file_path, 'w') as f:
            json.dump({
                'network_name': config.network_name,
                'architecture': config.network.architecture(training_set.n_features),
                'ensemble_size': config.network.ensemble_size,
                'burn_in': config.network.burn_in,
                'training_file': str(config.training_path),
                'n_events': len(training_set)
            }, f, indent=2)

        output_paths = {
            'training_file': str(config.training_path),
            'ledger_file': str(config.ledger_path),
            'code_file': str(config.code_path),
            'parameters_file': str(config.parameters_path),
            'network_file': str(config.network_file_path)
        }

        self.pipeline_logger.increment_counter("files_written", len(output_paths))
        context.stage_durations['output_writing'] = self.pipeline_logger.stop_timer("output_writing")
        return replace(context, output_paths=output_paths)

    def _transition_state(self, context: PipelineContext, new_state: PipelineState,
                          **changes) -> PipelineContext:
        if not self.state_machine.validate_transition(context.current_state, new_state):
            raise InvalidStateTransitionError(
                f"Invalid transition from {context.current_state.value} to {new_state.value}"
            )

        self.logger.debug("pipeline.state_transition", extra={
            "pipeline_id": context.pipeline_id,
            "from_state": context.current_state.value,
            "to_state": new_state.value
        })

        self.context = context.transition_to(new_state, **changes)
        return self.context

    def _save_pipeline_results(self, context: PipelineContext) -> Dict[str, Any]:
        build_result = context.build_result
        counts = build_result.training_set.class_counts()

        results = {
            'pipeline_id': context.pipeline_id,
            'task_name': context.task_name,
            'status': context.current_state.value,
            'completed_at': datetime.now().isoformat(),
            'total_duration': context.total_duration,
            'stage_durations': context.stage_durations,
            'n_events': len(build_result.training_set),
            'class_counts': {str(label): count for label, count in counts.items()},
            'reweighting_factors': {str(label): factor
                                    for label, factor in build_result.reweighting_factors.items()},
            'samples': [report.to_dict() for report in build_result.reports],
            'transforms': [transform.kind.value for transform in context.transforms],
            'output_paths': dict(context.output_paths)
        }

        summary_path = self.output_dir / f"{context.task_name}_summary.json"
        with open(summary_path, 'w') as f:
            json.dump(results, f, indent=2)
        results['output_paths']['summary_file'] = str(summary_path)

        return results


def create_preprocessing_pipeline(config_path: Union[str, Path], environment: str = "development",
                                  open_reader: Optional[ReaderFactory] = None) -> PreprocessingPipeline:
    """Load a task configuration and create its pipeline."""
    from ..config.preprocessing_config import load_preprocessing_config

    config = load_preprocessing_config(config_path, environment)
    return PreprocessingPipeline(config, open_reader=open_reader)


# Custom exceptions
class PipelineExecutionError(HepnetError):
    """A pipeline stage failed. The failing context is attached."""

    def __init__(self, message: str, context: Optional[PipelineContext] = None):
        super().__init__(message)
        self.context = context


class InvalidStateTransitionError(StateError):
    """Attempted a transition the pipeline state machine does not allow."""
