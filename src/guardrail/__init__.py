from .changes import CategoryRule, ChangeSet, detect
from .conditions import ALWAYS, NEVER, all_of, any_of, branch_is, event_is, flag, not_
from .context import CategoryFlags, TriggerContext, TriggerEvent
from .dsl import JobBuilder, build, category, job, matrix, sh, wf
from .model import Job, JobResult, JobState, RunReport, Step, StepOutcome, Verdict, VerdictPolicy, Workflow
from .report import aggregate
from .runner import load_workflow, run_dag, run_workflow

__version__ = "0.1.0"

__all__ = [
    "ALWAYS",
    "NEVER",
    "CategoryFlags",
    "CategoryRule",
    "ChangeSet",
    "Job",
    "JobBuilder",
    "JobResult",
    "JobState",
    "RunReport",
    "Step",
    "StepOutcome",
    "TriggerContext",
    "TriggerEvent",
    "Verdict",
    "VerdictPolicy",
    "Workflow",
    "aggregate",
    "all_of",
    "any_of",
    "branch_is",
    "build",
    "category",
    "detect",
    "event_is",
    "flag",
    "job",
    "load_workflow",
    "matrix",
    "not_",
    "run_dag",
    "run_workflow",
    "sh",
    "wf",
]
