from .jobs import (
    CallbackOutcome,
    approve_review,
    cancel_job,
    complete_human_job,
    handle_callback,
    process_job,
    reject_review,
    retry_job,
    submit_job,
    sweep_stuck_jobs,
)

__all__ = [
    "CallbackOutcome",
    "approve_review",
    "cancel_job",
    "complete_human_job",
    "handle_callback",
    "process_job",
    "reject_review",
    "retry_job",
    "submit_job",
    "sweep_stuck_jobs",
]
