from trust_safety.scheduler.main import SweepResult, run_sweep, scheduler_loop

__all__ = [
    "SweepResult",
    "run_sweep",
    "scheduler_loop",
]
