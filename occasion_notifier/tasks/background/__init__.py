from .manual_run import run_occasion_task

__all__ = ["run_occasion_task"]
