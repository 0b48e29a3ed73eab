from scorecard_sync.models.schedule import JobExecution, Schedule

__all__ = ["JobExecution", "Schedule"]
