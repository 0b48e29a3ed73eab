"""Error taxonomy shared by the store, the runner and the HTTP layer."""


class SchedulerError(Exception):
    pass


class ValidationError(SchedulerError):
    """Bad input to create/update: missing fields, bad cron, retry bounds."""


class NotFound(SchedulerError):
    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule '{schedule_id}' not found")
        self.schedule_id = schedule_id


class AlreadyRunning(SchedulerError):
    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule '{schedule_id}' is already running")
        self.schedule_id = schedule_id


class NotRunning(SchedulerError):
    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule '{schedule_id}' is not running")
        self.schedule_id = schedule_id


class ExternalFailure(SchedulerError):
    """A downstream API call made by a job body failed."""


class PersistenceFailure(SchedulerError):
    """A store write failed."""
