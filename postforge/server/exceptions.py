# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Custom exception classes for server API error handling."""


class JobNotFoundError(Exception):
    """Raised when a job ID doesn't exist.

    HTTP Status: 404 Not Found
    """

    def __init__(self, job_id: str):
        """Initialize JobNotFoundError.

        Args:
            job_id: ID of the missing job.
        """
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ScheduleNotFoundError(Exception):
    """Raised when a schedule ID doesn't exist.

    HTTP Status: 404 Not Found
    """

    def __init__(self, schedule_id: str):
        """Initialize ScheduleNotFoundError.

        Args:
            schedule_id: ID of the missing schedule.
        """
        self.schedule_id = schedule_id
        super().__init__(f"Schedule not found: {schedule_id}")


class InvalidStateError(Exception):
    """Raised when a job operation is invalid for its current state.

    HTTP Status: 422 Unprocessable Entity
    """

    def __init__(
        self,
        message: str,
        job_id: str,
        current_status: str | None = None,
    ):
        """Initialize InvalidStateError.

        Args:
            message: Error message describing the invalid operation.
            job_id: ID of the job.
            current_status: Current job status (optional).
        """
        self.job_id = job_id
        self.current_status = current_status
        super().__init__(message)
