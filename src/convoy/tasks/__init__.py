"""
Convoy Tasks Module

Request/response types of the task state machine and the per-task
``with``/``and`` logic blocks.
"""

from convoy.tasks.fields import Field
from convoy.tasks.request import TaskRequest, TaskRequestType, SudoDetails
from convoy.tasks.response import TaskResponse, TaskStatus

__all__ = [
    'Field',
    'TaskRequest',
    'TaskRequestType',
    'SudoDetails',
    'TaskResponse',
    'TaskStatus',
]
