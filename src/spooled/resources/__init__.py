"""API resources consumed by the worker runtime."""

from spooled.resources.base import BaseResource
from spooled.resources.jobs import JobsResource
from spooled.resources.workers import WorkersResource

__all__ = ["BaseResource", "JobsResource", "WorkersResource"]
