# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT

from abc import ABC
from abc import abstractmethod
from typing import Any

from ..config import Config
from ..jobspec import JobSpec


class BatchScheduler(ABC):
    """Backend that prepares a cluster-side batch scheduler for the pods of a job"""

    name = "<backend>"

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    @staticmethod
    @abstractmethod
    def matches(name: str | None) -> bool:
        """Is this the backend for ``name``?"""

    def get_from_config(self, key: str, default: Any = None) -> Any:
        """``scheduler:<name>:<key>``, falling back to ``scheduler:<key>`` and then ``default``"""
        options = self.config.scheduler_options(self.name)
        if options.get(key) is not None:
            return options[key]
        value = self.config.get(f"scheduler:{key}")
        return default if value is None else value

    @property
    def scheduler_name(self) -> str:
        """Value of ``spec.schedulerName`` for pods placed by this backend"""
        return self.get_from_config("scheduler_name", self.name)

    @abstractmethod
    def should_schedule(self, job: JobSpec) -> bool:
        """Does ``job`` take part in batch scheduling?  Must not have side effects."""

    @abstractmethod
    def do_batch_scheduling(self, job: JobSpec) -> JobSpec:
        """Prepare the batch scheduler for ``job`` and return the annotated copy of ``job``.

        ``job`` itself is left unchanged, also when an exception is raised.
        """
