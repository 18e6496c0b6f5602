# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT

import os

from .cluster import AlreadyExistsError
from .cluster import ClusterAPI
from .cluster import ClusterAPIError
from .cluster import ConflictError
from .cluster import NotFoundError
from .config import Config
from .config import ConfigScope
from .hookspec import hookimpl
from .jobspec import JobSpec
from .jobspec import RoleSpec
from .logging import get_logger
from .patch import MalformedQuantityError
from .patch import PatchOperation
from .patch import build_patches
from .resources import ResourceVector
from .resources import aggregate
from .resources import request_vector
from .scheduler import BatchScheduler
from .scheduler import BatchSchedulerManager
from .scheduler import prepare_submission

__all__ = [
    "hookimpl",
    "AlreadyExistsError",
    "ClusterAPI",
    "ClusterAPIError",
    "ConflictError",
    "NotFoundError",
    "Config",
    "ConfigScope",
    "JobSpec",
    "RoleSpec",
    "get_logger",
    "MalformedQuantityError",
    "PatchOperation",
    "build_patches",
    "ResourceVector",
    "aggregate",
    "request_vector",
    "BatchScheduler",
    "BatchSchedulerManager",
    "prepare_submission",
]


def _initial_logging_setup(*, _ini_setup=[False]):
    from . import logging

    if _ini_setup[0]:
        return
    logging.configure_logging()
    if levelname := os.getenv("GANGSCHED_LOG_LEVEL"):
        logging.set_logging_level(levelname)
    else:
        logging.set_logging_level("INFO")
    if os.getenv("GANGSCHED_DEBUG", "no").lower() in ("yes", "true", "1", "on"):
        logging.set_logging_level("DEBUG")
    _ini_setup[0] = True


_initial_logging_setup()
