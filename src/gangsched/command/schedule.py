# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import argparse
import sys

import yaml

from ..config import Config

description = "Hand a job to its batch scheduler and print the annotated job"


def setup_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("job", help="Job document (yaml or json)")
    parser.add_argument(
        "--scheduler",
        default=None,
        help="Batch scheduler to use instead of the one named by the job",
    )
    parser.add_argument(
        "--dryrun",
        action="store_true",
        default=False,
        help="Print the resources the job requests but do not contact the cluster",
    )


def execute(config: Config, args: argparse.Namespace) -> int:
    from .. import jobspec
    from .. import resources
    from ..scheduler import BatchSchedulerManager
    from ..scheduler import prepare_submission

    job = jobspec.read_job(args.job)
    if args.scheduler:
        job = job.with_updates(batch_scheduler=args.scheduler)
    if args.dryrun:
        driver = resources.driver_request(job)
        executor = resources.executor_request(job)
        data = {
            "job": f"{job.namespace}/{job.name}",
            "mode": job.mode,
            "batchScheduler": job.batch_scheduler or config.get("scheduler:default"),
            "driver": driver.to_dict(),
            "executor": executor.to_dict(),
            "total": (driver + executor).to_dict(),
        }
        yaml.dump(data, sys.stdout, default_flow_style=False)
        return 0
    manager = BatchSchedulerManager(config)
    job = prepare_submission(job, manager)
    yaml.dump(jobspec.dump(job), sys.stdout, default_flow_style=False)
    return 0
