# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import argparse
import json
import sys

import yaml

from ..config import Config

description = "Show the admission patch of a job's driver or executor pod"


def setup_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("job", help="Job document (yaml or json)")
    parser.add_argument("pod", help="Pod document (yaml or json), labeled with its role")
    parser.add_argument(
        "--apply",
        action="store_true",
        default=False,
        help="Print the patched pod instead of the patch",
    )


def execute(config: Config, args: argparse.Namespace) -> int:
    from .. import jobspec
    from .. import patch

    job = jobspec.read_job(args.job)
    with open(args.pod) as fh:
        pod = yaml.safe_load(fh)
    try:
        operations = patch.build_patches(pod, job)
    except patch.MalformedQuantityError as e:
        print(f"==> Error: {e}", file=sys.stderr)
        return 1
    if args.apply:
        yaml.dump(patch.apply_patches(pod, operations), sys.stdout, default_flow_style=False)
    else:
        json.dump(patch.patch_document(operations), sys.stdout, indent=2)
        sys.stdout.write("\n")
    return 0
