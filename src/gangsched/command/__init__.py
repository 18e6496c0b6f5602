"""
Overview
--------

`gangsched` prepares the pods of driver/executor jobs for gang scheduling.  It computes the
admission patch of a job's pods and creates the PodGroup that tells the batch scheduler how many
pods and how much resource a job needs before any of its pods is placed.

Configuration
-------------

The default behavior of `gangsched` can be changed by providing a yaml configuration file.  The
default configuration is:

.. code-block:: yaml

   gangsched:
     config:
       debug: false
       plugins: []  # additional plugin modules providing batch schedulers
     scheduler:
       enable: true  # hand jobs naming a batch scheduler to that scheduler
       default: null  # batch scheduler for jobs that do not name one
       retries: 3  # attempts to sync a PodGroup that is concurrently modified
       volcano:
         scheduler_name: volcano  # spec.schedulerName of gang scheduled pods
     kubernetes:
       kubeconfig: null
       context: null
       in_cluster: false
       request_timeout: null  # e.g. 30s

Configurations are read from:

1. Local configuration: ./gangsched.yaml
2. Global configuration [1]: ~/.config/gangsched.yaml
3. Site configuration [2]: sys.prefix/etc/gangsched/config.yaml

[1] The global configuration will be read from the GANGSCHED_GLOBAL_CONFIG environment variable, if set
[2] The site configuration will be read from the GANGSCHED_SITE_CONFIG environment variable, if set

Configuration settings can also be modified through the following environment variables:

* GANGSCHED_DEBUG
* GANGSCHED_PLUGINS
* GANGSCHED_SCHEDULER_ENABLE
* GANGSCHED_SCHEDULER_DEFAULT
* GANGSCHED_SCHEDULER_RETRIES
* GANGSCHED_KUBERNETES_KUBECONFIG
* GANGSCHED_KUBERNETES_CONTEXT
* GANGSCHED_KUBERNETES_IN_CLUSTER
* GANGSCHED_KUBERNETES_REQUEST_TIMEOUT

"""

import argparse
import sys
from types import ModuleType

from ..config import Config
from . import config
from . import patch
from . import schedule

_commands: dict[str, ModuleType] = {}


def main(argv: list[str] | None = None) -> int:
    parser = make_parser()
    args = parser.parse_args(argv or sys.argv[1:])
    if args.info:
        print(__doc__)
        return 0
    if args.command is None:
        parser.print_help()
        return 1

    module = _commands[args.command]
    cfg = Config()
    cfg.set_main_options(args)
    return module.execute(cfg, args) or 0


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--info", action="store_true", help="Show additional information and exit.")
    parser.add_argument(
        "-c",
        dest="config_mods",
        action="append",
        metavar="path",
        help="colon-separated path to config that should be set, e.g. 'scheduler:retries:5'",
    )
    subparsers = parser.add_subparsers(dest="command")
    add_command(subparsers, config)
    add_command(subparsers, patch)
    add_command(subparsers, schedule)
    return parser


def add_command(subparsers: argparse._SubParsersAction, module: ModuleType) -> None:
    name = module.__name__.split(".")[-1].lower()
    parser = subparsers.add_parser(
        name, add_help=getattr(module, "add_help", True), help=module.description
    )
    module.setup_parser(parser)
    _commands[name] = module
