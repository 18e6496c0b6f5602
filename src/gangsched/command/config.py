import argparse
import sys

import yaml

from ..config import Config

description = "Show, get, and set config values"


def setup_parser(parser: argparse.ArgumentParser) -> None:
    parent = parser.add_subparsers(dest="subcommand", required=True)
    p = parent.add_parser("show", help="Print the merged configuration")
    p.add_argument("--scope", default=None, help="Print only the settings of this scope")
    p = parent.add_parser("get", help="Print a single setting")
    p.add_argument("path", help="colon-separated path to the setting, e.g. 'scheduler:retries'")
    p = parent.add_parser("add", help="Add settings to a configuration file")
    p.add_argument(
        "--scope",
        choices=("site", "global", "local"),
        default="local",
        help="Add settings to this config scope [default: %(default)s]",
    )
    p.add_argument(
        "add_config_paths",
        nargs="+",
        metavar="path",
        help="colon-separated path to config that should be set, e.g. 'scheduler:retries:5'",
    )


def execute(config: Config, args: argparse.Namespace) -> int:
    if args.subcommand == "show":
        config.dump(sys.stdout, scope=args.scope, default_flow_style=False)
    elif args.subcommand == "get":
        value, scope = config.get_highest_priority(args.path)
        yaml.dump({args.path: value}, sys.stdout, default_flow_style=False)
        print(f"# from scope {scope}")
    elif args.subcommand == "add":
        for path in args.add_config_paths:
            config.add(path, scope=args.scope)
    return 0
