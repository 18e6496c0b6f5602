# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import importlib
import logging

import pluggy

from . import hookspec

logger = logging.getLogger("gangsched.plugins")

# modules registered with every plugin manager, whether or not the distribution is installed
builtin_plugins = ("gangsched.scheduler.noop", "gangsched_podgroup")


class GangSchedPluginManager(pluggy.PluginManager):
    """Registry of batch scheduler backends.

    Backends come from three places, in this order: the ``gangsched`` entry point group of
    installed distributions, the builtin plugins and the ``config:plugins`` list.  A name given
    as ``no:<module>`` removes and blocks that plugin.
    """

    def __init__(self) -> None:
        super().__init__(hookspec.project_name)
        self.add_hookspecs(hookspec)
        self.load_setuptools_entrypoints(hookspec.project_name)
        for name in builtin_plugins:
            self.import_plugin(name)

    def consider_plugin(self, name: str) -> None:
        if not isinstance(name, str):
            raise TypeError(f"plugin must be given by its module name, got {name!r}")
        blocked = name.removeprefix("no:")
        if blocked != name:
            if self.get_plugin(blocked) is not None:
                self.unregister(name=blocked)
            self.set_blocked(blocked)
            return
        self.import_plugin(name)

    def import_plugin(self, name: str) -> None:
        if self.is_blocked(name) or self.get_plugin(name) is not None:
            return
        try:
            module = importlib.import_module(name)
        except ImportError as e:
            raise ImportError(f"Error importing plugin {name!r}: {e}") from e
        if self.is_registered(module):
            # entry points register the module under the entry point's name
            return
        logger.debug(f"registering plugin {name}")
        self.register(module, name)
