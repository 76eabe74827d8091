"""Browser control core: typed actions, execution and the service facade.

Import :class:`~control.service.BrowserControl` from ``control.service``; this
package module only re-exports the leaf modules so that the driver and the
registry can depend on :mod:`control.errors` without an import cycle.
"""

from .actions import ACTION_COSTS, Action, parse_action
from .errors import BrowserControlError

__all__ = ["ACTION_COSTS", "Action", "BrowserControlError", "parse_action"]
