"""
WebSub topic discovery for SensorThings API servers.

## Publisher

Wrap a SensorThings application so every response advertises the hub
and, for subscribeable resources, the canonical topic URL.

## Subscriber

Probe a topic URL for its hub.

"""

from . import agent
from .agent import *  # noqa
from . import framework
from .framework import *  # noqa
from . import sensorthings
from . import websub
from .response import (Status,  # noqa
                       OK, Created, NoContent,
                       BadRequest, Forbidden, NotFound, MethodNotAllowed,
                       Conflict, InternalServerError)

__all__ = ["sensorthings", "websub", "Status", "OK", "Created", "NoContent",
           "BadRequest", "Forbidden", "NotFound", "MethodNotAllowed",
           "Conflict", "InternalServerError"]
__all__ += agent.__all__ + framework.__all__
