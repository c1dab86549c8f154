# read version from installed package
from importlib.metadata import version
from loguru import logger

from nmclient.client import Client
from nmclient.context import Context
from nmclient.model.target import Target, Credentials, Protocol
from nmclient.model.path import Path, PathElem
from nmclient.model.operation import Scope, MergePolicy, Encoding, Sample, OnChange, Edit
from nmclient.model.result import Result, Source
from nmclient.model.capabilities import Capabilities, Datastore
from nmclient.model.event import OperationEvent
from nmclient.session.subscription import Subscription, StreamState
from nmclient.tools.exceptions import (ErrorKind, NmclientError, ConnectError, TLSError, OperationTimeout,
                                       NegotiationError, UnsupportedError, NodeNotFoundError,
                                       ServerRejectedError, ClosedError, SubscriptionOverflow,
                                       OperationCancelled, DecodeError)

__version__ = version("nmclient")

# disable logger
# the user can enable the logger later
logger.disable("nmclient")
