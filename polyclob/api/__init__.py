"""API modules for the polyclob client."""

from .base import AuthLevel, QueryParams, RequestDescriptor, RequestExecutor
from .clob import ClobAPI
from .gamma import GammaAPI
from .websocket import ChannelClient, ChannelKind, ChannelSubscription

__all__ = [
    "AuthLevel",
    "QueryParams",
    "RequestDescriptor",
    "RequestExecutor",
    "ClobAPI",
    "GammaAPI",
    "ChannelClient",
    "ChannelKind",
    "ChannelSubscription",
]
