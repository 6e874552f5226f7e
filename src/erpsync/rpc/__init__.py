"""
XML-RPC wire client: value codec, domain filters, transport and session.
"""

from .codec import (
    WireValue, WireNull, WireInt, WireDouble, WireBool, WireString,
    WireArray, WireStruct, encode, decode, decode_fragment,
    build_request, parse_response, to_wire, to_native,
)
from .domain import Predicate, And, Or, Not, Domain, all_of, date_range
from .transport import RpcTransport, XmlRpcTransport
from .session import RemoteSession
from .memory_remote import MemoryRemote, build_sample_dataset

__all__ = [
    "WireValue",
    "WireNull",
    "WireInt",
    "WireDouble",
    "WireBool",
    "WireString",
    "WireArray",
    "WireStruct",
    "encode",
    "decode",
    "decode_fragment",
    "build_request",
    "parse_response",
    "to_wire",
    "to_native",
    "Predicate",
    "And",
    "Or",
    "Not",
    "Domain",
    "all_of",
    "date_range",
    "RpcTransport",
    "XmlRpcTransport",
    "RemoteSession",
    "MemoryRemote",
    "build_sample_dataset",
]
