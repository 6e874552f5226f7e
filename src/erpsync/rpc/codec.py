"""
Value codec for the XML-RPC wire protocol.

Converts native Python values to tagged wire values and XML fragments,
and parses request/response documents back into wire values. Pure
functions, no I/O.

Wire grammar:
    <int>, <i4>, <i8>      signed integers (only <int> is emitted)
    <double>               floating point
    <boolean>              1 / 0
    <string>               escaped text
    <nil/>                 null
    <array><data><value>...</value>...</data></array>
    <struct><member><name>N</name><value>...</value></member>...</struct>
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple, Union

from ..core.exceptions import MalformedResponseError, ProtocolFault


logger = logging.getLogger(__name__)

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

_XML_ESCAPES = [
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
    # parsers normalize a literal CR to LF
    ("\r", "&#13;"),
]

# Characters XML 1.0 cannot carry, even as character references
_ILLEGAL_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff\ud800-\udfff]")


@dataclass(frozen=True)
class WireNull:
    pass


@dataclass(frozen=True)
class WireInt:
    value: int


@dataclass(frozen=True)
class WireDouble:
    value: float


@dataclass(frozen=True)
class WireBool:
    value: bool


@dataclass(frozen=True)
class WireString:
    value: str


@dataclass(frozen=True)
class WireArray:
    items: Tuple["WireValue", ...] = ()


@dataclass(frozen=True)
class WireStruct:
    """Ordered list of (name, value) members."""
    members: Tuple[Tuple[str, "WireValue"], ...] = ()

    def get(self, name: str) -> Optional["WireValue"]:
        for member_name, value in self.members:
            if member_name == name:
                return value
        return None


WireValue = Union[WireNull, WireInt, WireDouble, WireBool, WireString, WireArray, WireStruct]

WIRE_TYPES = (WireNull, WireInt, WireDouble, WireBool, WireString, WireArray, WireStruct)


def check_xml_text(text: str) -> str:
    """Return ``text`` unchanged, or raise ValueError if XML 1.0 cannot carry it."""
    illegal = _ILLEGAL_XML_CHARS.search(text)
    if illegal is not None:
        raise ValueError(
            f"Character {illegal.group()!r} at position {illegal.start()} "
            f"cannot be sent in an XML-RPC document"
        )
    return text


def escape_xml(text: str) -> str:
    """
    Escape the five reserved XML characters and carriage returns.

    Raises:
        ValueError: ``text`` holds a character XML 1.0 does not allow
    """
    check_xml_text(text)
    for char, entity in _XML_ESCAPES:
        text = text.replace(char, entity)
    return text


# ----------------------------------------------------------------------------
# Native <-> wire
# ----------------------------------------------------------------------------

def to_wire(value: Any) -> WireValue:
    """
    Convert a native Python value to a wire value.

    Unsupported types become WireNull (lossy, matching the permissive
    behaviour remote XML-RPC servers expect).
    """
    if isinstance(value, WIRE_TYPES):
        return value
    if value is None:
        return WireNull()
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return WireBool(value)
    if isinstance(value, int):
        if INT32_MIN <= value <= INT32_MAX:
            return WireInt(value)
        return WireDouble(float(value))
    if isinstance(value, float):
        return WireDouble(value)
    if isinstance(value, str):
        return WireString(check_xml_text(value))
    if isinstance(value, (list, tuple)):
        return WireArray(tuple(to_wire(item) for item in value))
    if isinstance(value, dict):
        return WireStruct(tuple(
            (check_xml_text(str(key)), to_wire(item)) for key, item in value.items()
        ))

    logger.debug(f"Unsupported type {type(value).__name__} encoded as nil")
    return WireNull()


def to_native(wire: WireValue) -> Any:
    """Convert a wire value to plain Python (dicts, lists and scalars)."""
    if isinstance(wire, WireNull):
        return None
    if isinstance(wire, (WireInt, WireDouble, WireBool, WireString)):
        return wire.value
    if isinstance(wire, WireArray):
        return [to_native(item) for item in wire.items]
    if isinstance(wire, WireStruct):
        return {name: to_native(value) for name, value in wire.members}
    raise TypeError(f"Not a wire value: {wire!r}")


# ----------------------------------------------------------------------------
# Encoding
# ----------------------------------------------------------------------------

def encode(value: Any) -> str:
    """
    Encode a native or wire value as a ``<value>`` XML fragment.

    Args:
        value: Native Python value or wire value

    Returns:
        XML fragment string
    """
    return f"<value>{_encode_typed(to_wire(value))}</value>"


def _encode_typed(wire: WireValue) -> str:
    if isinstance(wire, WireNull):
        return "<nil/>"
    if isinstance(wire, WireBool):
        return f"<boolean>{'1' if wire.value else '0'}</boolean>"
    if isinstance(wire, WireInt):
        if INT32_MIN <= wire.value <= INT32_MAX:
            return f"<int>{wire.value}</int>"
        return f"<double>{float(wire.value)!r}</double>"
    if isinstance(wire, WireDouble):
        return f"<double>{float(wire.value)!r}</double>"
    if isinstance(wire, WireString):
        return f"<string>{escape_xml(wire.value)}</string>"
    if isinstance(wire, WireArray):
        inner = "".join(encode(item) for item in wire.items)
        return f"<array><data>{inner}</data></array>"
    if isinstance(wire, WireStruct):
        inner = "".join(
            f"<member><name>{escape_xml(name)}</name>{encode(value)}</member>"
            for name, value in wire.members
        )
        return f"<struct>{inner}</struct>"
    raise TypeError(f"Not a wire value: {wire!r}")


def build_request(method_name: str, params: Sequence[Any]) -> str:
    """
    Build a ``methodCall`` document.

    Args:
        method_name: Remote method to invoke
        params: Positional arguments (native or wire values)

    Returns:
        Complete XML request document
    """
    param_xml = "".join(f"<param>{encode(param)}</param>" for param in params)
    return (
        '<?xml version="1.0"?>'
        "<methodCall>"
        f"<methodName>{escape_xml(method_name)}</methodName>"
        f"<params>{param_xml}</params>"
        "</methodCall>"
    )


# ----------------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------------

def decode(element: ET.Element) -> WireValue:
    """
    Decode a parsed ``<value>`` element into a wire value.

    A ``<value>`` without a type element is a string. Structs always
    decode to WireStruct, including single-member ones.

    Raises:
        MalformedResponseError: unknown tag or ungrammatical content
    """
    if element.tag != "value":
        raise MalformedResponseError(f"Expected <value>, got <{element.tag}>")

    children = list(element)
    if not children:
        return WireString(element.text or "")
    if len(children) > 1:
        raise MalformedResponseError("<value> must contain exactly one type element")

    typed = children[0]
    tag = typed.tag
    text = typed.text or ""

    if tag in ("int", "i4", "i8"):
        try:
            return WireInt(int(text.strip()))
        except ValueError:
            raise MalformedResponseError(f"Invalid integer: {text!r}")
    if tag == "double":
        try:
            return WireDouble(float(text.strip()))
        except ValueError:
            raise MalformedResponseError(f"Invalid double: {text!r}")
    if tag == "boolean":
        flag = text.strip()
        if flag not in ("0", "1"):
            raise MalformedResponseError(f"Invalid boolean: {text!r}")
        return WireBool(flag == "1")
    if tag == "string":
        return WireString(text)
    if tag == "nil":
        return WireNull()
    if tag == "array":
        data = typed.find("data")
        if data is None:
            raise MalformedResponseError("<array> without <data>")
        return WireArray(tuple(decode(item) for item in data.findall("value")))
    if tag == "struct":
        return WireStruct(tuple(_decode_members(typed.findall("member"))))

    raise MalformedResponseError(f"Unsupported value tag: <{tag}>")


def _decode_members(members: Iterable[ET.Element]):
    for member in members:
        name = member.find("name")
        value = member.find("value")
        if name is None or value is None:
            raise MalformedResponseError("<member> requires <name> and <value>")
        yield (name.text or "", decode(value))


def decode_fragment(fragment: Union[str, bytes]) -> WireValue:
    """Parse and decode a standalone ``<value>`` fragment."""
    return decode(_parse_xml(fragment))


def parse_response(document: Union[str, bytes]) -> WireValue:
    """
    Parse a ``methodResponse`` document.

    Returns:
        The single returned wire value

    Raises:
        ProtocolFault: the response is a fault envelope
        MalformedResponseError: neither a fault nor params/param/value,
            or not well-formed XML
    """
    root = _parse_xml(document)
    if root.tag != "methodResponse":
        raise MalformedResponseError(f"Expected <methodResponse>, got <{root.tag}>")

    fault = root.find("fault")
    if fault is not None:
        raise _fault_from_element(fault)

    value = root.find("params/param/value")
    if value is None:
        raise MalformedResponseError("Response has neither a fault nor params/param/value")
    return decode(value)


def parse_request(document: Union[str, bytes]) -> Tuple[str, list]:
    """
    Parse a ``methodCall`` document into (method name, native params).

    Used by in-process remotes that serve the protocol.
    """
    root = _parse_xml(document)
    if root.tag != "methodCall":
        raise MalformedResponseError(f"Expected <methodCall>, got <{root.tag}>")
    name = root.find("methodName")
    if name is None or not (name.text or "").strip():
        raise MalformedResponseError("<methodCall> without <methodName>")
    params = [to_native(decode(value)) for value in root.findall("params/param/value")]
    return name.text.strip(), params


def build_response(value: Any) -> str:
    """Build a success ``methodResponse`` document."""
    return (
        '<?xml version="1.0"?>'
        f"<methodResponse><params><param>{encode(value)}</param></params></methodResponse>"
    )


def build_fault(code: int, message: str) -> str:
    """Build a fault ``methodResponse`` document."""
    fault = {"faultCode": code, "faultString": message}
    return (
        '<?xml version="1.0"?>'
        f"<methodResponse><fault>{encode(fault)}</fault></methodResponse>"
    )


def _fault_from_element(fault: ET.Element) -> ProtocolFault:
    value = fault.find("value")
    if value is None:
        raise MalformedResponseError("<fault> without <value>")
    wire = decode(value)
    if not isinstance(wire, WireStruct):
        raise MalformedResponseError("Fault value must be a struct")

    code = wire.get("faultCode")
    message = wire.get("faultString")
    if code is None or message is None:
        raise MalformedResponseError("Fault requires faultCode and faultString")

    return ProtocolFault(to_native(code), str(to_native(message)))


def _parse_xml(document: Union[str, bytes]) -> ET.Element:
    try:
        return ET.fromstring(document)
    except ET.ParseError as e:
        raise MalformedResponseError(f"Response is not well-formed XML: {e}")
