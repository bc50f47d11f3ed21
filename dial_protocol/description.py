#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The DIAL description documents:

  1. The UPnP device description served by a DIAL server at /ssdp/device-desc.xml, and
  2. The DIAL application description served at /apps/<name>.

Both are rendered from, and parsed into, the same structured fields, so that a controller
reads back exactly what a server wrote.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape as xml_escape, quoteattr as xml_quoteattr

from dial_protocol.internal_types import *
from .constants import (
    DIAL_DEVICE_TYPE,
    DIAL_SERVICE_TYPE,
    DIAL_SERVICE_ID,
    DIAL_APP_NAMESPACE,
    DIAL_VERSION,
    UPNP_DEVICE_NAMESPACE,
    NOT_FOUND_PATH,
  )
from .exceptions import DocumentParseError

class Icon:
    """An icon entry in a device description."""

    mimetype: str
    width: int
    height: int
    depth: int
    url: str

    def __init__(self, mimetype: str="image/png", width: int=144, height: int=144, depth: int=32, url: str="/img/icon.png"):
        self.mimetype = mimetype
        self.width = int(width)
        self.height = int(height)
        self.depth = int(depth)
        self.url = url

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Icon):
            return False
        return ((self.mimetype, self.width, self.height, self.depth, self.url) ==
                (other.mimetype, other.width, other.height, other.depth, other.url))

    def __str__(self) -> str:
        return f"Icon({self.mimetype}, {self.width}x{self.height}x{self.depth}, {self.url})"

    def __repr__(self) -> str:
        return str(self)

DEFAULT_ICON = Icon()
"""The icon advertised by a DIAL server when none is configured."""

class Device:
    """The identity of a DIAL receiver. Instances are not modified after construction."""

    uuid: str
    """The stable unique id of the device, without the "uuid:" prefix"""

    friendly_name: str
    manufacturer: str
    model_name: str

    description_url: Optional[str]
    """The URL of the device description document, if known"""

    application_url: Optional[str]
    """The DIAL application base URL (the Application-URL header), if known"""

    icons: Tuple[Icon, ...]

    def __init__(
            self,
            uuid: str,
            friendly_name: str,
            manufacturer: str,
            model_name: str,
            description_url: Optional[str]=None,
            application_url: Optional[str]=None,
            icons: Optional[Iterable[Icon]]=None,
          ) -> None:
        self.uuid = uuid
        self.friendly_name = friendly_name
        self.manufacturer = manufacturer
        self.model_name = model_name
        self.description_url = description_url
        self.application_url = application_url
        self.icons = (DEFAULT_ICON,) if icons is None else tuple(icons)

    @property
    def udn(self) -> str:
        """The Unique Device Name; e.g., "uuid:1234-..." """
        return f"uuid:{self.uuid}"

    def __str__(self) -> str:
        return f"Device(uuid={self.uuid}, friendly_name={self.friendly_name!r}, manufacturer={self.manufacturer!r}, model_name={self.model_name!r})"

    def __repr__(self) -> str:
        return str(self)

class DeviceDescription:
    """The fields parsed out of a device description document."""

    device_type: Optional[str] = None
    friendly_name: Optional[str] = None
    manufacturer: Optional[str] = None
    model_name: Optional[str] = None
    udn: Optional[str] = None
    url_base: Optional[str] = None
    icons: List[Icon]
    extra: Dict[str, str]
    """Other simple child elements of <device>, by local tag name. Elements with children are dropped."""

    def __init__(self) -> None:
        self.icons = []
        self.extra = {}

    @property
    def uuid(self) -> Optional[str]:
        """The UDN with any "uuid:" prefix removed."""
        if self.udn is None:
            return None
        return self.udn[5:] if self.udn.startswith("uuid:") else self.udn

    def to_device(self, description_url: Optional[str]=None, application_url: Optional[str]=None) -> Device:
        return Device(
            uuid=self.uuid or "",
            friendly_name=self.friendly_name or "",
            manufacturer=self.manufacturer or "",
            model_name=self.model_name or "",
            description_url=description_url,
            application_url=application_url,
            icons=self.icons,
          )

# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_device_description(device: Device, url_base: str) -> str:
    """Renders the UPnP device description for a DIAL device. The service list contains a single
       placeholder DIAL service whose URLs all point at /ssdp/notfound, signalling that no
       additional UPnP services are offered."""
    icon_xml = "".join(
        "      <icon>\n"
        f"        <mimetype>{xml_escape(icon.mimetype)}</mimetype>\n"
        f"        <width>{icon.width}</width>\n"
        f"        <height>{icon.height}</height>\n"
        f"        <depth>{icon.depth}</depth>\n"
        f"        <url>{xml_escape(icon.url)}</url>\n"
        "      </icon>\n"
        for icon in device.icons
      )
    return f"""<?xml version="1.0"?>
<root xmlns="{UPNP_DEVICE_NAMESPACE}">
  <specVersion>
    <major>1</major>
    <minor>0</minor>
  </specVersion>
  <URLBase>{xml_escape(url_base)}</URLBase>
  <device>
    <deviceType>{DIAL_DEVICE_TYPE}</deviceType>
    <friendlyName>{xml_escape(device.friendly_name)}</friendlyName>
    <manufacturer>{xml_escape(device.manufacturer)}</manufacturer>
    <modelName>{xml_escape(device.model_name)}</modelName>
    <UDN>{xml_escape(device.udn)}</UDN>
    <iconList>
{icon_xml}    </iconList>
    <serviceList>
      <service>
        <serviceType>{DIAL_SERVICE_TYPE}</serviceType>
        <serviceId>{DIAL_SERVICE_ID}</serviceId>
        <controlURL>{NOT_FOUND_PATH}</controlURL>
        <eventSubURL>{NOT_FOUND_PATH}</eventSubURL>
        <SCPDURL>{NOT_FOUND_PATH}</SCPDURL>
      </service>
    </serviceList>
  </device>
</root>
"""

def render_app_description(
        name: str,
        state: str,
        allow_stop: bool,
        rel: Optional[str]="run",
        href: Optional[str]=None,
        additional_data: Optional[Mapping[str, str]]=None,
        namespaces: Optional[Mapping[str, str]]=None,
      ) -> str:
    """Renders a DIAL application description.

    Parameters:
        name:            The application name.
        state:           The application state ("stopped", "starting", "running", ...).
        allow_stop:      Rendered as the allowStop attribute of <options>.
        rel, href:       A <link rel=... href=...> element is rendered only if both are provided
                         and href is non-empty. href is normally the pid of the running instance.
        additional_data: If not None, an <additionalData> block with one element per entry (tag = key).
        namespaces:      One xmlns:<prefix>="<uri>" declaration is added to the root element per entry.
    """
    ns = "".join(f" xmlns:{prefix}={xml_quoteattr(uri)}" for prefix, uri in (namespaces or {}).items())
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<service xmlns="{DIAL_APP_NAMESPACE}"{ns} dialVer="{DIAL_VERSION}">\n'
        f'  <name>{xml_escape(name)}</name>\n'
        f'  <options allowStop="{"true" if allow_stop else "false"}"/>\n'
        f'  <state>{xml_escape(state)}</state>\n'
      )
    if rel and href:
        xml += f'  <link rel={xml_quoteattr(rel)} href={xml_quoteattr(href)} />\n'
    if additional_data is not None:
        xml += '  <additionalData>\n'
        for key, value in additional_data.items():
            xml += f'    <{key}>{xml_escape(str(value))}</{key}>\n'
        xml += '  </additionalData>\n'
    xml += '</service>\n'
    return xml

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def local_name(name: str) -> str:
    """Strips an XML namespace from a tag or attribute name, whether expanded ("{uri}tag")
       or prefixed ("prefix:tag")."""
    if name.startswith('{'):
        name = name[name.find('}') + 1:]
    return name[name.find(':') + 1:]

def _parse_root(text: Union[str, bytes]) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise DocumentParseError(f"Malformed XML document: {e}") from e

def _child_text(elem: ET.Element, tag: str) -> Optional[str]:
    for child in elem:
        if local_name(child.tag) == tag:
            return (child.text or "").strip()
    return None

def parse_device_description(text: Union[str, bytes]) -> DeviceDescription:
    """Parses a UPnP device description document.

    Raises DocumentParseError if the document is not well-formed XML or has no <root><device>.
    """
    root = _parse_root(text)
    if local_name(root.tag) != "root":
        raise DocumentParseError(f"Device description has unexpected root element <{local_name(root.tag)}>")
    result = DeviceDescription()
    result.url_base = _child_text(root, "URLBase")
    device_elem: Optional[ET.Element] = None
    for child in root:
        if local_name(child.tag) == "device":
            device_elem = child
            break
    if device_elem is None:
        raise DocumentParseError("Device description has no <device> element")

    for child in device_elem:
        tag = local_name(child.tag)
        value = (child.text or "").strip()
        if tag == "deviceType":
            result.device_type = value
        elif tag == "friendlyName":
            result.friendly_name = value
        elif tag == "manufacturer":
            result.manufacturer = value
        elif tag == "modelName":
            result.model_name = value
        elif tag == "UDN":
            result.udn = value
        elif tag == "iconList":
            for icon_elem in child:
                if local_name(icon_elem.tag) == "icon":
                    result.icons.append(_parse_icon(icon_elem))
        elif len(child) == 0:
            result.extra[tag] = value
    return result

def _parse_icon(elem: ET.Element) -> Icon:
    fields: Dict[str, str] = { local_name(c.tag): (c.text or "").strip() for c in elem }
    def int_field(name: str) -> int:
        try:
            return int(fields.get(name, "0"))
        except ValueError:
            return 0
    return Icon(
        mimetype=fields.get("mimetype", ""),
        width=int_field("width"),
        height=int_field("height"),
        depth=int_field("depth"),
        url=fields.get("url", ""),
      )

def _element_to_value(elem: ET.Element) -> Union[str, JsonableDict]:
    text = (elem.text or "").strip()
    if len(elem) == 0 and len(elem.attrib) == 0:
        return text
    result: JsonableDict = {}
    for attr_name, attr_value in elem.attrib.items():
        result[local_name(attr_name)] = attr_value
    _merge_children(result, elem)
    if text:
        result["_"] = text
    return result

def _merge_children(result: JsonableDict, elem: ET.Element) -> None:
    for child in elem:
        key = local_name(child.tag)
        value = _element_to_value(child)
        if key in result:
            existing = result[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[key] = [existing, value]
        else:
            result[key] = value

def parse_app_description(text: Union[str, bytes]) -> JsonableDict:
    """Parses a DIAL application description into a dict, with namespace prefixes stripped from
       all tag and attribute names.

    The root element is not included; its attributes and children become the keys of the result.
    Elements with only text become str values (whitespace trimmed); elements with attributes or
    children become dicts, with attributes merged in as keys and any text under "_". Repeated
    elements become lists. For example:

        {"dialVer": "1.7", "name": "YouTube", "options": {"allowStop": "true"},
         "state": "running", "link": {"rel": "run", "href": "42"}}

    Raises DocumentParseError if the document is not well-formed XML.
    """
    root = _parse_root(text)
    result: JsonableDict = {}
    for attr_name, attr_value in root.attrib.items():
        result[local_name(attr_name)] = attr_value
    _merge_children(result, root)
    return result
