# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SSDP_MULTICAST_ADDRESS = "239.255.255.250"
"""The multicast address used by SSDP for UDP multicast."""

SSDP_PORT = 1900
"""The port number used by SSDP for UDP multicast."""

SSDP_DEFAULT_MAX_AGE = 1800
"""The default CACHE-CONTROL max-age (in seconds) of an SSDP advertisement."""

SSDP_DEFAULT_MX = 1
"""The default maximum wait time (in seconds) requested of responders in an M-SEARCH."""

SSDP_ALIVE = "ssdp:alive"
SSDP_BYEBYE = "ssdp:byebye"
SSDP_DISCOVER = '"ssdp:discover"'

NETWORK_INTERFACE_ADDRESS_PLACEHOLDER = "{{networkInterfaceAddress}}"
"""Placeholder in outbound header values that is replaced with the unicast IP address
   of the interface on which the datagram is sent."""

DIAL_SERVICE_TYPE = "urn:dial-multiscreen-org:service:dial:1"
"""The DIAL service type."""

DIAL_DEVICE_TYPE = "urn:dial-multiscreen-org:device:dial:1"
"""The DIAL device type."""

DIAL_SERVICE_ID = "urn:dial-multiscreen-org:serviceId:dial"

UPNP_ROOT_DEVICE = "upnp:rootdevice"
SSDP_ALL = "ssdp:all"

DIAL_APP_NAMESPACE = "urn:dial-multiscreen-org:schemas:dial"
"""The default XML namespace of a DIAL application description."""

DIAL_VERSION = "1.7"

UPNP_DEVICE_NAMESPACE = "urn:schemas-upnp-org:device-1-0"
"""The XML namespace of a UPnP device description."""

UPNP_CONFIG_ID = 7337
"""The fixed CONFIGID.UPNP.ORG value sent in search responses."""

UPNP_BOOT_ID = 7337
"""The fixed BOOTID.UPNP.ORG value sent in search responses."""

DEFAULT_MAX_CONTENT_LENGTH = 4096
"""The default, and minimum, maximum size in bytes of a request body accepted by the DIAL server."""

DEFAULT_LAUNCH_CONTENT_TYPE = 'text/plain; charset="utf-8"'
"""The Content-Type used for launch requests when none is given."""

DEVICE_DESC_PATH = "/ssdp/device-desc.xml"
NOT_FOUND_PATH = "/ssdp/notfound"
APPS_PATH = "/apps"
