#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Union, Any, TypeVar, Tuple, overload,
    Callable, Iterable, Iterator, Generator, cast, TYPE_CHECKING,
    Mapping, MutableMapping, Awaitable, Set, Sequence, AsyncIterator,
    AsyncIterable, AsyncContextManager, Coroutine, Generic,
  )

from types import TracebackType

from typing_extensions import Self

JsonableTypes = ( str, int, float, bool, dict, list )
# A tuple of types to use for isinstance checking of JSON-serializable types. Excludes None. Useful for isinstance.

if TYPE_CHECKING:
    Jsonable = Union[str, int, float, bool, None, Dict[str, 'Jsonable'], List['Jsonable']]
    """A Type hint for a simple JSON-serializable value; i.e., str, int, float, bool, None, Dict[str, Jsonable], List[Jsonable]"""
else:
    Jsonable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]

JsonableDict = Dict[str, Jsonable]
"""A type hint for a simple JSON-serializable dict; i.e., Dict[str, Jsonable]"""

HostAndPort = Tuple[str, int]
"""A type hint for a (host, port) tuple as used by socket addresses"""

HeaderValue = Union[str, int, float, bool]
"""A type hint for a value that may be placed in an SSDP or HTTP header"""

NullableHeaderValue = Optional[HeaderValue]
