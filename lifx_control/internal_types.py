#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package.

Intended to be star-imported by modules in this package:

    from .internal_types import *
"""

from typing import (
    Dict, List, Optional, Union, Any, TypeVar, Tuple, overload, Callable, Awaitable,
    Iterable, Iterator, AsyncIterator, AsyncIterable, Mapping, MutableMapping, Sequence,
    Set, FrozenSet, Generic, Coroutine, Type, cast, AsyncContextManager, ContextManager,
    TYPE_CHECKING, ClassVar, TextIO,
  )

from types import TracebackType

from typing_extensions import Self

HostAndPort = Tuple[str, int]
"""A (host, port) socket address"""

JsonableTypes = (str, int, float, bool, dict, list)
# A tuple of types to use for isinstance checking of JSON-serializable types. Excludes None. Useful for isinstance.

Jsonable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A type hint for a simple JSON-serializable value; i.e., str, int, float, bool, None, Dict[str, Jsonable], List[Jsonable]"""

JsonableDict = Dict[str, Jsonable]
"""A type hint for a simple JSON-serializable dict; i.e., Dict[str, Jsonable]"""

