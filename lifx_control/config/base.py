# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Configuration support.

A Config holds the raw ("template") JSON data it was loaded from, and the same data after
${name} substitution by a ConfigContext. Subclasses implement bake() to pull typed properties
out of the rendered data.
"""

from typing import Optional, Any, List, TypeVar, Union, overload

import json

from ..internal_types import Jsonable, JsonableDict, JsonableTypes
from ..exceptions import LifxConfigError
from .context import ConfigContext

_T = TypeVar('_T')

class Config:
  _template_json_data: Optional[JsonableDict] = None
  _json_data: Optional[JsonableDict] = None
  _context: Optional[ConfigContext] = None

  def __init__(self):
    pass

  def get_context(self) -> ConfigContext:
    result = self._context
    assert not result is None
    return result

  def bake(self):
    pass

  @property
  def config_file(self) -> Optional[str]:
    """The fully qualified pathname of the configuration file from which this Config
       originated, or None if not from a file"""
    if self._context is None:
      return None
    return self._context.config_file

  def render(self):
    rendered = self.get_context().render_template_json_data(self._template_json_data)
    if not isinstance(rendered, dict):
      raise LifxConfigError(f"Config: Expected rendered config data to be dict, got {type(rendered).__name__}")
    self._json_data = rendered

  def render_and_bake(self, context: ConfigContext):
    self._context = context.clone()
    self.render()
    self.bake()

  def loads(self, ctx: ConfigContext, config_text: str):
    data = json.loads(config_text)
    if not isinstance(data, dict):
      raise LifxConfigError(f"Config: Expected config data to be dict, got {type(data).__name__}")
    self._template_json_data = data
    self.render_and_bake(ctx)

  def load_json_data(self, ctx: ConfigContext, json_data: JsonableDict):
    config_text = json.dumps(json_data)
    self.loads(ctx, config_text)

  _no_default = object()

  @overload
  def get_cfg_property(self, key: str, default: _T) -> Union[Jsonable, _T]: pass

  @overload
  def get_cfg_property(self, key: str) -> Jsonable: pass

  def get_cfg_property(self, key: str, default = _no_default):
    if not isinstance(self._json_data, dict):
      raise LifxConfigError(f"Config: Expected config data {key} to be dict, got {type(self._json_data)}")
    result = self._json_data.get(key, default)
    if result is self._no_default:
      raise LifxConfigError(f"Config: Property {key} does not exist and has no default")
    if not result is None and result is not default and not isinstance(result, JsonableTypes):
      raise LifxConfigError(f"Config: Expected property {key} to be JSON-able, got {type(result)}")
    return result

  def get_cfg_property_str(self, key: str, default: Any=_no_default) -> str:
    result = self.get_cfg_property(key, default)
    if not isinstance(result, str):
      raise LifxConfigError(f"Config: Expected property {key} to be str, got {type(result)}")
    return result

  def get_cfg_property_int(self, key: str, default: Any=_no_default) -> int:
    result = self.get_cfg_property(key, default)
    if isinstance(result, str):
      try:
        result = int(result)
      except ValueError:
        pass
    if not isinstance(result, int) or isinstance(result, bool):
      raise LifxConfigError(f"Config: Expected property {key} to be int, got {type(result)}")
    return result

  def get_cfg_property_float(self, key: str, default: Any=_no_default) -> float:
    result = self.get_cfg_property(key, default)
    if isinstance(result, str):
      try:
        result = float(result)
      except ValueError:
        pass
    if not isinstance(result, (int, float)) or isinstance(result, bool):
      raise LifxConfigError(f"Config: Expected property {key} to be a number, got {type(result)}")
    return float(result)

  def get_cfg_property_list(self, key: str, default: Any=_no_default) -> List[Jsonable]:
    result = self.get_cfg_property(key, default)
    if not isinstance(result, list):
      raise LifxConfigError(f"Config: Expected property {key} to be list, got {type(result)}")
    return result
