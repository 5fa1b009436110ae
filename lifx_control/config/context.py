# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Configuration context."""

from typing import Optional, Dict, Any, TYPE_CHECKING, TextIO, Type, TypeVar, overload

from ..internal_types import Jsonable, JsonableDict
from ..exceptions import LifxConfigError

if TYPE_CHECKING:
  from .base import Config

import os
import json
from collections import UserDict
from copy import deepcopy
from string import Template

_Config = TypeVar('_Config', bound='Config')

class ConfigContext(UserDict):
  """Variables available for ${name} substitution in configuration text.

  Environment variables are available as ${env:NAME}. Once a configuration file is
  loaded, ${config_dir} names the directory that contains it.
  """

  def __init__(self, globals: Optional[Dict[str, Any]]=None, os_environ: Optional[Dict[str, str]]=None):
    super().__init__()
    if not globals is None:
      self.update(deepcopy(globals))
    if os_environ is None:
      os_environ = dict(os.environ)
    for k, v in os_environ.items():
      self[f"env:{k}"] = v

  def clone(self) -> 'ConfigContext':
    return deepcopy(self)

  def render_template_str(self, template_str: str) -> str:
    # string.Template identifiers cannot contain ':', so env lookups are matched with a custom pattern
    t = _ContextTemplate(template_str)
    try:
      result: str = t.substitute(self)
    except (KeyError, ValueError) as e:
      raise LifxConfigError(f"ConfigContext: unable to render configuration template: {e}") from e
    return result

  def render_template_json_data(self, template_json_data: Jsonable) -> Jsonable:
    template_str = json.dumps(template_json_data)
    json_text: str = self.render_template_str(template_str)
    result: Jsonable = json.loads(json_text)
    return result

  def push_config_file(self, config_file: Optional[str]) -> 'ConfigContext':
    ctx = self.clone()
    ctx.set_config_file(config_file)
    return ctx

  @property
  def config_file(self) -> Optional[str]:
    return self.get('config_file', None)

  def set_config_file(self, config_file: Optional[str]=None):
    if config_file is None:
      for propname in ['config_file','config_dir']:
        if propname in self:
          del self[propname]
    else:
      config_file = os.path.abspath(os.path.expanduser(config_file))
      self['config_file'] = config_file
      self['config_dir'] = os.path.dirname(config_file)

  @property
  def config_dir(self) -> Optional[str]:
    return self.get('config_dir', None)

  @overload
  def loads(self, s: str, required_type: Type[_Config]) -> _Config: ...
  @overload
  def loads(self, s: str) -> 'Config': ...
  def loads(self, s: str, required_type: Optional[Type['Config']]=None) -> 'Config':
    from .client_config import LifxControlConfig
    if required_type is None:
      required_type = LifxControlConfig
    try:
      data: Jsonable = json.loads(s)
    except json.JSONDecodeError as e:
      raise LifxConfigError(f"ConfigContext: configuration is not valid JSON: {e}") from e
    if not isinstance(data, dict):
      raise LifxConfigError(f"ConfigContext: expected json dict, got {type(data).__name__}")
    cfg = required_type()
    cfg.load_json_data(self, data)
    return cfg

  def load_stream(self, stream: TextIO, required_type: Optional[Type['Config']]=None) -> 'Config':
    s = stream.read()
    return self.loads(s, required_type=required_type)

  def load_file(self, config_file: str, required_type: Optional[Type['Config']]=None) -> 'Config':
    ctx = self.push_config_file(config_file)
    try:
      with open(config_file) as f:
        cfg = ctx.load_stream(f, required_type=required_type)
    except OSError as e:
      raise LifxConfigError(f"ConfigContext: unable to read configuration file {config_file}: {e}") from e
    return cfg

class _ContextTemplate(Template):
  idpattern = r'(?a:[_a-z][_a-z0-9]*(?::[_a-z0-9]+)?)'
