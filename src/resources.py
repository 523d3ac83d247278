"""Declared resources and resource file loading.

A resource file declares the desired infrastructure as YAML:

    resources:
      - type: file
        name: ca
        config:
          path: /tmp/ca.pem
      - type: file
        name: leaf
        depends_on: [file.ca]
        config:
          path: /tmp/leaf.pem
    modules:
      - name: network
        resources:
          - type: noop
            name: gateway

Resources nested in modules get IDs prefixed with the module path
(module.network.noop.gateway). Dependency edges come from explicit
depends_on lists plus ${<resource id>...} references found in string
config values. References are only used to infer edges; they are handed
to providers unevaluated.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml

from common import validate_name
from config import ConfigError

logger = logging.getLogger(__name__)

# Resource statuses within one run
PENDING = 'pending'
CREATED = 'created'
FAILED = 'failed'
BLOCKED = 'blocked'

STATUSES = (PENDING, CREATED, FAILED, BLOCKED)

_REFERENCE_RE = re.compile(r'\$\{([^}]+)\}')


def make_id(type_name: str, name: str, module: str = '') -> str:
    """Compose a resource ID from module path, type and name."""
    if module:
        return f'module.{module}.{type_name}.{name}'
    return f'{type_name}.{name}'


@dataclass
class Resource:
    """A declared unit of desired infrastructure.

    Attributes:
        name: Resource name, unique per type within a module
        type: Resource kind, used to resolve a provider
        module: Dot-separated module path ('' for top-level)
        depends_on: IDs of resources this one depends on
        config: Type-specific attributes (opaque to the engine)
        outputs: Computed fields written by the bound provider
        checksum: Content-derived value for drift detection
        status: pending, created, failed or blocked
        source_file: File the resource was declared in
    """
    name: str
    type: str
    module: str = ''
    depends_on: list[str] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    checksum: Optional[str] = None
    status: str = PENDING
    source_file: Optional[str] = None

    def __post_init__(self):
        # depends_on is a set; keep declaration order for stable output
        self.depends_on = list(dict.fromkeys(self.depends_on))

    @property
    def id(self) -> str:
        return make_id(self.type, self.name, self.module)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        d: dict[str, Any] = {
            'id': self.id,
            'name': self.name,
            'type': self.type,
        }
        if self.module:
            d['module'] = self.module
        if self.depends_on:
            d['depends_on'] = list(self.depends_on)
        if self.config:
            d['config'] = copy.deepcopy(self.config)
        if self.outputs:
            d['outputs'] = copy.deepcopy(self.outputs)
        if self.checksum is not None:
            d['checksum'] = self.checksum
        if self.source_file is not None:
            d['source_file'] = self.source_file
        return d

    @classmethod
    def from_dict(cls, data: dict, module: str = '', source_file: Optional[str] = None) -> 'Resource':
        """Create Resource from a declaration dictionary.

        Raises:
            ConfigError: If required fields are missing or invalid
        """
        for key in ('type', 'name'):
            if key not in data:
                raise ConfigError(f"Resource missing required field: {key}")
        try:
            validate_name(str(data['name']))
        except ValueError as e:
            raise ConfigError(str(e))

        config = data.get('config') or {}
        if not isinstance(config, dict):
            raise ConfigError(f"Resource '{data['name']}' config must be a mapping")

        depends_on = data.get('depends_on') or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]

        return cls(
            name=str(data['name']),
            type=str(data['type']),
            module=data.get('module', module) or '',
            depends_on=[str(d) for d in depends_on],
            config=config,
            checksum=data.get('checksum'),
            source_file=data.get('source_file', source_file),
        )


class ResourceSet:
    """Ordered set of declared resources handed to the engine.

    Lookups are by resource ID. Duplicate IDs are kept so that graph
    construction can report them.
    """

    def __init__(self, resources: Optional[list[Resource]] = None, source: Optional[Path] = None):
        self._resources: list[Resource] = list(resources or [])
        self.source = source

    def add(self, resource: Resource) -> None:
        self._resources.append(resource)

    def get(self, resource_id: str) -> Resource:
        """Get a resource by ID.

        Raises:
            KeyError: If no resource has this ID
        """
        for resource in self._resources:
            if resource.id == resource_id:
                return resource
        raise KeyError(resource_id)

    @property
    def ids(self) -> list[str]:
        return [r.id for r in self._resources]

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.ids

    @classmethod
    def from_dict(cls, data: dict, registry=None, source: Optional[Path] = None) -> 'ResourceSet':
        """Build a ResourceSet from a parsed resource document.

        Args:
            data: Document with 'resources' and/or 'modules' lists
            registry: Optional ProviderRegistry; its zero-value defaults are
                laid under each declared config
            source: File the document was read from

        Raises:
            ConfigError: If the document is invalid
        """
        source_file = str(source) if source else None
        resources: list[Resource] = []
        _collect(data, '', source_file, resources)

        if registry is not None:
            for resource in resources:
                resource.config = registry.with_defaults(resource.type, resource.config)

        infer_dependencies(resources)
        return cls(resources, source=source)


def _collect(data: dict, module: str, source_file: Optional[str], out: list[Resource]) -> None:
    """Collect resources from a document or module block, recursing into modules."""
    for i, res_data in enumerate(data.get('resources') or []):
        if not isinstance(res_data, dict):
            raise ConfigError(f"Resource {i} in module '{module or '<root>'}' must be a mapping")
        out.append(Resource.from_dict(res_data, module=module, source_file=source_file))

    for i, mod_data in enumerate(data.get('modules') or []):
        if not isinstance(mod_data, dict) or 'name' not in mod_data:
            raise ConfigError(f"Module {i} in '{module or '<root>'}' missing required field: name")
        try:
            validate_name(str(mod_data['name']))
        except ValueError as e:
            raise ConfigError(str(e))
        path = f"{module}.{mod_data['name']}" if module else str(mod_data['name'])
        _collect(mod_data, path, source_file, out)


def _find_references(value: Any) -> Iterator[str]:
    """Yield every ${...} expression body found in nested string values."""
    if isinstance(value, str):
        yield from _REFERENCE_RE.findall(value)
    elif isinstance(value, dict):
        for v in value.values():
            yield from _find_references(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from _find_references(v)


def infer_dependencies(resources: list[Resource]) -> None:
    """Add edges for ${<resource id>.<field>} references in config values.

    A reference matches the longest known resource ID it starts with.
    Self references are ignored.
    """
    known = sorted({r.id for r in resources}, key=len, reverse=True)
    for resource in resources:
        for expr in _find_references(resource.config):
            expr = expr.strip()
            for rid in known:
                if rid != resource.id and (expr == rid or expr.startswith(rid + '.')):
                    if rid not in resource.depends_on:
                        logger.debug(f"Inferred dependency {resource.id} -> {rid}")
                        resource.depends_on.append(rid)
                    break


def load_resources(path: Path, registry=None) -> ResourceSet:
    """Load a resource file, or every *.yaml file in a directory.

    Raises:
        ConfigError: If a file is missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Resource file not found: {path}")

    files = sorted(path.glob('*.yaml')) + sorted(path.glob('*.yml')) if path.is_dir() else [path]
    if not files:
        raise ConfigError(f"No resource files found in {path}")

    combined: list[Resource] = []
    for file_path in files:
        try:
            with open(file_path, encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in resource file {file_path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Resource file {file_path} must be a YAML object (dict)")
        combined.extend(ResourceSet.from_dict(data, registry=registry, source=file_path))

    # Re-run inference across files so cross-file references become edges
    infer_dependencies(combined)
    logger.debug(f"Loaded {len(combined)} resources from {path}")
    return ResourceSet(combined, source=path)
