"""
Repository declarations, the runtime that executes them, and the registry.

A repository is declared as a subclass of ``Repository[E]`` whose query
methods carry a SQL template:

    class PlayerRepository(Repository[Player]):

        @query('SELECT * FROM players WHERE name = :name')
        def find_by_name(self, name: str) -> list[Player]: ...

        @query('DELETE FROM players WHERE name = :name')
        def delete_by_name(self, name: str) -> int: ...

At registration ``RepositoryRuntime`` parses every template once and builds a
dispatch table of method name to ``MethodBinding``. The registered instance is
a generated subclass whose query methods call ``RepositoryRuntime.invoke``:
one connection, one statement, then the result shaped by the method's return
annotation.
"""
import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar
from typing import get_args, get_origin, get_type_hints

from datacore.exceptions import DeclarationError, DriverError, ExecutionError
from datacore.exceptions import NotRegisteredError, SchemaSyncError
from datacore.materialize import ReturnShape, materialize, resolve_row_type
from datacore.materialize import resolve_shape
from datacore.query import QueryTemplate, bind, get_query, parse
from datacore.schema import SchemaSynchronizer
from datacore.sql import quote_identifier

if TYPE_CHECKING:
    from datacore.connection import ConnectionProvider
    from datacore.entity import DescriptorRegistry, EntityDescriptor
    from datacore.options import DatabaseOptions

logger = logging.getLogger(__name__)

__all__ = [
    'Repository',
    'MethodBinding',
    'RepositoryRuntime',
    'RepositoryRegistry',
]

E = TypeVar('E')


class Repository(Generic[E]):
    """Base class for repository declarations.

    The entity type is taken from the ``Repository[E]`` base. Registered
    instances also provide ``find_all``, ``find_by_id``, ``insert``,
    ``delete_by_id`` and ``count`` for the entity's table.
    """

    entity_type: ClassVar[type | None] = None
    _runtime: 'RepositoryRuntime'

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        for base in getattr(cls, '__orig_bases__', ()):
            if get_origin(base) is Repository:
                args = get_args(base)
                if args and isinstance(args[0], type):
                    cls.entity_type = args[0]

    def find_all(self) -> list[E]:
        return self._runtime.call_builtin('find_all', ())

    def find_by_id(self, key: Any) -> E | None:
        return self._runtime.call_builtin('find_by_id', (key,))

    def insert(self, entity: E) -> E:
        """Store one entity and return the stored row, generated values included.
        """
        return self._runtime.call_builtin('insert', (entity,))

    def delete_by_id(self, key: Any) -> int:
        return self._runtime.call_builtin('delete_by_id', (key,))

    def count(self) -> int:
        return self._runtime.call_builtin('count', ())


@dataclass(frozen=True)
class MethodBinding:
    """Everything needed to run one repository method."""
    name: str
    template: QueryTemplate
    signature: inspect.Signature
    shape: ReturnShape
    row_type: Any
    value_types: dict[str, Any] = field(default_factory=dict)

    def arguments(self, args: tuple, kwargs: dict) -> dict[str, Any]:
        """Map call arguments to parameter names, defaults applied.

        Raises
            TypeError: The arguments do not fit the declared signature
        """
        bound = self.signature.bind(*args, **kwargs)
        bound.apply_defaults()
        return dict(bound.arguments)


def _declared_signature(func: Any, qualname: str) -> tuple[inspect.Signature, dict[str, Any]]:
    """Signature without ``self`` and the resolved annotations.
    """
    signature = inspect.signature(func)
    params = list(signature.parameters.values())[1:]
    for param in params:
        if param.kind in {inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD}:
            raise DeclarationError(
                f'{qualname} takes *{param.name}; query parameters are bound by name')
    try:
        hints = get_type_hints(func)
    except (NameError, TypeError) as exc:
        raise DeclarationError(f'Cannot resolve annotations of {qualname}: {exc}') from exc
    return signature.replace(parameters=params), hints


def _unbound_method(name: str, qualname: str):
    def method(self, *args, **kwargs):
        raise DeclarationError(f'{qualname} has no query template')
    method.__name__ = name
    return method


def _query_method(name: str):
    def method(self, *args, **kwargs):
        return self._runtime.invoke(name, args, kwargs)
    method.__name__ = name
    return method


class RepositoryRuntime:
    """Dispatch table and executor for one repository type.
    """

    def __init__(self, repo_type: type, entity_type: type | None,
                 descriptor: 'EntityDescriptor | None', provider: 'ConnectionProvider') -> None:
        self.repo_type = repo_type
        self.entity_type = entity_type
        self.descriptor = descriptor
        self.provider = provider
        self.placeholder = provider.strategy.get_placeholder_style()
        self.bindings: dict[str, MethodBinding] = {}
        self.unbound: list[str] = []
        self._builtins: dict[str, MethodBinding] = {}
        self._collect()

    def _collect(self) -> None:
        """Bind every declared method.

        Public methods without a template, and abstract ones, are replaced by
        methods that raise DeclarationError. Underscore helpers are left alone.
        """
        for name, member in inspect.getmembers(self.repo_type, inspect.isfunction):
            if name in vars(Repository):
                continue
            qualname = f'{self.repo_type.__name__}.{name}'
            raw = get_query(member)
            if raw is None:
                if getattr(member, '__isabstractmethod__', False) or not name.startswith('_'):
                    self.unbound.append(name)
                    logger.debug(f'{qualname} has no query template')
                continue
            signature, hints = _declared_signature(member, qualname)
            annotation = hints.get('return', inspect.Signature.empty)
            self.bindings[name] = MethodBinding(
                name=name,
                template=parse(raw, self.placeholder),
                signature=signature,
                shape=resolve_shape(annotation, self.entity_type),
                row_type=resolve_row_type(annotation, self.entity_type),
                value_types={p: hints[p] for p in signature.parameters if p in hints},
            )
            logger.debug(f'Bound {qualname}: {len(self.bindings[name].template.parameter_names)} parameter(s)')

    def build(self) -> Repository:
        """Instantiate the generated implementation of the repository type.
        """
        namespace: dict[str, Any] = {'__module__': self.repo_type.__module__}
        for name in self.bindings:
            namespace[name] = _query_method(name)
        for name in self.unbound:
            namespace[name] = _unbound_method(name, f'{self.repo_type.__name__}.{name}')
        impl = type(self.repo_type)(self.repo_type.__name__, (self.repo_type,), namespace)
        instance = impl()
        instance._runtime = self
        return instance

    def invoke(self, name: str, args: tuple, kwargs: dict) -> Any:
        """Bind, execute and shape one repository method call.

        Raises
            ExecutionError: The driver rejected the statement
            ConnectionFailure: No connection could be acquired
        """
        binding = self.bindings[name]
        arguments = binding.arguments(args, kwargs)
        return self._run(binding, arguments)

    def _run(self, binding: MethodBinding, arguments: dict[str, Any]) -> Any:
        params = bind(binding.template.parameter_names, arguments, binding.value_types)
        try:
            with self.provider.acquire() as cn:
                result = cn.execute(binding.template.statement, params)
        except DriverError as exc:
            raise ExecutionError(f'{self.repo_type.__name__}.{binding.name} failed: {exc}') from exc
        return materialize(result.rows, binding.row_type, binding.shape,
                           result.rowcount, result.columns)

    def call_builtin(self, name: str, args: tuple) -> Any:
        if name == 'insert':
            binding, arguments = self._insert_binding(args[0])
            stored = self._run(binding, arguments)
            return args[0] if binding.shape is ReturnShape.ROWCOUNT else stored
        if name not in self._builtins:
            self._builtins[name] = self._builtin_binding(name)
        binding = self._builtins[name]
        return self._run(binding, binding.arguments(args, {}))

    def _require_descriptor(self, name: str) -> 'EntityDescriptor':
        if self.descriptor is None:
            raise DeclarationError(f'{self.repo_type.__name__}.{name} needs a persisted entity type')
        return self.descriptor

    def _binding(self, name: str, raw: str, params: list[str], shape: ReturnShape,
                 row_type: Any, value_types: dict[str, Any] | None = None) -> MethodBinding:
        signature = inspect.Signature([
            inspect.Parameter(p, inspect.Parameter.POSITIONAL_OR_KEYWORD) for p in params])
        return MethodBinding(name=name, template=parse(raw, self.placeholder),
                             signature=signature, shape=shape, row_type=row_type,
                             value_types=value_types or {})

    def _builtin_binding(self, name: str) -> MethodBinding:
        descriptor = self._require_descriptor(name)
        dialect = descriptor.dialect
        table = quote_identifier(descriptor.table_name, dialect)

        match name:
            case 'find_all':
                return self._binding(name, f'SELECT * FROM {table}', [],
                                     ReturnShape.LIST, self.entity_type)
            case 'count':
                return self._binding(name, f'SELECT COUNT(*) FROM {table}', [],
                                     ReturnShape.SCALAR, int)

        key = quote_identifier(descriptor.require_primary_key().name, dialect)
        match name:
            case 'find_by_id':
                return self._binding(name, f'SELECT * FROM {table} WHERE {key} = :key', ['key'],
                                     ReturnShape.OPTIONAL, self.entity_type)
            case 'delete_by_id':
                return self._binding(name, f'DELETE FROM {table} WHERE {key} = :key', ['key'],
                                     ReturnShape.ROWCOUNT, int)
        raise DeclarationError(f'Unknown built-in repository method: {name}')

    def _insert_binding(self, entity: Any) -> tuple[MethodBinding, dict[str, Any]]:
        """INSERT of every column with a value; generated columns left unset are skipped.
        """
        descriptor = self._require_descriptor('insert')
        dialect = descriptor.dialect
        table = quote_identifier(descriptor.table_name, dialect)

        names, values, value_types = [], {}, {}
        for col in descriptor.columns:
            value = getattr(entity, col.field_name, None)
            if col.is_generated and value is None:
                continue
            param = f'v{len(names)}'
            names.append(quote_identifier(col.name, dialect))
            values[param] = value
            value_types[param] = col.value_type

        if names:
            markers = ', '.join(f':{p}' for p in values)
            raw = f'INSERT INTO {table} ({", ".join(names)}) VALUES ({markers})'
        else:
            raw = f'INSERT INTO {table} DEFAULT VALUES'

        if self.provider.strategy.supports_returning():
            raw += ' RETURNING *'
            shape = ReturnShape.ENTITY
        else:
            shape = ReturnShape.ROWCOUNT

        binding = self._binding('insert', raw, list(values), shape, type(entity), value_types)
        return binding, values


class RepositoryRegistry:
    """Registered repository instances for one context.

    Registering a repository synchronizes its entity's table first, once per
    entity type. A failed synchronization is logged and registration goes on;
    later calls against a missing table fail at execution time.
    """

    def __init__(self, provider: 'ConnectionProvider', descriptors: 'DescriptorRegistry',
                 options: 'DatabaseOptions | None' = None) -> None:
        self.provider = provider
        self.descriptors = descriptors
        self.sync_schema = options.sync_schema if options is not None else True
        retries = options.sync_retries if options is not None else 1
        self.synchronizer = SchemaSynchronizer(provider, retries=retries)
        self._repositories: dict[type, Repository] = {}
        self._synced: set[type] = set()
        self._lock = threading.RLock()

    def register(self, repo_type: type, entity_type: type | None = None) -> Repository:
        """Synchronize, bind and store a repository type.

        Raises
            DeclarationError: The entity or a repository method is unusable
        """
        entity_type = entity_type or getattr(repo_type, 'entity_type', None)
        with self._lock:
            descriptor = self.descriptors.get(entity_type) if entity_type is not None else None
            if descriptor is not None:
                self._synchronize(descriptor)

            runtime = RepositoryRuntime(repo_type, entity_type, descriptor, self.provider)
            instance = runtime.build()
            self._repositories[repo_type] = instance
            logger.debug(f'Registered {repo_type.__name__} with {len(runtime.bindings)} query method(s)')
            return instance

    def _synchronize(self, descriptor: 'EntityDescriptor') -> None:
        entity_type = descriptor.entity_type
        if not self.sync_schema or entity_type in self._synced:
            return
        try:
            self.synchronizer.sync(descriptor)
        except SchemaSyncError:
            logger.exception(f'Schema synchronization failed for {descriptor.table_name}, '
                             f'registering {entity_type.__name__} anyway')
            return
        self._synced.add(entity_type)

    def get(self, repo_type: type) -> Repository:
        """Registered instance for a repository type.

        Raises
            NotRegisteredError: Nothing is registered for the type
        """
        try:
            return self._repositories[repo_type]
        except KeyError:
            raise NotRegisteredError(f'{repo_type.__name__} is not registered') from None

    def find(self, repo_type: type) -> Repository | None:
        return self._repositories.get(repo_type)

    def __contains__(self, repo_type: type) -> bool:
        return repo_type in self._repositories
