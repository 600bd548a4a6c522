"""
Table registry: the catalog of every table that holds tenant-scoped rows,
and how to select one tenant's rows from each of them.

The registry is inert data. Row selection is one of three strategies:

* ``DirectColumn``     - the column *is* the tenant id (``accounts.id``)
* ``ForeignKeyColumn`` - the column references the tenant (``account_id``)
* ``DerivedPredicate`` - a subquery over other tenant-scoped tables, for
  tables without a tenant column of their own

Tables are extracted in declaration order.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .errors import ConfigurationError, TableNotFound

TENANT_TABLE = 'accounts'
TENANT_NAME_COLUMN = 'name'
TENANT_COLUMN = 'account_id'


@dataclass(frozen=True)
class DirectColumn:
    column: str


@dataclass(frozen=True)
class ForeignKeyColumn:
    column: str = TENANT_COLUMN


@dataclass(frozen=True)
class DerivedPredicate:
    """Predicate built from the tenant id by ``builder``.

    ``depends_on`` names every table the predicate's subquery reads.
    ``integrity_check``, when set, builds a ``SELECT COUNT(*)`` query that
    counts dangling references for a tenant (used by ``validate``).
    """
    builder: Callable[[int], str]
    depends_on: Tuple[str, ...] = ()
    integrity_check: Optional[Callable[[str, int], str]] = field(default=None, compare=False)


SelectionStrategy = Union[DirectColumn, ForeignKeyColumn, DerivedPredicate]


@dataclass(frozen=True)
class TableDescriptor:
    name: str
    strategy: SelectionStrategy
    optional: bool = False


def owned_by(column: str, parent: str, parent_key: str = 'id') -> DerivedPredicate:
    """Rows whose ``column`` points at a row of a tenant-scoped ``parent``"""
    def build(tenant_id: int) -> str:
        return (f"{column} IN (SELECT {parent_key} FROM {parent} "
                f"WHERE {TENANT_COLUMN} = {tenant_id})")
    return DerivedPredicate(builder=build, depends_on=(parent,))


def referenced_by(key: str, source: str, source_column: str) -> DerivedPredicate:
    """Rows referenced from ``source.source_column`` of a tenant-scoped table.

    The integrity check counts tenant rows of ``source`` whose reference
    matches no row of the owning table.
    """
    def build(tenant_id: int) -> str:
        return (f"{key} IN (SELECT {source_column} FROM {source} "
                f"WHERE {TENANT_COLUMN} = {tenant_id})")

    def check(table: str, tenant_id: int) -> str:
        return (f"SELECT COUNT(*) FROM {source} s "
                f"WHERE s.{TENANT_COLUMN} = {tenant_id} "
                f"AND s.{source_column} IS NOT NULL "
                f"AND NOT EXISTS (SELECT 1 FROM {table} t WHERE t.{key} = s.{source_column})")

    return DerivedPredicate(builder=build, depends_on=(source,), integrity_check=check)


def resolve_predicate(descriptor: TableDescriptor, tenant_id: int) -> str:
    """Build the WHERE predicate selecting ``tenant_id``'s rows of a table"""
    strategy = descriptor.strategy
    if isinstance(strategy, (DirectColumn, ForeignKeyColumn)):
        return f"{strategy.column} = {tenant_id}"
    return strategy.builder(tenant_id)


def integrity_query(descriptor: TableDescriptor, tenant_id: int) -> Optional[str]:
    """Dangling-reference count query for a table, or None if it has none"""
    strategy = descriptor.strategy
    if isinstance(strategy, DerivedPredicate) and strategy.integrity_check:
        return strategy.integrity_check(descriptor.name, tenant_id)
    return None


class TableRegistry:
    """Ordered catalog of core and optional table descriptors.

    Construction validates the declarations; an invalid registry raises
    ``ConfigurationError`` and never reaches an extraction run.
    """

    def __init__(self, core: Iterable[TableDescriptor], optional: Iterable[TableDescriptor] = ()):
        self._core = [d for d in core]
        self._optional = [TableDescriptor(d.name, d.strategy, optional=True) for d in optional]
        self._by_name: Dict[str, TableDescriptor] = {}

        for descriptor in self._core + self._optional:
            if descriptor.name in self._by_name:
                raise ConfigurationError(f"Table '{descriptor.name}' is registered twice")
            self._check_strategy(descriptor)
            self._by_name[descriptor.name] = descriptor

        self._check_dependencies()

    @staticmethod
    def _check_strategy(descriptor: TableDescriptor):
        strategy = descriptor.strategy
        if isinstance(strategy, (DirectColumn, ForeignKeyColumn)):
            if not strategy.column:
                raise ConfigurationError(f"Table '{descriptor.name}' has an empty selection column")
        elif isinstance(strategy, DerivedPredicate):
            if not callable(strategy.builder):
                raise ConfigurationError(f"Table '{descriptor.name}' has no predicate builder")
        else:
            raise ConfigurationError(
                f"Table '{descriptor.name}' has no selection column or predicate builder"
            )

    def _check_dependencies(self):
        """Every derived dependency must be registered, and the graph acyclic"""
        graph: Dict[str, Tuple[str, ...]] = {}
        for name, descriptor in self._by_name.items():
            if isinstance(descriptor.strategy, DerivedPredicate):
                for dependency in descriptor.strategy.depends_on:
                    if dependency not in self._by_name:
                        raise ConfigurationError(
                            f"Table '{name}' depends on unregistered table '{dependency}'"
                        )
                graph[name] = descriptor.strategy.depends_on

        done = set()
        visiting: List[str] = []

        def visit(name: str):
            if name in done:
                return
            if name in visiting:
                cycle = visiting[visiting.index(name):] + [name]
                raise ConfigurationError(f"Derived predicate cycle: {' -> '.join(cycle)}")
            visiting.append(name)
            for dependency in graph.get(name, ()):
                visit(dependency)
            visiting.pop()
            done.add(name)

        for name in graph:
            visit(name)

    def all_core_tables(self) -> List[TableDescriptor]:
        return list(self._core)

    def all_optional_tables(self) -> List[TableDescriptor]:
        return list(self._optional)

    def lookup(self, name: str) -> TableDescriptor:
        try:
            return self._by_name[name]
        except KeyError:
            raise TableNotFound(name) from None

    def names(self) -> List[str]:
        return [d.name for d in self._core + self._optional]

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)


def _fk(name: str) -> TableDescriptor:
    return TableDescriptor(name, ForeignKeyColumn(TENANT_COLUMN))


CORE_TABLES = [
    TableDescriptor(TENANT_TABLE, DirectColumn('id')),

    # Users and memberships
    _fk('account_users'),
    TableDescriptor('users', referenced_by('id', 'account_users', 'user_id')),

    # Inboxes and channels
    _fk('inboxes'),
    TableDescriptor('channels', referenced_by('id', 'inboxes', 'channel_id')),

    # Contacts and conversations
    _fk('contacts'),
    TableDescriptor('contact_inboxes', owned_by('contact_id', 'contacts')),
    _fk('conversations'),
    _fk('messages'),

    # Teams
    _fk('teams'),
    TableDescriptor('team_members', owned_by('team_id', 'teams')),

    # Settings
    _fk('canned_responses'),
    _fk('labels'),
    _fk('webhooks'),
    _fk('automation_rules'),
    _fk('macros'),

    # Help center
    _fk('portals'),
    _fk('categories'),
    _fk('articles'),

    # Reporting and notifications
    _fk('reporting_events'),
    _fk('notifications'),
    _fk('notification_settings'),

    _fk('working_hours'),
    _fk('custom_attribute_definitions'),
    _fk('custom_filters'),

    TableDescriptor('attachments', owned_by('message_id', 'messages')),

    # Bots
    _fk('agent_bots'),
    _fk('agent_bot_inboxes'),

    _fk('campaigns'),
]

# Enterprise-only tables
OPTIONAL_TABLES = [
    _fk('sla_policies'),
    _fk('applied_slas'),
    _fk('sla_events'),
    _fk('custom_roles'),
    _fk('captain_assistants'),
    _fk('captain_documents'),
    _fk('copilot_threads'),
]

DEFAULT_REGISTRY = TableRegistry(CORE_TABLES, OPTIONAL_TABLES)
