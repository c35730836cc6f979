from dataclasses import dataclass

import pytest
from datacore import GenerationType, column, describe, entity
from datacore.entity import DescriptorRegistry, EntityDescriptor, entity_table
from datacore.exceptions import DeclarationError

from tests.fixtures.entities import Account, Keyless, Player, Sample, Scratch


def test_describe_player():
    """Test table name, column order and SQL types of a simple entity"""
    descriptor = describe(Player)

    assert descriptor.table_name == 'players'
    assert descriptor.entity_type is Player
    assert descriptor.column_names == ['id', 'name', 'tags']
    assert [c.sql_type for c in descriptor.columns] == ['SERIAL', 'TEXT', 'JSONB']

    key = descriptor.primary_key
    assert key.name == 'id'
    assert key.is_generated
    assert key.generation_strategy is GenerationType.AUTO


def test_column_definitions():
    """Test rendered column definitions"""
    descriptor = describe(Player)
    definitions = [c.definition() for c in descriptor.columns]

    assert definitions == [
        '"id" SERIAL PRIMARY KEY',
        '"name" TEXT NOT NULL',
        '"tags" JSONB',
    ]


def test_declared_column_name_and_unique():
    """Test a renamed unique column and a generated UUID key"""
    descriptor = describe(Account)

    assert descriptor.column_names == ['id', 'email_address', 'rank', 'balance']
    email = descriptor.columns[1]
    assert email.field_name == 'email'
    assert email.definition() == '"email_address" TEXT NOT NULL UNIQUE'
    assert descriptor.columns[0].definition() == '"id" UUID DEFAULT gen_random_uuid() PRIMARY KEY'


def test_unique_not_emitted_for_primary_key():
    """Test UNIQUE is dropped on the key column"""
    @entity(table='things')
    @dataclass
    class Thing:
        code: str = column(id=True, unique=True, default=None)

    assert describe(Thing).columns[0].definition() == '"code" TEXT PRIMARY KEY'


def test_sqlite_descriptor():
    """Test descriptors are built per dialect"""
    descriptor = describe(Player, dialect='sqlite')

    assert descriptor.dialect == 'sqlite'
    assert descriptor.columns[0].definition() == '"id" INTEGER PRIMARY KEY'
    assert descriptor.columns[2].sql_type == 'TEXT'


def test_every_supported_type():
    """Test the mapped types of an entity using every supported field type"""
    types = {c.name: c.sql_type for c in describe(Sample).columns}

    assert types == {
        'id': 'BIGSERIAL',
        'flag': 'BOOLEAN',
        'tiny': 'SMALLINT',
        'small': 'SMALLINT',
        'medium': 'INT',
        'ratio': 'REAL',
        'score': 'DOUBLE PRECISION',
        'amount': 'NUMERIC(18,4)',
        'grade': 'CHAR(1)',
        'payload': 'BYTEA',
        'token': 'UUID',
        'label': 'TEXT',
        'day': 'DATE',
        'clock': 'TIME',
        'stamp': 'TIMESTAMP',
        'rank': 'TEXT',
        'attrs': 'JSONB',
        'extra': 'JSONB',
    }


def test_not_persisted_returns_none():
    """Test a plain dataclass has no descriptor"""
    assert describe(Scratch) is None
    assert entity_table(Scratch) is None


def test_fields_without_column_are_ignored():
    """Test plain fields are not part of the table"""
    @entity(table='mixed')
    @dataclass
    class Mixed:
        id: int = column(id=True, default=0)
        note: str = ''

    assert describe(Mixed).column_names == ['id']


def test_entity_default_table_name():
    """Test @entity without arguments uses the lower-cased class name"""
    @entity
    class Widget:
        id: int = column(id=True, default=0)

    assert entity_table(Widget) == 'widget'
    assert describe(Widget).column_names == ['id']


def test_multiple_primary_keys_rejected():
    """Test composite keys are a declaration error"""
    @entity(table='pairs')
    @dataclass
    class Pair:
        left: int = column(id=True, default=0)
        right: int = column(id=True, default=0)

    with pytest.raises(DeclarationError):
        describe(Pair)


def test_require_primary_key():
    """Test key lookup on an entity with and without a key"""
    assert describe(Player).require_primary_key().name == 'id'
    assert describe(Keyless).primary_key is None
    with pytest.raises(DeclarationError):
        describe(Keyless).require_primary_key()


def test_empty_entity():
    """Test an entity with no columns describes to an empty descriptor"""
    @entity(table='empty')
    @dataclass
    class Empty:
        pass

    descriptor = describe(Empty)
    assert descriptor.columns == ()
    assert descriptor.primary_key is None


class TestDescriptorRegistry:

    def test_descriptors_cached(self):
        registry = DescriptorRegistry('sqlite')
        first = registry.get(Player)
        assert registry.get(Player) is first
        assert first.dialect == 'sqlite'
        assert Player in registry

    def test_custom_builder(self):
        registry = DescriptorRegistry()
        custom = EntityDescriptor(table_name='custom_players', columns=(), entity_type=Player)
        calls = []

        def builder(entity_type, dialect):
            calls.append((entity_type, dialect))
            return custom

        registry.register_builder(Player, builder)

        assert registry.get(Player) is custom
        assert registry.get(Player) is custom
        assert calls == [(Player, 'postgresql')]

    def test_not_persisted(self):
        assert DescriptorRegistry().get(Scratch) is None
