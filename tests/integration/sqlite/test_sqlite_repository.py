"""
End-to-end repository tests against SQLite.
"""
import datetime
import decimal
import uuid

import datacore
import pandas as pd
import pytest
from datacore import ExecutionError, Repository, query
from datacore.connection import _live_engines

import config
from tests.fixtures.entities import Account, AccountRepository, Player
from tests.fixtures.entities import PlayerRepository, PlayerV2, Rank, Sample
from tests.fixtures.entities import SampleRepository

pytestmark = pytest.mark.sqlite


class PlayerV2Repository(Repository[PlayerV2]):

    @query('SELECT * FROM players WHERE rating IS NULL ORDER BY id')
    def unrated(self) -> list[PlayerV2]: ...


def test_register_creates_table(sqlite_core):
    """Test registration creates the entity table with every column"""
    sqlite_core.register(PlayerRepository)

    with sqlite_core.provider.acquire() as cn:
        columns = cn.strategy.get_columns(cn, 'players', bypass_cache=True)
        info = cn.execute('select name, type, pk from pragma_table_info(?) order by cid', ('players',)).rows

    assert columns == ['id', 'name', 'tags']
    assert [row['type'] for row in info] == ['INTEGER', 'TEXT', 'TEXT']
    assert info[0]['pk'] == 1


def test_insert_and_query_by_name(sqlite_core):
    """Test a stored entity reads back through a named-parameter query"""
    players = sqlite_core.register(PlayerRepository)

    stored = players.insert(Player(name='A', tags=['x', 'y']))
    found = players.find_by_name('A')

    assert stored.id is not None
    assert len(found) == 1
    assert found[0] == Player(stored.id, 'A', ['x', 'y'])


def test_builtin_operations(sqlite_core):
    players = sqlite_core.register(PlayerRepository)
    ada = players.insert(Player(name='Ada'))
    bo = players.insert(Player(name='Bo', tags=['b']))

    assert players.count() == 2
    assert players.find_all() == [ada, bo]
    assert players.find_by_id(bo.id) == bo
    assert players.find_by_id(999) is None

    assert players.delete_by_id(ada.id) == 1
    assert players.delete_by_id(ada.id) == 0
    assert players.count() == 1


def test_declared_queries(sqlite_core):
    players = sqlite_core.register(PlayerRepository)
    ada = players.insert(Player(name='Ada'))
    players.insert(Player(name='Abe'))
    players.insert(Player(name='Bo'))

    assert players.rename(ada.id, 'Ava') == 1
    assert players.get_one(ada.id).name == 'Ava'
    assert players.find_one(12345) is None
    assert players.count_like('A%') == 2
    assert players.names() == ['Ava', 'Abe', 'Bo']


def test_dataframe_result(sqlite_core):
    players = sqlite_core.register(PlayerRepository)
    players.insert(Player(name='Ada'))
    players.insert(Player(name='Bo'))

    df = players.frame()

    assert isinstance(df, pd.DataFrame)
    assert list(df.columns) == ['id', 'name', 'tags']
    assert df['name'].tolist() == ['Ada', 'Bo']


def test_clear(sqlite_core):
    players = sqlite_core.register(PlayerRepository)
    players.insert(Player(name='Ada'))

    assert players.clear() is None
    assert players.count() == 0


def test_missing_table_fails_at_execution(sqlite_file_core):
    """Test a statement against a dropped table raises ExecutionError"""
    core = sqlite_file_core()
    players = core.register(PlayerRepository)
    with core.provider.acquire() as cn:
        cn.execute('DROP TABLE players')

    with pytest.raises(ExecutionError):
        players.find_by_name('Ada')


def test_additive_sync_keeps_rows(sqlite_file_core):
    """Test a wider declaration adds its column and keeps existing rows"""
    first = sqlite_file_core()
    first.register(PlayerRepository).insert(Player(name='Ada', tags=['a']))
    first.close()

    second = sqlite_file_core()
    players = second.register(PlayerV2Repository)

    with second.provider.acquire() as cn:
        assert cn.strategy.get_columns(cn, 'players', bypass_cache=True) == ['id', 'name', 'tags', 'rating']

    rows = players.unrated()
    assert len(rows) == 1
    assert rows[0].name == 'Ada'
    assert rows[0].tags == ['a']
    assert rows[0].rating is None

    stored = players.insert(PlayerV2(name='Bo', rating=4.5))
    assert players.find_by_id(stored.id).rating == 4.5


def test_sync_is_idempotent(sqlite_file_core):
    first = sqlite_file_core()
    first.register(PlayerRepository).insert(Player(name='Ada'))
    first.close()

    second = sqlite_file_core()
    players = second.register(PlayerRepository)
    assert players.count() == 1


def test_generated_uuid_and_column_name(sqlite_core):
    """Test a UUID key generated by the database and a renamed column"""
    accounts = sqlite_core.register(AccountRepository)

    stored = accounts.insert(Account(email='ada@example.com', rank=Rank.LEGEND,
                                     balance=decimal.Decimal('12.5')))

    assert isinstance(stored.id, uuid.UUID)
    found = accounts.find_by_email('ada@example.com')
    assert found == stored
    assert found.rank is Rank.LEGEND
    assert found.balance == decimal.Decimal('12.5')
    assert accounts.find_by_email('nobody@example.com') is None


def test_unique_column(sqlite_core):
    accounts = sqlite_core.register(AccountRepository)
    accounts.insert(Account(email='ada@example.com'))

    with pytest.raises(ExecutionError):
        accounts.insert(Account(email='ada@example.com'))


def test_value_round_trip(sqlite_core):
    """Test every supported field type survives a store and load"""
    samples = sqlite_core.register(SampleRepository)
    token = uuid.uuid4()
    sample = Sample(
        flag=True,
        tiny=7,
        small=300,
        medium=70000,
        ratio=1.5,
        score=2.25,
        amount=decimal.Decimal('10.5'),
        grade='A',
        payload=b'\x00\x01',
        token=token,
        label='text',
        day=datetime.date(2024, 2, 29),
        clock=datetime.time(13, 45, 30),
        stamp=datetime.datetime(2024, 2, 29, 13, 45, 30),
        rank=Rank.VETERAN,
        attrs={'a': 1},
        extra={'nested': [1, 2]},
    )

    stored = samples.insert(sample)
    loaded = samples.find_by_id(stored.id)

    assert loaded.id == stored.id
    assert loaded.flag is True
    assert (loaded.tiny, loaded.small, loaded.medium) == (7, 300, 70000)
    assert loaded.ratio == 1.5
    assert loaded.score == 2.25
    assert loaded.amount == decimal.Decimal('10.5')
    assert loaded.grade == 'A'
    assert loaded.payload == b'\x00\x01'
    assert loaded.token == token
    assert loaded.label == 'text'
    assert loaded.day == datetime.date(2024, 2, 29)
    assert loaded.clock == datetime.time(13, 45, 30)
    assert loaded.stamp == datetime.datetime(2024, 2, 29, 13, 45, 30)
    assert loaded.rank is Rank.VETERAN
    assert loaded.attrs == {'a': 1}
    assert loaded.extra == {'nested': [1, 2]}


def test_nulls_round_trip(sqlite_core):
    samples = sqlite_core.register(SampleRepository)
    stored = samples.insert(Sample())
    loaded = samples.find_by_id(stored.id)

    assert loaded == Sample(id=stored.id)


@pytest.mark.parametrize(('day', 'stamp', 'clock'), [
    (datetime.date.min, datetime.datetime.min, datetime.time.min),
    (datetime.date.max, datetime.datetime.max, datetime.time.max),
])
def test_calendar_bounds_round_trip(sqlite_core, day, stamp, clock):
    """Test the earliest and latest calendar values survive a store and load"""
    samples = sqlite_core.register(SampleRepository)
    stored = samples.insert(Sample(day=day, stamp=stamp, clock=clock))
    loaded = samples.find_by_id(stored.id)

    assert (loaded.day, loaded.stamp, loaded.clock) == (day, stamp, clock)


@pytest.mark.parametrize('extra', ['hello', '', 0, -3, True, False, [], {}])
def test_json_scalar_round_trip(sqlite_core, extra):
    """Test scalars and empty containers in a Json column load back unchanged"""
    samples = sqlite_core.register(SampleRepository)
    stored = samples.insert(Sample(extra=extra))
    loaded = samples.find_by_id(stored.id)

    assert loaded.extra == extra
    assert type(loaded.extra) is type(extra)


def test_context_manager_closes():
    with datacore.connect('sqlite', config=config) as core:
        core.register(PlayerRepository).insert(Player(name='Ada'))
    assert core.provider.engine not in _live_engines
