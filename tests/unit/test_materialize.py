import datetime
import decimal
import uuid
from dataclasses import dataclass
from typing import Optional

import pandas as pd
import pytest
from datacore.materialize import ReturnShape, load_dataframe, materialize
from datacore.materialize import materialize_row, resolve_row_type, resolve_shape

from tests.fixtures.entities import Account, Player, Rank


@dataclass
class Required:
    """Entity whose fields have no defaults."""
    id: int
    name: str


class TestResolveShape:

    @pytest.mark.parametrize(('annotation', 'shape'), [
        (list[Player], ReturnShape.LIST),
        (list, ReturnShape.LIST),
        (Optional[Player], ReturnShape.OPTIONAL),
        (Player | None, ReturnShape.OPTIONAL),
        (Player, ReturnShape.ENTITY),
        (int, ReturnShape.ROWCOUNT),
        (None, ReturnShape.VOID),
        (type(None), ReturnShape.VOID),
        (str, ReturnShape.SCALAR),
        (float | None, ReturnShape.SCALAR),
        (pd.DataFrame, ReturnShape.DATAFRAME),
    ])
    def test_shapes(self, annotation, shape):
        assert resolve_shape(annotation, Player) is shape

    def test_missing_annotation_is_entity(self):
        import inspect
        assert resolve_shape(inspect.Signature.empty, Player) is ReturnShape.ENTITY

    def test_row_types(self):
        assert resolve_row_type(list[Player], Player) is Player
        assert resolve_row_type(list, Player) is Player
        assert resolve_row_type(list[str], Player) is str
        assert resolve_row_type(Player | None, Player) is Player
        assert resolve_row_type(None, Player) is Player


class TestMaterializeRow:

    def test_exact_match(self):
        player = materialize_row({'id': 1, 'name': 'Ada', 'tags': '["x"]'}, Player)
        assert player == Player(id=1, name='Ada', tags=['x'])

    def test_case_insensitive_match(self):
        player = materialize_row({'ID': 2, 'Name': 'Bo'}, Player)
        assert player.id == 2
        assert player.name == 'Bo'

    def test_missing_columns_keep_defaults(self):
        player = materialize_row({'name': 'Cy'}, Player)
        assert player.id is None
        assert player.tags == []

    def test_extra_columns_ignored(self):
        player = materialize_row({'id': 3, 'name': 'Di', 'tags': None, 'extra': 1}, Player)
        assert player == Player(id=3, name='Di', tags=None)

    def test_required_fields_zero_to_none(self):
        row = materialize_row({'name': 'Ed'}, Required)
        assert row.id is None
        assert row.name == 'Ed'

    def test_declared_column_name_and_frozen(self):
        token = uuid.uuid4()
        account = materialize_row({
            'id': str(token),
            'email_address': 'a@b.c',
            'rank': 'LEGEND',
            'balance': '10.5000',
        }, Account)

        assert account.id == token
        assert account.email == 'a@b.c'
        assert account.rank is Rank.LEGEND
        assert account.balance == decimal.Decimal('10.5')

    def test_default_factory_not_shared(self):
        first = materialize_row({}, Player)
        second = materialize_row({}, Player)
        first.tags.append('x')
        assert second.tags == []


class TestMaterialize:

    rows = [
        {'id': 1, 'name': 'Ada', 'tags': '[]'},
        {'id': 2, 'name': 'Bo', 'tags': '["b"]'},
    ]

    def test_list(self):
        players = materialize(self.rows, Player, ReturnShape.LIST)
        assert [p.name for p in players] == ['Ada', 'Bo']

    def test_list_empty(self):
        assert materialize([], Player, ReturnShape.LIST) == []

    def test_list_of_scalars(self):
        assert materialize([{'name': 'Ada'}, {'name': 'Bo'}], str, ReturnShape.LIST) == ['Ada', 'Bo']

    def test_optional(self):
        assert materialize(self.rows[:1], Player, ReturnShape.OPTIONAL).id == 1
        assert materialize([], Player, ReturnShape.OPTIONAL) is None

    def test_entity_first_row_wins(self):
        assert materialize(self.rows, Player, ReturnShape.ENTITY).id == 1

    def test_entity_no_rows(self):
        assert materialize([], Player, ReturnShape.ENTITY) is None

    def test_rowcount(self):
        assert materialize([], int, ReturnShape.ROWCOUNT, rowcount=3) == 3

    def test_rowcount_with_rows_reads_first_column(self):
        assert materialize([{'total': 5}], int, ReturnShape.ROWCOUNT, rowcount=-1) == 5

    def test_void(self):
        assert materialize(self.rows, Player, ReturnShape.VOID, rowcount=2) is None

    def test_scalar(self):
        when = materialize([{'at': '2024-01-02'}], datetime.date, ReturnShape.SCALAR)
        assert when == datetime.date(2024, 1, 2)
        assert materialize([], str, ReturnShape.SCALAR) is None

    def test_dataframe(self):
        df = materialize(self.rows, None, ReturnShape.DATAFRAME, columns=['id', 'name', 'tags'])
        assert list(df.columns) == ['id', 'name', 'tags']
        assert df['name'].tolist() == ['Ada', 'Bo']

    def test_empty_dataframe_keeps_columns(self):
        df = load_dataframe([], ['id', 'name'])
        assert df.empty
        assert list(df.columns) == ['id', 'name']
