import datetime
import enum

import pytest
from datacore.query import QueryTemplate, bind, get_query, parse, query
from datacore.sql import TokenType, compile_template, tokenize_template
from datacore.types import Json


class Status(enum.Enum):
    ACTIVE = 1


def test_parse_two_parameters():
    """Test names are recorded in source order"""
    template = parse('SELECT * FROM t WHERE id = :id AND name = :name', '?')

    assert template.statement == 'SELECT * FROM t WHERE id = ? AND name = ?'
    assert template.parameter_names == ('id', 'name')
    assert template.raw == 'SELECT * FROM t WHERE id = :id AND name = :name'


def test_parse_repeated_parameter():
    """Test a repeated name appears once per occurrence"""
    template = parse('SELECT * FROM t WHERE a = :id OR b = :id', '?')

    assert template.statement == 'SELECT * FROM t WHERE a = ? OR b = ?'
    assert template.parameter_names == ('id', 'id')


def test_parse_without_parameters():
    """Test a template without tokens is unchanged"""
    template = parse('SELECT 1', '?')

    assert template.statement == 'SELECT 1'
    assert template.parameter_names == ()


def test_parse_empty_template():
    """Test parsing is total, even for empty text"""
    template = parse('')
    assert template == QueryTemplate(raw='', statement='', parameter_names=())


def test_default_placeholder_is_percent_s():
    """Test the PostgreSQL placeholder style"""
    template = parse('SELECT * FROM t WHERE id = :id')
    assert template.statement == 'SELECT * FROM t WHERE id = %s'


def test_lone_colon_left_untouched():
    """Test a colon not followed by an identifier character"""
    template = parse('SELECT a : b, :x FROM t', '?')

    assert template.statement == 'SELECT a : b, ? FROM t'
    assert template.parameter_names == ('x',)


def test_digits_and_underscores_in_names():
    """Test token characters include digits and underscores"""
    template = parse('VALUES (:v0, :first_name, :2nd)', '?')
    assert template.parameter_names == ('v0', 'first_name', '2nd')


def test_casts_not_parameters():
    """Test :: casts are copied verbatim"""
    template = parse('SELECT :value::text, created::date FROM t')

    assert template.statement == 'SELECT %s::text, created::date FROM t'
    assert template.parameter_names == ('value',)


def test_string_literals_not_parameters():
    """Test colons inside quoted text stay literal"""
    template = parse("SELECT * FROM t WHERE at = '12:30' AND name = :name", '?')

    assert template.statement == "SELECT * FROM t WHERE at = '12:30' AND name = ?"
    assert template.parameter_names == ('name',)


def test_quoted_identifiers_not_parameters():
    """Test colons inside double-quoted identifiers stay literal"""
    template = parse('SELECT "a:b" FROM t WHERE id = :id', '?')

    assert template.statement == 'SELECT "a:b" FROM t WHERE id = ?'


def test_percent_escaped_for_percent_s():
    """Test literal percent signs are doubled for the %s style"""
    template = parse("SELECT * FROM t WHERE name LIKE 'A%' AND v % 2 = :r")

    assert template.statement == "SELECT * FROM t WHERE name LIKE 'A%%' AND v %% 2 = %s"


def test_percent_kept_for_question_mark():
    """Test percent signs are untouched for the ? style"""
    template = parse("SELECT * FROM t WHERE name LIKE 'A%' AND id = :id", '?')

    assert template.statement == "SELECT * FROM t WHERE name LIKE 'A%' AND id = ?"


def test_parse_is_cached():
    """Test identical templates parse to the same object"""
    assert parse('SELECT :a', '?') is parse('SELECT :a', '?')


def test_tokens_rebuild_template():
    """Test tokenizing preserves all of the text"""
    sql = "SELECT x::int, 'a:b' FROM t WHERE y = :y AND z LIKE '%'"
    tokens = tokenize_template(sql)

    assert ''.join(t.text for t in tokens) == sql
    named = [t for t in tokens if t.type == TokenType.NAMED_PH]
    assert [t.name for t in named] == ['y']


def test_compile_template_returns_names():
    statement, names = compile_template('a = :a, b = :b', '?')
    assert statement == 'a = ?, b = ?'
    assert names == ('a', 'b')


class TestBind:

    def test_bind_in_order(self):
        assert bind(('id', 'name'), {'name': 'Ada', 'id': 3}) == (3, 'Ada')

    def test_bind_repeated(self):
        assert bind(('id', 'id'), {'id': 7}) == (7, 7)

    def test_missing_binds_null(self):
        assert bind(('id', 'missing'), {'id': 1}) == (1, None)

    def test_values_converted(self):
        params = bind(('tags', 'status', 'day'), {
            'tags': ['a'],
            'status': Status.ACTIVE,
            'day': datetime.date(2024, 1, 1),
        })
        assert params == ('["a"]', 'ACTIVE', datetime.date(2024, 1, 1))

    def test_no_parameters(self):
        assert bind((), {'unused': 1}) == ()

    def test_declared_json_parameter(self):
        """Test a parameter declared Json binds scalars as JSON text"""
        params = bind(('doc', 'name'), {'doc': 'hello', 'name': 'hello'}, {'doc': Json, 'name': str})
        assert params == ('"hello"', 'hello')


def test_query_decorator_attaches_template():
    """Test @query stores the raw template on the function"""
    @query('SELECT * FROM t WHERE id = :id')
    def find(self, id): ...

    assert find.__query__ == 'SELECT * FROM t WHERE id = :id'
    assert get_query(find) == 'SELECT * FROM t WHERE id = :id'


def test_get_query_without_template():
    def plain(self): ...

    assert get_query(plain) is None


@pytest.mark.parametrize('raw', [
    ':',
    '::',
    "'unterminated",
    'SELECT ::: FROM t',
    '%',
])
def test_parse_never_fails(raw):
    """Test odd templates parse without error"""
    template = parse(raw, '?')
    assert isinstance(template.statement, str)
