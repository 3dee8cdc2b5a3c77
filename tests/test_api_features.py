from api_features import APIFeatures, coerce_value, parse_query_string
from models import Tour, User


def build(items):
    return APIFeatures(Tour.query(), items).filter().sort().limit_fields().paginate().query


def test_coerce_value():
    assert coerce_value("5") == 5
    assert coerce_value("-3") == -3
    assert coerce_value("4.7") == 4.7
    assert coerce_value("true") is True
    assert coerce_value("false") is False
    assert coerce_value("easy") == "easy"
    assert coerce_value("nan") == "nan"


def test_bracket_operators_become_mongo_operators():
    query = build([("duration[gte]", "5"), ("price[lt]", "1500"), ("difficulty", "easy")])
    assert query.filter == {
        "duration": {"$gte": 5},
        "price": {"$lt": 1500},
        "difficulty": "easy",
    }


def test_reserved_keys_are_not_filters():
    query = build([("page", "2"), ("sort", "price"), ("limit", "3"), ("fields", "name")])
    assert query.filter == {}


def test_operator_like_keys_are_dropped():
    items = parse_query_string([("$where", "1"), ("name.first", "x"), ("price[$ne]", "1"), ("price", "5")])
    assert items == {"price": "5"}


def test_repeated_whitelisted_field_becomes_in():
    query = build([("difficulty", "easy"), ("difficulty", "medium")])
    assert query.filter == {"difficulty": {"$in": ["easy", "medium"]}}


def test_repeated_other_field_keeps_last_value():
    query = build([("name", "first"), ("name", "second"), ("sort", "price"), ("sort", "-duration")])
    assert query.filter == {"name": "second"}
    assert query.sort_spec == [("duration", -1)]


def test_sort_multiple_fields():
    query = build([("sort", "-ratings_average,price")])
    assert query.sort_spec == [("ratings_average", -1), ("price", 1)]


def test_default_sort_is_newest_first():
    assert build([]).sort_spec == [("created_at", -1)]


def test_field_selection():
    assert build([("fields", "name,price")]).projection == {"name": 1, "price": 1}
    assert build([("fields", "-summary,-images")]).projection == {"summary": 0, "images": 0}
    assert build([]).projection == {"__v": 0}


def test_pagination():
    query = build([("page", "3"), ("limit", "10")])
    assert query.skip_count == 20
    assert query.limit_count == 10


def test_missing_or_invalid_limit_disables_paging():
    for items in ([("page", "2")], [("limit", "abc")], [("limit", "0")], [("limit", "-4")]):
        query = build(items)
        assert query.skip_count == 0
        assert query.limit_count == 0


def test_base_filter_is_kept():
    query = APIFeatures(Tour.query({"guides": "x"}), [("price[gt]", "10")]).filter().query
    assert query.filter == {"$and": [{"guides": "x"}, {"price": {"$gt": 10}}]}


def test_empty_sort_and_field_terms_are_ignored():
    query = build([("sort", "-"), ("fields", "-,")])
    assert query.sort_spec == [("created_at", -1)]
    assert query.projection == {"__v": 0}
    assert build([("sort", ",price,")]).sort_spec == [("price", 1)]


def test_id_only_selection_is_an_inclusion():
    assert User.projection({"_id": 1}) == {"_id": 1}
    assert User.projection({"name": 1, "password": 1}) == {"name": 1}


def test_selecting_only_hidden_fields_keeps_them_hidden():
    projection = User.projection({"password": 1})
    assert projection["password"] == 0
    assert all(v == 0 for v in projection.values())
