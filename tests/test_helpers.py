from darcho.helpers import (
    digits_only, is_number, is_valid_email, month_key, new_order_number,
    page_params, pagination, to_date, to_iso,
)


def test_pagination_flags():
    assert pagination(1, 10, 0) == {
        "page": 1, "limit": 10, "total": 0, "totalPages": 0,
        "hasNextPage": False, "hasPrevPage": False,
    }
    p = pagination(2, 10, 25)
    assert p["totalPages"] == 3
    assert p["hasNextPage"] is True
    assert p["hasPrevPage"] is True
    assert pagination(3, 10, 25)["hasNextPage"] is False


def test_page_params_clamps():
    assert page_params(0, 0) == (1, 1, 0)
    assert page_params(3, 20) == (3, 20, 40)
    assert page_params(1, 1000) == (1, 100, 0)


def test_is_number_rejects_bool_and_strings():
    assert is_number(3)
    assert is_number(2.5)
    assert not is_number(True)
    assert not is_number("3")
    assert not is_number(None)


def test_order_numbers():
    a = new_order_number("ORD")
    b = new_order_number("ORD")
    assert a.startswith("ORD-")
    assert a != b
    assert new_order_number("CART").startswith("CART-")


def test_emails_and_phones():
    assert is_valid_email("a@b.co")
    assert not is_valid_email("a@b")
    assert not is_valid_email("")
    assert digits_only("+251 (911) 22-33") == "2519112233"
    assert digits_only(None) == ""


def test_time_formatting():
    assert to_iso(None) is None
    assert to_iso(0) == "1970-01-01T00:00:00+00:00"
    assert to_date(86400) == "1970-01-02"
    assert month_key(0) == "Jan 1970"
