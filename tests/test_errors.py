from errors import (
    IntegrityError,
    RemoteCallError,
    ReplaceError,
    TransportError,
    describe_error,
    error_kind,
)


def test_describe_error_includes_cause_chain():
    try:
        try:
            raise TransportError("API responded with 502: bad gateway")
        except TransportError as inner:
            raise RemoteCallError("API request failed after 3 attempts") from inner
    except RemoteCallError as e:
        text = describe_error(e)

    assert text.startswith("RemoteCallError: API request failed after 3 attempts")
    assert "bad gateway" in text
    assert "direct cause" in text


def test_describe_error_without_traceback():
    assert describe_error(ValueError("plain")).startswith("ValueError: plain")


def test_error_kinds():
    assert error_kind(IntegrityError("x")) == "integrity"
    assert error_kind(ReplaceError("x")) == "filesystem"
    assert error_kind(PermissionError("x")) == "filesystem"
    assert error_kind(KeyError("x")) == "KeyError"
