"""Tests for the Okteto namespace listing."""

from unittest.mock import Mock

import pytest
import requests

from okteto_api import OktetoAPIError, get_namespaces


def make_session(status_code=200, body=None, json_error=None):
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = str(body)
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    session = Mock()
    session.get.return_value = response
    return session


def test_returns_names_in_order_with_bearer_token():
    session = make_session(body=[{"name": "alice", "status": "Active"}, {"name": "bob"}])

    assert get_namespaces("okteto.example.com", "tok", timeout=3, session=session) == ["alice", "bob"]
    session.get.assert_called_once_with(
        "https://okteto.example.com/api/v0/namespaces",
        headers={"Authorization": "Bearer tok", "Accept": "application/json"},
        timeout=3,
    )


def test_empty_list():
    assert get_namespaces("h", "t", session=make_session(body=[])) == []


def test_unauthorized_raises():
    with pytest.raises(OktetoAPIError, match="401"):
        get_namespaces("h", "t", session=make_session(status_code=401, body="unauthorized"))


def test_network_error_raises():
    session = Mock()
    session.get.side_effect = requests.ConnectionError("name resolution failed")

    with pytest.raises(OktetoAPIError, match="name resolution failed"):
        get_namespaces("h", "t", session=session)


@pytest.mark.parametrize("body", [{"namespaces": []}, [{"id": "x"}], ["alice"]])
def test_unexpected_body_raises(body):
    with pytest.raises(OktetoAPIError):
        get_namespaces("h", "t", session=make_session(body=body))


def test_invalid_json_raises():
    with pytest.raises(OktetoAPIError, match="invalid JSON"):
        get_namespaces("h", "t", session=make_session(json_error=ValueError("Expecting value")))
