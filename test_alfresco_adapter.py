"""
Tests for the Alfresco repository adapter, with the HTTP session mocked out
"""

from unittest.mock import MagicMock

import pytest
import requests

from alfresco_adapter import AlfrescoRepository
from errors import ConflictError, ConnectivityError, DataIntegrityError
from models import SiteRole


BASE = "https://alfresco.test/alfresco"


def make_response(status=200, body=None):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = body
    response.text = "" if body is None else str(body)
    response.url = BASE
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.request.return_value = make_response(200, {})
    return session


@pytest.fixture
def repository(session):
    return AlfrescoRepository(BASE + "/", "admin", "secret", timeout=5, session=session)


def test_session_is_authenticated(repository, session):
    assert session.auth == ("admin", "secret")
    session.headers.update.assert_called_once_with({"Accept": "application/json"})


def test_list_group_members_keeps_users_only(repository, session):
    session.request.return_value = make_response(200, [
        {"role": "SiteManager", "authority": {"userName": "alice", "authorityType": "USER"}},
        {"role": "SiteConsumer", "authority": {"fullName": "GROUP_x", "authorityType": "GROUP"}},
        {"role": "SiteCollaborator", "authority": {"userName": "bob"}},
    ])

    assert repository.list_group_members("alpha") == {"alice", "bob"}
    session.request.assert_called_once_with(
        "GET", f"{BASE}/service/api/sites/alpha/memberships", timeout=5
    )


def test_add_member_posts_role(repository, session):
    repository.add_member("alpha", "alice", SiteRole.MANAGER)

    session.request.assert_called_once_with(
        "POST", f"{BASE}/service/api/sites/alpha/memberships", timeout=5,
        json={"role": "SiteManager", "person": {"userName": "alice"}},
    )


def test_remove_member_quotes_path(repository, session):
    repository.remove_member("alpha", "a/b c")

    method, url = session.request.call_args[0]
    assert method == "DELETE"
    assert url == f"{BASE}/service/api/sites/alpha/memberships/a%2Fb%20c"


def test_missing_member_removal(repository, session):
    session.request.return_value = make_response(404)

    repository.remove_member("alpha", "alice", missing_ok=True)
    with pytest.raises(DataIntegrityError):
        repository.remove_member("alpha", "alice")


@pytest.mark.parametrize("status, expected", [
    (500, ConnectivityError),
    (503, ConnectivityError),
    (409, ConflictError),
    (403, ConflictError),
    (400, DataIntegrityError),
    (422, DataIntegrityError),
])
def test_error_statuses_are_translated(repository, session, status, expected):
    session.request.return_value = make_response(status)
    with pytest.raises(expected):
        repository.add_role_member("DELETERS", "alice")


def test_connection_failure_is_connectivity_error(repository, session):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(ConnectivityError):
        repository.list_group_members("alpha")


def test_invalid_json_is_data_integrity_error(repository, session):
    response = make_response(200)
    response.json.side_effect = ValueError("not json")
    session.request.return_value = response

    with pytest.raises(DataIntegrityError):
        repository.list_group_members("alpha")


def test_set_marking_group(repository, session):
    repository.set_marking_group("openMarkings", "public", {"bob", "alice"})

    session.request.assert_called_once_with(
        "POST", f"{BASE}/service/api/rma/admin/rmconstraints/openMarkings/values", timeout=5,
        json={"values": [{"value": "public", "authorities": ["alice", "bob"]}]},
    )


def test_list_role_members_paginates(repository, session):
    repository.page_size = 2
    session.request.side_effect = [
        make_response(200, {"data": [{"shortName": "a"}, {"shortName": "b"}], "paging": {"totalItems": 3}}),
        make_response(200, {"data": [{"shortName": "c"}], "paging": {"totalItems": 3}}),
    ]

    assert repository.list_role_members("DELETERS") == {"a", "b", "c"}
    skips = [c[1]["params"]["skipCount"] for c in session.request.call_args_list]
    assert skips == [0, 2]


def test_update_user_profile(repository, session):
    repository.update_user_profile("alice", {"biography": "Hi"})

    session.request.assert_called_once_with(
        "PUT", f"{BASE}/service/api/people/alice", timeout=5, json={"biography": "Hi"}
    )


def test_dry_run_reads_but_never_writes(session):
    repository = AlfrescoRepository(BASE, "admin", "secret", dry_run=True, session=session)
    session.request.return_value = make_response(200, [])

    repository.list_group_members("alpha")
    repository.add_member("alpha", "alice", SiteRole.COLLABORATOR)
    repository.remove_member("alpha", "bob")
    repository.set_marking_group("openMarkings", "public", ["alice"])
    repository.add_role_member("DELETERS", "alice")
    repository.remove_role_member("DELETERS", "bob")
    repository.update_user_profile("alice", {})

    assert [c[0][0] for c in session.request.call_args_list] == ["GET"]


@pytest.mark.parametrize("body", [
    {"data": []},
    ["alice"],
    [{"authority": "alice"}],
    None,
])
def test_malformed_memberships_are_data_integrity_errors(repository, session, body):
    session.request.return_value = make_response(200, body)
    with pytest.raises(DataIntegrityError):
        repository.list_group_members("alpha")


@pytest.mark.parametrize("body", [
    [],
    {"data": {"shortName": "a"}},
    {"data": ["a"], "paging": {"totalItems": 1}},
    {"data": [{"shortName": "a"}], "paging": "none"},
    {"data": [{"shortName": "a"}], "paging": {"totalItems": "1"}},
])
def test_malformed_role_children_are_data_integrity_errors(repository, session, body):
    session.request.return_value = make_response(200, body)
    with pytest.raises(DataIntegrityError):
        repository.list_role_members("DELETERS")
