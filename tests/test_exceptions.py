import pytest

from core_oauth import exceptions as exc


@pytest.mark.parametrize(
    "error_class,name,status",
    [
        (exc.InvalidRequest, "invalid_request", 400),
        (exc.InvalidClient, "invalid_client", 400),
        (exc.InvalidGrant, "invalid_grant", 400),
        (exc.InvalidScope, "invalid_scope", 400),
        (exc.UnauthorizedClient, "unauthorized_client", 400),
        (exc.UnsupportedGrantType, "unsupported_grant_type", 400),
        (exc.UnsupportedResponseType, "unsupported_response_type", 400),
        (exc.UnauthorizedRequest, "unauthorized_request", 401),
        (exc.InvalidToken, "invalid_token", 401),
        (exc.TokenExpired, "invalid_token", 401),
        (exc.InsufficientScope, "insufficient_scope", 403),
        (exc.ServerError, "server_error", 503),
    ],
)
def test_error_taxonomy(error_class, name, status):
    error = error_class()

    assert isinstance(error, exc.OAuthError)
    assert error.name == name
    assert error.code == status
    assert error.to_dict() == {"error": name, "error_description": error.message}


def test_token_errors_are_unauthorized_requests():
    assert issubclass(exc.InvalidToken, exc.UnauthorizedRequest)
    assert issubclass(exc.TokenExpired, exc.InvalidToken)


def test_per_instance_status_and_headers():
    error = exc.InvalidClient("Invalid client: client is invalid", code=401, headers={"WWW-Authenticate": 'Basic realm="service"'})

    assert error.code == 401
    assert exc.InvalidClient().code == 400
    assert error.headers["WWW-Authenticate"] == 'Basic realm="service"'
    assert str(error) == "Invalid client: client is invalid"
    assert "InvalidClient" in repr(error)
