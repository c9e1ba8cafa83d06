import pytest

from chatdigest.controllers import query_controller
from chatdigest.errors import AuthError, format_error
from chatdigest.services.session import RawServer, SessionResource


@pytest.mark.asyncio
async def test_authenticated_session_checks_once(driver):
    session = SessionResource(driver)

    await session.ensure_authenticated()

    assert driver.started
    assert driver.auth_checks == 1
    assert driver.login_calls == 0


@pytest.mark.asyncio
async def test_two_failed_auth_checks_raise_auth_error(driver):
    driver.authenticated = False
    session = SessionResource(driver)

    with pytest.raises(AuthError):
        await session.ensure_authenticated()

    assert driver.auth_checks == 2
    assert driver.login_calls == 1


@pytest.mark.asyncio
async def test_close_is_idempotent(driver):
    async with SessionResource(driver) as session:
        assert driver.started
    await session.close()
    assert not driver.started


@pytest.mark.asyncio
async def test_sync_does_not_retry_auth_errors(engine, driver):
    driver.authenticated = False
    driver.servers = [RawServer("s1", "one")]

    with pytest.raises(AuthError):
        await engine.sync.sync_servers()

    # One ensure_authenticated call, never repeated by the retry policy
    assert driver.auth_checks == 2


@pytest.mark.asyncio
async def test_query_returns_error_string_when_logged_out(engine, driver):
    driver.authenticated = False

    result = await query_controller.get_servers(engine, refresh=True)

    assert isinstance(result, str)
    assert result.startswith("Error: ")
    assert "not logged in" in result
    assert driver.auth_checks == 2


def test_error_string_keeps_its_exception():
    error = AuthError("browser session is not logged in")
    message = format_error(error)

    assert message == "Error: browser session is not logged in"
    assert message.error is error
    assert format_error(RuntimeError()) == "Error: RuntimeError"
