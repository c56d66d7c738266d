from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from query_shell.app_model import DatabaseContext, QueryStatus
from query_shell.bq import jobs
from query_shell.bq.client import build_job_config, default_dataset
from query_shell.bq.jobs import BigQueryBackend, job_status


def _job(state, error_result=None):
    return SimpleNamespace(job_id="job_1", state=state, error_result=error_result)


def test_job_states_map_to_query_status():
    assert job_status(_job("PENDING")).status is QueryStatus.PROVISIONING
    assert job_status(_job("RUNNING")).status is QueryStatus.RUNNING
    assert job_status(_job("DONE")).status is QueryStatus.SUCCEEDED


def test_done_with_error_result_is_errored():
    event = job_status(_job("DONE", {"reason": "invalidQuery", "message": "Unrecognized name: foo"}))
    assert event.status is QueryStatus.ERRORED
    assert event.error_message == "Unrecognized name: foo"


def test_unknown_state_keeps_polling():
    assert job_status(_job("SUSPENDED")).status is QueryStatus.RUNNING


def test_default_dataset_qualification():
    assert default_dataset(DatabaseContext(project="acme", location="US", database="logs")) == "acme.logs"
    assert default_dataset(DatabaseContext(project="acme", location="US", database="other.logs")) == "other.logs"
    assert default_dataset(DatabaseContext(project="acme", location="US")) is None


def test_build_job_config():
    config = build_job_config(
        DatabaseContext(project="acme", location="US", database="logs"),
        use_query_cache=False,
        labels={"app": "query-shell"},
    )
    assert config.use_query_cache is False
    assert config.labels == {"app": "query-shell"}
    assert config.default_dataset.dataset_id == "logs"
    assert config.default_dataset.project == "acme"


@pytest.mark.asyncio
async def test_submit_and_status_use_job_location():
    client = MagicMock()
    client.query.return_value = SimpleNamespace(job_id="job_1", location="EU")
    client.get_job.return_value = _job("RUNNING")
    backend = BigQueryBackend(client, location="US", labels={"app": "query-shell"})

    query_id = await backend.submit("SELECT 1", DatabaseContext(project="acme", location="EU", database="logs"))
    event = await backend.get_status(query_id)

    assert query_id == "job_1"
    assert event.status is QueryStatus.RUNNING
    args, kwargs = client.query.call_args
    assert args == ("SELECT 1",)
    assert kwargs["location"] == "EU"
    assert kwargs["job_config"].labels == {"app": "query-shell"}
    client.get_job.assert_called_with("job_1", location="EU")


@pytest.mark.asyncio
async def test_results_page_is_flattened_to_cells():
    client = MagicMock()
    client.get_job.return_value = SimpleNamespace(destination="acme._anon.results")
    client.list_rows.return_value = SimpleNamespace(
        pages=iter([[{"id": 1, "msg": "a"}, {"id": 2, "msg": "b"}]]),
        schema=[SimpleNamespace(name="id"), SimpleNamespace(name="msg")],
        next_page_token="tok-2",
    )
    backend = BigQueryBackend(client, location="US")

    page = await backend.get_results("job_1", None, 2)

    client.list_rows.assert_called_once_with("acme._anon.results", page_size=2, page_token=None)
    assert page.rows == [
        [{"key": "id", "value": 1}, {"key": "msg", "value": "a"}],
        [{"key": "id", "value": 2}, {"key": "msg", "value": "b"}],
    ]
    assert page.next_cursor == "tok-2"


@pytest.mark.asyncio
async def test_last_page_has_no_cursor():
    client = MagicMock()
    client.get_job.return_value = SimpleNamespace(destination="acme._anon.results")
    client.list_rows.return_value = SimpleNamespace(pages=iter([]), schema=[], next_page_token=None)
    backend = BigQueryBackend(client)

    page = await backend.get_results("job_1", "tok-9", 100)

    assert page.rows == []
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_results_without_destination_fail():
    client = MagicMock()
    client.get_job.return_value = SimpleNamespace(destination=None)
    backend = BigQueryBackend(client)

    with pytest.raises(ValueError):
        await backend.get_results("job_1", None, 100)


@pytest.mark.asyncio
async def test_cancel_and_close():
    client = MagicMock()
    backend = BigQueryBackend(client, location="US")

    await backend.cancel("job_7")
    backend.close()

    client.cancel_job.assert_called_once_with("job_7", location="US")
    client.close.assert_called_once_with()


def test_from_config(monkeypatch):
    client = MagicMock()
    calls = []
    monkeypatch.setattr(jobs, "get_client", lambda project, location: calls.append((project, location)) or client)
    config = {"app": {"bq": {"use_query_cache": True, "labels": {"team": "secops"}}}}

    backend = BigQueryBackend.from_config(config, DatabaseContext(project="acme", location="EU"))

    assert calls == [("acme", "EU")]
    assert backend._use_query_cache is True
    assert backend._labels == {"team": "secops"}
    assert backend._location == "EU"


@pytest.mark.asyncio
async def test_job_locations_are_bounded_and_released():
    client = MagicMock()
    client.query.side_effect = [
        SimpleNamespace(job_id=f"job_{i}", location="EU") for i in range(jobs.MAX_TRACKED_JOBS + 10)
    ]
    backend = BigQueryBackend(client, location="US")
    context = DatabaseContext(project="acme", location="EU")

    for _ in range(jobs.MAX_TRACKED_JOBS + 10):
        await backend.submit("SELECT 1", context)

    assert len(backend._job_locations) == jobs.MAX_TRACKED_JOBS
    assert "job_0" not in backend._job_locations

    last = f"job_{jobs.MAX_TRACKED_JOBS + 9}"
    await backend.cancel(last)
    client.cancel_job.assert_called_once_with(last, location="EU")
    assert last not in backend._job_locations


@pytest.mark.asyncio
async def test_errored_job_location_is_released():
    client = MagicMock()
    client.query.return_value = SimpleNamespace(job_id="job_1", location="EU")
    client.get_job.return_value = _job("DONE", {"message": "Syntax error"})
    backend = BigQueryBackend(client, location="US")

    await backend.submit("SELEC 1", DatabaseContext(project="acme", location="EU"))
    event = await backend.get_status("job_1")

    assert event.status is QueryStatus.ERRORED
    assert backend._job_locations == {}
