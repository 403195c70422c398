import json

import pytest

from tallybox.client import ClientError, ContestClient
from tallybox.errors import NotFound, ProcessingError, UnexpectedChunk


class _FakeResponse:
    def __init__(self, response):
        self.status = response.status_code
        self._content = response.content

    async def read(self) -> bytes:
        return self._content

    async def json(self, content_type=None):
        return json.loads(self._content)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


class FakeSession:
    """Stands in for aiohttp.ClientSession, sending requests to the test app."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.requests: list[tuple[str, str, dict]] = []

    def request(self, method, url, params=None, json=None, data=None):
        self.requests.append((method, url, params or {}))
        response = self.test_client.request(
            method, url, params=params, json=json, content=data
        )
        return _FakeResponse(response)


@pytest.fixture
def fake_session(client):
    return FakeSession(client)


@pytest.fixture
def contest_client(fake_session):
    return ContestClient("http://testserver/", session=fake_session, chunk_size=4)


@pytest.fixture
def cvr_file(tmp_path):
    path = tmp_path / "cvr.csv"
    path.write_bytes(b"Alice,Bob\nBob,Alice\n")
    return path


class TestContestClient:
    @pytest.mark.asyncio
    async def test_app_version(self, contest_client):
        assert (await contest_client.app_version()).startswith("tallybox ")

    @pytest.mark.asyncio
    async def test_upload_file_sends_sequential_chunks(
        self, contest_client, fake_session, cvr_file, temp_contests_dir
    ):
        contest_id = (await contest_client.new_contest({}))["contestId"]

        chunks = await contest_client.upload_file(contest_id, cvr_file)

        assert chunks == 5
        sent = [p["chunk"] for m, url, p in fake_session.requests if url.endswith("castVotes")]
        assert sent == ["0", "1", "2", "3", "4"]
        data_file = temp_contests_dir / contest_id / contest_id / contest_id
        assert data_file.read_bytes() == cvr_file.read_bytes()

    @pytest.mark.asyncio
    async def test_empty_file_sends_one_empty_chunk(self, contest_client, tmp_path):
        empty = tmp_path / "empty.csv"
        empty.write_bytes(b"")
        contest_id = (await contest_client.new_contest({}))["contestId"]

        assert await contest_client.upload_file(contest_id, empty) == 1

    @pytest.mark.asyncio
    async def test_submit_runs_whole_protocol_and_clears(
        self, contest_client, cvr_file, sample_config, temp_contests_dir
    ):
        summary = await contest_client.submit(sample_config, cvr_file, "Pat")

        assert json.loads(summary)["operator"] == "Pat"
        assert list(temp_contests_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_submit_keep_leaves_contest(self, contest_client, cvr_file, service):
        await contest_client.submit({}, cvr_file, "Pat", keep=True)
        assert len(service.registry) == 1

    @pytest.mark.asyncio
    async def test_submit_clears_even_when_tabulation_fails(
        self, contest_client, cvr_file, fake_tabulator, service
    ):
        fake_tabulator.error = ProcessingError("engine crashed")

        with pytest.raises(ProcessingError, match="engine crashed"):
            await contest_client.submit({}, cvr_file, "Pat")

        assert len(service.registry) == 0


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_wrong_chunk_raises_unexpected_chunk(self, contest_client):
        contest_id = (await contest_client.new_contest({}))["contestId"]

        with pytest.raises(UnexpectedChunk) as exc_info:
            await contest_client.cast_votes(contest_id, 3, b"AA")

        assert exc_info.value.expected == 0
        assert exc_info.value.received == 3
        assert exc_info.value.contest_id == contest_id

    @pytest.mark.asyncio
    async def test_unknown_contest_raises_not_found(self, contest_client):
        missing = "00000000-0000-4000-8000-000000000000"
        with pytest.raises(NotFound):
            await contest_client.clear(missing)

    @pytest.mark.asyncio
    async def test_validation_error_raises_client_error(self, contest_client):
        with pytest.raises(ClientError) as exc_info:
            await contest_client.tabulate("not-a-uuid", "Pat")
        assert exc_info.value.status == 422

    @pytest.mark.asyncio
    async def test_engine_failure_carries_stderr(self, contest_client, fake_tabulator):
        contest_id = (await contest_client.new_contest({}))["contestId"]
        fake_tabulator.error = ProcessingError(
            "Tabulator exited with status 3", stderr="bad config: missing candidates"
        )

        with pytest.raises(ProcessingError) as exc_info:
            await contest_client.tabulate(contest_id, "Pat")

        assert str(exc_info.value) == "Tabulator exited with status 3"
        assert exc_info.value.stderr == "bad config: missing candidates"

    @pytest.mark.asyncio
    async def test_plain_text_error_on_json_endpoint_raises_client_error(self):
        class _TextResponse:
            status = 503

            async def read(self):
                return b"Service Unavailable"

            async def json(self, content_type=None):
                return json.loads(b"Service Unavailable")

            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc_info):
                return None

        class _DownSession:
            def request(self, method, url, **kwargs):
                return _TextResponse()

        contest_client = ContestClient("http://testserver", session=_DownSession())

        with pytest.raises(ClientError) as exc_info:
            await contest_client.new_contest({})

        assert exc_info.value.status == 503
        assert "Service Unavailable" in str(exc_info.value)
