"""Integration tests: SpooledClient and a worker against the in-process API."""

import asyncio

import pytest

from spooled import JobContext, SpooledClient, WorkerConfig, WorkerState


class TestSpooledClient:
    @pytest.mark.asyncio
    async def test_worker_round_trip(self, fake_api, make_config):
        fake_api.respond("POST", "/api/v1/workers/register", (200, {"id": "w-7", "queue_name": "emails"}))
        fake_api.respond(
            "POST",
            "/api/v1/jobs/claim",
            (200, {"jobs": [{"id": "job-1", "queue_name": "emails", "payload": {"to": "a@b.c"}}]}),
            (200, {"jobs": []}),
        )
        fake_api.respond("POST", "/api/v1/jobs/job-1/complete", (200, None))
        fake_api.respond("DELETE", "/api/v1/workers/w-7", (204, None))

        done = asyncio.Event()

        async with SpooledClient(make_config()) as client:
            worker = client.worker(
                WorkerConfig(queue_name="emails", concurrency=2, poll_interval_seconds=0.01)
            )

            @worker.process
            async def send(ctx: JobContext):
                done.set()
                return {"sent_to": ctx.payload["to"]}

            await worker.start()
            await asyncio.wait_for(done.wait(), timeout=3)
            for _ in range(100):
                if fake_api.calls("POST", "/api/v1/jobs/job-1/complete"):
                    break
                await asyncio.sleep(0.01)
            await worker.stop()

        assert worker.state == WorkerState.STOPPED
        complete = fake_api.calls("POST", "/api/v1/jobs/job-1/complete")[0]["json"]
        assert complete == {"worker_id": "w-7", "result": {"sent_to": "a@b.c"}}
        claim = fake_api.calls("POST", "/api/v1/jobs/claim")[0]["json"]
        assert claim["worker_id"] == "w-7"
        assert claim["limit"] == 2
        assert claim["lease_duration_secs"] == 30
        assert len(fake_api.calls("DELETE", "/api/v1/workers/w-7")) == 1

    @pytest.mark.asyncio
    async def test_diagnostics_do_not_leak_credentials(self, make_config):
        client = SpooledClient(make_config(access_token="at_secret"))
        client.set_refresh_token("rt_secret")

        diagnostics = client.get_diagnostics()
        await client.close()

        assert diagnostics["circuit"]["state"] == "closed"
        assert diagnostics["credentials"]["has_refresh_token"]
        assert "secret" not in repr(diagnostics)
        assert "sk_test_key" not in repr(diagnostics)

    @pytest.mark.asyncio
    async def test_set_access_token(self, fake_api, make_config):
        fake_api.respond("POST", "/api/v1/jobs/job-1/progress", (200, None))

        async with SpooledClient(make_config()) as client:
            client.set_access_token("at_manual", expires_in=3600)
            await client.jobs.update_progress("job-1", 10)

        headers = fake_api.calls("POST", "/api/v1/jobs/job-1/progress")[0]["headers"]
        assert headers["Authorization"] == "Bearer at_manual"
