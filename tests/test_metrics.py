"""Tests for the topology metrics poller (no network, httpx.MockTransport)."""

import asyncio

import httpx

from crawlops.services.orchestrator.metrics import MetricsPoller, MetricsSnapshot, TopologyStatus


def _poll(handler, topology_id="topo-1"):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            poller = MetricsPoller(client, base_url="http://storm-ui:8080/")
            return await poller.fetch(topology_id)

    return asyncio.run(scenario())


def test_fetch_maps_first_spout_and_bolt():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        return httpx.Response(
            200,
            json={
                "spouts": [
                    {"spoutId": "spout", "emitted": 120, "failed": 2, "completeLatency": "35.5"},
                    {"spoutId": "other", "emitted": 999},
                ],
                "bolts": [
                    {"boltId": "partitioner", "emitted": 80, "failed": 4, "executed": 90},
                    {"boltId": "fetch", "emitted": 999},
                ],
            },
        )

    snapshot = _poll(handler)
    assert seen["url"] == "http://storm-ui:8080/api/v1/topology/topo-1"
    assert snapshot == MetricsSnapshot(
        fetched=80, failed=4, discovered=120, bytes=0, avg_time_ms=35.5
    )


def test_missing_stages_default_to_zero():
    snapshot = _poll(lambda request: httpx.Response(200, json={"name": "crawl"}))
    assert snapshot == MetricsSnapshot.zero()


def test_http_error_fails_open():
    snapshot = _poll(lambda request: httpx.Response(500, text="boom"))
    assert snapshot == MetricsSnapshot.zero()


def test_invalid_json_fails_open():
    snapshot = _poll(lambda request: httpx.Response(200, text="<html>not json</html>"))
    assert snapshot == MetricsSnapshot.zero()


def test_malformed_fields_fail_open():
    snapshot = _poll(
        lambda request: httpx.Response(200, json={"spouts": [{"emitted": "many"}]})
    )
    assert snapshot == MetricsSnapshot.zero()


def test_transport_error_fails_open():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert _poll(handler) == MetricsSnapshot.zero()


def test_from_status_without_stages():
    assert MetricsSnapshot.from_status(TopologyStatus()) == MetricsSnapshot.zero()
