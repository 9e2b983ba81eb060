"""
Tests for level-by-level workflow execution.

Nodes in a level run concurrently, the next level waits for every node of
the current one, and a failing node never stops its siblings or later levels.
"""

import asyncio
import json

import httpx
import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from mediaflow.services.generation_client import GenerationClient
from mediaflow.services.graph_state import GraphState
from mediaflow.services.workflow_engine import WorkflowEngine


# ---------------------------------------------------------------------------
# Test fixtures and mock generation API
# ---------------------------------------------------------------------------


class FakeGenerationAPI:
    """
    Async MockTransport handler standing in for the generation endpoints.

    ``routes`` maps a path to a callable taking the JSON payload and
    returning an httpx.Response. Every call is logged as start/end events.
    """

    def __init__(self, routes, delay: float = 0.0):
        self.routes = routes
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []
        self.events: list[tuple[str, str]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v1")
        payload = json.loads(request.content)
        tag = payload.get("prompt") or payload.get("image")
        self.calls.append((path, payload))
        self.events.append((tag, "start"))
        await asyncio.sleep(self.delay)
        self.events.append((tag, "end"))
        return self.routes[path](payload)


def client_for(api: FakeGenerationAPI) -> GenerationClient:
    return GenerationClient(
        httpx.AsyncClient(transport=httpx.MockTransport(api), base_url="http://test/api/v1")
    )


class UpdateRecorder:
    """on_node_update callback that applies patches to a GraphState and logs them."""

    def __init__(self, state: GraphState):
        self.state = state
        self.updates: list[tuple[str, dict]] = []

    def __call__(self, node_id: str, patch: dict) -> None:
        self.updates.append((node_id, patch))
        self.state.update_node_data(node_id, patch)

    def for_node(self, node_id: str) -> list[dict]:
        return [patch for nid, patch in self.updates if nid == node_id]


class RaisingRecorder(UpdateRecorder):
    """UpdateRecorder whose callback raises for the patches ``should_raise`` picks."""

    def __init__(self, state: GraphState, should_raise):
        super().__init__(state)
        self.should_raise = should_raise

    def __call__(self, node_id: str, patch: dict) -> None:
        if self.should_raise(node_id, patch):
            raise RuntimeError(f"editor rejected update for {node_id}")
        super().__call__(node_id, patch)


def image_ok(payload: dict) -> httpx.Response:
    return httpx.Response(200, json={"imageUrl": f"gs://out/{payload['prompt']}.png", "prompt": payload["prompt"]})


def upscale_ok(payload: dict) -> httpx.Response:
    return httpx.Response(200, json={"imageUrl": payload["image"] + "-up", "upscaleFactor": payload["upscaleFactor"]})


def make_engine(state: GraphState, api: FakeGenerationAPI, cancel_event=None, recorder=None):
    recorder = recorder or UpdateRecorder(state)
    engine = WorkflowEngine(
        state.nodes,
        state.edges,
        recorder,
        client=client_for(api),
        cancel_event=cancel_event,
    )
    return engine, recorder


# ---------------------------------------------------------------------------
# Whole-graph runs
# ---------------------------------------------------------------------------


class TestWorkflowRun:
    @pytest.mark.asyncio
    async def test_text_prompt_feeds_image(self):
        """A text node's text becomes the image node's prompt; the result lands in images."""
        state = GraphState()
        state.add_node("text", node_id="t1", text="draw a cat")
        state.add_node("image", node_id="i1")
        state.connect("t1", "i1", target_handle="prompt-input")

        api = FakeGenerationAPI(
            {"/generate-image": lambda payload: httpx.Response(200, json={"imageUrl": "gs://x/y.png"})}
        )
        engine, recorder = make_engine(state, api)

        result = await engine.run()

        assert result.success is True
        assert result.levels == [["t1"], ["i1"]]
        assert api.calls[0][0] == "/generate-image"
        assert api.calls[0][1]["prompt"] == "draw a cat"
        assert recorder.for_node("i1") == [
            {"executing": True},
            {"images": ["gs://x/y.png"], "executing": False},
        ]
        assert state.get_node("i1").data.images == ["gs://x/y.png"]
        # Source nodes are never reported on
        assert recorder.for_node("t1") == []

    @pytest.mark.asyncio
    async def test_later_level_reads_fresh_results(self):
        state = GraphState()
        state.add_node("text", node_id="t1", text="fox")
        state.add_node("image", node_id="i1", images=["gs://stale.png"])
        state.add_node("upscale", node_id="u1")
        state.connect("t1", "i1", target_handle="prompt-input")
        state.connect("i1", "u1", target_handle="image-input")

        api = FakeGenerationAPI({"/generate-image": image_ok, "/upscale-image": upscale_ok})
        engine, _ = make_engine(state, api)

        result = await engine.run()

        assert result.success is True
        upscale_payload = [p for path, p in api.calls if path == "/upscale-image"][0]
        assert upscale_payload["image"] == "gs://out/fox.png"
        assert state.get_node("u1").data.image == "gs://out/fox.png-up"

    @pytest.mark.asyncio
    async def test_level_runs_concurrently_and_waits_for_all(self):
        """Both level-0 images start before either ends; level 1 starts after both end."""
        state = GraphState()
        state.add_node("image", node_id="a", prompt="a")
        state.add_node("image", node_id="b", prompt="b")
        state.add_node("image", node_id="c", prompt="c")
        state.connect("a", "c", target_handle="image-input")
        state.connect("b", "c", target_handle="image-input")

        api = FakeGenerationAPI({"/generate-image": image_ok}, delay=0.05)
        engine, _ = make_engine(state, api)

        result = await engine.run()

        assert result.levels == [["a", "b"], ["c"]]
        starts = [tag for tag, event in api.events[:2]]
        assert sorted(starts) == ["a", "b"]
        assert api.events[2:4] == [("a", "end"), ("b", "end")] or api.events[2:4] == [("b", "end"), ("a", "end")]
        assert api.events[4] == ("c", "start")
        assert api.calls[2][1]["images"] == ["gs://out/a.png", "gs://out/b.png"]

    @pytest.mark.asyncio
    async def test_failing_node_does_not_stop_siblings(self):
        state = GraphState()
        state.add_node("image", node_id="good", prompt="good")
        state.add_node("image", node_id="bad", prompt="bad")
        state.add_node("upscale", node_id="up_good")
        state.add_node("upscale", node_id="up_bad")
        state.connect("good", "up_good", target_handle="image-input")
        state.connect("bad", "up_bad", target_handle="image-input")

        def image_route(payload):
            if payload["prompt"] == "bad":
                return httpx.Response(500, json={"detail": {"error": "Failed to generate image"}})
            return image_ok(payload)

        api = FakeGenerationAPI({"/generate-image": image_route, "/upscale-image": upscale_ok})
        engine, recorder = make_engine(state, api)

        result = await engine.run()
        statuses = {r.node_id: r.status for r in result.node_results}

        assert result.success is False
        assert statuses == {
            "good": "completed",
            "bad": "error",
            "up_good": "completed",
            "up_bad": "skipped",
        }
        assert recorder.for_node("bad") == [{"executing": True}, {"executing": False}]
        assert state.get_node("bad").data.images == []
        assert state.get_node("up_good").data.image == "gs://out/good.png-up"

    @pytest.mark.asyncio
    async def test_non_string_url_fails_only_its_node(self):
        state = GraphState()
        state.add_node("image", node_id="good", prompt="good")
        state.add_node("image", node_id="bad", prompt="bad")
        state.add_node("upscale", node_id="up")
        state.connect("good", "up", target_handle="image-input")

        def image_route(payload):
            if payload["prompt"] == "bad":
                return httpx.Response(200, json={"imageUrl": 123})
            return image_ok(payload)

        api = FakeGenerationAPI({"/generate-image": image_route, "/upscale-image": upscale_ok})
        engine, recorder = make_engine(state, api)

        result = await engine.run()
        statuses = {r.node_id: r.status for r in result.node_results}

        assert statuses == {"good": "completed", "bad": "error", "up": "completed"}
        assert recorder.for_node("bad") == [{"executing": True}, {"executing": False}]
        assert state.get_node("bad").data.images == []
        assert state.get_node("up").data.image == "gs://out/good.png-up"

    @pytest.mark.asyncio
    async def test_callback_error_fails_only_its_node(self):
        """A callback raising on a's start report fails a; b and its consumer still run."""
        state = GraphState()
        state.add_node("image", node_id="a", prompt="a")
        state.add_node("image", node_id="b", prompt="b")
        state.add_node("upscale", node_id="up")
        state.connect("b", "up", target_handle="image-input")

        recorder = RaisingRecorder(
            state, lambda node_id, patch: node_id == "a" and patch == {"executing": True}
        )
        api = FakeGenerationAPI({"/generate-image": image_ok, "/upscale-image": upscale_ok})
        engine, _ = make_engine(state, api, recorder=recorder)

        result = await engine.run()
        statuses = {r.node_id: r.status for r in result.node_results}

        assert statuses == {"a": "error", "b": "completed", "up": "completed"}
        assert "editor rejected update" in next(r.error for r in result.node_results if r.node_id == "a")
        assert [p["prompt"] for path, p in api.calls if path == "/generate-image"] == ["b"]
        assert recorder.for_node("a") == [{"executing": False}]
        assert state.get_node("up").data.image == "gs://out/b.png-up"

    @pytest.mark.asyncio
    async def test_callback_error_on_result_records_nothing(self):
        state = GraphState()
        state.add_node("image", node_id="a", prompt="a")
        state.add_node("upscale", node_id="up")
        state.connect("a", "up", target_handle="image-input")

        recorder = RaisingRecorder(state, lambda node_id, patch: node_id == "a" and "images" in patch)
        api = FakeGenerationAPI({"/generate-image": image_ok, "/upscale-image": upscale_ok})
        engine, _ = make_engine(state, api, recorder=recorder)

        result = await engine.run()
        statuses = {r.node_id: r.status for r in result.node_results}

        assert statuses == {"a": "error", "up": "skipped"}
        assert [path for path, _ in api.calls] == ["/generate-image"]
        assert recorder.for_node("a") == [{"executing": True}, {"executing": False}]

    @pytest.mark.asyncio
    async def test_callback_failing_every_report_does_not_abort_level(self):
        state = GraphState()
        state.add_node("image", node_id="a", prompt="a")
        state.add_node("image", node_id="b", prompt="b")

        recorder = RaisingRecorder(state, lambda node_id, patch: node_id == "a")
        api = FakeGenerationAPI({"/generate-image": image_ok})
        engine, _ = make_engine(state, api, recorder=recorder)

        result = await engine.run()
        statuses = {r.node_id: r.status for r in result.node_results}

        assert statuses == {"a": "error", "b": "completed"}
        assert recorder.for_node("a") == []
        assert state.get_node("b").data.images == ["gs://out/b.png"]

    @pytest.mark.asyncio
    async def test_executing_always_cleared(self):
        state = GraphState()
        state.add_node("image", node_id="i1", prompt="x")
        state.add_node("agent", node_id="a1")  # no prompt anywhere: skipped
        state.add_node("video", node_id="v1", prompt="boom")

        def explode(payload):
            raise RuntimeError("backend crashed")

        api = FakeGenerationAPI({"/generate-image": image_ok, "/generate-video": explode})
        engine, recorder = make_engine(state, api)

        await engine.run()

        for node_id in ("i1", "a1", "v1"):
            patches = recorder.for_node(node_id)
            assert patches[0] == {"executing": True}
            assert patches[-1]["executing"] is False
            assert state.get_node(node_id).data.executing is False

    @pytest.mark.asyncio
    async def test_skipped_node_makes_no_remote_call(self):
        state = GraphState()
        state.add_node("resize", node_id="r1")

        api = FakeGenerationAPI({})
        engine, _ = make_engine(state, api)

        result = await engine.run()

        assert api.calls == []
        assert result.node_results[0].status == "skipped"
        assert "image" in result.node_results[0].error

    @pytest.mark.asyncio
    async def test_image_without_prompt_keeps_images(self):
        state = GraphState()
        state.add_node("image", node_id="i1", images=["gs://previous.png"])

        api = FakeGenerationAPI({"/generate-image": image_ok})
        engine, recorder = make_engine(state, api)

        result = await engine.run()

        assert api.calls == []
        assert result.node_results[0].status == "skipped"
        assert recorder.for_node("i1") == [{"executing": True}, {"executing": False}]
        assert state.get_node("i1").data.images == ["gs://previous.png"]

    @pytest.mark.asyncio
    async def test_cycle_runs_as_forced_level(self):
        state = GraphState()
        state.add_node("image", node_id="a", prompt="a")
        state.add_node("image", node_id="b", prompt="b")
        state.connect("a", "b", target_handle="image-input")
        state.connect("b", "a", target_handle="image-input")

        api = FakeGenerationAPI({"/generate-image": image_ok})
        engine, _ = make_engine(state, api)

        result = await engine.run()

        assert result.levels == [["a", "b"]]
        assert result.forced_nodes == ["a", "b"]
        assert len(api.calls) == 2

    @pytest.mark.asyncio
    async def test_empty_graph(self):
        engine, _ = make_engine(GraphState(), FakeGenerationAPI({}))

        result = await engine.run()

        assert result.success is True
        assert result.levels == []
        assert result.node_results == []

    @pytest.mark.asyncio
    async def test_cancel_between_levels(self):
        state = GraphState()
        state.add_node("image", node_id="i1", prompt="first")
        state.add_node("upscale", node_id="u1")
        state.connect("i1", "u1", target_handle="image-input")

        cancel_event = asyncio.Event()

        def image_then_cancel(payload):
            cancel_event.set()
            return image_ok(payload)

        api = FakeGenerationAPI({"/generate-image": image_then_cancel, "/upscale-image": upscale_ok})
        engine, recorder = make_engine(state, api, cancel_event=cancel_event)

        result = await engine.run()

        assert result.cancelled is True
        assert result.success is False
        assert [path for path, _ in api.calls] == ["/generate-image"]
        assert recorder.for_node("u1") == []
        # The level already in flight still committed its result
        assert state.get_node("i1").data.images == ["gs://out/first.png"]

    @pytest.mark.asyncio
    async def test_snapshot_not_mutated_by_own_reports(self):
        """Later nodes read this run's results, not whatever the callback did to state."""
        state = GraphState()
        state.add_node("image", node_id="i1", prompt="p")
        state.add_node("upscale", node_id="u1")
        state.connect("i1", "u1", target_handle="image-input")

        api = FakeGenerationAPI({"/generate-image": image_ok, "/upscale-image": upscale_ok})

        def drop_updates(node_id, patch):
            pass

        engine = WorkflowEngine(state.nodes, state.edges, drop_updates, client=client_for(api))
        result = await engine.run()

        assert result.success is True
        assert api.calls[1][1]["image"] == "gs://out/p.png"


# ---------------------------------------------------------------------------
# Single-node execution
# ---------------------------------------------------------------------------


class TestExecuteNode:
    @pytest.mark.asyncio
    async def test_agent_uses_instructions(self):
        state = GraphState()
        state.add_node("agent", node_id="a1", instructions="Summarize")

        api = FakeGenerationAPI({"/generate-text": lambda payload: httpx.Response(200, json={"text": "ok"})})
        engine, recorder = make_engine(state, api)

        result = await engine.execute_node("a1")

        assert result.status == "completed"
        assert api.calls == [
            ("/generate-text", {"prompt": "Summarize", "files": [], "model": "gemini-2.5-flash"})
        ]
        assert recorder.for_node("a1") == [
            {"executing": True},
            {"output": "ok", "executing": False},
        ]
        assert state.get_node("a1").data.output == "ok"

    @pytest.mark.asyncio
    async def test_downstream_not_rerun(self):
        state = GraphState()
        state.add_node("image", node_id="i1", prompt="p")
        state.add_node("upscale", node_id="u1")
        state.connect("i1", "u1", target_handle="image-input")

        api = FakeGenerationAPI({"/generate-image": image_ok})
        engine, recorder = make_engine(state, api)

        await engine.execute_node("i1")

        assert [path for path, _ in api.calls] == ["/generate-image"]
        assert recorder.for_node("u1") == []

    @pytest.mark.asyncio
    async def test_later_call_sees_earlier_result(self):
        state = GraphState()
        state.add_node("image", node_id="i1", prompt="p")
        state.add_node("resize", node_id="r1", aspectRatio="9:16")
        state.connect("i1", "r1", target_handle="image-input")

        api = FakeGenerationAPI(
            {
                "/generate-image": image_ok,
                "/resize-image": lambda payload: httpx.Response(200, json={"imageUrl": "gs://resized.png"}),
            }
        )
        engine, _ = make_engine(state, api)

        await engine.execute_node("i1")
        result = await engine.execute_node("r1")

        assert result.status == "completed"
        assert api.calls[1][1] == {"image": "gs://out/p.png", "aspectRatio": "9:16"}
        assert state.get_node("r1").data.output == "gs://resized.png"

    @pytest.mark.asyncio
    async def test_unknown_node(self):
        engine, recorder = make_engine(GraphState(), FakeGenerationAPI({}))

        assert await engine.execute_node("ghost") is None
        assert recorder.updates == []

    @pytest.mark.asyncio
    async def test_source_node_not_executed(self):
        state = GraphState()
        state.add_node("text", node_id="t1", text="hello")
        engine, recorder = make_engine(state, FakeGenerationAPI({}))

        assert await engine.execute_node("t1") is None
        assert recorder.updates == []
