"""Tests for the engine API client against a local aiohttp server."""

import contextlib
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from dockcli.core.engine_client import PLUGIN_NAME_HEADER, REGISTRY_AUTH_HEADER, EngineClient
from dockcli.core.types import EngineConfig, PluginInstallOptions
from dockcli.exceptions import (
    EngineConnectionError,
    InvalidReferenceError,
    NotFoundError,
    RemoteOperationError,
)

PRIVILEGES = [{"Name": "network", "Description": "", "Value": ["host"]}]


@contextlib.asynccontextmanager
async def engine(routes):
    app = web.Application()
    app.router.add_routes(routes)
    server = TestServer(app)
    await server.start_server()
    try:
        config = EngineConfig(host=f"http://127.0.0.1:{server.port}", api_version="1.47")
        async with EngineClient(config) as client:
            yield client
    finally:
        await server.close()


def plugin_routes(requests, pull_status=200, privileges_status=200):
    async def privileges(request):
        requests.append(("privileges", dict(request.query), request.headers.get(REGISTRY_AUTH_HEADER)))
        if privileges_status != 200:
            return web.json_response({"message": "authentication required"}, status=privileges_status)
        return web.json_response(PRIVILEGES)

    async def pull(request):
        body = await request.json()
        requests.append(("pull", dict(request.query), request.headers.get(REGISTRY_AUTH_HEADER), body))
        return web.Response(
            text='{"status":"Downloading"}\n{"status":"Installed"}\n',
            status=pull_status,
            headers={PLUGIN_NAME_HEADER: "vieux/sshfs:latest"},
            content_type="application/json",
        )

    return [
        web.get("/v1.47/plugins/privileges", privileges),
        web.post("/v1.47/plugins/pull", pull),
    ]


@pytest.mark.asyncio
class TestContainers:
    async def test_create_missing_image(self):
        async def create(request):
            return web.json_response({"message": "No such image: busybox:latest"}, status=404)

        async with engine([web.post("/v1.47/containers/create", create)]) as client:
            with pytest.raises(NotFoundError, match="No such image: busybox:latest") as exc_info:
                await client.container_create({"Image": "busybox"}, {})

        assert exc_info.value.status == 404

    async def test_create_returns_id_and_warnings(self):
        seen = {}

        async def create(request):
            seen["query"] = dict(request.query)
            seen["body"] = await request.json()
            return web.json_response({"Id": "abc123", "Warnings": ["low memory"]}, status=201)

        async with engine([web.post("/v1.47/containers/create", create)]) as client:
            response = await client.container_create(
                {"Image": "busybox"}, {"Memory": 1}, name="web", platform="linux/amd64"
            )

        assert response.id == "abc123"
        assert response.warnings == ["low memory"]
        assert seen["query"] == {"name": "web", "platform": "linux/amd64"}
        assert seen["body"]["HostConfig"] == {"Memory": 1}

    async def test_server_error(self):
        async def create(request):
            return web.Response(text="boom", status=500)

        async with engine([web.post("/v1.47/containers/create", create)]) as client:
            with pytest.raises(RemoteOperationError, match="boom"):
                await client.container_create({"Image": "busybox"}, {})


@pytest.mark.asyncio
class TestImages:
    async def test_pull_query_and_auth(self):
        seen = {}

        async def create(request):
            seen["query"] = dict(request.query)
            seen["auth"] = request.headers.get(REGISTRY_AUTH_HEADER)
            return web.Response(text='{"status":"Pulling"}', content_type="application/json")

        async with engine([web.post("/v1.47/images/create", create)]) as client:
            stream = await client.image_create("busybox:musl", registry_auth="e30=")
            async with stream:
                messages = [msg async for msg in stream]

        assert seen == {"query": {"fromImage": "busybox", "tag": "musl"}, "auth": "e30="}
        assert messages[0].status == "Pulling"

    async def test_tag(self):
        seen = {}

        async def tag(request):
            seen["source"] = request.match_info["name"]
            seen["query"] = dict(request.query)
            return web.Response(status=201)

        async with engine([web.post("/v1.47/images/{name:.*}/tag", tag)]) as client:
            await client.image_tag("sha256:" + "a" * 64, "busybox")

        assert seen["query"] == {"repo": "busybox", "tag": "latest"}

    async def test_tag_refuses_digest_target(self):
        async with engine([]) as client:
            with pytest.raises(InvalidReferenceError, match="digest reference"):
                await client.image_tag("busybox", "busybox@sha256:" + "a" * 64)


@pytest.mark.asyncio
class TestPluginInstall:
    async def test_accept_all_never_calls_back(self):
        requests = []

        async def accept(privileges):
            raise AssertionError("accept callback must not be invoked")

        options = PluginInstallOptions(
            registry_auth="e30=",
            remote_ref="docker.io/vieux/sshfs:latest",
            accept_all_permissions=True,
            accept_permissions=accept,
        )

        async with engine(plugin_routes(requests)) as client:
            stream = await client.plugin_install("", options)
            async with stream:
                assert stream.headers[PLUGIN_NAME_HEADER] == "vieux/sshfs:latest"
                statuses = [msg.status async for msg in stream]

        assert statuses == ["Downloading", "Installed"]
        pull = requests[-1]
        assert pull[0] == "pull"
        assert pull[1] == {"remote": "docker.io/vieux/sshfs:latest"}
        assert pull[3] == PRIVILEGES

    async def test_declined_sends_no_pull(self):
        requests = []
        asked = []

        async def decline(privileges):
            asked.append([p.name for p in privileges])
            return False

        options = PluginInstallOptions(
            registry_auth="e30=",
            remote_ref="docker.io/vieux/sshfs:latest",
            accept_permissions=decline,
        )

        async with engine(plugin_routes(requests)) as client:
            assert await client.plugin_install("", options) is None

        assert asked == [["network"]]
        assert [r[0] for r in requests] == ["privileges"]

    async def test_unauthorized_refreshes_credentials_once(self):
        requests = []
        refreshed = []

        async def privilege_func():
            refreshed.append(True)
            return "bmV3"

        options = PluginInstallOptions(
            registry_auth="b2xk",
            remote_ref="docker.io/vieux/sshfs:latest",
            accept_all_permissions=True,
            privilege_func=privilege_func,
        )
        attempts = []

        async def privileges(request):
            attempts.append(request.headers.get(REGISTRY_AUTH_HEADER))
            if len(attempts) == 1:
                return web.json_response({"message": "authentication required"}, status=401)
            return web.json_response(PRIVILEGES)

        async def pull(request):
            requests.append(request.headers.get(REGISTRY_AUTH_HEADER))
            return web.Response(text='{"status":"ok"}', content_type="application/json")

        routes = [
            web.get("/v1.47/plugins/privileges", privileges),
            web.post("/v1.47/plugins/pull", pull),
        ]
        async with engine(routes) as client:
            stream = await client.plugin_install("sshfs:latest", options)
            async with stream:
                [msg async for msg in stream]

        assert refreshed == [True]
        assert attempts == ["b2xk", "bmV3"]
        assert requests == ["bmV3"]

    async def test_unauthorized_without_refresh(self):
        options = PluginInstallOptions(
            registry_auth="b2xk", remote_ref="docker.io/vieux/sshfs:latest", accept_all_permissions=True
        )
        async with engine(plugin_routes([], privileges_status=401)) as client:
            with pytest.raises(RemoteOperationError, match="authentication required"):
                await client.plugin_install("", options)

    async def test_invalid_remote(self):
        options = PluginInstallOptions(registry_auth="", remote_ref="Not A Ref")
        async with engine([]) as client:
            with pytest.raises(InvalidReferenceError, match="invalid remote reference"):
                await client.plugin_install("", options)

    async def test_set_and_enable(self):
        seen = []

        async def set_(request):
            seen.append(("set", request.match_info["name"], await request.json()))
            return web.Response(status=204)

        async def enable(request):
            seen.append(("enable", request.match_info["name"], dict(request.query)))
            return web.Response(status=200)

        routes = [
            web.post("/v1.47/plugins/{name:.*}/set", set_),
            web.post("/v1.47/plugins/{name:.*}/enable", enable),
        ]
        async with engine(routes) as client:
            await client.plugin_set("sshfs:latest", ["DEBUG=1"])
            await client.plugin_enable("sshfs:latest")

        assert seen == [
            ("set", "sshfs:latest", ["DEBUG=1"]),
            ("enable", "sshfs:latest", {"timeout": "0"}),
        ]


@pytest.mark.asyncio
class TestSwarm:
    async def test_task_list_filters(self):
        seen = {}

        async def tasks(request):
            seen["filters"] = json.loads(request.query["filters"])
            return web.json_response(
                [
                    {
                        "ID": "t1",
                        "ServiceID": "s1",
                        "NodeID": "n1",
                        "Slot": 1,
                        "DesiredState": "running",
                        "Status": {"State": "running"},
                        "Spec": {"ContainerSpec": {"Image": "nginx:latest"}},
                    }
                ]
            )

        async with engine([web.get("/v1.47/tasks", tasks)]) as client:
            result = await client.task_list({"label": ["com.docker.stack.namespace=web"]})

        assert seen["filters"] == {"label": {"com.docker.stack.namespace=web": True}}
        assert result[0].id == "t1"
        assert result[0].image == "nginx:latest"
        assert result[0].state == "running"


@pytest.mark.asyncio
async def test_connection_refused():
    async with EngineClient(EngineConfig(host="tcp://127.0.0.1:1")) as client:
        with pytest.raises(EngineConnectionError, match="Is the daemon running"):
            await client.container_create({"Image": "busybox"}, {})
