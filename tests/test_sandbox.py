import json

import httpx
import pytest

from secvirt.commands import ProcessInfo
from secvirt.options import ErrorResponse, Options, SandboxDetail
from secvirt.sandbox import Sandbox


class FakeService:
    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get((request.url.port, request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"code": 404, "message": "no route"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def find(self, path):
        return [r for r in self.requests if r.url.path == path]


DETAIL = {"id": "sbx-1", "user": "alice", "state": "running", "health_ports": [8000]}


def make(routes=None, options=None):
    all_routes = {(8994, "POST", "/secvirt/v2/sandboxes"): DETAIL}
    all_routes.update(routes or {})
    service = FakeService(all_routes)
    sbx = Sandbox.create(options, transport=httpx.MockTransport(service))
    return sbx, service


def test_create_with_host_gives_filesystem():
    sbx, service = make(
        {(8993, "POST", "/filesystem.Filesystem/MakeDir"): {}},
        Options(host="10.20.152.105"),
    )
    assert service.requests[0].url.host == "10.20.152.105"
    assert sbx.filesystem.mkdir("/app/ttt") is True
    request = service.find("/filesystem.Filesystem/MakeDir")[0]
    assert request.url.host == "10.20.152.105"
    assert request.headers["X-HOST"] == "48008-sbx-1.proxy.com"
    assert request.headers["X-User"] == "default"
    sbx.close()


def test_create_sends_defaults_and_parses_detail():
    sbx, service = make()
    body = json.loads(service.requests[0].content)
    assert body == {"user_id": "default", "template": "codeide:latest", "health_ports": None}
    assert sbx.id == "sbx-1"
    assert sbx.user == "alice"
    assert sbx.detail.state == "running"
    assert sbx.proxy_base_url == "http://localhost:8993"


def test_create_error_raises_error_response():
    service = FakeService(
        {
            (8994, "POST", "/secvirt/v2/sandboxes"): lambda r: httpx.Response(
                500, json={"code": 500, "message": "boom"}
            )
        }
    )
    with pytest.raises(ErrorResponse) as info:
        Sandbox.create(transport=httpx.MockTransport(service))
    assert str(info.value) == "Error[500]: boom"


def test_proxy_request_sets_routing_headers():
    sbx, service = make({(8993, "GET", "/x"): {"ok": True}})
    response = sbx.proxy_request(8000, "GET", "/x", headers={"Accept": "application/json"})
    assert response.json() == {"ok": True}
    request = service.find("/x")[0]
    assert request.headers["X-HOST"] == "8000-sbx-1.proxy.com"
    assert request.headers["X-User"] == "alice"
    assert request.headers["Accept"] == "application/json"


def test_get_sandbox():
    sbx, _ = make({(8994, "POST", "/secvirt/v2/sandboxes/other"): {"id": "other", "cpu_limit": 2}})
    detail = sbx.get_sandbox("other")
    assert detail == SandboxDetail(id="other", cpu_limit=2)


@pytest.mark.parametrize("action", ["stop", "start", "destroy"])
def test_lifecycle_actions_post_to_paths(action):
    path = f"/secvirt/v2/sandboxes/sbx-9/{action}"
    sbx, service = make({(8994, "POST", path): lambda r: httpx.Response(200)})
    getattr(sbx, f"{action}_sandbox")("sbx-9")
    assert len(service.find(path)) == 1


def test_lifecycle_error_raises():
    path = "/secvirt/v2/sandboxes/sbx-9/stop"
    sbx, _ = make(
        {(8994, "POST", path): lambda r: httpx.Response(404, json={"code": 404, "message": "gone"})}
    )
    with pytest.raises(ErrorResponse) as info:
        sbx.stop_sandbox("sbx-9")
    assert info.value.code == 404


def test_cmd_list_through_sandbox():
    sbx, _ = make(
        {
            (8993, "POST", "/process.Process/List"): {
                "processes": [{"pid": 7, "config": {"cmd": "/bin/bash"}}]
            }
        }
    )
    assert sbx.cmd.list() == [ProcessInfo(pid=7, cmd="/bin/bash")]