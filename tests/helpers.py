"""Test helpers: fake collaborators and signed trust metadata."""

import base64
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from dockcli.core.engine_client import PLUGIN_NAME_HEADER
from dockcli.core.types import CreateResponse, JSONMessage, SignedTarget
from dockcli.exceptions import RemoteOperationError
from dockcli.trust.verify import canonical_json

DIGEST = "sha256:" + "a" * 64
OTHER_DIGEST = "sha256:" + "b" * 64


class FakeStream:
    """Stands in for a JSONMessageStream."""

    def __init__(self, messages: List[Dict[str, Any]], headers: Optional[Dict[str, str]] = None):
        self._messages = [JSONMessage.from_api(m) for m in messages]
        self.headers = headers or {}
        self.was_cancelled = False
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for msg in self._messages:
            yield msg


class FakeEngine:
    """Records engine calls; results are scripted per test."""

    def __init__(self, api_version: str = "1.47"):
        self.api_version = api_version
        self.calls: List[tuple] = []
        self.created: List[Dict[str, Any]] = []
        self.create_results: List[Any] = []
        self.pull_messages: List[Dict[str, Any]] = [{"status": "Pull complete", "id": "abc"}]
        self.privileges: list = []
        self.install_error: Optional[Exception] = None
        self.install_messages: List[Dict[str, Any]] = [{"status": "Downloading"}]
        self.plugin_name = ""
        self.push_messages: List[Dict[str, Any]] = [{"status": "Pushed"}]
        self.tag_error: Optional[Exception] = None
        self.remove_errors: Dict[str, Exception] = {}
        self.tasks: list = []
        self.services: Dict[str, Dict[str, Any]] = {}
        self.nodes: Dict[str, Dict[str, Any]] = {}
        self.copied: List[tuple] = []
        self.plugin_contexts: List[bytes] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def container_create(self, config, host_config, networking_config=None, platform=None, name=""):
        self.calls.append(("container_create", config["Image"]))
        self.created.append(
            {"config": dict(config), "host_config": dict(host_config), "platform": platform, "name": name}
        )
        result = self.create_results.pop(0) if self.create_results else CreateResponse(id="c0ffee")
        if isinstance(result, Exception):
            raise result
        return result

    async def copy_to_container(self, container_id, path, archive):
        self.calls.append(("copy_to_container", container_id, path))
        self.copied.append((container_id, path, archive))

    async def image_create(self, image, registry_auth="", platform=""):
        self.calls.append(("image_create", image))
        return FakeStream(self.pull_messages)

    async def image_tag(self, source, target):
        self.calls.append(("image_tag", source, target))
        if self.tag_error is not None:
            raise self.tag_error

    async def plugin_install(self, name, options):
        self.calls.append(("plugin_install", name, options.remote_ref))
        if self.install_error is not None:
            raise self.install_error
        if (
            not options.accept_all_permissions
            and options.accept_permissions is not None
            and self.privileges
        ):
            if not await options.accept_permissions(self.privileges):
                return None
        headers = {PLUGIN_NAME_HEADER: self.plugin_name} if self.plugin_name else {}
        return FakeStream(self.install_messages, headers)

    async def plugin_set(self, name, args):
        self.calls.append(("plugin_set", name, list(args)))

    async def plugin_enable(self, name, timeout=0):
        self.calls.append(("plugin_enable", name))

    async def plugin_create(self, name, context):
        self.calls.append(("plugin_create", name))
        self.plugin_contexts.append(context)

    async def plugin_push(self, name, registry_auth):
        self.calls.append(("plugin_push", name))
        return FakeStream(self.push_messages)

    async def plugin_remove(self, name, force=False):
        self.calls.append(("plugin_remove", name, force))
        if name in self.remove_errors:
            raise self.remove_errors[name]

    async def task_list(self, filters):
        self.calls.append(("task_list", filters))
        return list(self.tasks)

    async def service_inspect(self, service_id):
        if service_id not in self.services:
            raise RemoteOperationError(f"service {service_id} not found", status=404)
        return self.services[service_id]

    async def node_inspect(self, node_id):
        if node_id not in self.nodes:
            raise RemoteOperationError(f"node {node_id} not found", status=404)
        return self.nodes[node_id]


class FakeTrustRepository:
    """In-memory trust data with a factory that counts lookups."""

    def __init__(
        self,
        targets: Optional[List[SignedTarget]] = None,
        roles: Optional[Dict[str, List[str]]] = None,
        error: Optional[Exception] = None,
        roles_error: Optional[Exception] = None,
    ):
        self.targets = targets or []
        self.roles = roles or {"root": ["rootkey"], "targets": ["repokey"]}
        self.error = error
        self.roles_error = roles_error
        self.opened: list = []
        self.lookups: List[str] = []

    async def factory(self, ref):
        self.opened.append(ref)
        if self.error is not None:
            raise self.error
        return self

    async def get_all_target_metadata_by_name(self, name=""):
        self.lookups.append(name)
        return [target for target in self.targets if not name or target.name == name]

    async def list_roles(self):
        if self.roles_error is not None:
            raise self.roles_error
        return dict(self.roles)


class FakeSigner:
    def __init__(self, gun: str):
        self.gun = gun
        self.initialized = False
        self.added: List[tuple] = []

    async def initialize(self):
        self.initialized = True

    async def add_target(self, tag, digest, size):
        self.added.append((tag, digest, size))


# -- signed TUF metadata -----------------------------------------------------


class SigningKey:
    """An Ed25519 key in the TUF key format."""

    def __init__(self) -> None:
        self.private = ed25519.Ed25519PrivateKey.generate()
        raw = self.private.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.public = {
            "keytype": "ed25519",
            "keyval": {"public": base64.b64encode(raw).decode("ascii"), "private": None},
        }
        self.keyid = hashlib.sha256(canonical_json(self.public)).hexdigest()

    def sign(self, signed: Dict[str, Any]) -> Dict[str, str]:
        signature = self.private.sign(canonical_json(signed))
        return {
            "keyid": self.keyid,
            "method": "eddsa",
            "sig": base64.b64encode(signature).decode("ascii"),
        }


def expires_in(days: int) -> str:
    when = datetime.now(timezone.utc) + timedelta(days=days)
    return when.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def signed_document(signed: Dict[str, Any], *keys: SigningKey) -> Dict[str, Any]:
    return {"signed": signed, "signatures": [key.sign(signed) for key in keys]}


def target_meta(digest: str, length: int = 1234) -> Dict[str, Any]:
    raw = bytes.fromhex(digest.split(":", 1)[1])
    return {"hashes": {"sha256": base64.b64encode(raw).decode("ascii")}, "length": length}


def root_document(root_key: SigningKey, targets_key: SigningKey, version: int = 1, days: int = 30):
    signed = {
        "_type": "Root",
        "version": version,
        "expires": expires_in(days),
        "keys": {root_key.keyid: root_key.public, targets_key.keyid: targets_key.public},
        "roles": {
            "root": {"keyids": [root_key.keyid], "threshold": 1},
            "targets": {"keyids": [targets_key.keyid], "threshold": 1},
        },
    }
    return signed_document(signed, root_key)


def targets_document(
    targets_key: SigningKey,
    targets: Dict[str, Any],
    delegations: Optional[List[tuple]] = None,
    days: int = 30,
):
    """Top-level targets metadata; delegations are (role name, key) pairs."""
    keys = {}
    roles = []
    for name, key in delegations or []:
        keys[key.keyid] = key.public
        roles.append({"name": name, "keyids": [key.keyid], "threshold": 1, "paths": [""]})
    signed = {
        "_type": "Targets",
        "version": 1,
        "expires": expires_in(days),
        "targets": targets,
        "delegations": {"keys": keys, "roles": roles},
    }
    return signed_document(signed, targets_key)


def delegation_document(key: SigningKey, targets: Dict[str, Any], days: int = 30):
    signed = {"_type": "Targets", "version": 1, "expires": expires_in(days), "targets": targets}
    return signed_document(signed, key)
