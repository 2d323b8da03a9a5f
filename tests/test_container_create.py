"""Tests for container creation: pull policy, retries, trust and the CID file."""

import io
import json
import tarfile

import pytest

from dockcli.commands.container import (
    CreateOptions,
    is_localhost,
    parse_container_config,
    run_create,
    validate_pull_opt,
)
from dockcli.core.types import CreateResponse, SignedTarget
from dockcli.exceptions import (
    CIDFileError,
    InvalidArgumentError,
    NotFoundError,
    RemoteOperationError,
    TagRestoreError,
)
from tests.helpers import DIGEST


def not_found():
    return NotFoundError("No such image: busybox:latest", status=404)


class TestValidatePullOpt:
    @pytest.mark.parametrize("value", ["always", "missing", "never", ""])
    def test_valid(self, value):
        validate_pull_opt(value)

    @pytest.mark.parametrize("value", ["sometimes", "Always", "MISSING", " never"])
    def test_invalid(self, value):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validate_pull_opt(value)
        assert str(exc_info.value) == (
            f"invalid pull option: '{value}': must be one of "
            '"always", "missing" or "never"'
        )


class TestParseContainerConfig:
    def test_flags_map_to_request(self):
        options = CreateOptions(
            image="busybox",
            command=["ls", "-l"],
            labels=["tier=web", "flag"],
            memory="512m",
            dns=["8.8.8.8"],
            volumes=["/host:/data:ro", "/anon"],
            workdir="/srv",
            user="nobody",
            entrypoint="sh",
        )

        container = parse_container_config(options, {"A": "1"})

        assert container.config["Cmd"] == ["ls", "-l"]
        assert container.config["Env"] == ["A=1"]
        assert container.config["Labels"] == {"tier": "web", "flag": ""}
        assert container.config["Entrypoint"] == ["sh"]
        assert container.config["Volumes"] == {"/anon": {}}
        assert container.host_config["Memory"] == 512 * 1024 * 1024
        assert container.host_config["Binds"] == ["/host:/data:ro"]
        assert container.host_config["Dns"] == ["8.8.8.8"]

    def test_bare_env_takes_client_value(self, monkeypatch):
        monkeypatch.setenv("FROM_CLIENT", "yes")
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        container = parse_container_config(
            CreateOptions(image="busybox"), {"FROM_CLIENT": None, "NOT_SET_ANYWHERE": None}
        )
        assert container.config["Env"] == ["FROM_CLIENT=yes", "NOT_SET_ANYWHERE"]

    def test_bad_memory(self):
        with pytest.raises(InvalidArgumentError):
            parse_container_config(CreateOptions(image="busybox", memory="lots"), {})


@pytest.mark.asyncio
class TestPullPolicy:
    """Not-found handling under each pull policy."""

    async def test_invalid_policy_rejected_before_engine(self, make_context, fake_engine):
        ctx = make_context()

        with pytest.raises(InvalidArgumentError, match="invalid pull option: 'sometimes'"):
            await run_create(ctx, CreateOptions(image="busybox", pull="sometimes"))

        assert fake_engine.calls == []

    async def test_missing_pulls_once_and_retries_once(self, make_context, fake_engine):
        fake_engine.create_results = [not_found(), CreateResponse(id="abc123")]
        ctx = make_context()

        container_id = await run_create(ctx, CreateOptions(image="busybox"))

        assert container_id == "abc123"
        assert fake_engine.names() == ["container_create", "image_create", "container_create"]
        assert "Unable to find image 'busybox:latest' locally" in ctx.err.getvalue()
        assert "abc: Pull complete" in ctx.err.getvalue()
        assert ctx.out.getvalue() == "abc123\n"

    async def test_second_not_found_is_terminal(self, make_context, fake_engine):
        fake_engine.create_results = [not_found(), not_found(), CreateResponse(id="never")]
        ctx = make_context()

        with pytest.raises(NotFoundError):
            await run_create(ctx, CreateOptions(image="busybox"))

        assert fake_engine.names() == ["container_create", "image_create", "container_create"]
        assert ctx.out.getvalue() == ""

    async def test_never_does_not_pull(self, make_context, fake_engine):
        fake_engine.create_results = [not_found()]
        ctx = make_context()

        with pytest.raises(NotFoundError):
            await run_create(ctx, CreateOptions(image="busybox", pull="never"))

        assert fake_engine.names() == ["container_create"]
        assert "Unable to find image" not in ctx.err.getvalue()

    async def test_always_pulls_first(self, make_context, fake_engine):
        ctx = make_context()

        await run_create(ctx, CreateOptions(image="busybox:musl", pull="always"))

        assert fake_engine.calls[:2] == [
            ("image_create", "busybox:musl"),
            ("container_create", "busybox:musl"),
        ]

    async def test_other_errors_not_retried(self, make_context, fake_engine):
        fake_engine.create_results = [RemoteOperationError("conflict", status=409)]
        ctx = make_context()

        with pytest.raises(RemoteOperationError, match="conflict"):
            await run_create(ctx, CreateOptions(image="busybox"))

        assert fake_engine.names() == ["container_create"]

    async def test_image_id_is_not_pulled(self, make_context, fake_engine):
        fake_engine.create_results = [not_found()]
        ctx = make_context()

        with pytest.raises(NotFoundError):
            await run_create(ctx, CreateOptions(image="c" * 64))

        assert fake_engine.names() == ["container_create"]

    async def test_quiet_suppresses_pull_output(self, make_context, fake_engine):
        fake_engine.create_results = [not_found(), CreateResponse(id="abc123")]
        ctx = make_context()

        await run_create(ctx, CreateOptions(image="busybox", quiet=True))

        assert ctx.err.getvalue() == ""
        assert ctx.out.getvalue() == "abc123\n"


@pytest.mark.asyncio
class TestCIDFile:
    async def test_existing_file_fails_before_create(self, make_context, fake_engine, tmp_path):
        cid_path = tmp_path / "cid"
        cid_path.write_text("old")
        ctx = make_context()

        with pytest.raises(CIDFileError, match="container ID file found"):
            await run_create(ctx, CreateOptions(image="busybox", cidfile=str(cid_path)))

        assert fake_engine.calls == []
        assert cid_path.read_text() == "old"

    async def test_written_file_is_kept(self, make_context, fake_engine, tmp_path):
        cid_path = tmp_path / "cid"
        fake_engine.create_results = [CreateResponse(id="abc123")]

        await run_create(make_context(), CreateOptions(image="busybox", cidfile=str(cid_path)))

        assert cid_path.read_text() == "abc123"

    async def test_unwritten_file_removed_on_failure(self, make_context, fake_engine, tmp_path):
        cid_path = tmp_path / "cid"
        fake_engine.create_results = [RemoteOperationError("boom")]

        with pytest.raises(RemoteOperationError):
            await run_create(make_context(), CreateOptions(image="busybox", cidfile=str(cid_path)))

        assert not cid_path.exists()


@pytest.mark.asyncio
class TestTrustedCreate:
    async def test_trusted_pull_is_tagged(self, make_context, settings, fake_engine, fake_trust):
        fake_trust.targets = [SignedTarget("latest", DIGEST, 10, "targets/releases")]
        fake_engine.create_results = [not_found(), CreateResponse(id="abc123")]
        ctx = make_context(settings=settings.model_copy(update={"content_trust": True}))

        await run_create(ctx, CreateOptions(image="busybox", untrusted=False))

        pinned = f"busybox@{DIGEST}"
        assert fake_engine.calls == [
            ("container_create", pinned),
            ("image_create", pinned),
            ("image_tag", pinned, "busybox:latest"),
            ("container_create", pinned),
        ]
        assert f"Tagging {pinned} as busybox:latest" in ctx.err.getvalue()

    async def test_untrusted_skips_trust_lookup(self, make_context, fake_engine, fake_trust):
        await run_create(make_context(), CreateOptions(image="busybox", untrusted=True))

        assert fake_trust.opened == []
        assert fake_engine.calls == [("container_create", "busybox")]

    async def test_tag_failure_does_not_undo_pull(self, make_context, fake_engine, fake_trust):
        fake_trust.targets = [SignedTarget("latest", DIGEST, 10, "targets")]
        fake_engine.create_results = [not_found()]
        fake_engine.tag_error = RemoteOperationError("tag refused")

        with pytest.raises(TagRestoreError):
            await run_create(make_context(), CreateOptions(image="busybox", untrusted=False))

        assert fake_engine.names() == ["container_create", "image_create", "image_tag"]


@pytest.mark.asyncio
class TestCreateExtras:
    async def test_warnings_printed(self, make_context, fake_engine):
        fake_engine.create_results = [CreateResponse(id="abc", warnings=["low memory"])]
        ctx = make_context()

        await run_create(ctx, CreateOptions(image="busybox"))

        assert "WARNING: low memory\n" in ctx.err.getvalue()
        assert ctx.out.getvalue() == "abc\n"

    async def test_oom_and_dns_warnings(self, make_context):
        ctx = make_context()

        await run_create(
            ctx, CreateOptions(image="busybox", oom_kill_disable=True, dns=["127.0.0.53"])
        )

        err = ctx.err.getvalue()
        assert "Disabling the OOM killer" in err
        assert "Localhost DNS setting (--dns=127.0.0.53)" in err

    async def test_platform_requires_api_1_41(self, make_context, fake_engine):
        fake_engine.api_version = "1.40"
        await run_create(make_context(), CreateOptions(image="busybox", platform="linux/arm64"))
        assert fake_engine.created[-1]["platform"] is None

        fake_engine.api_version = "1.41"
        await run_create(make_context(), CreateOptions(image="busybox", platform="linux/arm64"))
        assert fake_engine.created[-1]["platform"] == "linux/arm64"

    async def test_proxy_settings_injected(self, make_context, config_file, fake_engine):
        config_file.proxies = {"default": {"httpProxy": "http://proxy:3128"}}

        await run_create(make_context(), CreateOptions(image="busybox", env=["http_proxy=keep"]))

        env = fake_engine.created[-1]["config"]["Env"]
        assert "http_proxy=keep" in env
        assert "HTTP_PROXY=http://proxy:3128" not in env

        await run_create(make_context(), CreateOptions(image="busybox"))

        env = fake_engine.created[-1]["config"]["Env"]
        assert "HTTP_PROXY=http://proxy:3128" in env
        assert "http_proxy=http://proxy:3128" in env

    async def test_use_docker_socket(self, make_context, fake_engine):
        fake_engine.create_results = [CreateResponse(id="abc")]

        await run_create(make_context(), CreateOptions(image="busybox", use_docker_socket=True))

        created = fake_engine.created[-1]
        assert "/var/run/docker.sock:/var/run/docker.sock" in created["host_config"]["Binds"]
        assert "DOCKER_CONFIG=/docker/" in created["config"]["Env"]

        container_id, path, archive = fake_engine.copied[0]
        assert (container_id, path) == ("abc", "/")
        with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
            member = tar.getmembers()[0]
            assert member.name.endswith("docker/config.json")
            assert member.mode == 0o600
            data = json.loads(tar.extractfile(member).read())
        assert "https://index.docker.io/v1/" in data["auths"]


def test_is_localhost():
    assert is_localhost("127.0.0.1")
    assert is_localhost("::1")
    assert not is_localhost("8.8.8.8")
