import asyncio

from sitepipe.config import DEFAULT_CONFIG, BuildMode, RunConfig
from sitepipe.generator import (
    BUILDING_MESSAGE,
    BuildSession,
    SiteGenerator,
    generator_arguments,
)
from sitepipe.tasks import Status


def test_arguments_per_mode_and_target():
    dev = RunConfig(BuildMode.DEVELOPMENT)
    prod = RunConfig(BuildMode.PRODUCTION)
    prod_sp = RunConfig(BuildMode.PRODUCTION, alternate_target=True)
    dev_sp = RunConfig(BuildMode.DEVELOPMENT, alternate_target=True)

    assert generator_arguments(dev) == ["build", "--incremental"]
    assert generator_arguments(prod) == ["build", "--incremental", "--drafts"]
    assert generator_arguments(prod_sp) == [
        "build",
        "--incremental",
        "--drafts",
        "--config=_config.yml,_config_prod.yml",
    ]
    assert generator_arguments(dev_sp) == [
        "build",
        "--incremental",
        "--config=_config.yml,_config_prod.yml",
    ]


def test_alternate_target_adds_exactly_one_argument():
    for mode in BuildMode:
        plain = generator_arguments(RunConfig(mode))
        alternate = generator_arguments(RunConfig(mode, alternate_target=True))
        assert not any(arg.startswith("--config") for arg in plain)
        assert alternate[:-1] == plain
        assert len(alternate) == len(plain) + 1


def test_custom_config_files():
    run = RunConfig(BuildMode.PRODUCTION, alternate_target=True)
    assert generator_arguments(run, ["a.yml", "b.yml"])[-1] == "--config=a.yml,b.yml"


def test_windows_executable(monkeypatch, tmp_path):
    monkeypatch.setattr("sitepipe.executable_utils.sys.platform", "win32")
    gen = SiteGenerator(tmp_path, RunConfig(), DEFAULT_CONFIG, BuildSession(), runner=FakeRunner())
    assert gen.executable == "jekyll.bat"


class FakeRunner:
    def __init__(self, status=0):
        self.status = status
        self.calls = []

    async def run(self, executable, args, on_line=None):
        self.calls.append((executable, list(args)))
        return self.status


class FakeServer:
    def __init__(self):
        self.events = []

    def reload(self):
        self.events.append("reload")

    def notify(self, message):
        self.events.append(("notify", message))


def test_first_run_suppresses_reload_once(tmp_path):
    session = BuildSession(server=FakeServer())
    runner = FakeRunner()
    gen = SiteGenerator(tmp_path, RunConfig(), DEFAULT_CONFIG, session, runner=runner)

    asyncio.run(gen.build())
    assert session.first_run is False
    assert session.server.events == []

    asyncio.run(gen.build())
    assert session.server.events == [("notify", BUILDING_MESSAGE), "reload"]

    asyncio.run(gen.build())
    assert session.server.events.count("reload") == 2
    assert runner.calls[0] == ("jekyll", ["build", "--incremental"])


def test_first_run_without_server(tmp_path):
    session = BuildSession()
    gen = SiteGenerator(tmp_path, RunConfig(), DEFAULT_CONFIG, session, runner=FakeRunner())
    result = asyncio.run(gen.build())
    assert result.status is Status.OK
    assert session.first_run is False
    # later builds without a server must not fail
    asyncio.run(gen.build())


def test_production_never_reloads(tmp_path):
    session = BuildSession(first_run=False, server=FakeServer())
    gen = SiteGenerator(
        tmp_path, RunConfig.for_command("build"), DEFAULT_CONFIG, session, runner=FakeRunner()
    )
    asyncio.run(gen.build())
    assert session.server.events == []


def test_nonzero_exit_is_soft_failure(tmp_path):
    session = BuildSession()
    gen = SiteGenerator(tmp_path, RunConfig(), DEFAULT_CONFIG, session, runner=FakeRunner(1))
    result = asyncio.run(gen.build())
    assert result.status is Status.WARNING
    assert session.first_run is False
