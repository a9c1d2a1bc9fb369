import pytest

from layerkit.exceptions.user import ConfigurationError
from layerkit.image.instructions import (
    Copy,
    ExternalReference,
    InstructionModel,
    Owner,
    Protocol,
    Run,
    SiblingProjectArchive,
)


def test_copy_ordinals():
    model = InstructionModel()
    model.from_image("ubuntu:22.04")
    first = model.copy()
    model.run("apt-get update")
    second = model.copy(owner="1000:1001")

    assert (first.ordinal, first.content_dir, first.owner) == (0, "layer0", None)
    assert (second.ordinal, second.content_dir, second.owner) == (1, "layer1", Owner(1000, 1001))
    assert [c.ordinal for c in model.copies()] == [0, 1]


def test_duplicate_copy_ordinal():
    model = InstructionModel()
    model.append(Copy(ordinal=0, content_dir="layer0"))
    with pytest.raises(ConfigurationError, match="ordinal 0"):
        model.append(Copy(ordinal=0, content_dir="layer0"))


def test_single_from():
    model = InstructionModel()
    model.from_image("ubuntu:22.04")
    with pytest.raises(ConfigurationError):
        model.from_image("debian:12")


def test_missing_from():
    with pytest.raises(ConfigurationError, match="FROM"):
        InstructionModel().base


def test_invalid_base_reference():
    with pytest.raises(ConfigurationError):
        InstructionModel().from_image("Not A Reference")


def test_layer_steps_keep_relative_order():
    model = InstructionModel()
    model.from_image("ubuntu:22.04")
    model.env("A", "1")
    model.copy()
    model.run("echo one", "echo two")
    model.label("l", "v")
    model.copy()

    steps = list(model.layer_steps())
    assert [type(s) for s in steps] == [Copy, Run, Copy]
    assert steps[1].commands == ("echo one", "echo two")
    assert [c.ordinal for c in model.copies()] == [0, 1]


def test_keyed_views_last_write_wins():
    model = InstructionModel()
    model.env("K", "v1")
    model.env("OTHER", "x")
    model.env("K", "v2")
    model.label("b", "1")
    model.label("a", "2")
    model.label("b", "3")

    assert model.envs() == {"K": "v2", "OTHER": "x"}
    assert list(model.envs()) == ["K", "OTHER"]
    assert list(model.labels().items()) == [("b", "3"), ("a", "2")]


def test_changing_labels():
    model = InstructionModel()
    model.label("stable", "1")
    model.changing_label("build.time", "now")

    assert model.labels() == {"stable": "1", "build.time": "now"}
    assert model.labels(include_changing=False) == {"stable": "1"}


def test_single_value_views():
    model = InstructionModel()
    assert model.get_entrypoint() is None
    assert model.get_cmd() is None
    assert model.get_workdir() is None
    assert model.get_maintainer() is None

    model.entrypoint(["/bin/sh", "-c"])
    model.entrypoint(["/app/run.sh"])
    model.cmd(["--help"])
    model.workdir("/app")
    model.maintainer("Jane Doe", "jane@example.com")

    assert model.get_entrypoint() == ["/app/run.sh"]
    assert model.get_cmd() == ["--help"]
    assert model.get_workdir() == "/app"
    assert str(model.get_maintainer()) == "Jane Doe <jane@example.com>"


def test_exposed_ports():
    model = InstructionModel()
    model.expose_tcp(8080)
    model.expose_udp(53)
    model.expose_tcp(8080)

    ports = model.exposed_ports()
    assert [str(p) for p in ports] == ["8080/tcp", "53/udp"]
    assert ports[1].protocol == Protocol.UDP


def test_run_needs_commands():
    with pytest.raises(ConfigurationError):
        InstructionModel().run()


def test_owner_parse():
    assert Owner.parse("1000:1000") == Owner(1000, 1000)
    assert Owner.parse("0") == Owner(0, 0)
    assert Owner.parse((1, 2)) == Owner(1, 2)
    assert str(Owner(1, 2)) == "1:2"
    with pytest.raises(ConfigurationError):
        Owner.parse("root:root")


def test_fingerprint_ignores_changing_labels():
    def model(revision: str) -> InstructionModel:
        m = InstructionModel()
        m.from_image("ubuntu:22.04")
        m.copy()
        m.env("K", "V")
        m.changing_label("org.opencontainers.image.revision", revision)
        return m

    assert model("abc").fingerprint() == model("def").fingerprint()

    other = model("abc")
    other.env("K", "W")
    assert other.fingerprint() != model("abc").fingerprint()


def test_from_dict():
    model = InstructionModel.from_dict(
        {
            "from": "ubuntu:22.04",
            "maintainer": {"name": "Jane Doe", "email": "jane@example.com"},
            "instructions": [
                {"copy": {"owner": "1000:1000"}},
                {"run": "apt-get update"},
                {"env": {"JAVA_HOME": "/opt/jdk"}},
                {"changing_label": {"revision": "abc123"}},
                {"entrypoint": ["/app/run.sh"]},
                {"cmd": "--verbose"},
                {"workdir": "/app"},
                {"expose_tcp": [8080, 8443]},
            ],
        }
    )

    assert model.base.source == ExternalReference("ubuntu:22.04")
    assert model.copies()[0].owner == Owner(1000, 1000)
    assert model.runs()[0].commands == ("apt-get update",)
    assert model.envs() == {"JAVA_HOME": "/opt/jdk"}
    assert model.labels(include_changing=False) == {}
    assert model.get_entrypoint() == ["/app/run.sh"]
    assert model.get_cmd() == ["--verbose"]
    assert model.get_workdir() == "/app"
    assert [p.port for p in model.exposed_ports()] == [8080, 8443]


def test_from_dict_with_resolved_base():
    base = SiblingProjectArchive(project="base", reference="base:1.0-amd64", archive_path="/tmp/image.tar")
    model = InstructionModel.from_dict({"instructions": [{"copy": None}]}, base=base)
    assert model.base.source is base


def test_from_dict_unknown_instruction():
    with pytest.raises(ConfigurationError, match="Unknown instruction 'volume'"):
        InstructionModel.from_dict({"from": "ubuntu", "instructions": [{"volume": "/data"}]})
