import json

import mock
import pytest

from layerkit.exceptions.system import ExternalProcessError
from layerkit.exceptions.user import ConfigurationError
from layerkit.image.build_result import BuilderKind, BuildResult
from layerkit.image.daemon import DockerDaemon
from layerkit.image.dockerfile_builder import DockerfileImageBuilder, generate_dockerfile
from layerkit.image.instructions import InstructionModel, SiblingProjectArchive


@pytest.fixture
def builder():
    return DockerfileImageBuilder(DockerDaemon(binary="docker"))


def test_end_to_end(build_context, stage, docker_run, builder):
    stage(build_context, 0, {"app.bin": b"\x7fELF"})
    model = InstructionModel()
    model.from_image("base:1.0")
    model.copy()
    model.env("K", "V")
    model.entrypoint(["run.sh"])

    with mock.patch("layerkit.image.daemon.subprocess.run", side_effect=docker_run("sha256:abc")) as run:
        result = builder.compile(model, build_context)

    dockerfile = build_context.dockerfile_path.read_text()
    assert dockerfile.startswith("#############################\n")
    assert "# Auto generated Dockerfile #" in dockerfile
    assert "\nFROM base:1.0\n" in dockerfile
    assert len([line for line in dockerfile.splitlines() if line.startswith("COPY ")]) == 1
    assert "\nCOPY context/layer0 /\n" in dockerfile
    assert '\nENTRYPOINT ["run.sh"]\n' in dockerfile
    assert "\nENV K=V\n" in dockerfile
    assert "CMD" not in dockerfile

    assert result == BuildResult(tag="app:1.0-amd64", builder_kind=BuilderKind.DOCKERFILE, image_id="sha256:abc")
    assert BuildResult.read(build_context.build_info_path) == result

    build, save, inspect = run.call_args_list
    assert build.args[0][1:] == [
        "image",
        "build",
        "--progress=plain",
        "--no-cache",
        "--platform=linux/amd64",
        "--tag=app:1.0-amd64",
        ".",
    ]
    assert build.kwargs["cwd"] == build_context.working_dir
    assert build.kwargs["env"] == {}
    assert save.args[0][1:] == ["save", "--output=image.tar", "app:1.0-amd64"]
    assert save.kwargs["cwd"] == build_context.archive_path.parent
    assert save.kwargs["env"] == {}
    assert inspect.args[0][1:] == ["image", "inspect", "--format", "{{.Id}}", "app:1.0-amd64"]


def test_section_order(build_context):
    model = InstructionModel()
    model.env("ENV_FIRST", "1")
    model.label("label.first", "1")
    model.expose_tcp(8080)
    model.workdir("/app")
    model.cmd(["--serve"])
    model.entrypoint(["/app/run.sh"])
    model.copy(owner="1000:1000")
    model.maintainer("Jane Doe", "jane@example.com")
    model.run("apt-get update", "apt-get install -y curl")
    model.copy()
    model.from_image("ubuntu:22.04")

    dockerfile = generate_dockerfile(model, build_context)
    lines = [line for line in dockerfile.splitlines() if line and not line.startswith("#")]

    assert lines == [
        "FROM ubuntu:22.04",
        "MAINTAINER Jane Doe <jane@example.com>",
        "COPY --chown=1000:1000 context/layer0 /",
        "RUN apt-get update && \\",
        "    apt-get install -y curl",
        "COPY context/layer1 /",
        'ENTRYPOINT ["/app/run.sh"]',
        'CMD ["--serve"]',
        "WORKDIR /app",
        "EXPOSE 8080/tcp",
        "LABEL label.first=1",
        "ENV ENV_FIRST=1",
    ]


def test_cmd_uses_cmd_value(build_context):
    model = InstructionModel()
    model.from_image("ubuntu:22.04")
    model.entrypoint(["/bin/sh", "-c"])
    model.cmd(["echo hello"])

    dockerfile = generate_dockerfile(model, build_context)
    assert 'CMD ["echo hello"]' in dockerfile
    assert 'ENTRYPOINT ["/bin/sh", "-c"]' in dockerfile


def test_last_write_wins(build_context):
    model = InstructionModel()
    model.from_image("ubuntu:22.04")
    model.env("K", "v1")
    model.env("K", "v2")
    model.label("l", "a")
    model.label("l", "b")

    dockerfile = generate_dockerfile(model, build_context)
    assert "ENV K=v2" in dockerfile
    assert "v1" not in dockerfile
    assert "LABEL l=b" in dockerfile
    assert "LABEL l=a" not in dockerfile


def test_values_are_quoted(build_context):
    model = InstructionModel()
    model.from_image("ubuntu:22.04")
    model.env("GREETING", "hello world")
    model.env("EMPTY", "")
    model.label("description", 'say "hi"')

    dockerfile = generate_dockerfile(model, build_context)
    assert 'ENV GREETING="hello world"' in dockerfile
    assert 'ENV EMPTY=""' in dockerfile
    assert "LABEL description=" + json.dumps('say "hi"') in dockerfile


def test_sibling_base_is_pinned(build_context):
    model = InstructionModel()
    model.from_source(
        SiblingProjectArchive(
            project="base", reference="base:2.0-amd64", archive_path="/build/base/image.tar", image_id="sha256:123"
        )
    )

    dockerfile = generate_dockerfile(model, build_context)
    assert "# base (a.k.a base:2.0-amd64)\nFROM sha256:123\n" in dockerfile
    assert "FROM base:2.0-amd64" not in dockerfile


def test_sibling_base_from_build_info(build_context, tmp_path):
    archive = tmp_path / "build" / "base" / "docker" / "amd64" / "image.tar"
    BuildResult("base:2.0-amd64", BuilderKind.DIRECT, "sha256:456").write(archive.parent / "build-info.json")
    model = InstructionModel()
    model.from_source(SiblingProjectArchive(project="base", reference="base:2.0-amd64", archive_path=str(archive)))

    assert "FROM sha256:456" in generate_dockerfile(model, build_context)


def test_sibling_base_not_built(build_context, tmp_path):
    model = InstructionModel()
    model.from_source(
        SiblingProjectArchive(project="base", reference="base:2.0-amd64", archive_path=str(tmp_path / "image.tar"))
    )
    with pytest.raises(ConfigurationError, match="not built yet"):
        generate_dockerfile(model, build_context)


@pytest.mark.parametrize("step", ["build", "save"])
def test_failed_step(build_context, stage, docker_run, builder, step):
    stage(build_context, 0, {"app.bin": b"app"})
    model = InstructionModel()
    model.from_image("base:1.0")
    model.copy()

    with mock.patch("layerkit.image.daemon.subprocess.run", side_effect=docker_run(fail_step=step)):
        with pytest.raises(ExternalProcessError) as e:
            builder.compile(model, build_context)

    assert e.value.step == step
    assert e.value.returncode == 1
    assert f"see the docker {step} log" in str(e.value)
    assert not build_context.build_info_path.exists()


def test_missing_layer_fails_before_docker(build_context, builder):
    model = InstructionModel()
    model.from_image("base:1.0")
    model.copy()

    with mock.patch("layerkit.image.daemon.subprocess.run") as run:
        with pytest.raises(ConfigurationError):
            builder.compile(model, build_context)
    run.assert_not_called()
    assert not build_context.build_info_path.exists()


def test_run_without_copies(build_context, docker_run, builder):
    model = InstructionModel()
    model.from_image("base:1.0")
    model.run("echo hello")

    with mock.patch("layerkit.image.daemon.subprocess.run", side_effect=docker_run()):
        result = builder.compile(model, build_context)

    assert result.builder_kind == BuilderKind.DOCKERFILE
    assert "RUN echo hello\n" in build_context.dockerfile_path.read_text()
