"""
The ordered model of image build instructions.

An :class:`InstructionModel` is built once, during configuration, and is then read by exactly one backend. Copy
instructions carry an ordinal, their position among Copy instructions, which binds them to the ``layerN``
directory staged on disk for them and to the layer the backend generates.
"""

from __future__ import annotations

import enum
import hashlib
import json
import typing
from dataclasses import asdict, dataclass, field

from layerkit.exceptions.user import ConfigurationError
from layerkit.image.reference import ImageReference

LAYER_DIR_PREFIX = "layer"


def layer_dir_name(ordinal: int) -> str:
    return f"{LAYER_DIR_PREFIX}{ordinal}"


class Protocol(enum.Enum):
    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class Owner(object):
    uid: int
    gid: int

    @classmethod
    def parse(cls, value: typing.Union[str, typing.Tuple[int, int], Owner]) -> Owner:
        if isinstance(value, Owner):
            return value
        if isinstance(value, tuple):
            uid, gid = value
            return cls(int(uid), int(gid))
        uid, sep, gid = str(value).partition(":")
        try:
            return cls(int(uid), int(gid if sep else uid))
        except ValueError as e:
            raise ConfigurationError(f"Invalid owner '{value}', expected 'uid:gid'") from e

    def __str__(self) -> str:
        return f"{self.uid}:{self.gid}"


@dataclass(frozen=True)
class ExternalReference(object):
    """A base image published in a registry."""

    reference: str

    def __post_init__(self):
        ImageReference.parse(self.reference)

    @property
    def image_reference(self) -> ImageReference:
        return ImageReference.parse(self.reference)


@dataclass(frozen=True)
class SiblingProjectArchive(object):
    """
    The image built by another project in the same build, for the architecture of the host.

    ``image_id`` is known once the sibling's build result has been published. The dockerfile builder pins the
    generated image to it, the direct builder reads ``archive_path``.
    """

    project: str
    reference: str
    archive_path: str
    image_id: typing.Optional[str] = None


@dataclass(frozen=True)
class From(object):
    source: typing.Union[ExternalReference, SiblingProjectArchive]


@dataclass(frozen=True)
class Maintainer(object):
    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class Copy(object):
    ordinal: int
    content_dir: str
    owner: typing.Optional[Owner] = None


@dataclass(frozen=True)
class Run(object):
    commands: typing.Tuple[str, ...]


@dataclass(frozen=True)
class Env(object):
    key: str
    value: str


@dataclass(frozen=True)
class Label(object):
    key: str
    value: str
    changing: bool = False


@dataclass(frozen=True)
class Entrypoint(object):
    argv: typing.Tuple[str, ...]


@dataclass(frozen=True)
class Cmd(object):
    argv: typing.Tuple[str, ...]


@dataclass(frozen=True)
class Workdir(object):
    path: str


@dataclass(frozen=True)
class Expose(object):
    port: int
    protocol: Protocol = Protocol.TCP

    def __str__(self) -> str:
        return f"{self.port}/{self.protocol.value}"


Instruction = typing.Union[From, Maintainer, Copy, Run, Env, Label, Entrypoint, Cmd, Workdir, Expose]
LayerStep = typing.Union[Copy, Run]


@dataclass
class InstructionModel(object):
    """
    Ordered, append-only list of build instructions for one image and one architecture.

    The builder methods (``from_image``, ``copy``, ``env``...) append to the model. Backends consume it through the
    read-only views: :meth:`layer_steps` for Copy and Run steps in their relative order, and the keyed views
    (:meth:`envs`, :meth:`labels`) where the last write per key wins and iteration follows insertion order.
    """

    instructions: typing.List[Instruction] = field(default_factory=list)

    def __post_init__(self):
        given = list(self.instructions)
        self.instructions = []
        for instruction in given:
            self.append(instruction)

    def append(self, instruction: Instruction) -> Instruction:
        if isinstance(instruction, From) and any(isinstance(i, From) for i in self.instructions):
            raise ConfigurationError(
                "An instruction model holds exactly one FROM, build other architectures with their own model"
            )
        if isinstance(instruction, Copy):
            used = {c.ordinal for c in self.copies()}
            if instruction.ordinal in used:
                raise ConfigurationError(f"Copy ordinal {instruction.ordinal} is already used in this build")
        self.instructions.append(instruction)
        return instruction

    def __iter__(self) -> typing.Iterator[Instruction]:
        return iter(self.instructions)

    def __len__(self) -> int:
        return len(self.instructions)

    # Builder methods

    def from_image(self, reference: str) -> From:
        return self.append(From(ExternalReference(reference)))

    def from_source(self, source: typing.Union[ExternalReference, SiblingProjectArchive]) -> From:
        return self.append(From(source))

    def maintainer(self, name: str, email: str) -> Maintainer:
        return self.append(Maintainer(name, email))

    def copy(self, owner: typing.Union[str, typing.Tuple[int, int], Owner, None] = None) -> Copy:
        """
        Appends a Copy with the next free ordinal. The returned instruction names the ``layerN`` directory the
        staging step has to fill before the build runs.
        """
        ordinal = max((c.ordinal for c in self.copies()), default=-1) + 1
        return self.append(
            Copy(
                ordinal=ordinal,
                content_dir=layer_dir_name(ordinal),
                owner=Owner.parse(owner) if owner is not None else None,
            )
        )

    def run(self, *commands: str) -> Run:
        if not commands:
            raise ConfigurationError("A RUN instruction needs at least one command")
        return self.append(Run(tuple(commands)))

    def env(self, key: str, value: str) -> Env:
        return self.append(Env(key, str(value)))

    def label(self, key: str, value: str) -> Label:
        return self.append(Label(key, str(value)))

    def changing_label(self, key: str, value: str) -> Label:
        return self.append(Label(key, str(value), changing=True))

    def entrypoint(self, argv: typing.Sequence[str]) -> Entrypoint:
        return self.append(Entrypoint(tuple(argv)))

    def cmd(self, argv: typing.Sequence[str]) -> Cmd:
        return self.append(Cmd(tuple(argv)))

    def workdir(self, path: str) -> Workdir:
        return self.append(Workdir(path))

    def expose_tcp(self, port: int) -> Expose:
        return self.append(Expose(int(port), Protocol.TCP))

    def expose_udp(self, port: int) -> Expose:
        return self.append(Expose(int(port), Protocol.UDP))

    # Views

    @property
    def base(self) -> From:
        for i in self.instructions:
            if isinstance(i, From):
                return i
        raise ConfigurationError("No FROM instruction, every image needs a base image")

    def get_maintainer(self) -> typing.Optional[Maintainer]:
        return self._last(Maintainer)

    def layer_steps(self) -> typing.Iterator[LayerStep]:
        for i in self.instructions:
            if isinstance(i, (Copy, Run)):
                yield i

    def copies(self) -> typing.List[Copy]:
        return [i for i in self.instructions if isinstance(i, Copy)]

    def runs(self) -> typing.List[Run]:
        return [i for i in self.instructions if isinstance(i, Run)]

    def envs(self) -> typing.Dict[str, str]:
        result = {}
        for i in self.instructions:
            if isinstance(i, Env):
                result[i.key] = i.value
        return result

    def labels(self, include_changing: bool = True) -> typing.Dict[str, str]:
        result = {}
        for i in self.instructions:
            if isinstance(i, Label) and (include_changing or not i.changing):
                result[i.key] = i.value
        return result

    def get_entrypoint(self) -> typing.Optional[typing.List[str]]:
        e = self._last(Entrypoint)
        return list(e.argv) if e is not None else None

    def get_cmd(self) -> typing.Optional[typing.List[str]]:
        c = self._last(Cmd)
        return list(c.argv) if c is not None else None

    def get_workdir(self) -> typing.Optional[str]:
        w = self._last(Workdir)
        return w.path if w is not None else None

    def exposed_ports(self) -> typing.List[Expose]:
        seen = []
        for i in self.instructions:
            if isinstance(i, Expose) and i not in seen:
                seen.append(i)
        return seen

    def _last(self, kind: typing.Type) -> typing.Any:
        found = None
        for i in self.instructions:
            if isinstance(i, kind):
                found = i
        return found

    def fingerprint(self) -> str:
        """
        Stable digest of the instructions, suitable as a cache key for the host orchestrator. Changing labels are left
        out: they are expected to differ between otherwise identical builds.
        """
        serialized = []
        for i in self.instructions:
            if isinstance(i, Label) and i.changing:
                continue
            serialized.append({"kind": type(i).__name__, **asdict(i)})
        payload = json.dumps(serialized, sort_keys=True, default=_json_default)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @classmethod
    def from_dict(
        cls,
        d: typing.Dict[str, typing.Any],
        base: typing.Union[ExternalReference, SiblingProjectArchive, None] = None,
    ) -> InstructionModel:
        """
        Builds a model from a mapping, typically loaded from a YAML instruction file::

            from: ubuntu:22.04
            maintainer: {name: Jane Doe, email: jane@example.com}
            instructions:
              - copy: {owner: "1000:1000"}
              - run: [apt-get update, apt-get install -y curl]
              - env: {JAVA_HOME: /opt/jdk}
              - changing_label: {org.opencontainers.image.revision: abc123}
              - entrypoint: [/app/run.sh]
              - expose_tcp: 8080

        :param d: the mapping
        :param base: an already resolved base image, used when the mapping has no ``from`` key
        """
        model = cls()
        if "from" in d:
            model.from_image(d["from"])
        elif base is not None:
            model.from_source(base)
        if d.get("maintainer"):
            model.maintainer(d["maintainer"]["name"], d["maintainer"]["email"])

        for step in d.get("instructions") or []:
            if not isinstance(step, dict) or len(step) != 1:
                raise ConfigurationError(f"Each instruction must be a mapping with a single key, got {step}")
            (kind, value), = step.items()
            if kind == "copy":
                model.copy(owner=(value or {}).get("owner"))
            elif kind == "run":
                model.run(*([value] if isinstance(value, str) else value))
            elif kind in ("env", "label", "changing_label"):
                add = getattr(model, kind)
                for k, v in value.items():
                    add(k, v)
            elif kind in ("entrypoint", "cmd"):
                getattr(model, kind)([value] if isinstance(value, str) else value)
            elif kind == "workdir":
                model.workdir(value)
            elif kind in ("expose_tcp", "expose_udp"):
                add = getattr(model, kind)
                for port in value if isinstance(value, list) else [value]:
                    add(port)
            else:
                raise ConfigurationError(f"Unknown instruction '{kind}'")
        return model


def _json_default(o: typing.Any) -> typing.Any:
    if isinstance(o, enum.Enum):
        return o.value
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")
